"""
Weather radar frame index service.

Holds the most recent RainViewer frame timestamps with a fixed TTL. One
instance is constructed by the application and handed to the weather poller
and the HTTP API.
"""

import asyncio
import time
from typing import Callable, Optional

import config
from geofeed_service.fetcher import HttpFetcher
from geofeed_service.models import WeatherFrames
from geofeed_service.parsers import parse_weather_frames
from logging_config import get_logger

logger = get_logger(__name__)


class WeatherFrameService:
    """
    Cached access to RainViewer radar and satellite frame timestamps.

    Parameters
    ----------
    fetcher : HttpFetcher
        Shared fetch capability.
    ttl : float
        Seconds a fetched index is reused before refetching.
    clock : callable
        Monotonic clock, injectable for tests.
    """

    def __init__(self, fetcher: HttpFetcher, ttl: float = config.WEATHER_FRAME_CACHE_TTL_S,
                 url: str = config.RAINVIEWER_MAPS_URL,
                 clock: Callable[[], float] = time.monotonic):
        self.fetcher = fetcher
        self.ttl = ttl
        self.url = url
        self._clock = clock
        self._frames: Optional[WeatherFrames] = None
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self.last_error: Optional[str] = None

    @property
    def frames(self) -> Optional[WeatherFrames]:
        return self._frames

    def is_fresh(self) -> bool:
        if self._frames is None or self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.ttl

    async def refresh(self, force: bool = False) -> WeatherFrames:
        """
        Return the frame index, fetching only when the cache is stale.

        Raises
        ------
        FeedError
            When a fetch is needed and fails. The cached index is kept.
        """
        async with self._lock:
            if not force and self.is_fresh():
                return self._frames

            try:
                payload = await self.fetcher.fetch_json(self.url)
                frames = parse_weather_frames(payload)
            except Exception as e:
                self.last_error = str(e)
                raise

            self._frames = frames
            self._fetched_at = self._clock()
            self.last_error = None
            logger.info(
                "Weather frames updated",
                radar_frames=len(frames.radar_past),
                satellite_frames=len(frames.satellite_infrared),
            )
            return frames
