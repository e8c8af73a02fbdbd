"""
Source Pollers

One poller per upstream feed. Each owns the latest snapshot of its layer,
refreshes on its own timer, and publishes every accepted snapshot to its diff
subscriptions, which reconcile it against what their renderer already shows.

All poller state is touched only from the owning event loop. Blocking network
calls happen inside the fetcher's thread pool.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

import config
from geofeed_service.errors import FeedError, TransportError, ValidationError
from geofeed_service.fetcher import HttpFetcher
from geofeed_service.models import (
    Camera,
    DataLayerType,
    GeoEntity,
    OrbitalElement,
    PollerStatus,
    Satellite,
)
from geofeed_service.parsers import (
    parse_camera_directory,
    parse_earthquakes,
    parse_flight_states,
    parse_radar_stations,
    parse_weather_alerts,
)
from geofeed_service.propagator import orbital_period_minutes, propagate
from geofeed_service.reconciler import EntityDiff, RenderedIdentitySet, dedupe
from geofeed_service.static_data import BUILTIN_CAMERAS, NEXRAD_STATIONS
from geofeed_service.tle_parser import TLEParser
from geofeed_service.weather_frames import WeatherFrameService
from logging_config import get_logger

logger = get_logger(__name__)

DiffCallback = Callable[[EntityDiff], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiffSubscription:
    """
    A renderer's view of one layer.

    Keeps the ids the renderer holds and receives only add/remove diffs.
    Call ``dispose()`` to stop receiving updates.
    """

    def __init__(self, poller: "SourcePoller", callback: DiffCallback):
        self._poller = poller
        self._callback = callback
        self.rendered: RenderedIdentitySet = RenderedIdentitySet()
        self.disposed = False

    def deliver(self, snapshot: Sequence[GeoEntity]) -> None:
        if self.disposed:
            return
        diff = self.rendered.reconcile(snapshot)
        if diff.is_empty:
            return
        try:
            self._callback(diff)
        except Exception:
            logger.exception("Diff subscriber raised", layer=self._poller.layer.value)

    def dispose(self) -> None:
        if not self.disposed:
            self.disposed = True
            self._poller._unsubscribe(self)


class SourcePoller:
    """
    Base class for feed pollers.

    Subclasses set ``layer`` and ``default_interval`` and implement
    ``fetch_once``. Everything else (in-flight guard, timer, error
    recording, discard of late results after disable, publication) lives
    here so every layer behaves the same.

    Parameters
    ----------
    fetcher : HttpFetcher
        Shared fetch capability.
    interval : float, optional
        Polling interval in seconds; defaults to the layer's interval.
    timeout : float, optional
        Upper bound on one ``fetch_once`` call.
    """

    layer: DataLayerType
    default_interval: float = 60.0

    def __init__(self, fetcher: HttpFetcher, interval: Optional[float] = None,
                 timeout: Optional[float] = None):
        self.fetcher = fetcher
        self.interval = interval or self.default_interval
        self.timeout = timeout or config.HTTP_TIMEOUT_S

        self.active = False
        self.last_success_at: Optional[datetime] = None
        self.last_attempt_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.consecutive_failures = 0

        self._entities: List[GeoEntity] = []
        self._generation = 0
        self._in_flight = False
        self._subscriptions: List[DiffSubscription] = []
        self._timer_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # -- to implement ----------------------------------------------------

    async def fetch_once(self) -> List[GeoEntity]:
        """Fetch and parse one snapshot. Raises FeedError on failure."""
        raise NotImplementedError

    # -- read side -------------------------------------------------------

    @property
    def entities(self) -> List[GeoEntity]:
        return list(self._entities)

    @property
    def is_in_flight(self) -> bool:
        return self._in_flight

    @property
    def is_polling(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def status(self) -> PollerStatus:
        return PollerStatus(
            layer=self.layer,
            active=self.active,
            last_update=self.last_success_at,
            last_attempt=self.last_attempt_at,
            is_loading=self._in_flight,
            last_error=self.last_error,
            interval_seconds=self.interval,
            entity_count=len(self._entities),
            consecutive_failures=self.consecutive_failures,
        )

    # -- refresh ---------------------------------------------------------

    async def refresh(self) -> bool:
        """
        Fetch, parse and publish one snapshot.

        Returns True when a new snapshot was accepted. Returns False when the
        layer is inactive, a fetch is already in flight, the fetch failed (the
        previous snapshot is kept), or the layer was disabled while the fetch
        was outstanding (the result is discarded).
        """
        if not self.active:
            logger.debug("Refresh skipped, layer inactive", layer=self.layer.value)
            return False
        if self._in_flight:
            logger.debug("Refresh skipped, fetch in flight", layer=self.layer.value)
            return False

        generation = self._generation
        self._in_flight = True
        self.last_attempt_at = _utcnow()
        started = time.monotonic()

        try:
            try:
                entities = await asyncio.wait_for(self.fetch_once(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise TransportError(f"{self.layer.value} fetch timed out after {self.timeout:.0f}s") from e
        except FeedError as e:
            if generation != self._generation:
                self._discard_stale()
                return False
            self._record_failure(e)
            logger.warning(f"Layer refresh failed: {e}", layer=self.layer.value,
                           error_type=type(e).__name__)
            return False
        except Exception as e:
            if generation != self._generation:
                self._discard_stale()
                return False
            self._record_failure(e)
            logger.exception(f"Unexpected error refreshing {self.layer.value}")
            return False
        finally:
            self._in_flight = False

        if generation != self._generation:
            self._discard_stale()
            return False

        self._entities = dedupe(entities)
        self.last_success_at = _utcnow()
        self.last_error = None
        self.consecutive_failures = 0
        logger.info(
            "Layer refreshed",
            layer=self.layer.value,
            count=len(self._entities),
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        self._publish()
        return True

    def _discard_stale(self) -> None:
        logger.info("Discarding result for disabled layer", layer=self.layer.value)
        if self.active:
            # Re-enabled while the stale fetch was outstanding
            self._spawn(self.refresh())

    def _record_failure(self, error: Exception) -> None:
        self.last_error = str(error) or type(error).__name__
        self.consecutive_failures += 1

    # -- activation ------------------------------------------------------

    def enable(self) -> None:
        self.active = True

    def disable(self) -> None:
        """Deactivate the layer, clear its snapshot and drop late results."""
        self.active = False
        self._generation += 1
        self.stop_polling()
        self._entities = []
        self._publish()

    # -- timer -----------------------------------------------------------

    def start_polling(self, interval: Optional[float] = None, immediate: bool = True) -> None:
        """Refresh now, then every ``interval`` seconds. Ticks during a fetch are skipped."""
        if interval:
            self.interval = interval
        if self.is_polling:
            return
        self._timer_task = asyncio.get_running_loop().create_task(self._poll_loop(immediate))

    def stop_polling(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    async def _poll_loop(self, immediate: bool) -> None:
        if not immediate:
            await asyncio.sleep(self.interval)
        while True:
            self._spawn(self.refresh())
            await asyncio.sleep(self.interval)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -- subscriptions ---------------------------------------------------

    def subscribe(self, callback: DiffCallback) -> DiffSubscription:
        """Register ``callback`` for diffs; the current snapshot is delivered at once."""
        subscription = DiffSubscription(self, callback)
        self._subscriptions.append(subscription)
        subscription.deliver(self._entities)
        return subscription

    def _unsubscribe(self, subscription: DiffSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _publish(self) -> None:
        snapshot = list(self._entities)
        for subscription in list(self._subscriptions):
            subscription.deliver(snapshot)


class FlightPoller(SourcePoller):
    """Aircraft state vectors from OpenSky, optionally limited to a bounding box."""

    layer = DataLayerType.FLIGHTS
    default_interval = config.FLIGHT_INTERVAL_S

    def __init__(self, fetcher: HttpFetcher,
                 bbox: Optional[Tuple[float, float, float, float]] = None, **kwargs):
        super().__init__(fetcher, **kwargs)
        # (lamin, lomin, lamax, lomax)
        self.bbox = bbox

    async def fetch_once(self) -> List[GeoEntity]:
        params = None
        if self.bbox:
            lamin, lomin, lamax, lomax = self.bbox
            params = {"lamin": lamin, "lomin": lomin, "lamax": lamax, "lomax": lomax}
        payload = await self.fetcher.fetch_json(config.OPENSKY_STATES_URL, params=params,
                                                timeout=self.timeout)
        return parse_flight_states(payload, fetched_at=_utcnow())


class SatellitePoller(SourcePoller):
    """
    CelesTrak element sets for one or more groups, propagated to "now".

    Groups are fetched concurrently. A failing group is skipped; the refresh
    fails only when every group fails. A satellite listed in several groups
    keeps the first group's element set.
    """

    layer = DataLayerType.SATELLITES
    default_interval = config.SATELLITE_INTERVAL_S

    def __init__(self, fetcher: HttpFetcher, groups: Optional[Sequence[str]] = None,
                 clock: Callable[[], datetime] = _utcnow, **kwargs):
        super().__init__(fetcher, **kwargs)
        self.groups = list(groups) if groups else list(config.DEFAULT_SATELLITE_GROUPS)
        self.parser = TLEParser()
        self._clock = clock

    async def _fetch_group(self, group: str) -> List[OrbitalElement]:
        text = await self.fetcher.fetch_text(
            config.CELESTRAK_GP_URL,
            params={"GROUP": group, "FORMAT": "tle"},
            timeout=self.timeout,
        )
        return self.parser.parse_many(text)

    async def fetch_elements(self) -> List[Tuple[str, OrbitalElement]]:
        """Element sets from every group as (group, element), first group wins."""
        results = await asyncio.gather(
            *(self._fetch_group(group) for group in self.groups),
            return_exceptions=True,
        )

        elements: List[Tuple[str, OrbitalElement]] = []
        seen: Set[int] = set()
        failures: List[BaseException] = []

        for group, result in zip(self.groups, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append(result)
                logger.warning(f"Satellite group '{group}' failed: {result}")
                continue
            for element in result:
                if element.catalog_number in seen:
                    continue
                seen.add(element.catalog_number)
                elements.append((group, element))

        if failures and len(failures) == len(self.groups):
            raise failures[0]
        return elements

    def to_satellite(self, element: OrbitalElement, at_time: datetime,
                     group: Optional[str] = None) -> Satellite:
        point = propagate(element, at_time)
        return Satellite(
            id=str(element.catalog_number),
            latitude=point.latitude,
            longitude=point.longitude,
            catalog_number=element.catalog_number,
            name=element.name or f"SAT_{element.catalog_number}",
            group=group,
            altitude_km=point.altitude_km,
            epoch=element.epoch,
            inclination=element.inclination,
            period_minutes=orbital_period_minutes(element),
            position_time=at_time,
            element=element,
        )

    async def fetch_once(self) -> List[GeoEntity]:
        now = self._clock()
        satellites: List[GeoEntity] = []
        for group, element in await self.fetch_elements():
            try:
                satellites.append(self.to_satellite(element, now, group))
            except ValidationError as e:
                logger.debug(f"Skipping satellite {element.catalog_number}: {e}")
        return satellites

    @property
    def elements(self) -> List[OrbitalElement]:
        return [s.element for s in self._entities if isinstance(s, Satellite) and s.element]

    def positions_at(self, at_time: datetime) -> List[Satellite]:
        """Re-propagate the current snapshot to ``at_time`` without fetching."""
        positions = []
        for satellite in self._entities:
            if not isinstance(satellite, Satellite) or satellite.element is None:
                continue
            try:
                positions.append(self.to_satellite(satellite.element, at_time, satellite.group))
            except ValidationError as e:
                logger.debug(f"Skipping satellite {satellite.id}: {e}")
        return positions


EARTHQUAKE_FEEDS = tuple(
    f"{level}_{period}"
    for level in ("significant", "4.5", "2.5", "1.0", "all")
    for period in ("hour", "day", "week", "month")
)


class EarthquakePoller(SourcePoller):
    """USGS summary feed; ``feed`` picks magnitude threshold and window."""

    layer = DataLayerType.EARTHQUAKES
    default_interval = config.EARTHQUAKE_INTERVAL_S

    def __init__(self, fetcher: HttpFetcher, feed: str = config.DEFAULT_EARTHQUAKE_FEED, **kwargs):
        super().__init__(fetcher, **kwargs)
        if feed not in EARTHQUAKE_FEEDS:
            raise ValueError(f"Unknown USGS feed '{feed}'. Choose from: {', '.join(EARTHQUAKE_FEEDS)}")
        self.feed = feed

    @property
    def url(self) -> str:
        return config.USGS_FEED_URL.format(feed=self.feed)

    async def fetch_once(self) -> List[GeoEntity]:
        payload = await self.fetcher.fetch_json(self.url, timeout=self.timeout)
        return parse_earthquakes(payload)


class WeatherPoller(SourcePoller):
    """
    NWS radar stations and active alerts.

    Either request failing fails the refresh. The injected frame service is
    refreshed alongside on a best-effort basis; its failures are only logged.
    With ``live_stations=False`` the bundled NEXRAD list replaces the station
    request.
    """

    layer = DataLayerType.WEATHER
    default_interval = config.WEATHER_INTERVAL_S

    def __init__(self, fetcher: HttpFetcher, frame_service: Optional[WeatherFrameService] = None,
                 live_stations: bool = True, **kwargs):
        super().__init__(fetcher, **kwargs)
        self.frame_service = frame_service
        self.live_stations = live_stations

    async def _fetch_radars(self) -> List[GeoEntity]:
        if not self.live_stations:
            return list(NEXRAD_STATIONS)
        payload = await self.fetcher.fetch_json(config.NWS_RADAR_STATIONS_URL, timeout=self.timeout)
        return parse_radar_stations(payload)

    async def _fetch_alerts(self) -> List[GeoEntity]:
        payload = await self.fetcher.fetch_json(
            config.NWS_ALERTS_URL,
            headers={"Accept": "application/geo+json"},
            timeout=self.timeout,
        )
        return parse_weather_alerts(payload)

    async def _refresh_frames(self) -> None:
        if self.frame_service is None:
            return
        try:
            await self.frame_service.refresh()
        except FeedError as e:
            logger.warning(f"Weather frame refresh failed: {e}")

    async def fetch_once(self) -> List[GeoEntity]:
        radars, alerts, _ = await asyncio.gather(
            self._fetch_radars(),
            self._fetch_alerts(),
            self._refresh_frames(),
            return_exceptions=True,
        )
        for result in (radars, alerts):
            if isinstance(result, BaseException):
                raise result
        return radars + alerts


class CameraPoller(SourcePoller):
    """
    Bundled camera directory plus optional scraped directory pages.

    Pages are fetched concurrently and fail independently; a failed page
    contributes nothing. Bundled entries win on id collisions, then earlier
    pages win over later ones. Pages are fetched at most once per
    ``scrape_min_interval``; within that window the last scrape result is
    reused.
    """

    layer = DataLayerType.CCTV
    default_interval = config.CAMERA_INTERVAL_S

    def __init__(self, fetcher: HttpFetcher, directory_urls: Optional[Sequence[str]] = None,
                 builtin: Optional[Sequence[Camera]] = None,
                 scrape_min_interval: float = config.CAMERA_SCRAPE_MIN_INTERVAL_S,
                 clock: Callable[[], float] = time.monotonic, **kwargs):
        super().__init__(fetcher, **kwargs)
        self.directory_urls = list(directory_urls or [])
        self.builtin = list(BUILTIN_CAMERAS if builtin is None else builtin)
        self.scrape_min_interval = scrape_min_interval
        self._clock = clock
        self._last_scrape_at: Optional[float] = None
        self._scraped: List[Camera] = []

    async def _scrape_page(self, url: str) -> List[Camera]:
        try:
            html = await self.fetcher.fetch_text(url, timeout=self.timeout)
            return parse_camera_directory(html, base_url=url)
        except FeedError as e:
            logger.warning(f"Camera directory scrape failed for {url}: {e}")
            return []

    async def scrape(self) -> List[Camera]:
        if not self.directory_urls:
            return []
        now = self._clock()
        if self._last_scrape_at is not None and now - self._last_scrape_at < self.scrape_min_interval:
            return list(self._scraped)

        self._last_scrape_at = now
        pages = await asyncio.gather(*(self._scrape_page(url) for url in self.directory_urls))
        self._scraped = [camera for page in pages for camera in page]
        return list(self._scraped)

    async def fetch_once(self) -> List[GeoEntity]:
        cameras: Dict[str, Camera] = {camera.id: camera for camera in self.builtin}
        for camera in await self.scrape():
            cameras.setdefault(camera.id, camera)
        return list(cameras.values())
