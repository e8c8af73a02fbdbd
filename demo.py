"""
GeoFeed Snapshot Demonstration

This script exercises the feed pipeline end to end from the command line:
- One refresh per selected layer through the same pollers the service uses
- A short summary of each layer's snapshot and poller status
- Ground-track propagation of the ISS, with and without the sidereal
  correction, to show how far an uncorrected track drifts

Usage:
    python demo.py [--layers flights,satellites] [--offline] [--verbose]

Arguments:
    --layers: Comma-separated layers to fetch (default: all)
    --offline: Skip network layers; only run the ground-track demonstration
    --verbose: Enable debug logging
"""

import argparse
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List

import config
from geofeed_service.fetcher import HttpFetcher
from geofeed_service.models import DataLayerType, OrbitalElement
from geofeed_service.pollers import (
    CameraPoller,
    EarthquakePoller,
    FlightPoller,
    SatellitePoller,
    SourcePoller,
    WeatherPoller,
)
from geofeed_service.propagator import normalize_longitude, orbital_period_minutes, propagate
from geofeed_service.tle_parser import TLEParser
from geofeed_service.weather_frames import WeatherFrameService
from logging_config import configure_logging, get_logger

logger = get_logger(__name__)

SAMPLE_SIZE = 3


def build_pollers(fetcher: HttpFetcher, cfg: config.FeedServiceConfig,
                  layers: List[DataLayerType]) -> List[SourcePoller]:
    frame_service = WeatherFrameService(fetcher)
    available = {
        DataLayerType.FLIGHTS: lambda: FlightPoller(fetcher),
        DataLayerType.SATELLITES: lambda: SatellitePoller(fetcher, groups=cfg.SATELLITE_GROUPS),
        DataLayerType.EARTHQUAKES: lambda: EarthquakePoller(fetcher, feed=cfg.EARTHQUAKE_FEED),
        DataLayerType.WEATHER: lambda: WeatherPoller(fetcher, frame_service=frame_service),
        DataLayerType.CCTV: lambda: CameraPoller(fetcher, directory_urls=cfg.CAMERA_DIRECTORY_URLS),
    }
    return [available[layer]() for layer in layers if layer in available]


async def snapshot_layers(pollers: List[SourcePoller]) -> None:
    """Refresh every poller once, concurrently, and log what came back."""
    for poller in pollers:
        poller.enable()

    await asyncio.gather(*(poller.refresh() for poller in pollers))

    for poller in pollers:
        status = poller.status()
        if status.last_error:
            logger.warning(f"{poller.layer.display_name}: failed ({status.last_error})")
            continue

        logger.info(f"{poller.layer.display_name}: {status.entity_count} entities "
                    f"from {poller.layer.data_source}")
        for entity in poller.entities[:SAMPLE_SIZE]:
            logger.info(f"  {entity.id:>12}  lat {entity.latitude:8.3f}  lon {entity.longitude:9.3f}")


def demonstrate_ground_track(element: OrbitalElement, steps: int = 10) -> None:
    """
    Propagate one orbit and compare against a track that ignores Earth rotation.

    Parameters
    ----------
    element : OrbitalElement
        Element set to propagate
    steps : int
        Number of samples across one orbital period
    """
    period = orbital_period_minutes(element)
    logger.info(f"Ground track for {element.name} (period {period:.1f} min)")

    for i in range(steps + 1):
        t = element.epoch + timedelta(minutes=period * i / steps)
        point = propagate(element, t)
        frozen = propagate(element, t, earth_rotation=False)
        drift = normalize_longitude(frozen.longitude - point.longitude)
        logger.info(
            f"  +{period * i / steps:6.1f} min  lat {point.latitude:7.2f}  "
            f"lon {point.longitude:8.2f}  alt {point.altitude_km:6.1f} km  "
            f"uncorrected drift {drift:+6.2f} deg"
        )

    now = datetime.now(timezone.utc)
    current = propagate(element, now)
    logger.info(f"Position now ({now.isoformat(timespec='seconds')}): "
                f"lat {current.latitude:.2f}, lon {current.longitude:.2f}")


def parse_layers(value: str) -> List[DataLayerType]:
    if not value:
        return [layer for layer in DataLayerType if layer is not DataLayerType.TRAFFIC]
    try:
        return [DataLayerType(item.strip()) for item in value.split(",") if item.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def main() -> None:
    """Main demonstration entry point."""
    parser = argparse.ArgumentParser(description="GeoFeed snapshot demonstration")
    parser.add_argument("--layers", type=parse_layers, default=parse_layers(""),
                        help="Comma-separated layers (flights,satellites,earthquakes,weather,cctv)")
    parser.add_argument("--offline", action="store_true", help="Skip network layers")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.verbose:
        configure_logging(level=logging.DEBUG)

    logger.info("GeoFeed Snapshot Demonstration")
    logger.info("=" * 60)

    cfg = config.FeedServiceConfig()

    if not args.offline:
        fetcher = HttpFetcher(timeout=cfg.HTTP_TIMEOUT, max_workers=cfg.HTTP_WORKERS)
        try:
            asyncio.run(snapshot_layers(build_pollers(fetcher, cfg, args.layers)))
        finally:
            fetcher.close()
        logger.info("")

    iss = TLEParser().parse_tle(
        config.FALLBACK_ISS_TLE["line1"],
        config.FALLBACK_ISS_TLE["line2"],
        config.FALLBACK_ISS_TLE["name"],
    )
    demonstrate_ground_track(iss)

    logger.info("=" * 60)
    logger.info("Demonstration complete")


if __name__ == "__main__":
    main()
