"""
GeoFeed Configuration and Constants

This module contains physical constants, upstream feed endpoints, refresh
intervals and the environment-driven service configuration used throughout
the project.

Constants:
    Earth gravitational parameter and radii used by the simplified
    circular/Keplerian ground-track propagator. Sidereal rotation rate and
    GMST coefficients follow the IAU 1982 expression (Vallado, 2013).

Feed Endpoints:
    All upstream sources are public and keyless:
    - OpenSky Network state vectors (flights)
    - CelesTrak GP element sets in TLE format (satellites)
    - USGS earthquake summary GeoJSON feeds
    - NWS (api.weather.gov) radar stations and active alerts
    - RainViewer weather-maps index (radar frame timestamps)

Fallback TLE Data:
    Hardcoded ISS TLE used by the demo when CelesTrak is unreachable.

    IMPORTANT: Update this TLE data periodically for accuracy.
    - Low Earth Orbit (LEO) satellites: Update weekly

References:
    Vallado, D. A. (2013). Fundamentals of Astrodynamics and Applications (4th ed.).
"""

import os
from typing import Dict, Any, List

# Earth constants
GRAVITATIONAL_PARAMETER: float = 398600.4418  # Earth gravitational parameter (km³/s²)
EARTH_MEAN_RADIUS_KM: float = 6371.0  # Mean Earth radius (km), altitude reference
EARTH_EQUATORIAL_RADIUS_KM: float = 6378.137  # WGS-84 equatorial radius (km)
EARTH_ROTATION_RATE: float = 7.2921159e-5  # Sidereal rotation rate (rad/s)
SECONDS_PER_DAY: float = 86400.0
JULIAN_DATE_UNIX_EPOCH: float = 2440587.5  # JD of 1970-01-01T00:00:00Z
JULIAN_DATE_J2000: float = 2451545.0

# Kepler solver settings
KEPLER_TOLERANCE_RAD: float = 1e-6
KEPLER_MAX_ITERATIONS: int = 10

# Upstream endpoints
OPENSKY_STATES_URL = "https://opensky-network.org/api/states/all"
CELESTRAK_GP_URL = "https://celestrak.org/NORAD/elements/gp.php"
USGS_FEED_URL = "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/{feed}.geojson"
NWS_ALERTS_URL = "https://api.weather.gov/alerts/active"
NWS_RADAR_STATIONS_URL = "https://api.weather.gov/radar/stations"
RAINVIEWER_MAPS_URL = "https://api.rainviewer.com/public/weather-maps.json"

USER_AGENT = "geofeed-service/1.0"

# Refresh intervals (seconds)
FLIGHT_INTERVAL_S: float = 15
SATELLITE_INTERVAL_S: float = 60
EARTHQUAKE_INTERVAL_S: float = 300
WEATHER_INTERVAL_S: float = 300
CAMERA_INTERVAL_S: float = 600

# Network
HTTP_TIMEOUT_S: float = 30.0
WEATHER_FRAME_CACHE_TTL_S: float = 300.0
CAMERA_SCRAPE_MIN_INTERVAL_S: float = 60.0

# Default camera position (Washington DC, whole-globe altitude)
DEFAULT_CAMERA_LATITUDE: float = 38.9072
DEFAULT_CAMERA_LONGITUDE: float = -77.0369
DEFAULT_CAMERA_ALTITUDE_M: float = 10_000_000
MIN_RESTORED_CAMERA_ALTITUDE_M: float = 1000

DEFAULT_SATELLITE_GROUPS: List[str] = ["stations", "visual"]
DEFAULT_EARTHQUAKE_FEED = "all_day"

# Fallback ISS TLE for demonstrations and testing
# Element set epoch: 2023-09-16
FALLBACK_ISS_TLE: Dict[str, Any] = {
    'name': 'ISS (ZARYA)',
    'norad_id': 25544,
    'line1': '1 25544U 98067A   23259.57580000  .00012022  00000-0  21844-3 0  9995',
    'line2': '2 25544  51.6416 220.9944 0004263 122.0101 312.2755 15.49541986415598',
    'epoch': '2023-09-16T13:49:09Z',
    'mean_motion': 15.49541986,
    'inclination': 51.6416,
    'eccentricity': 0.0004263
}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class FeedServiceConfig:
    """Service configuration read from the environment at construction time."""

    def __init__(self):
        self.REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379')
        self.SETTINGS_BACKEND = os.getenv('SETTINGS_BACKEND', 'file').lower()
        self.SETTINGS_PATH = os.getenv('SETTINGS_PATH', os.path.expanduser('~/.geofeed/settings.json'))
        self.SETTINGS_REDIS_KEY = os.getenv('SETTINGS_REDIS_KEY', 'geofeed:settings')
        self.HTTP_TIMEOUT = _env_float('HTTP_TIMEOUT_S', HTTP_TIMEOUT_S)
        self.HTTP_WORKERS = int(os.getenv('HTTP_WORKERS', '8'))
        self.FLIGHT_INTERVAL = _env_float('FLIGHT_INTERVAL_S', FLIGHT_INTERVAL_S)
        self.SATELLITE_INTERVAL = _env_float('SATELLITE_INTERVAL_S', SATELLITE_INTERVAL_S)
        self.EARTHQUAKE_INTERVAL = _env_float('EARTHQUAKE_INTERVAL_S', EARTHQUAKE_INTERVAL_S)
        self.WEATHER_INTERVAL = _env_float('WEATHER_INTERVAL_S', WEATHER_INTERVAL_S)
        self.CAMERA_INTERVAL = _env_float('CAMERA_INTERVAL_S', CAMERA_INTERVAL_S)
        self.SATELLITE_GROUPS = _env_list('SATELLITE_GROUPS', DEFAULT_SATELLITE_GROUPS)
        self.EARTHQUAKE_FEED = os.getenv('EARTHQUAKE_FEED', DEFAULT_EARTHQUAKE_FEED)
        self.CAMERA_DIRECTORY_URLS = _env_list('CAMERA_DIRECTORY_URLS', [])
        self.API_HOST = os.getenv('API_HOST', '127.0.0.1')
        self.API_PORT = int(os.getenv('API_PORT', '8085'))
