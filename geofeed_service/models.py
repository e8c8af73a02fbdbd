"""
Entity Models

Typed, immutable records surfaced to renderers. Every entity carries a stable
``id`` derived from a source key (transponder address, NORAD catalog number,
USGS event id, station call sign, directory key); the reconciler relies on
id equality surviving across fetches.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class DataLayerType(str, Enum):
    FLIGHTS = "flights"
    SATELLITES = "satellites"
    EARTHQUAKES = "earthquakes"
    TRAFFIC = "traffic"
    WEATHER = "weather"
    CCTV = "cctv"

    @property
    def display_name(self) -> str:
        return {
            DataLayerType.FLIGHTS: "Live Flights",
            DataLayerType.SATELLITES: "Satellites",
            DataLayerType.EARTHQUAKES: "Earthquakes (24h)",
            DataLayerType.TRAFFIC: "Street Traffic",
            DataLayerType.WEATHER: "Weather Radar",
            DataLayerType.CCTV: "CCTV Cameras",
        }[self]

    @property
    def data_source(self) -> str:
        return {
            DataLayerType.FLIGHTS: "OpenSky Network",
            DataLayerType.SATELLITES: "CelesTrak",
            DataLayerType.EARTHQUAKES: "USGS",
            DataLayerType.TRAFFIC: "OpenStreetMap",
            DataLayerType.WEATHER: "NWS / RainViewer",
            DataLayerType.CCTV: "Public webcam directories",
        }[self]


class VisualMode(str, Enum):
    NORMAL = "normal"
    CRT = "crt"
    NVG = "nvg"
    FLIR = "flir"
    ANIME = "anime"
    NOIR = "noir"
    SNOW = "snow"
    AI = "ai"


class GeoEntity(BaseModel):
    """Base geo-positioned entity (WGS84 degrees)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class Flight(GeoEntity):
    """Aircraft state vector from OpenSky; ``id`` is the ICAO24 address."""

    callsign: Optional[str] = None
    origin_country: str = "Unknown"
    altitude: float = 0.0  # meters
    velocity: float = 0.0  # m/s
    heading: float = 0.0  # degrees from north
    vertical_rate: float = 0.0  # m/s
    on_ground: bool = False
    last_contact: datetime

    @property
    def altitude_feet(self) -> int:
        return int(self.altitude * 3.28084)

    @property
    def speed_knots(self) -> int:
        return int(self.velocity * 1.94384)

    @property
    def display_callsign(self) -> str:
        if self.callsign and self.callsign.strip():
            return self.callsign.strip()
        return self.id.upper()


class OrbitalElement(BaseModel):
    """Mean Keplerian elements from one two-line element set (angles in degrees)."""

    model_config = ConfigDict(frozen=True)

    catalog_number: int
    name: str = ""
    epoch: datetime
    inclination: float
    right_ascension_of_ascending_node: float
    eccentricity: float
    argument_of_perigee: float
    mean_anomaly: float
    mean_motion: float  # revolutions per day
    line1: Optional[str] = None
    line2: Optional[str] = None


class Satellite(GeoEntity):
    """Satellite sub-point; ``id`` is the NORAD catalog number.

    ``element`` is the element set the position was propagated from. It is
    kept out of serialized output and lets callers re-propagate between
    fetches.
    """

    catalog_number: int
    name: str
    group: Optional[str] = None
    altitude_km: float
    epoch: datetime
    inclination: float
    period_minutes: float
    position_time: datetime
    element: Optional[OrbitalElement] = Field(default=None, exclude=True, repr=False)


class Earthquake(GeoEntity):
    """USGS seismic event; ``id`` is the USGS event id."""

    magnitude: float = 0.0
    place: str = "Unknown location"
    depth_km: float = 0.0
    time: Optional[datetime] = None
    url: Optional[str] = None
    tsunami: bool = False
    alert: Optional[str] = None

    @property
    def magnitude_class(self) -> str:
        if self.magnitude < 2.5:
            return "micro"
        if self.magnitude < 4.0:
            return "minor"
        if self.magnitude < 5.0:
            return "light"
        if self.magnitude < 6.0:
            return "moderate"
        if self.magnitude < 7.0:
            return "strong"
        if self.magnitude < 8.0:
            return "major"
        return "great"


class RadarType(str, Enum):
    NEXRAD = "NEXRAD"
    TDWR = "TDWR"
    ASR = "ASR"
    UNKNOWN = "UNKNOWN"


class RadarStatus(str, Enum):
    ACTIVE = "ACTIVE"
    MAINTENANCE = "MAINT"
    OFFLINE = "OFFLINE"
    UNKNOWN = "UNKNOWN"


class WeatherRadar(GeoEntity):
    """Weather radar station; ``id`` is the station call sign."""

    name: str
    radar_type: RadarType = RadarType.NEXRAD
    status: RadarStatus = RadarStatus.UNKNOWN


class AlertType(str, Enum):
    TORNADO = "Tornado"
    SEVERE_THUNDERSTORM = "Severe Thunderstorm"
    FLOOD = "Flood"
    WINTER = "Winter Storm"
    HEAT = "Excessive Heat"
    WIND = "High Wind"
    FIRE = "Fire Weather"
    OTHER = "Weather Alert"


class Severity(str, Enum):
    EXTREME = "Extreme"
    SEVERE = "Severe"
    MODERATE = "Moderate"
    MINOR = "Minor"
    UNKNOWN = "Unknown"


class WeatherAlert(GeoEntity):
    """NWS alert anchored at the first vertex of its area; ``id`` is the NWS id."""

    alert_type: AlertType = AlertType.OTHER
    severity: Severity = Severity.UNKNOWN
    event: str = ""
    headline: str = "Weather Alert"
    description: str = ""
    areas: Tuple[str, ...] = ()
    effective: Optional[datetime] = None
    expires: Optional[datetime] = None


class CameraType(str, Enum):
    TRAFFIC = "TRAFFIC"
    SECURITY = "SECURITY"
    PUBLIC_SPACE = "PUBLIC"
    INFRASTRUCTURE = "INFRA"
    PORT = "PORT"
    AIRPORT = "AIRPORT"


class CameraStatus(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    MAINTENANCE = "MAINT"
    RECORDING = "REC"


class Camera(GeoEntity):
    """Webcam directory entry.

    ``status`` and ``feed_url`` come from directory data and are never
    verified against the feed itself; treat them as hints.
    """

    name: str
    camera_type: CameraType = CameraType.PUBLIC_SPACE
    status: CameraStatus = CameraStatus.ONLINE
    feed_url: Optional[str] = None
    city: str = ""
    origin: str = "builtin"


Entity = Union[Flight, Satellite, Earthquake, WeatherRadar, WeatherAlert, Camera]


class WeatherFrames(BaseModel):
    """RainViewer frame index: unix timestamps of available radar/satellite tiles."""

    model_config = ConfigDict(frozen=True)

    host: str = ""
    generated: Optional[datetime] = None
    radar_past: Tuple[int, ...] = ()
    radar_nowcast: Tuple[int, ...] = ()
    satellite_infrared: Tuple[int, ...] = ()

    @property
    def latest_radar(self) -> Optional[int]:
        return self.radar_past[-1] if self.radar_past else None

    @property
    def latest_satellite(self) -> Optional[int]:
        return self.satellite_infrared[-1] if self.satellite_infrared else None


class PollerStatus(BaseModel):
    """Read snapshot of one poller's state for status displays."""

    layer: DataLayerType
    active: bool
    last_update: Optional[datetime] = None
    last_attempt: Optional[datetime] = None
    is_loading: bool = False
    last_error: Optional[str] = None
    interval_seconds: float
    entity_count: int = 0
    consecutive_failures: int = 0
