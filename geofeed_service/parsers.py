"""
Feed Parsers

Each parser turns one loosely typed upstream payload into a list of typed
entities. A payload of the wrong overall shape raises DecodeError; a single
bad record is dropped with a debug log line and never fails the batch.

Records that cannot yield a stable id are dropped rather than given a
generated one, so ids stay comparable across fetches.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import pydantic
from bs4 import BeautifulSoup

from geofeed_service.errors import DecodeError
from geofeed_service.models import (
    AlertType,
    Camera,
    CameraStatus,
    CameraType,
    Earthquake,
    Flight,
    RadarStatus,
    RadarType,
    Severity,
    WeatherAlert,
    WeatherFrames,
    WeatherRadar,
)
from logging_config import get_logger

logger = get_logger(__name__)

# OpenSky state vector positions
ICAO24, CALLSIGN, ORIGIN_COUNTRY, TIME_POSITION, LAST_CONTACT = 0, 1, 2, 3, 4
LONGITUDE, LATITUDE, BARO_ALTITUDE, ON_GROUND, VELOCITY = 5, 6, 7, 8, 9
TRUE_TRACK, VERTICAL_RATE, SENSORS, GEO_ALTITUDE = 10, 11, 12, 13
MIN_STATE_FIELDS = 12

# Checked in order; first keyword found in the lowercased event name wins
ALERT_KEYWORDS: List[Tuple[Tuple[str, ...], AlertType]] = [
    (("tornado",), AlertType.TORNADO),
    (("thunderstorm",), AlertType.SEVERE_THUNDERSTORM),
    (("flood",), AlertType.FLOOD),
    (("winter", "snow", "ice"), AlertType.WINTER),
    (("heat",), AlertType.HEAT),
    (("wind",), AlertType.WIND),
    (("fire",), AlertType.FIRE),
]

SEVERITY_LOOKUP: Dict[str, Severity] = {
    "extreme": Severity.EXTREME,
    "severe": Severity.SEVERE,
    "moderate": Severity.MODERATE,
    "minor": Severity.MINOR,
}

RADAR_TYPE_LOOKUP: Dict[str, RadarType] = {
    "wsr-88d": RadarType.NEXRAD,
    "nexrad": RadarType.NEXRAD,
    "tdwr": RadarType.TDWR,
    "asr-9": RadarType.ASR,
    "asr-11": RadarType.ASR,
    "asr": RadarType.ASR,
}

RADAR_STATUS_LOOKUP: Dict[str, RadarStatus] = {
    "operate": RadarStatus.ACTIVE,
    "active": RadarStatus.ACTIVE,
    "standby": RadarStatus.MAINTENANCE,
    "maintenance": RadarStatus.MAINTENANCE,
    "offline": RadarStatus.OFFLINE,
    "off": RadarStatus.OFFLINE,
}


def _number(value: Any) -> Optional[float]:
    """Return ``value`` as float when it is a real JSON number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _epoch_datetime(seconds: float) -> Optional[datetime]:
    """UTC datetime for a Unix timestamp, or None when the platform cannot represent it."""
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _features(payload: Any, source: str) -> List[Any]:
    if not isinstance(payload, dict):
        raise DecodeError(f"{source} payload is not a JSON object")
    features = payload.get("features")
    if not isinstance(features, list):
        raise DecodeError(f"{source} payload has no 'features' array")
    return features


def _lon_lat(coordinates: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
        return None
    lon, lat = _number(coordinates[0]), _number(coordinates[1])
    if lon is None or lat is None:
        return None
    return lon, lat


# ---------------------------------------------------------------------------
# Flights (OpenSky)
# ---------------------------------------------------------------------------

def parse_flight_state(row: Any, fetched_at: datetime) -> Optional[Flight]:
    """
    Parse one OpenSky state vector row.

    Returns None for rows that are too short, lack an icao24 id, or have a
    missing / out-of-range position.
    """
    if not isinstance(row, list) or len(row) < MIN_STATE_FIELDS:
        return None

    icao24 = _string(row[ICAO24])
    longitude = _number(row[LONGITUDE])
    latitude = _number(row[LATITUDE])
    if icao24 is None or latitude is None or longitude is None:
        return None
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        return None

    altitude = _number(row[BARO_ALTITUDE])
    if altitude is None and len(row) > GEO_ALTITUDE:
        altitude = _number(row[GEO_ALTITUDE])

    last_contact = _number(row[LAST_CONTACT])
    contact_time = fetched_at
    if last_contact is not None:
        contact_time = _epoch_datetime(last_contact)
        if contact_time is None:
            return None
    on_ground = row[ON_GROUND]
    callsign = row[CALLSIGN] if isinstance(row[CALLSIGN], str) else None

    return Flight(
        id=icao24.strip(),
        latitude=latitude,
        longitude=longitude,
        callsign=callsign.strip() if callsign else None,
        origin_country=_string(row[ORIGIN_COUNTRY]) or "Unknown",
        altitude=altitude if altitude is not None else 0.0,
        velocity=_number(row[VELOCITY]) or 0.0,
        heading=_number(row[TRUE_TRACK]) or 0.0,
        vertical_rate=_number(row[VERTICAL_RATE]) or 0.0,
        on_ground=on_ground if isinstance(on_ground, bool) else False,
        last_contact=contact_time,
    )


def parse_flight_states(payload: Any, fetched_at: Optional[datetime] = None) -> List[Flight]:
    """Parse an OpenSky ``states/all`` response."""
    if not isinstance(payload, dict):
        raise DecodeError("OpenSky payload is not a JSON object")

    states = payload.get("states")
    if states is None:
        # OpenSky answers null when no aircraft match
        return []
    if not isinstance(states, list):
        raise DecodeError("OpenSky 'states' is not an array")

    fetched_at = fetched_at or datetime.now(timezone.utc)
    flights = []
    dropped = 0
    for row in states:
        try:
            flight = parse_flight_state(row, fetched_at)
        except pydantic.ValidationError as e:
            logger.debug(f"Invalid flight row: {e}")
            flight = None
        if flight is None:
            dropped += 1
            continue
        flights.append(flight)

    if dropped:
        logger.debug(f"Dropped {dropped} of {len(states)} flight rows")
    return flights


# ---------------------------------------------------------------------------
# Earthquakes (USGS GeoJSON)
# ---------------------------------------------------------------------------

def parse_earthquakes(payload: Any) -> List[Earthquake]:
    """Parse a USGS summary GeoJSON feed."""
    earthquakes = []
    for feature in _features(payload, "USGS"):
        if not isinstance(feature, dict):
            continue
        event_id = _string(feature.get("id"))
        geometry = feature.get("geometry")
        position = _lon_lat(geometry.get("coordinates")) if isinstance(geometry, dict) else None
        if event_id is None or position is None:
            logger.debug(f"Dropping earthquake without id or position: {event_id}")
            continue

        coordinates = geometry["coordinates"]
        props = feature.get("properties")
        if not isinstance(props, dict):
            props = {}

        depth = _number(coordinates[2]) if len(coordinates) > 2 else None
        event_ms = _number(props.get("time"))
        tsunami = props.get("tsunami")
        event_time = None
        if event_ms is not None:
            event_time = _epoch_datetime(event_ms / 1000.0)
            if event_time is None:
                logger.debug(f"Dropping earthquake with unreadable time: {event_id}")
                continue

        try:
            earthquakes.append(Earthquake(
                id=event_id,
                longitude=position[0],
                latitude=position[1],
                magnitude=_number(props.get("mag")) or 0.0,
                place=_string(props.get("place")) or "Unknown location",
                depth_km=depth or 0.0,
                time=event_time,
                url=_string(props.get("url")),
                tsunami=bool(tsunami) if isinstance(tsunami, (int, bool)) else False,
                alert=_string(props.get("alert")),
            ))
        except pydantic.ValidationError as e:
            logger.debug(f"Invalid earthquake {event_id}: {e}")

    return earthquakes


# ---------------------------------------------------------------------------
# Weather alerts (NWS)
# ---------------------------------------------------------------------------

def alert_type_for_event(event: str) -> AlertType:
    lowered = event.lower()
    for keywords, alert_type in ALERT_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return alert_type
    return AlertType.OTHER


def severity_for(value: Any) -> Severity:
    if not isinstance(value, str):
        return Severity.UNKNOWN
    return SEVERITY_LOOKUP.get(value.strip().lower(), Severity.UNKNOWN)


def _anchor_point(geometry: Any) -> Optional[Tuple[float, float]]:
    """First vertex of a (Multi)Polygon, or the Point itself."""
    if not isinstance(geometry, dict):
        return None
    kind = geometry.get("type")
    coordinates = geometry.get("coordinates")
    try:
        if kind == "Point":
            return _lon_lat(coordinates)
        if kind == "Polygon":
            return _lon_lat(coordinates[0][0])
        if kind == "MultiPolygon":
            return _lon_lat(coordinates[0][0][0])
    except (IndexError, KeyError, TypeError):
        return None
    return None


def parse_weather_alerts(payload: Any) -> List[WeatherAlert]:
    """Parse NWS ``alerts/active`` GeoJSON."""
    alerts = []
    for feature in _features(payload, "NWS alerts"):
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties")
        if not isinstance(props, dict):
            props = {}

        alert_id = _string(feature.get("id")) or _string(props.get("id"))
        position = _anchor_point(feature.get("geometry"))
        if alert_id is None or position is None:
            continue

        event = _string(props.get("event")) or ""
        area_desc = _string(props.get("areaDesc"))

        try:
            alerts.append(WeatherAlert(
                id=alert_id,
                longitude=position[0],
                latitude=position[1],
                alert_type=alert_type_for_event(event),
                severity=severity_for(props.get("severity")),
                event=event,
                headline=_string(props.get("headline")) or "Weather Alert",
                description=props.get("description") or "",
                areas=tuple(area_desc.split("; ")) if area_desc else (),
                effective=_parse_iso(props.get("effective")),
                expires=_parse_iso(props.get("expires")),
            ))
        except pydantic.ValidationError as e:
            logger.debug(f"Invalid weather alert {alert_id}: {e}")

    return alerts


# ---------------------------------------------------------------------------
# Radar stations (NWS)
# ---------------------------------------------------------------------------

def _radar_status(props: Dict[str, Any]) -> RadarStatus:
    rda = props.get("rda")
    if not isinstance(rda, dict):
        return RadarStatus.UNKNOWN
    rda_props = rda.get("properties")
    status = rda_props.get("status") if isinstance(rda_props, dict) else None
    if not isinstance(status, str):
        return RadarStatus.UNKNOWN
    return RADAR_STATUS_LOOKUP.get(status.strip().lower(), RadarStatus.UNKNOWN)


def parse_radar_stations(payload: Any) -> List[WeatherRadar]:
    """Parse NWS ``radar/stations`` GeoJSON."""
    radars = []
    for feature in _features(payload, "NWS radar stations"):
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties")
        if not isinstance(props, dict):
            props = {}

        station_id = _string(props.get("id"))
        geometry = feature.get("geometry")
        position = _lon_lat(geometry.get("coordinates")) if isinstance(geometry, dict) else None
        if station_id is None or position is None:
            continue

        station_type = props.get("stationType")
        radar_type = (
            RADAR_TYPE_LOOKUP.get(station_type.strip().lower(), RadarType.UNKNOWN)
            if isinstance(station_type, str) else RadarType.UNKNOWN
        )

        try:
            radars.append(WeatherRadar(
                id=station_id,
                longitude=position[0],
                latitude=position[1],
                name=_string(props.get("name")) or station_id,
                radar_type=radar_type,
                status=_radar_status(props),
            ))
        except pydantic.ValidationError as e:
            logger.debug(f"Invalid radar station {station_id}: {e}")

    return radars


# ---------------------------------------------------------------------------
# Camera directory (HTML)
# ---------------------------------------------------------------------------

def _camera_type(value: Optional[str]) -> CameraType:
    if value:
        normalized = value.strip().upper()
        for camera_type in CameraType:
            if normalized in (camera_type.value, camera_type.name):
                return camera_type
    return CameraType.PUBLIC_SPACE


def _float_attr(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_camera_directory(html: str, base_url: Optional[str] = None) -> List[Camera]:
    """
    Parse a webcam directory page.

    Every element carrying ``data-camera-id`` is one entry; coordinates come
    from ``data-lat`` / ``data-lon``. Entries without both coordinates are
    dropped, never placed at a guessed location.
    """
    soup = BeautifulSoup(html, "html.parser")
    cameras = []

    for node in soup.select("[data-camera-id]"):
        camera_id = (node.get("data-camera-id") or "").strip()
        latitude = _float_attr(node.get("data-lat"))
        longitude = _float_attr(node.get("data-lon"))
        if not camera_id or latitude is None or longitude is None:
            continue

        link = node.find("a", href=True)
        feed_url = node.get("data-feed") or (link["href"] if link else None)
        if feed_url and base_url:
            feed_url = urljoin(base_url, feed_url)

        name = node.get("data-name") or node.get_text(" ", strip=True) or camera_id

        try:
            cameras.append(Camera(
                id=camera_id,
                latitude=latitude,
                longitude=longitude,
                name=name,
                camera_type=_camera_type(node.get("data-type")),
                status=CameraStatus.ONLINE,
                feed_url=feed_url,
                city=node.get("data-city") or "",
                origin="directory",
            ))
        except pydantic.ValidationError as e:
            logger.debug(f"Invalid camera entry {camera_id}: {e}")

    return cameras


# ---------------------------------------------------------------------------
# Radar frame index (RainViewer)
# ---------------------------------------------------------------------------

def _frame_times(frames: Any) -> Tuple[int, ...]:
    if not isinstance(frames, list):
        return ()
    times = []
    for frame in frames:
        if isinstance(frame, dict):
            value = _number(frame.get("time"))
            if value is not None:
                times.append(int(value))
    return tuple(times)


def parse_weather_frames(payload: Any) -> WeatherFrames:
    """Parse RainViewer ``weather-maps.json``."""
    if not isinstance(payload, dict):
        raise DecodeError("RainViewer payload is not a JSON object")
    radar = payload.get("radar")
    if not isinstance(radar, dict) or not isinstance(radar.get("past"), list):
        raise DecodeError("RainViewer payload has no radar.past frames")

    satellite = payload.get("satellite")
    generated = _number(payload.get("generated"))

    return WeatherFrames(
        host=_string(payload.get("host")) or "",
        generated=datetime.fromtimestamp(generated, tz=timezone.utc) if generated is not None else None,
        radar_past=_frame_times(radar.get("past")),
        radar_nowcast=_frame_times(radar.get("nowcast")),
        satellite_infrared=_frame_times(satellite.get("infrared")) if isinstance(satellite, dict) else (),
    )
