"""
Bundled datasets: city presets, the built-in webcam directory and a NEXRAD
station list used when live radar station data is not wanted.

Camera feed URLs point at public webcam portals and are directory hints only.
"""

from typing import Dict, List, NamedTuple, Optional, Tuple

from geofeed_service.models import (
    Camera,
    CameraStatus,
    CameraType,
    RadarStatus,
    RadarType,
    WeatherRadar,
)


class Landmark(NamedTuple):
    name: str
    latitude: float
    longitude: float


class CityPreset(NamedTuple):
    """Camera fly-to target; ``name`` is the persisted key."""

    name: str
    latitude: float
    longitude: float
    default_altitude: float
    landmarks: Tuple[Landmark, ...] = ()


CITY_PRESETS: List[CityPreset] = [
    CityPreset("Washington DC", 38.9072, -77.0369, 50000, (
        Landmark("US Capitol", 38.8899, -77.0091),
        Landmark("Washington Monument", 38.8895, -77.0353),
        Landmark("Lincoln Memorial", 38.8893, -77.0502),
        Landmark("Pentagon", 38.8719, -77.0563),
        Landmark("Jefferson Memorial", 38.8814, -77.0365),
    )),
    CityPreset("Austin", 30.2672, -97.7431, 50000, (
        Landmark("Texas State Capitol", 30.2747, -97.7404),
        Landmark("Frost Bank Tower", 30.2659, -97.7428),
        Landmark("Pennybacker Bridge", 30.3455, -97.7891),
        Landmark("UT Tower", 30.2862, -97.7394),
    )),
    CityPreset("San Francisco", 37.7749, -122.4194, 50000, (
        Landmark("Golden Gate Bridge", 37.8199, -122.4783),
        Landmark("Alcatraz", 37.8267, -122.4230),
        Landmark("Transamerica Pyramid", 37.7952, -122.4028),
    )),
    CityPreset("New York", 40.7128, -74.0060, 50000, (
        Landmark("Empire State Building", 40.7484, -73.9857),
        Landmark("Statue of Liberty", 40.6892, -74.0445),
        Landmark("Central Park", 40.7829, -73.9654),
    )),
    CityPreset("London", 51.5074, -0.1278, 50000, (
        Landmark("Tower Bridge", 51.5055, -0.0754),
        Landmark("The Shard", 51.5045, -0.0865),
        Landmark("Big Ben / Parliament", 51.5007, -0.1246),
        Landmark("St. Paul's Cathedral", 51.5138, -0.0984),
        Landmark("The Gherkin", 51.5145, -0.0803),
    )),
    CityPreset("Tokyo", 35.6762, 139.6503, 50000, (
        Landmark("Tokyo Tower", 35.6586, 139.7454),
        Landmark("Tokyo Skytree", 35.7101, 139.8107),
        Landmark("Imperial Palace", 35.6852, 139.7528),
    )),
    CityPreset("Paris", 48.8566, 2.3522, 50000, (
        Landmark("Eiffel Tower", 48.8584, 2.2945),
        Landmark("Arc de Triomphe", 48.8738, 2.2950),
        Landmark("Notre-Dame", 48.8530, 2.3499),
    )),
    CityPreset("Dubai", 25.2048, 55.2708, 50000, (
        Landmark("Burj Khalifa", 25.1972, 55.2744),
        Landmark("Palm Jumeirah", 25.1124, 55.1390),
        Landmark("Burj Al Arab", 25.1412, 55.1853),
    )),
]

DEFAULT_CITY = CITY_PRESETS[0]

_CITIES_BY_NAME: Dict[str, CityPreset] = {city.name: city for city in CITY_PRESETS}


def find_city(name: Optional[str]) -> Optional[CityPreset]:
    if not isinstance(name, str) or not name:
        return None
    return _CITIES_BY_NAME.get(name)


def _camera(camera_id, name, latitude, longitude, camera_type, status, feed_url, city):
    return Camera(
        id=camera_id,
        name=name,
        latitude=latitude,
        longitude=longitude,
        camera_type=camera_type,
        status=status,
        feed_url=feed_url,
        city=city,
        origin="builtin",
    )


_PUBLIC = CameraType.PUBLIC_SPACE
_INFRA = CameraType.INFRASTRUCTURE
_REC = CameraStatus.RECORDING
_ONLINE = CameraStatus.ONLINE

BUILTIN_CAMERAS: List[Camera] = [
    # United States
    _camera("NYC-001", "Times Square", 40.7590, -73.9845, _PUBLIC, _REC,
            "https://www.skylinewebcams.com/en/webcam/united-states/new-york/new-york/times-square.html", "New York"),
    _camera("NYC-003", "Brooklyn Bridge", 40.7061, -73.9969, _INFRA, _ONLINE,
            "https://www.webcamtaxi.com/en/usa/new-york/brooklyn-cam.html", "New York"),
    _camera("NYC-004", "Statue of Liberty", 40.6892, -74.0445, _PUBLIC, _ONLINE,
            "https://www.earthcam.com/usa/newyork/statueofliberty/", "New York"),
    _camera("DC-001", "White House", 38.8977, -77.0365, CameraType.SECURITY, _REC,
            "https://www.earthtv.com/en/webcam/washington-white-house", "Washington DC"),
    _camera("LA-001", "Hollywood Boulevard", 34.1016, -118.3385, _PUBLIC, _ONLINE,
            "https://www.earthcam.com/usa/california/losangeles/hollywoodblvd/", "Los Angeles"),
    _camera("SF-001", "San Francisco City Views", 37.7749, -122.4194, _PUBLIC, _ONLINE,
            "https://www.webcamtaxi.com/en/usa/california/sanfrancisco-city-views.html", "San Francisco"),
    _camera("CHI-001", "Chicago EarthCam", 41.8663, -87.6170, _PUBLIC, _ONLINE,
            "https://www.earthcam.com/usa/illinois/chicago/field/", "Chicago"),
    _camera("MIA-001", "Miami Beach", 25.7907, -80.1300, _PUBLIC, _REC,
            "https://www.skylinewebcams.com/en/webcam/united-states/florida/miami/miami-beach.html", "Miami"),
    _camera("LV-001", "Las Vegas Strip", 36.1265, -115.1708, _PUBLIC, _REC,
            "https://www.skylinewebcams.com/en/webcam/united-states/nevada/las-vegas/las-vegas.html", "Las Vegas"),
    _camera("NOL-001", "Bourbon Street", 29.9584, -90.0654, _PUBLIC, _REC,
            "https://www.earthcam.com/usa/louisiana/neworleans/bourbonstreet/", "New Orleans"),
    _camera("SD-001", "San Diego Rail Cam", 32.7157, -117.1611, CameraType.TRAFFIC, _ONLINE,
            "https://www.skylinewebcams.com/en/webcam/united-states/california/san-diego/railcam.html", "San Diego"),

    # Europe
    _camera("LON-001", "Tower Bridge", 51.5055, -0.0754, _INFRA, _ONLINE,
            "https://www.webcamtaxi.com/en/england/london/tower-bridge.html", "London"),
    _camera("LON-002", "Palace of Westminster", 51.4995, -0.1248, _PUBLIC, _REC,
            "https://www.webcamtaxi.com/en/england/london/palace-of-westminster.html", "London"),
    _camera("LON-004", "Abbey Road", 51.5320, -0.1780, _PUBLIC, _ONLINE,
            "https://www.earthcam.com/world/england/london/abbeyroad/", "London"),
    _camera("DUB-001", "Temple Bar Dublin", 53.3457, -6.2639, _PUBLIC, _REC,
            "https://www.earthcam.com/world/ireland/dublin/", "Dublin"),
    _camera("PAR-001", "Eiffel Tower", 48.8584, 2.2945, _PUBLIC, _REC,
            "https://www.skylinewebcams.com/en/webcam/france/ile-de-france/paris/tour-eiffel.html", "Paris"),
    _camera("ROM-001", "Colosseum", 41.8902, 12.4922, _PUBLIC, _REC,
            "https://www.skylinewebcams.com/en/webcam/italia/lazio/roma/colosseo.html", "Rome"),
    _camera("ROM-003", "Trevi Fountain", 41.9009, 12.4833, _PUBLIC, _REC,
            "https://www.skylinewebcams.com/en/webcam/italia/lazio/roma/fontana-di-trevi.html", "Rome"),
    _camera("VEN-001", "Grand Canal", 45.4341, 12.3388, _PUBLIC, _REC,
            "https://www.skylinewebcams.com/en/webcam/italia/veneto/venezia/canal-grande.html", "Venice"),
    _camera("VEN-002", "Rialto Bridge", 45.4380, 12.3360, _INFRA, _ONLINE,
            "https://www.skylinewebcams.com/en/webcam/italia/veneto/venezia/rialto-canal-grande.html", "Venice"),
    _camera("NAP-001", "Port of Naples", 40.8365, 14.2681, CameraType.PORT, _ONLINE,
            "https://www.skylinewebcams.com/en/webcam/italia/campania/napoli/napoli-porto.html", "Naples"),
    _camera("BCN-001", "Sagrada Familia", 41.4036, 2.1744, _PUBLIC, _REC,
            "https://www.webcamtaxi.com/en/spain/barcelona/sagrada-familia.html", "Barcelona"),
    _camera("PT-NAZ-001", "Nazaré Praia do Norte", 39.6018, -9.0717, _PUBLIC, _REC,
            "https://beachcam.meo.pt/livecams/nazare-norte/", "Nazaré"),
]


def _nexrad(station_id: str, name: str, latitude: float, longitude: float) -> WeatherRadar:
    return WeatherRadar(
        id=station_id,
        name=name,
        latitude=latitude,
        longitude=longitude,
        radar_type=RadarType.NEXRAD,
        status=RadarStatus.ACTIVE,
    )


NEXRAD_STATIONS: List[WeatherRadar] = [
    # East Coast
    _nexrad("KLWX", "Sterling VA", 38.9753, -77.4778),
    _nexrad("KDOX", "Dover AFB DE", 38.8257, -75.4400),
    _nexrad("KOKX", "Brookhaven NY", 40.8656, -72.8639),
    _nexrad("KDIX", "Philadelphia PA", 39.9472, -74.4111),
    _nexrad("KBOX", "Boston MA", 41.9558, -71.1369),
    # Central
    _nexrad("KFWS", "Dallas/Ft Worth TX", 32.5731, -97.3031),
    _nexrad("KEWX", "Austin/San Antonio TX", 29.7039, -98.0286),
    _nexrad("KLOT", "Chicago IL", 41.6044, -88.0847),
    _nexrad("KDTX", "Detroit MI", 42.6997, -83.4717),
    # West Coast
    _nexrad("KMUX", "San Francisco CA", 37.1550, -121.8983),
    _nexrad("KVTX", "Los Angeles CA", 34.4117, -119.1794),
    _nexrad("KNKX", "San Diego CA", 32.9189, -117.0419),
    _nexrad("KATX", "Seattle WA", 48.1944, -122.4958),
    _nexrad("KRTX", "Portland OR", 45.7150, -122.9656),
    # Southeast
    _nexrad("KAMX", "Miami FL", 25.6111, -80.4128),
    _nexrad("KTBW", "Tampa Bay FL", 27.7056, -82.4017),
    _nexrad("KFFC", "Atlanta GA", 33.3636, -84.5658),
    # Southwest
    _nexrad("KPSR", "Phoenix AZ", 33.4372, -112.1619),
    _nexrad("KESX", "Las Vegas NV", 35.7011, -114.8914),
    _nexrad("KABX", "Albuquerque NM", 35.1497, -106.8239),
    _nexrad("KDEN", "Denver CO", 39.7867, -104.5458),
]
