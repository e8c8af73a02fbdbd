"""
Ground-Track Propagation Module

Provides a simple Keplerian (two-body) propagation of mean orbital elements to
a sub-satellite point. No drag, no J2, no SGP4 secular terms: this is the
fidelity a live map needs between 60 second element refreshes.

The step that must not be skipped is the conversion from inertial right
ascension to Earth-fixed longitude by subtracting the Greenwich sidereal angle
at the query time. Without it the ground track drifts west-to-east by the
Earth's rotation (about 15 degrees per hour since the element epoch).

References:
    Vallado, D. A. (2013). Fundamentals of Astrodynamics and Applications (4th ed.).
"""

import math
from datetime import datetime, timezone
from typing import Iterable, List, NamedTuple, Tuple

import numpy as np

import config
from geofeed_service.errors import ValidationError
from geofeed_service.models import OrbitalElement
from logging_config import get_logger

logger = get_logger(__name__)

TWO_PI = 2.0 * math.pi


class SubPoint(NamedTuple):
    latitude: float
    longitude: float
    altitude_km: float


def julian_date(moment: datetime) -> float:
    """Julian date (UT1 ~ UTC) of an aware or naive-UTC datetime."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp() / config.SECONDS_PER_DAY + config.JULIAN_DATE_UNIX_EPOCH


def greenwich_sidereal_angle(moment: datetime) -> float:
    """
    Greenwich mean sidereal angle in radians, [0, 2π).

    Depends only on absolute time, never on an element epoch.
    """
    T = (julian_date(moment) - config.JULIAN_DATE_J2000) / 36525.0

    # GMST in seconds (IAU 1982)
    gmst_sec = (
        67310.54841 +
        (876600.0 * 3600.0 + 8640184.812866) * T +
        0.093104 * T * T -
        6.2e-6 * T * T * T
    )

    return (gmst_sec % config.SECONDS_PER_DAY) * (TWO_PI / config.SECONDS_PER_DAY)


def solve_kepler_equation(M: float, e: float,
                          tolerance: float = config.KEPLER_TOLERANCE_RAD,
                          max_iter: int = config.KEPLER_MAX_ITERATIONS) -> float:
    """
    Solve Kepler's equation M = E - e sin E for the eccentric anomaly.

    Args:
        M: Mean anomaly (rad)
        e: Eccentricity, 0 <= e < 1
        tolerance: Convergence tolerance (rad)
        max_iter: Maximum Newton iterations

    Returns:
        Eccentric anomaly E (rad)
    """
    # Initial guess
    if e < 0.8:
        E = M
    else:
        E = math.pi

    # Newton-Raphson iteration
    for _ in range(max_iter):
        f = E - e * math.sin(E) - M
        fp = 1.0 - e * math.cos(E)
        step = f / fp
        E -= step
        if abs(step) < tolerance:
            break

    return E


def mean_motion_rad_per_second(element: OrbitalElement) -> float:
    if element.mean_motion <= 0.0:
        raise ValidationError(
            f"Mean motion must be positive for satellite {element.catalog_number}, "
            f"got {element.mean_motion}"
        )
    return element.mean_motion * TWO_PI / config.SECONDS_PER_DAY


def semi_major_axis_km(element: OrbitalElement) -> float:
    n = mean_motion_rad_per_second(element)
    return (config.GRAVITATIONAL_PARAMETER / (n * n)) ** (1.0 / 3.0)


def orbital_period_minutes(element: OrbitalElement) -> float:
    mean_motion_rad_per_second(element)
    return 1440.0 / element.mean_motion


def inertial_position(element: OrbitalElement, at_time: datetime) -> np.ndarray:
    """
    Earth-centered inertial position (km) of the satellite at ``at_time``.

    Args:
        element: Mean orbital elements
        at_time: Query time (aware, or naive UTC)

    Returns:
        Position vector [x, y, z] in km
    """
    n = mean_motion_rad_per_second(element)
    e = element.eccentricity
    if not 0.0 <= e < 1.0:
        raise ValidationError(f"Eccentricity out of range: {e}")

    a = semi_major_axis_km(element)

    epoch = element.epoch
    if at_time.tzinfo is None:
        at_time = at_time.replace(tzinfo=timezone.utc)
    if epoch.tzinfo is None:
        epoch = epoch.replace(tzinfo=timezone.utc)
    dt_seconds = (at_time - epoch).total_seconds()

    # Propagate mean anomaly
    M = (math.radians(element.mean_anomaly) + n * dt_seconds) % TWO_PI

    # Solve Kepler's equation
    E = solve_kepler_equation(M, e)

    # True anomaly
    nu = 2 * math.atan2(
        math.sqrt(1 + e) * math.sin(E / 2),
        math.sqrt(1 - e) * math.cos(E / 2)
    )

    # Distance
    r_mag = a * (1 - e * math.cos(E))

    # Position in orbital plane
    r_op = np.array([
        r_mag * math.cos(nu),
        r_mag * math.sin(nu),
        0.0
    ])

    raan = math.radians(element.right_ascension_of_ascending_node)
    inc = math.radians(element.inclination)
    argp = math.radians(element.argument_of_perigee)

    cos_raan, sin_raan = math.cos(raan), math.sin(raan)
    cos_i, sin_i = math.cos(inc), math.sin(inc)
    cos_argp, sin_argp = math.cos(argp), math.sin(argp)

    R_raan = np.array([
        [cos_raan, -sin_raan, 0],
        [sin_raan, cos_raan, 0],
        [0, 0, 1]
    ])

    R_i = np.array([
        [1, 0, 0],
        [0, cos_i, -sin_i],
        [0, sin_i, cos_i]
    ])

    R_argp = np.array([
        [cos_argp, -sin_argp, 0],
        [sin_argp, cos_argp, 0],
        [0, 0, 1]
    ])

    # Perifocal to inertial
    R = R_raan @ R_i @ R_argp
    return R @ r_op


def normalize_longitude(degrees: float) -> float:
    """Wrap a longitude into [-180, 180)."""
    return (degrees + 180.0) % 360.0 - 180.0


def propagate(element: OrbitalElement, at_time: datetime,
              earth_rotation: bool = True) -> SubPoint:
    """
    Sub-satellite point of ``element`` at ``at_time``.

    Args:
        element: Mean orbital elements
        at_time: Query time
        earth_rotation: When False the Earth is held at its orientation at the
            element epoch. Only useful to measure the sidereal correction.

    Returns:
        SubPoint with geocentric latitude, ground longitude (degrees) and
        altitude above the mean Earth radius (km)
    """
    r = inertial_position(element, at_time)
    x, y, z = r
    r_norm = float(np.linalg.norm(r))

    right_ascension = math.atan2(y, x)
    sidereal = greenwich_sidereal_angle(at_time if earth_rotation else element.epoch)

    latitude = math.degrees(math.asin(max(-1.0, min(1.0, z / r_norm))))
    longitude = normalize_longitude(math.degrees(right_ascension - sidereal))
    altitude = r_norm - config.EARTH_MEAN_RADIUS_KM

    return SubPoint(latitude, longitude, altitude)


def propagate_many(elements: Iterable[OrbitalElement],
                   at_time: datetime) -> List[Tuple[OrbitalElement, SubPoint]]:
    """Propagate a batch, skipping elements that fail validation."""
    results = []
    for element in elements:
        try:
            results.append((element, propagate(element, at_time)))
        except ValidationError as e:
            logger.warning(f"Skipping satellite {element.catalog_number}: {e}")
    return results
