"""
Geofence validation service.
Uses Haversine formula to calculate distance between points.
"""
import math
from dataclasses import dataclass
from typing import Optional

from ..config import settings


EARTH_RADIUS_M = 6371000


@dataclass(frozen=True)
class GeofenceResult:
    is_within: Optional[bool]
    distance_meters: Optional[float]


def haversine_distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1: Latitude of first point
        lng1: Longitude of first point
        lat2: Latitude of second point
        lng2: Longitude of second point

    Returns:
        Distance in meters
    """
    # Convert to radians
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    # Haversine formula
    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def evaluate_geofence(
    point_lat: float,
    point_lng: float,
    site_lat: Optional[float],
    site_lng: Optional[float],
    radius_m: Optional[float] = None,
) -> GeofenceResult:
    """
    Check a device fix against a site's registered coordinates.

    Returns:
        GeofenceResult with the raw distance and the within/outside flag.
        Both are None when the site has no coordinates.
    """
    if site_lat is None or site_lng is None:
        return GeofenceResult(is_within=None, distance_meters=None)

    if radius_m is None:
        radius_m = settings.geo_radius_m_default

    distance = haversine_distance_meters(point_lat, point_lng, float(site_lat), float(site_lng))
    return GeofenceResult(is_within=distance <= float(radius_m), distance_meters=distance)
