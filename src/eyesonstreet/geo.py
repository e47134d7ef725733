"""Geographic helpers."""

import math

EARTH_RADIUS_METERS = 6371000


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def within_box(lat1: float, lon1: float, lat2: float, lon2: float, box: float) -> bool:
    return abs(lat1 - lat2) <= box and abs(lon1 - lon2) <= box


def valid_coordinates(lat, lon) -> bool:
    """False for missing, zero, or NaN coordinates."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return lat != 0 and lon != 0
