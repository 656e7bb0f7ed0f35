"""Coordinate helpers. Every location string in the app is "lng,lat"."""

import math

EARTH_RADIUS_KM = 6371.0


def parse_lnglat(value: str) -> tuple[float, float]:
    """Parse a "lng,lat" string into floats, raising ValueError when malformed."""
    parts = value.split(",")
    if len(parts) != 2:
        raise ValueError(f"expected 'lng,lat', got {value!r}")
    lng, lat = float(parts[0]), float(parts[1])
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise ValueError(f"non-finite coordinate in {value!r}")
    if not (-180 <= lng <= 180 and -90 <= lat <= 90):
        raise ValueError(f"coordinate out of range in {value!r}")
    return lng, lat


def format_lnglat(lng: float, lat: float) -> str:
    return f"{lng},{lat}"


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance in km between two coordinates using Haversine formula."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.asin(math.sqrt(a))


def distance_km(loc1: str, loc2: str) -> float:
    lng1, lat1 = parse_lnglat(loc1)
    lng2, lat2 = parse_lnglat(loc2)
    return haversine_km(lat1, lng1, lat2, lng2)
