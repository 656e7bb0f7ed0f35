"""
Place Resolver

Turns a free-text destination into coordinates. Tries, in order:

1. POI search with the local-language name
2. geocode with the local-language name
3. POI search with the English name
4. geocode with the English name

When a city is given the search is "local": a candidate further than
MAX_LOCAL_DISTANCE_KM from the reference point (the caller's location, or
the city centre) is rejected, since national geocoders happily return a
same-named street in another province.
"""

import logging

from maps import MapProvider
from maps.geo import distance_km
from models import GeoResult

logger = logging.getLogger(__name__)

MAX_LOCAL_DISTANCE_KM = 200


def is_within_local_radius(
    candidate: GeoResult,
    city: str | None,
    reference_point: str | None,
) -> bool:
    if not city or not reference_point or not candidate.location:
        return True
    try:
        return distance_km(candidate.location, reference_point) <= MAX_LOCAL_DISTANCE_KM
    except ValueError:
        logger.warning("Discarding candidate with malformed location %r", candidate.location)
        return False


async def resolve_location(
    provider: MapProvider,
    english_name: str,
    localized_name: str | None = None,
    city: str | None = None,
    reference_location: str | None = None,
) -> GeoResult | None:
    """Resolve a place name, returning None when every strategy misses."""
    reference_point = reference_location or (provider.city_center(city) if city else None)

    attempts = []
    if localized_name:
        attempts.append(("search", localized_name))
        attempts.append(("geocode", localized_name))
    attempts.append(("search", english_name))
    attempts.append(("geocode", english_name))

    for strategy, name in attempts:
        lookup = provider.search_place if strategy == "search" else provider.geocode
        candidate = await lookup(name, city)
        if candidate is None:
            continue
        if is_within_local_radius(candidate, city, reference_point):
            logger.info("Resolved %r via %s(%r) -> %s", english_name, strategy, name, candidate.location)
            return candidate
        logger.info(
            "Rejected %s(%r) -> %s: further than %dkm from %s",
            strategy,
            name,
            candidate.location,
            MAX_LOCAL_DISTANCE_KM,
            reference_point,
        )

    logger.info("Could not resolve %r (localized=%r, city=%r)", english_name, localized_name, city)
    return None


async def resolve_place(provider: MapProvider, place_name: str, city: str | None = None) -> GeoResult | None:
    return await resolve_location(provider, place_name, None, city)
