"""
Places Tool

Nearby (GPS radius) or city-wide search for restaurants, attractions and
anything else. Results are rendered as cards; English names and short
descriptions arrive later through the <enrichment> block the LLM writes.
"""

import json
import logging
from typing import Annotated, Literal

from langchain_core.runnables import RunnableConfig
from langchain_core.tools import InjectedToolArg, tool

from config import CONFIG
from maps import PLACE_TYPES, MapProvider
from maps.geo import parse_lnglat
from models import PlaceResult
from tools.context import get_map_provider

logger = logging.getLogger(__name__)

DEFAULT_RADIUS = 1000


def _valid_location(value: str | None) -> str | None:
    if not value:
        return None
    try:
        parse_lnglat(value)
    except ValueError:
        logger.warning("Ignoring malformed search location %r", value)
        return None
    return value


async def execute_places_search(
    provider: MapProvider,
    place_type: str,
    keyword: str | None = None,
    location: str | None = None,
    radius: int | None = None,
    search_mode: str | None = None,
    city: str | None = None,
    origin: str | None = None,
) -> tuple[list[PlaceResult], str | None]:
    """Run a places search, returning (results, error_message).

    An empty result set always comes with an explanation the LLM can relay.
    """
    if place_type not in PLACE_TYPES:
        return [], "Invalid place type"

    suffix = f' for "{keyword}"' if keyword else ""

    if search_mode == "city" and city:
        results = await provider.search_city(city, place_type, keyword)
        if not results:
            return [], f"No {place_type}s found in {city}{suffix}. Try different keywords."
        return results, None

    center = _valid_location(location) or _valid_location(origin) or CONFIG.default_origin
    results = await provider.search_nearby(center, place_type, keyword, radius or DEFAULT_RADIUS)
    if not results:
        return [], f"No {place_type}s found nearby{suffix}. Try a broader search or different keyword."
    return results, None


@tool
async def search_nearby_places(
    type: Literal["restaurant", "attraction", "general"],
    config: RunnableConfig,
    keyword: str | None = None,
    location: str | None = None,
    radius: int = DEFAULT_RADIUS,
    search_mode: Literal["nearby", "city"] = "nearby",
    city: str | None = None,
    origin: Annotated[str | None, InjectedToolArg] = None,
) -> str:
    """Search for restaurants, food, attractions or other places.

    Two modes: "nearby" searches around the user's GPS position ("food near me",
    "what's around here"); "city" searches inside a named city and ignores GPS
    ("restaurants in Beijing", "what to see in Chengdu", trips being planned).
    Results are shown to the user as cards, so don't list them in your reply.

    Args:
        type: Type of place: "restaurant", "attraction" or "general".
        keyword: Optional filter keyword, translated to the local language
            (hotpot -> 火锅, coffee -> 咖啡, pharmacy -> 药店).
        location: Search centre as "lng,lat". Nearby mode only; omit to use the user's position.
        radius: Search radius in meters, nearby mode only. Default 1000; use 2000-3000
            for vague "nearby" requests, 500 for very close.
        search_mode: "nearby" (default) or "city".
        city: Local-language city name, required for "city" mode (e.g. 北京, 成都).
    """
    provider = get_map_provider(config)
    results, error = await execute_places_search(
        provider,
        type,
        keyword=keyword,
        location=location,
        radius=radius,
        search_mode=search_mode,
        city=city,
        origin=origin,
    )
    payload: dict = {"results": [r.to_wire() for r in results]}
    if error:
        payload["error"] = error
    return json.dumps(payload, ensure_ascii=False)
