"""
Navigation Tool

Resolves a destination and fetches a transit itinerary plus a walking route
from the caller's position. Returns JSON so the graph can lift the route out
for the navigation card before the text goes back to the LLM.
"""

import json
import logging
from typing import Annotated

from langchain_core.runnables import RunnableConfig
from langchain_core.tools import InjectedToolArg, tool

from config import CONFIG
from maps import MapProvider
from maps.resolver import resolve_location
from maps.routes import fetch_routes
from models import Destination, NavContext, NavigationData
from tools.context import get_map_provider

logger = logging.getLogger(__name__)


def not_found_message(destination: str) -> str:
    return f'Could not find "{destination}". Try a more specific name or the local-language name.'


async def execute_navigation(
    provider: MapProvider,
    destination: str,
    localized_name: str | None = None,
    city: str | None = None,
    origin: str | None = None,
    user_city: str | None = None,
    nav_context: NavContext | None = None,
) -> tuple[NavigationData | None, str | None]:
    """Run a navigation lookup, returning (result, error_message)."""
    # "" means a national search; None means "the user's city"
    search_city = None if city == "" else (city or user_city or CONFIG.default_city)
    transit_city = search_city or user_city or CONFIG.default_city
    origin_coords = origin or CONFIG.default_origin

    # Already resolved from a place card: re-resolving the name can land on
    # a different branch with the same name.
    if nav_context is not None:
        logger.info("Routing to %s from a selected place, skipping resolution", nav_context.destination_name)
        transit, walking = await fetch_routes(provider, origin_coords, nav_context.destination_location, transit_city)
        return (
            NavigationData(
                origin=origin_coords,
                destination=Destination(
                    name=nav_context.destination_name,
                    input_name=destination,
                    address=nav_context.destination_address,
                    location=nav_context.destination_location,
                ),
                transit=transit,
                walking=walking,
            ),
            None,
        )

    # The caller's position is only a sensible distance reference when the
    # search stays in their own city.
    explicit_other_city = bool(city) and city != user_city
    reference = None if explicit_other_city else origin_coords

    place = await resolve_location(provider, destination, localized_name, search_city, reference)
    if place is None:
        return None, not_found_message(destination)

    transit, walking = await fetch_routes(provider, origin_coords, place.location, transit_city)
    return (
        NavigationData(
            origin=origin_coords,
            destination=Destination(
                name=place.name,
                input_name=destination,
                address=place.formatted_address,
                location=place.location,
            ),
            transit=transit,
            walking=walking,
        ),
        None,
    )


@tool
async def get_navigation(
    destination: str,
    config: RunnableConfig,
    localized_name: str | None = None,
    city: str | None = None,
    origin: Annotated[str | None, InjectedToolArg] = None,
    user_city: Annotated[str | None, InjectedToolArg] = None,
    nav_context: Annotated[dict | None, InjectedToolArg] = None,
) -> str:
    """Get real-time navigation directions (metro/transit and walking) to a destination.

    Use this whenever the user asks how to get somewhere, asks for directions,
    or mentions wanting to go to a place. The route is shown to the user as a
    card, so only confirm the destination and add a short tip in your reply.

    Args:
        destination: The place the user wants to go to, in English or the local language.
        localized_name: The destination's name in the local language (e.g. The Bund -> 外滩,
            Yu Garden -> 豫园). ALWAYS provide it; the map search works much better with it.
        city: Local-language city name to constrain the search. Use the city the user
            mentions, otherwise their current city. Use "" (empty string) for national
            searches (famous landmarks, other provinces). Omit it if you don't know.
    """
    provider = get_map_provider(config)
    context = NavContext.model_validate(nav_context) if nav_context else None

    result, error = await execute_navigation(
        provider,
        destination,
        localized_name=localized_name,
        city=city,
        origin=origin,
        user_city=user_city,
        nav_context=context,
    )
    if result is None:
        return json.dumps({"error": error}, ensure_ascii=False)
    return json.dumps({"navigationData": result.to_wire()}, ensure_ascii=False)
