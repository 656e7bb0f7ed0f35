"""
Route Fetcher

Transit and walking lookups for one origin/destination pair, plus the
parsing helpers both providers share.
"""

import asyncio
import logging
import math

from maps import MapProvider
from models import Segment, TransitRoute, TransitSegment, WalkingRoute

logger = logging.getLogger(__name__)


def seconds_to_minutes(seconds: float) -> int:
    """Whole minutes, rounding half up."""
    return int(math.floor(seconds / 60 + 0.5))


def count_transfers(segments: list[Segment]) -> int:
    """One transfer for every transit leg after the first."""
    transit_legs = sum(1 for s in segments if isinstance(s, TransitSegment))
    return max(0, transit_legs - 1)


async def fetch_routes(
    provider: MapProvider,
    origin: str,
    destination: str,
    city: str,
) -> tuple[TransitRoute | None, WalkingRoute | None]:
    """Fetch the transit itinerary and the direct walking route concurrently.

    Either side may be None when the provider has no route; that is a normal
    outcome, not a failure.
    """
    transit, walking = await asyncio.gather(
        provider.get_transit_route(origin, destination, city),
        provider.get_walking_route(origin, destination),
    )
    logger.info(
        "Routes %s -> %s via %s: transit=%s walking=%s",
        origin,
        destination,
        provider.name,
        "yes" if transit else "none",
        "yes" if walking else "none",
    )
    return transit, walking


def build_summary(dest_name: str, transit: TransitRoute | None, walking: WalkingRoute | None) -> str:
    """Plain-text route summary returned by the navigation endpoint."""
    parts = [f"Destination: {dest_name}"]

    if transit:
        parts.append(
            f"Transit route: {transit.total_duration} min total, {len(transit.segments)} step(s), "
            f"{transit.transfer_count} transfer(s), fare {transit.cost}"
        )
        for i, seg in enumerate(transit.segments, 1):
            if isinstance(seg, TransitSegment):
                parts.append(
                    f"  Step {i}: Take {seg.line_name} from {seg.departure_stop} "
                    f"to {seg.arrival_stop} ({seg.stop_count} stops)"
                )
            else:
                parts.append(f"  Step {i}: Walk {seg.distance}m (~{seg.duration} min)")

    if walking:
        parts.append(f"Walking only: {walking.distance}m, ~{walking.duration} min")

    return "\n".join(parts)
