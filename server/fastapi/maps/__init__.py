"""
Map providers

One interface, two backends: Amap for mainland China and Google Maps for
Japan/Korea. Tools and endpoints only ever talk to ``MapProvider``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from models import GeoResult, PlaceResult, ReverseGeoResult, TransitRoute, WalkingRoute

PlaceType = Literal["restaurant", "attraction", "general"]
PLACE_TYPES: tuple[str, ...] = ("restaurant", "attraction", "general")


class ProviderUnavailable(RuntimeError):
    """Raised when the configured map provider cannot be loaded."""


@runtime_checkable
class MapProvider(Protocol):
    name: str

    async def geocode(self, place_name: str, city: str | None = None) -> GeoResult | None: ...

    async def search_place(self, keyword: str, city: str | None = None) -> GeoResult | None: ...

    async def get_transit_route(self, origin: str, destination: str, city: str) -> TransitRoute | None: ...

    async def get_walking_route(self, origin: str, destination: str) -> WalkingRoute | None: ...

    async def search_nearby(
        self,
        location: str,
        place_type: PlaceType,
        keyword: str | None = None,
        radius: int = 1000,
    ) -> list[PlaceResult]: ...

    async def search_city(
        self,
        city: str,
        place_type: PlaceType,
        keyword: str | None = None,
    ) -> list[PlaceResult]: ...

    async def reverse_geocode(self, location: str) -> ReverseGeoResult | None: ...

    def city_center(self, city: str) -> str | None: ...

    async def aclose(self) -> None: ...
