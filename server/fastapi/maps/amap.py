"""
Amap (高德) Provider

Geocoding, POI search and directions for mainland China through the Amap
REST API v3. Amap speaks "lng,lat" natively and returns empty fields as
``[]`` rather than null, so every field read goes through ``_text``/``_num``.

Docs: https://lbs.amap.com/api/webservice/summary
"""

import logging
import math

import httpx

from maps import PlaceType
from maps.routes import count_transfers, seconds_to_minutes
from models import (
    GeoResult,
    PlaceResult,
    ReverseGeoResult,
    Segment,
    TransitRoute,
    TransitSegment,
    WalkingRoute,
    WalkingSegment,
)

logger = logging.getLogger(__name__)

AMAP_BASE_URL = "https://restapi.amap.com/v3"

# Fare shown when Amap leaves the transit cost empty
DEFAULT_FARE = "¥3-5"

TYPE_CODES = {
    "restaurant": "050000",
    "attraction": "110000",
}

CITY_KEYWORDS = {
    "restaurant": "美食",
    "attraction": "景点",
    "general": "推荐",
}

CITY_CENTERS = {
    "上海": "121.4737,31.2304",
    "北京": "116.4074,39.9042",
    "广州": "113.2644,23.1291",
    "深圳": "114.0579,22.5431",
    "成都": "104.0665,30.5723",
    "杭州": "120.1551,30.2741",
    "重庆": "106.5516,29.5630",
    "天津": "117.2010,39.0842",
    "西安": "108.9398,34.3416",
    "苏州": "120.5853,31.2990",
    "南京": "118.7969,32.0603",
    "武汉": "114.3055,30.5928",
}

CITY_ALIASES = {
    "shanghai": "上海",
    "beijing": "北京",
    "guangzhou": "广州",
    "canton": "广州",
    "shenzhen": "深圳",
    "chengdu": "成都",
    "hangzhou": "杭州",
    "chongqing": "重庆",
    "tianjin": "天津",
    "xian": "西安",
    "xi'an": "西安",
    "suzhou": "苏州",
    "nanjing": "南京",
    "wuhan": "武汉",
}


def _text(value) -> str:
    return value if isinstance(value, str) else ""


def _num(value) -> float | None:
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return None
    return None


def normalize_city(city: str) -> str:
    """Map "Shanghai", "上海市" and "上海" onto the same key."""
    key = city.strip()
    if key.endswith("市"):
        key = key[:-1]
    return CITY_ALIASES.get(key.lower(), key)


# ============================================================================
# Response parsing
# ============================================================================


def parse_geocode(data: dict) -> GeoResult | None:
    if data.get("status") != "1" or not data.get("geocodes"):
        return None
    g = data["geocodes"][0]
    location = _text(g.get("location"))
    if not location:
        return None
    address = _text(g.get("formatted_address"))
    return GeoResult(location=location, formatted_address=address, name=address)


def parse_place(data: dict) -> GeoResult | None:
    if data.get("status") != "1" or not data.get("pois"):
        return None
    p = data["pois"][0]
    location = _text(p.get("location"))
    if not location:
        return None
    name = _text(p.get("name"))
    return GeoResult(
        location=location,
        formatted_address=_text(p.get("address")) or name,
        name=name,
    )


def parse_transit(data: dict) -> TransitRoute | None:
    route = data.get("route") or {}
    transits = route.get("transits") if isinstance(route, dict) else None
    if data.get("status") != "1" or not transits:
        return None

    transit = transits[0]
    segments: list[Segment] = []

    for seg in transit.get("segments") or []:
        walking = seg.get("walking") or {}
        walk_distance = _num(walking.get("distance")) if isinstance(walking, dict) else None
        if walk_distance and walk_distance > 0:
            segments.append(
                WalkingSegment(
                    distance=int(walk_distance),
                    duration=seconds_to_minutes(_num(walking.get("duration")) or 0),
                )
            )

        bus = seg.get("bus") or {}
        buslines = bus.get("buslines") if isinstance(bus, dict) else None
        if buslines:
            line = buslines[0]
            segments.append(
                TransitSegment(
                    line_name=_text(line.get("name")),
                    departure_stop=_text((line.get("departure_stop") or {}).get("name")),
                    arrival_stop=_text((line.get("arrival_stop") or {}).get("name")),
                    stop_count=int(_num(line.get("via_num")) or 0) + 1,
                    direction=_text(line.get("direction")),
                )
            )

    cost = _num(transit.get("cost"))
    return TransitRoute(
        total_duration=seconds_to_minutes(_num(transit.get("duration")) or 0),
        total_walking_distance=int(_num(transit.get("walking_distance")) or 0),
        transfer_count=count_transfers(segments),
        segments=segments,
        cost=f"¥{math.ceil(cost)}" if cost else DEFAULT_FARE,
    )


def parse_walking(data: dict) -> WalkingRoute | None:
    route = data.get("route") or {}
    paths = route.get("paths") if isinstance(route, dict) else None
    if data.get("status") != "1" or not paths:
        return None
    path = paths[0]
    return WalkingRoute(
        distance=int(_num(path.get("distance")) or 0),
        duration=seconds_to_minutes(_num(path.get("duration")) or 0),
    )


def parse_pois(data: dict) -> list[PlaceResult]:
    if data.get("status") != "1" or not data.get("pois"):
        return []
    results = []
    for p in data["pois"]:
        biz = p.get("biz_ext") if isinstance(p.get("biz_ext"), dict) else {}
        results.append(
            PlaceResult(
                name=_text(p.get("name")),
                address=_text(p.get("address")),
                location=_text(p.get("location")),
                distance=int(_num(p.get("distance")) or 0),
                type=_text(p.get("type")),
                rating=_text(biz.get("rating")),
                tel=_text(p.get("tel")),
                opening_hours=_text(biz.get("open_time")),
                cost=_text(biz.get("cost")),
            )
        )
    return results


def parse_regeo(data: dict) -> ReverseGeoResult | None:
    regeo = data.get("regeocode")
    if data.get("status") != "1" or not isinstance(regeo, dict):
        return None
    comp = regeo.get("addressComponent") or {}
    province = _text(comp.get("province"))
    # Municipalities (上海, 北京...) come back with city = []
    city = _text(comp.get("city")) or province
    return ReverseGeoResult(
        city=city,
        district=_text(comp.get("district")),
        province=province,
        formatted_address=_text(regeo.get("formatted_address")),
    )


# ============================================================================
# Provider
# ============================================================================


class AmapProvider:
    name = "amap"

    def __init__(self, api_key: str, http_client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.api_key = api_key
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def _get(self, path: str, params: dict) -> dict | None:
        query = {k: v for k, v in params.items() if v is not None}
        query.update({"key": self.api_key, "output": "JSON"})
        try:
            response = await self.http_client.get(f"{AMAP_BASE_URL}{path}", params=query)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError):
            logger.exception("Amap request to %s failed", path)
            return None
        if data.get("status") != "1":
            logger.warning("Amap %s returned status=%s info=%s", path, data.get("status"), data.get("info"))
        return data

    async def geocode(self, place_name: str, city: str | None = None) -> GeoResult | None:
        data = await self._get("/geocode/geo", {"address": place_name, "city": city})
        return parse_geocode(data) if data else None

    async def search_place(self, keyword: str, city: str | None = None) -> GeoResult | None:
        data = await self._get(
            "/place/text",
            {"keywords": keyword, "city": city, "extensions": "all"},
        )
        return parse_place(data) if data else None

    async def get_transit_route(self, origin: str, destination: str, city: str) -> TransitRoute | None:
        data = await self._get(
            "/direction/transit/integrated",
            {"origin": origin, "destination": destination, "city": city, "strategy": "0"},
        )
        return parse_transit(data) if data else None

    async def get_walking_route(self, origin: str, destination: str) -> WalkingRoute | None:
        data = await self._get("/direction/walking", {"origin": origin, "destination": destination})
        return parse_walking(data) if data else None

    async def search_nearby(
        self,
        location: str,
        place_type: PlaceType,
        keyword: str | None = None,
        radius: int = 1000,
    ) -> list[PlaceResult]:
        data = await self._get(
            "/place/around",
            {
                "location": location,
                "types": TYPE_CODES.get(place_type),
                "keywords": keyword or None,
                "radius": str(radius),
                "sortrule": "weight",
                "extensions": "all",
                "offset": "10",
            },
        )
        return parse_pois(data) if data else []

    async def search_city(
        self,
        city: str,
        place_type: PlaceType,
        keyword: str | None = None,
    ) -> list[PlaceResult]:
        data = await self._get(
            "/place/text",
            {
                "keywords": keyword or CITY_KEYWORDS.get(place_type, "推荐"),
                "types": TYPE_CODES.get(place_type),
                "city": city,
                "citylimit": "true",
                "extensions": "all",
                "offset": "10",
            },
        )
        return parse_pois(data) if data else []

    async def reverse_geocode(self, location: str) -> ReverseGeoResult | None:
        data = await self._get("/geocode/regeo", {"location": location})
        return parse_regeo(data) if data else None

    def city_center(self, city: str) -> str | None:
        return CITY_CENTERS.get(normalize_city(city))

    async def aclose(self) -> None:
        await self.http_client.aclose()
