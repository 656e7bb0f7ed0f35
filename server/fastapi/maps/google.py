"""
Google Maps Provider

Same shape as the Amap provider, backed by the Google Maps web services for
Japan and Korea. Google works in "lat,lng" and returns encoded polylines;
both are converted here so callers only ever see "lng,lat".
"""

import logging

import httpx

from maps import PlaceType
from maps.geo import format_lnglat, haversine_km, parse_lnglat
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

GOOGLE_BASE_URL = "https://maps.googleapis.com/maps/api"

# Fare shown when Google does not return one
DEFAULT_FARE = "Check local fare"

PRICE_LEVELS = ["Budget", "Moderate", "Pricey", "Luxury"]

NEARBY_TYPES = {
    "restaurant": "restaurant",
    "attraction": "tourist_attraction",
}

CITY_CENTERS = {
    "Tokyo": "139.6917,35.6895",
    "東京": "139.6917,35.6895",
    "Osaka": "135.5023,34.6937",
    "大阪": "135.5023,34.6937",
    "Kyoto": "135.7681,35.0116",
    "京都": "135.7681,35.0116",
    "Seoul": "126.9780,37.5665",
    "서울": "126.9780,37.5665",
    "Busan": "129.0756,35.1796",
    "부산": "129.0756,35.1796",
    "Nagoya": "136.9066,35.1815",
    "名古屋": "136.9066,35.1815",
    "Fukuoka": "130.4017,33.5904",
    "福岡": "130.4017,33.5904",
    "Sapporo": "141.3469,43.0621",
    "札幌": "141.3469,43.0621",
    "Yokohama": "139.6380,35.4437",
    "横浜": "139.6380,35.4437",
    "Hiroshima": "132.4596,34.3853",
    "広島": "132.4596,34.3853",
    "Incheon": "126.7052,37.4563",
    "인천": "126.7052,37.4563",
    "Jeju": "126.5312,33.4996",
    "제주": "126.5312,33.4996",
}


def to_latlng(location: str) -> str:
    lng, lat = parse_lnglat(location)
    return f"{lat},{lng}"


def decode_polyline(encoded: str) -> str:
    """Decode Google's encoded polyline into "lng,lat;lng,lat;..."."""
    points = []
    index = lat = lng = 0

    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                byte = ord(encoded[index]) - 63
                index += 1
                result |= (byte & 0x1F) << shift
                shift += 5
                if byte < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        points.append(format_lnglat(lng / 1e5, lat / 1e5))

    return ";".join(points)


# ============================================================================
# Response parsing
# ============================================================================


def _geo_from_result(result: dict, name: str) -> GeoResult | None:
    loc = (result.get("geometry") or {}).get("location") or {}
    if loc.get("lng") is None or loc.get("lat") is None:
        return None
    return GeoResult(
        location=format_lnglat(loc["lng"], loc["lat"]),
        formatted_address=result.get("formatted_address") or name,
        name=name,
    )


def _first_leg(data: dict) -> tuple[dict, dict] | None:
    """First route and its first leg, or None for a malformed directions response."""
    routes = data.get("routes") or []
    route = routes[0] if routes else {}
    legs = route.get("legs") or []
    if not legs:
        return None
    return route, legs[0]


def _decode(polyline: dict | None) -> str | None:
    points = (polyline or {}).get("points")
    if not points:
        return None
    try:
        return decode_polyline(points)
    except IndexError:
        logger.warning("Ignoring truncated polyline")
        return None


def parse_geocode(data: dict) -> GeoResult | None:
    if data.get("status") != "OK" or not data.get("results"):
        return None
    g = data["results"][0]
    return _geo_from_result(g, g.get("formatted_address", ""))


def parse_place(data: dict) -> GeoResult | None:
    if data.get("status") != "OK" or not data.get("results"):
        return None
    p = data["results"][0]
    return _geo_from_result(p, p.get("name", ""))


def parse_transit(data: dict) -> TransitRoute | None:
    if data.get("status") != "OK":
        return None
    first = _first_leg(data)
    if first is None:
        return None

    _route, leg = first
    segments: list[Segment] = []
    total_walking = 0

    for step in leg.get("steps") or []:
        decoded = _decode(step.get("polyline"))

        if step.get("travel_mode") == "WALKING":
            distance = (step.get("distance") or {}).get("value", 0)
            if distance <= 0:
                continue
            total_walking += distance
            segments.append(
                WalkingSegment(
                    distance=distance,
                    duration=seconds_to_minutes((step.get("duration") or {}).get("value", 0)),
                    polyline=decoded,
                )
            )
        elif step.get("travel_mode") == "TRANSIT" and step.get("transit_details"):
            td = step["transit_details"]
            line = td.get("line") or {}
            segments.append(
                TransitSegment(
                    line_name=line.get("short_name") or line.get("name") or "",
                    departure_stop=(td.get("departure_stop") or {}).get("name", ""),
                    arrival_stop=(td.get("arrival_stop") or {}).get("name", ""),
                    stop_count=td.get("num_stops") or 1,
                    direction=td.get("headsign", ""),
                    polyline=decoded,
                )
            )

    fare = leg.get("fare")
    return TransitRoute(
        total_duration=seconds_to_minutes((leg.get("duration") or {}).get("value", 0)),
        total_walking_distance=total_walking,
        transfer_count=count_transfers(segments),
        segments=segments,
        cost=fare["text"] if fare and fare.get("text") else DEFAULT_FARE,
    )


def parse_walking(data: dict) -> WalkingRoute | None:
    if data.get("status") != "OK":
        return None
    first = _first_leg(data)
    if first is None:
        return None
    route, leg = first
    return WalkingRoute(
        distance=(leg.get("distance") or {}).get("value", 0),
        duration=seconds_to_minutes((leg.get("duration") or {}).get("value", 0)),
        polyline=_decode(route.get("overview_polyline")),
    )


def parse_places(data: dict, center: str | None = None) -> list[PlaceResult]:
    if data.get("status") != "OK" or not data.get("results"):
        return []

    center_lng, center_lat = parse_lnglat(center) if center else (None, None)
    results = []
    for p in data["results"][:10]:
        loc = (p.get("geometry") or {}).get("location") or {}
        lng, lat = loc.get("lng", 0), loc.get("lat", 0)
        distance = 0
        if center_lat is not None:
            distance = round(haversine_km(center_lat, center_lng, lat, lng) * 1000)

        hours = p.get("opening_hours") or {}
        open_now = hours.get("open_now")
        price_level = p.get("price_level")

        results.append(
            PlaceResult(
                name=p.get("name", ""),
                address=p.get("vicinity") or p.get("formatted_address", ""),
                location=format_lnglat(lng, lat),
                distance=distance,
                type=";".join(p.get("types") or []),
                rating=str(p["rating"]) if p.get("rating") else "",
                opening_hours="" if open_now is None else ("Open now" if open_now else "Closed"),
                cost=PRICE_LEVELS[min(price_level, 3)] if price_level is not None else "",
            )
        )
    return results


def parse_reverse(data: dict) -> ReverseGeoResult | None:
    if data.get("status") != "OK" or not data.get("results"):
        return None

    result = data["results"][0]
    city = district = province = ""
    for comp in result.get("address_components") or []:
        types = comp.get("types") or []
        if "locality" in types:
            city = comp.get("long_name", "")
        if "sublocality" in types or "sublocality_level_1" in types:
            district = comp.get("long_name", "")
        if "administrative_area_level_1" in types:
            province = comp.get("long_name", "")

    return ReverseGeoResult(
        city=city or province,
        district=district,
        province=province,
        formatted_address=result.get("formatted_address", ""),
    )


# ============================================================================
# Provider
# ============================================================================


class GoogleMapsProvider:
    name = "google"

    def __init__(self, api_key: str, http_client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.api_key = api_key
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def _get(self, path: str, params: dict) -> dict | None:
        query = {k: v for k, v in params.items() if v is not None}
        query.update({"key": self.api_key, "language": "en"})
        try:
            response = await self.http_client.get(f"{GOOGLE_BASE_URL}{path}", params=query)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError):
            logger.exception("Google Maps request to %s failed", path)
            return None
        if data.get("status") not in ("OK", "ZERO_RESULTS"):
            logger.warning("Google Maps %s returned status=%s", path, data.get("status"))
        return data

    async def geocode(self, place_name: str, city: str | None = None) -> GeoResult | None:
        address = f"{place_name}, {city}" if city else place_name
        data = await self._get("/geocode/json", {"address": address, "region": "jp"})
        return parse_geocode(data) if data else None

    async def search_place(self, keyword: str, city: str | None = None) -> GeoResult | None:
        query = f"{keyword} in {city}" if city else keyword
        data = await self._get("/place/textsearch/json", {"query": query})
        return parse_place(data) if data else None

    async def get_transit_route(self, origin: str, destination: str, city: str) -> TransitRoute | None:
        data = await self._get(
            "/directions/json",
            {
                "origin": to_latlng(origin),
                "destination": to_latlng(destination),
                "mode": "transit",
                "alternatives": "false",
            },
        )
        return parse_transit(data) if data else None

    async def get_walking_route(self, origin: str, destination: str) -> WalkingRoute | None:
        data = await self._get(
            "/directions/json",
            {"origin": to_latlng(origin), "destination": to_latlng(destination), "mode": "walking"},
        )
        return parse_walking(data) if data else None

    async def search_nearby(
        self,
        location: str,
        place_type: PlaceType,
        keyword: str | None = None,
        radius: int = 1000,
    ) -> list[PlaceResult]:
        data = await self._get(
            "/place/nearbysearch/json",
            {
                "location": to_latlng(location),
                "radius": str(radius),
                "type": NEARBY_TYPES.get(place_type),
                "keyword": keyword or None,
            },
        )
        return parse_places(data, center=location) if data else []

    async def search_city(
        self,
        city: str,
        place_type: PlaceType,
        keyword: str | None = None,
    ) -> list[PlaceResult]:
        subject = keyword or {"restaurant": "restaurants", "attraction": "things to do"}.get(place_type, "places")
        data = await self._get(
            "/place/textsearch/json",
            {"query": f"{subject} in {city}", "type": NEARBY_TYPES.get(place_type)},
        )
        return parse_places(data, center=self.city_center(city)) if data else []

    async def reverse_geocode(self, location: str) -> ReverseGeoResult | None:
        data = await self._get("/geocode/json", {"latlng": to_latlng(location)})
        return parse_reverse(data) if data else None

    def city_center(self, city: str) -> str | None:
        if city in CITY_CENTERS:
            return CITY_CENTERS[city]
        return CITY_CENTERS.get(city.strip().title())

    async def aclose(self) -> None:
        await self.http_client.aclose()
