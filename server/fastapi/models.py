from typing import Annotated, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from maps.geo import parse_lnglat


def _check_lnglat(value: str) -> str:
    parse_lnglat(value)
    return value


# Coordinates always travel as "lng,lat", never "lat,lng".
LngLat = Annotated[str, AfterValidator(_check_lnglat)]


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, **kwargs) -> dict:
        return self.model_dump(by_alias=True, **kwargs)


# --- Map domain ---


class GeoResult(WireModel):
    location: str
    formatted_address: str
    name: str


class WalkingSegment(WireModel):
    type: Literal["walking"] = "walking"
    distance: int
    duration: int  # minutes
    polyline: str | None = None


class TransitSegment(WireModel):
    type: Literal["transit"] = "transit"
    line_name: str
    departure_stop: str
    arrival_stop: str
    stop_count: int
    direction: str
    polyline: str | None = None


Segment = Annotated[Union[WalkingSegment, TransitSegment], Field(discriminator="type")]


class TransitRoute(WireModel):
    total_duration: int  # minutes
    total_walking_distance: int  # meters
    transfer_count: int
    segments: list[Segment]
    cost: str


class WalkingRoute(WireModel):
    distance: int  # meters
    duration: int  # minutes
    polyline: str | None = None


class Destination(WireModel):
    name: str
    input_name: str
    address: str
    location: str


class NavigationData(WireModel):
    origin: str
    destination: Destination
    transit: TransitRoute | None = None
    walking: WalkingRoute | None = None


class PlaceResult(WireModel):
    name: str
    address: str = ""
    location: str = ""
    distance: int = 0
    type: str = ""
    rating: str = ""
    tel: str = ""
    opening_hours: str = ""
    cost: str = ""
    # Filled in later by a places_update event
    english_name: str | None = None
    description: str | None = None

    def to_wire(self, **kwargs) -> dict:
        kwargs.setdefault("exclude_none", True)
        return super().to_wire(**kwargs)


class EnrichmentEntry(WireModel):
    name: str
    english_name: str = ""
    description: str = ""


class ReverseGeoResult(WireModel):
    city: str
    district: str
    province: str
    formatted_address: str


# --- Requests / responses ---


class NavContext(WireModel):
    destination_location: LngLat
    destination_name: str
    destination_address: str = ""


class MessageItem(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ImageInput(WireModel):
    base64: str
    media_type: Literal["image/jpeg", "image/png", "image/gif", "image/webp"]


class ChatRequest(WireModel):
    messages: list[MessageItem] = Field(min_length=1)
    origin: LngLat | None = None
    city: str | None = None
    nav_context: NavContext | None = None
    image: ImageInput | None = None
    session_id: str | None = None


class ChatResponse(WireModel):
    text: str
    navigation_data: NavigationData | None = None
    places_data: list[PlaceResult] | None = None


class NavigationRequest(WireModel):
    destination: str = Field(min_length=1)
    origin: LngLat | None = None
    city: str | None = None


class PlacesRequest(WireModel):
    type: str
    keyword: str | None = None
    location: LngLat | None = None
    radius: int | None = Field(default=None, gt=0)


class ReverseGeocodeRequest(WireModel):
    location: LngLat


class FeedbackRequest(WireModel):
    message_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    rating: Literal["up", "down"]
    feedback_text: str | None = None
    user_query: str | None = None
