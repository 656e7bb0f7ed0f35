import json
import os

# ChatOpenAI is constructed when graph.py is imported
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import pytest
from unittest.mock import patch
from langchain_core.messages import AIMessage, AIMessageChunk

from models import (
    GeoResult,
    PlaceResult,
    ReverseGeoResult,
    TransitRoute,
    TransitSegment,
    WalkingRoute,
    WalkingSegment,
)

ORIGIN = "121.4737,31.2304"  # People's Square, Shanghai
BUND = GeoResult(location="121.490317,31.241701", formatted_address="上海市黄浦区中山东一路", name="外滩")


class FakeWriter:
    """Captures stream events for assertion."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def events_of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e.get("type") == event_type]

    def kinds(self) -> list[str]:
        return [e["type"] for e in self.events]


class FakeChatModel:
    """Stands in for a bound ChatOpenAI: each astream() call plays the next scripted turn."""

    def __init__(self, *turns: list[AIMessageChunk]):
        self.turns = list(turns)
        self.calls = []

    async def astream(self, messages, config=None, **kwargs):
        self.calls.append(list(messages))
        for chunk in self.turns.pop(0):
            yield chunk


class FakeMapProvider:
    """In-memory MapProvider. Lookups are keyed by the name searched for."""

    name = "fake"

    def __init__(self, places=None, geocodes=None, transit=None, walking=None, nearby=None, centers=None):
        self.places = places or {}
        self.geocodes = geocodes or {}
        self.transit = transit
        self.walking = walking
        self.nearby = nearby or []
        self.centers = centers or {"上海": "121.4737,31.2304", "北京": "116.4074,39.9042"}
        self.calls = []
        self.closed = False

    async def geocode(self, place_name, city=None):
        self.calls.append(("geocode", place_name, city))
        return self.geocodes.get(place_name)

    async def search_place(self, keyword, city=None):
        self.calls.append(("search", keyword, city))
        return self.places.get(keyword)

    async def get_transit_route(self, origin, destination, city):
        self.calls.append(("transit", origin, destination, city))
        return self.transit

    async def get_walking_route(self, origin, destination):
        self.calls.append(("walking", origin, destination))
        return self.walking

    async def search_nearby(self, location, place_type, keyword=None, radius=1000):
        self.calls.append(("nearby", location, place_type, keyword, radius))
        return list(self.nearby)

    async def search_city(self, city, place_type, keyword=None):
        self.calls.append(("city", city, place_type, keyword))
        return list(self.nearby)

    async def reverse_geocode(self, location):
        self.calls.append(("regeo", location))
        return ReverseGeoResult(city="上海市", district="黄浦区", province="上海市", formatted_address="上海市黄浦区人民大道")

    def city_center(self, city):
        return self.centers.get(city)

    async def aclose(self):
        self.closed = True


def text_chunks(*parts: str) -> list[AIMessageChunk]:
    return [AIMessageChunk(content=p) for p in parts]


def tool_call_chunk(name: str, args: dict, call_id: str = "call_1", index: int = 0) -> AIMessageChunk:
    return AIMessageChunk(
        content="",
        tool_call_chunks=[{"name": name, "args": json.dumps(args, ensure_ascii=False), "id": call_id, "index": index}],
    )


def make_ai_message(content: str = "", tool_calls: list | None = None) -> AIMessage:
    """Helper to create an AIMessage with optional tool_calls."""
    msg = AIMessage(content=content)
    if tool_calls:
        msg.tool_calls = tool_calls
    return msg


def sample_transit() -> TransitRoute:
    return TransitRoute(
        total_duration=18,
        total_walking_distance=650,
        transfer_count=0,
        segments=[
            WalkingSegment(distance=300, duration=4),
            TransitSegment(
                line_name="地铁2号线",
                departure_stop="人民广场",
                arrival_stop="南京东路",
                stop_count=2,
                direction="浦东国际机场",
            ),
            WalkingSegment(distance=350, duration=5),
        ],
        cost="¥3",
    )


def sample_places() -> list[PlaceResult]:
    return [
        PlaceResult(name="东方明珠", address="世纪大道1号", location="121.499740,31.239853", distance=850, type="attraction"),
        PlaceResult(name="豫园", address="福佑路168号", location="121.492497,31.227714", distance=1200, type="attraction"),
    ]


@pytest.fixture
def writer():
    return FakeWriter()


@pytest.fixture
def mock_stream_writer(writer):
    """Patches get_stream_writer to return our FakeWriter."""
    with patch("graph.get_stream_writer", return_value=writer):
        yield writer


@pytest.fixture
def provider():
    return FakeMapProvider(
        places={"外滩": BUND},
        transit=sample_transit(),
        walking=WalkingRoute(distance=2100, duration=28),
        nearby=sample_places(),
    )
