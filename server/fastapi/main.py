import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

import events
from config import CONFIG
from events import StreamEvent, encode_event
from graph import build_initial_state, graph
from maps import PLACE_TYPES, MapProvider, ProviderUnavailable
from maps.loader import ProviderHandle
from maps.resolver import resolve_place
from maps.routes import build_summary, fetch_routes
from models import (
    ChatRequest,
    ChatResponse,
    FeedbackRequest,
    NavigationRequest,
    PlacesRequest,
    ReverseGeocodeRequest,
)
from store import DatabaseError, close_store, get_store
from stream_reducer import ConversationState, StreamReducer
from tools.navigation import not_found_message

logging.basicConfig(
    level=CONFIG.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

provider_handle = ProviderHandle()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("ChinaTravel AI API starting (map provider: %s)", CONFIG.map_provider)
    yield
    await provider_handle.aclose()
    await close_store()
    logger.info("ChinaTravel AI API stopped")


app = FastAPI(
    title="ChinaTravel AI API",
    description="Streaming travel assistant for visitors to China",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CONFIG.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d (%.0f ms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


# --- Dependencies ---


async def get_map_provider() -> AsyncIterator[MapProvider | None]:
    """Lease the shared provider; None when it cannot be loaded."""
    try:
        provider = await provider_handle.acquire()
    except ProviderUnavailable as e:
        logger.error("Map provider unavailable: %s", e)
        yield None
        return
    try:
        yield provider
    finally:
        provider_handle.release()


def _unavailable() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "Map service unavailable"})


# --- Chat turn ---


@dataclass
class TurnRecord:
    """What one turn produced, kept for logging once the response is sent."""

    reducer: StreamReducer = field(default_factory=lambda: StreamReducer(ConversationState()))
    tools_called: list[str] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)
    finished: float | None = None


async def run_turn(request: ChatRequest, record: TurnRecord) -> AsyncIterator[StreamEvent]:
    """Run one conversational turn as a sequence of events, always ending in done.

    A map provider that fails to load does not fail the turn: the tools
    report the problem to the LLM, which answers without live data.
    """
    reducer = record.reducer

    try:
        provider = await provider_handle.acquire()
    except ProviderUnavailable as e:
        logger.warning("Chat turn running without map provider: %s", e)
        provider = None

    try:
        async for chunk in graph.astream(
            build_initial_state(request),
            config={"configurable": {"map_provider": provider}},
            stream_mode="custom",
        ):
            event = StreamEvent(chunk["type"], chunk.get("data"))
            if event.kind == events.TOOL_START:
                record.tools_called.append(event.data["tool"])
            reducer.apply(event)
            yield event
    except Exception:
        logger.exception(
            "Chat turn failed (messages=%d, image=%s, navContext=%s)",
            len(request.messages),
            request.image is not None,
            request.nav_context is not None,
        )
        event = StreamEvent(events.ERROR, {"message": events.STREAM_ERROR_MESSAGE})
        reducer.apply(event)
        yield event
    finally:
        if provider is not None:
            provider_handle.release()

    record.finished = time.monotonic()
    done = StreamEvent(events.DONE, {})
    reducer.apply(done)
    yield done


async def log_turn(request: ChatRequest, record: TurnRecord) -> None:
    """Write the user and assistant rows for a finished turn."""
    store = get_store()
    if store is None or not request.session_id:
        return

    assistant = record.reducer.assistant
    tool_success = None
    if record.tools_called:
        tool_success = assistant is not None and (
            assistant.navigation_data is not None or bool(assistant.places_data)
        )
    finished = record.finished or time.monotonic()

    await asyncio.gather(
        store.log_chat_message(
            request.session_id, "user", request.messages[-1].content, origin=request.origin
        ),
        store.log_chat_message(
            request.session_id,
            "assistant",
            assistant.content if assistant else "",
            tools_called=record.tools_called,
            tool_success=tool_success,
            is_fallback=assistant is not None and assistant.content == events.STREAM_ERROR_MESSAGE,
            response_time_ms=int((finished - record.started) * 1000),
        ),
    )


# --- Endpoints ---


@app.get("/")
async def root():
    return {"message": "Hello from ChinaTravel AI API"}


@app.get("/health")
async def health():
    return {"status": "ok", "mapProvider": CONFIG.map_provider, "providerState": provider_handle.state.value}


@app.post("/chat/stream")
async def chat_stream(request: ChatRequest, http_request: Request, background_tasks: BackgroundTasks):
    """Streaming chat endpoint: one SSE record per event, done last.

    Chat logging runs after the body is closed.
    """
    record = TurnRecord()
    background_tasks.add_task(log_turn, request, record)

    async def event_generator():
        async for event in run_turn(request, record):
            if await http_request.is_disconnected():
                logger.info("Client disconnected, abandoning turn")
                return
            yield encode_event(event.kind, event.data)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
        background=background_tasks,
    )


@app.post("/chat")
async def chat(request: ChatRequest, background_tasks: BackgroundTasks):
    """Non-streaming chat endpoint: the same events folded into one reply."""
    record = TurnRecord()
    async for _event in run_turn(request, record):
        pass
    background_tasks.add_task(log_turn, request, record)

    assistant = record.reducer.assistant
    response = ChatResponse(
        text=assistant.content if assistant else "",
        navigation_data=assistant.navigation_data if assistant else None,
        places_data=assistant.places_data if assistant else None,
    )
    return response.to_wire(exclude_none=True)


@app.post("/navigation")
async def navigation(request: NavigationRequest, provider: MapProvider | None = Depends(get_map_provider)):
    if provider is None:
        return _unavailable()

    city = request.city or CONFIG.default_city
    origin = request.origin or CONFIG.default_origin

    place = await resolve_place(provider, request.destination, city)
    if place is None:
        return JSONResponse(
            status_code=404,
            content={
                "error": not_found_message(request.destination),
                "suggestion": "Try using the local-language name or a more specific address.",
            },
        )

    transit, walking = await fetch_routes(provider, origin, place.location, city)
    return {
        "destination": place.to_wire(),
        "transit": transit.to_wire() if transit else None,
        "walking": walking.to_wire() if walking else None,
        "summary": build_summary(place.name, transit, walking),
    }


@app.post("/places")
async def places(request: PlacesRequest, provider: MapProvider | None = Depends(get_map_provider)):
    if request.type not in PLACE_TYPES:
        return JSONResponse(
            status_code=400,
            content={"error": f"Invalid type. Use: {', '.join(PLACE_TYPES)}"},
        )
    if provider is None:
        return _unavailable()

    results = await provider.search_nearby(
        request.location or CONFIG.default_origin,
        request.type,
        request.keyword,
        request.radius or 1000,
    )
    return {"results": [r.to_wire() for r in results]}


@app.post("/reverse-geocode")
async def reverse_geocode(request: ReverseGeocodeRequest, provider: MapProvider | None = Depends(get_map_provider)):
    if provider is None:
        return _unavailable()

    result = await provider.reverse_geocode(request.location)
    if result is None:
        return JSONResponse(status_code=404, content={"error": "Could not determine location"})
    return result.to_wire()


@app.get("/curated-restaurants")
async def curated_restaurants(slugs: str | None = Query(default=None)):
    slug_list = [s.strip() for s in (slugs or "").split(",") if s.strip()]
    store = get_store()
    if not slug_list or store is None:
        return {"restaurants": []}
    return {"restaurants": await store.get_curated_restaurants_by_slugs(slug_list)}


@app.post("/feedback")
async def feedback(request: FeedbackRequest):
    store = get_store()
    if store is None:
        return JSONResponse(status_code=503, content={"error": "Database not configured"})
    try:
        await store.save_feedback(request)
    except DatabaseError:
        logger.exception("Failed to save feedback for message %s", request.message_id)
        return JSONResponse(status_code=500, content={"error": "Failed to save feedback"})
    return {"success": True}
