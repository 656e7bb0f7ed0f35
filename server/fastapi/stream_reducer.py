"""
Client-side fold of the chat event stream into conversation state.

Bytes arrive in arbitrary network fragments; they are buffered and only
complete records are applied, strictly in order. Structured results
(navigation card, place cards) and the assistant's text are independent
fields: ``text_clear`` wipes the text but keeps the cards.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from pydantic import ValidationError

import events
from events import StreamEvent, parse_record, split_records
from models import EnrichmentEntry, NavigationData, PlaceResult

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Sorry, I'm having trouble connecting. Please try again."

_ids = itertools.count(1)


def make_id() -> str:
    return str(next(_ids))


@dataclass
class Message:
    id: str
    role: str
    content: str = ""
    navigation_data: NavigationData | None = None
    places_data: list[PlaceResult] | None = None


@dataclass
class ToolStatus:
    tool: str
    label: str


@dataclass
class ConversationState:
    messages: list[Message] = field(default_factory=list)
    is_typing: bool = False
    is_reading: bool = False
    tool_status: ToolStatus | None = None

    @property
    def is_busy(self) -> bool:
        return self.is_typing or self.is_reading or self.tool_status is not None

    def clear_indicators(self) -> None:
        self.is_typing = False
        self.is_reading = False
        self.tool_status = None

    def history(self) -> list[dict]:
        """Messages in the shape the chat endpoint expects."""
        return [{"role": m.role, "content": m.content} for m in self.messages]


def reconcile_places(places: list[PlaceResult], entries: list[EnrichmentEntry]) -> int:
    """Copy English names/descriptions onto places, returning how many matched.

    Matching goes exact name, then substring either way, then same index;
    an entry is used at most once. Unmatched places are left alone.
    """
    claimed: set[int] = set()
    matches: dict[int, int] = {}

    for i, place in enumerate(places):
        for j, entry in enumerate(entries):
            if j not in claimed and entry.name == place.name:
                matches[i] = j
                claimed.add(j)
                break

    for i, place in enumerate(places):
        if i in matches or not place.name:
            continue
        for j, entry in enumerate(entries):
            if j in claimed or not entry.name:
                continue
            if entry.name in place.name or place.name in entry.name:
                matches[i] = j
                claimed.add(j)
                break

    for i in range(len(places)):
        if i not in matches and i < len(entries) and i not in claimed:
            matches[i] = i
            claimed.add(i)

    for i, j in matches.items():
        entry = entries[j]
        if entry.english_name:
            places[i].english_name = entry.english_name
        if entry.description:
            places[i].description = entry.description

    return len(matches)


class StreamReducer:
    """Folds one turn's event stream into a ConversationState."""

    def __init__(self, state: ConversationState, id_factory: Callable[[], str] = make_id):
        self.state = state
        self.make_id = id_factory
        self.assistant: Message | None = None
        self.events_seen = 0
        self.done = False
        self._buffer = b""

    def begin_turn(self, text: str, has_image: bool = False) -> Message:
        message = Message(id=self.make_id(), role="user", content=text)
        self.state.messages.append(message)
        self.state.is_typing = True
        self.state.is_reading = has_image
        return message

    # --- bytes in ---

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        records, self._buffer = split_records(self._buffer + chunk)
        applied = []
        for record in records:
            event = parse_record(record)
            if event is None:
                continue
            self.apply(event)
            applied.append(event)
        return applied

    def consume(self, chunks: Iterable[bytes]) -> ConversationState:
        """Feed every chunk; on any transport failure fall back to a local message."""
        try:
            for chunk in chunks:
                self.feed(chunk)
        except Exception:
            logger.warning("Chat stream failed after %d event(s)", self.events_seen, exc_info=True)
            self.fail()
        else:
            if not self.done:
                logger.warning("Chat stream closed without done after %d event(s)", self.events_seen)
                self.fail()
        finally:
            self.finish()
        return self.state

    def finish(self) -> None:
        if self._buffer.strip():
            logger.debug("Discarding %d bytes of unterminated stream record", len(self._buffer))
        self._buffer = b""
        self.state.clear_indicators()

    def fail(self, message: str = FALLBACK_MESSAGE) -> None:
        assistant = self.assistant
        if assistant is None:
            self._ensure_assistant().content = message
        elif not assistant.content and assistant.navigation_data is None and not assistant.places_data:
            assistant.content = message
        self.state.clear_indicators()

    # --- events in ---

    def _ensure_assistant(self) -> Message:
        if self.assistant is None:
            self.assistant = Message(id=self.make_id(), role="assistant")
            self.state.messages.append(self.assistant)
        return self.assistant

    def _places_target(self) -> Message | None:
        if self.assistant is not None and self.assistant.places_data:
            return self.assistant
        for message in reversed(self.state.messages):
            if message.role == "assistant" and message.places_data:
                return message
        return None

    def apply(self, event: StreamEvent) -> None:
        self.events_seen += 1
        state = self.state
        kind = event.kind

        if kind == events.TEXT:
            if self.assistant is None:
                self._ensure_assistant()
                state.is_typing = False
                state.is_reading = False
            self.assistant.content += event.data or ""

        elif kind == events.TEXT_CLEAR:
            if self.assistant is not None:
                self.assistant.content = ""

        elif kind == events.TOOL_START:
            data = event.data if isinstance(event.data, dict) else {}
            state.tool_status = ToolStatus(tool=data.get("tool", ""), label=data.get("label", "Working..."))
            state.is_typing = False
            state.is_reading = False

        elif kind == events.TOOL_DATA:
            assistant = self._ensure_assistant()
            data = event.data if isinstance(event.data, dict) else {}
            try:
                if "navigationData" in data:
                    assistant.navigation_data = NavigationData.model_validate(data["navigationData"])
                if "placesData" in data:
                    assistant.places_data = [PlaceResult.model_validate(p) for p in data["placesData"]]
            except (ValidationError, TypeError):
                logger.warning("Ignoring malformed tool_data payload", exc_info=True)
            state.tool_status = None

        elif kind == events.PLACES_UPDATE:
            target = self._places_target()
            if target is None or not isinstance(event.data, list):
                return
            entries = []
            for item in event.data:
                try:
                    entries.append(EnrichmentEntry.model_validate(item))
                except ValidationError:
                    logger.debug("Skipping malformed enrichment entry %r", item)
            matched = reconcile_places(target.places_data, entries)
            logger.debug("Enriched %d of %d places", matched, len(target.places_data))

        elif kind == events.ERROR:
            data = event.data if isinstance(event.data, dict) else {}
            self._ensure_assistant().content = data.get("message") or FALLBACK_MESSAGE
            state.clear_indicators()

        elif kind == events.DONE:
            self.done = True
            state.clear_indicators()
