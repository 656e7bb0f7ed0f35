"""Unit tests for graph.py components.

Tests the two-pass turn (provisional text, one tool, follow-up answer), tool
result post-processing and enrichment extraction with scripted chat models
and an in-memory map provider. No real LLM or map calls are made.
"""

import asyncio
import json
import pytest
from unittest.mock import patch
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from graph import (
    SINGLE_TOOL_MESSAGE,
    TOOL_FAILURE_MESSAGE,
    _inject_context,
    _post_process_tool_result,
    build_initial_state,
    chatbot,
    extract_enrichment,
    graph,
    respond,
    should_continue,
    to_langchain_messages,
    tool_node,
)
from models import ChatRequest, ImageInput, MessageItem
from prompts import DEFAULT_IMAGE_PROMPT
from conftest import (
    BUND,
    ORIGIN,
    FakeChatModel,
    FakeMapProvider,
    FakeWriter,
    make_ai_message,
    text_chunks,
    tool_call_chunk,
)


def make_state(messages=None, **overrides):
    state = {
        "messages": messages or [HumanMessage(content="hi")],
        "user_city": "上海",
        "origin": ORIGIN,
        "nav_context": None,
        "tool_rounds": 0,
        "has_places": False,
    }
    state.update(overrides)
    return state


def run_config(provider):
    return {"configurable": {"map_provider": provider}}


# ---------------------------------------------------------------------------
# extract_enrichment
# ---------------------------------------------------------------------------

class TestExtractEnrichment:
    def test_splits_block_from_text(self):
        text = (
            '<enrichment>[{"name":"豫园","englishName":"Yu Garden","description":"Ming garden"}]</enrichment>\n'
            "Two classics within walking distance."
        )
        cleaned, enrichment = extract_enrichment(text)
        assert cleaned == "Two classics within walking distance."
        assert enrichment == [{"name": "豫园", "englishName": "Yu Garden", "description": "Ming garden"}]

    def test_no_block(self):
        cleaned, enrichment = extract_enrichment("  Just text.  ")
        assert cleaned == "Just text."
        assert enrichment is None

    def test_invalid_json_is_dropped_but_block_removed(self):
        cleaned, enrichment = extract_enrichment("<enrichment>[{oops</enrichment>Here you go.")
        assert cleaned == "Here you go."
        assert enrichment is None

    def test_non_list_payload_ignored(self):
        cleaned, enrichment = extract_enrichment('<enrichment>{"name": "x"}</enrichment>ok')
        assert cleaned == "ok"
        assert enrichment is None

    def test_multiline_block(self):
        text = '<enrichment>[\n  {"name": "a"},\n  {"name": "b"}\n]</enrichment>\nDone'
        _, enrichment = extract_enrichment(text)
        assert [e["name"] for e in enrichment] == ["a", "b"]


# ---------------------------------------------------------------------------
# _post_process_tool_result
# ---------------------------------------------------------------------------

class TestPostProcessToolResult:
    def test_navigation_emits_tool_data(self):
        writer = FakeWriter()
        payload = json.dumps({"navigationData": {"origin": ORIGIN}})
        content, has_places = _post_process_tool_result("get_navigation", payload, writer)
        assert content == payload
        assert has_places is False
        assert writer.events == [{"type": "tool_data", "data": {"navigationData": {"origin": ORIGIN}}}]

    def test_places_emit_tool_data(self):
        writer = FakeWriter()
        payload = json.dumps({"results": [{"name": "豫园"}]})
        _, has_places = _post_process_tool_result("search_nearby_places", payload, writer)
        assert has_places is True
        assert writer.events_of_type("tool_data")[0]["data"] == {"placesData": [{"name": "豫园"}]}

    def test_empty_results_emit_nothing(self):
        writer = FakeWriter()
        payload = json.dumps({"results": [], "error": "No restaurants found nearby."})
        content, has_places = _post_process_tool_result("search_nearby_places", payload, writer)
        assert content == payload
        assert has_places is False
        assert writer.events == []

    def test_error_emits_nothing(self):
        writer = FakeWriter()
        _post_process_tool_result("get_navigation", json.dumps({"error": "Could not find"}), writer)
        assert writer.events == []

    def test_invalid_json_falls_through(self):
        writer = FakeWriter()
        content, has_places = _post_process_tool_result("get_navigation", "not json", writer)
        assert content == "not json"
        assert has_places is False
        assert writer.events == []


# ---------------------------------------------------------------------------
# should_continue
# ---------------------------------------------------------------------------

class TestShouldContinue:
    def test_routes_to_tool_node_on_tool_call(self):
        msg = make_ai_message(tool_calls=[{"name": "get_navigation", "args": {}, "id": "1"}])
        assert should_continue(make_state([msg])) == "tool_node"

    def test_ends_without_tool_call(self):
        assert should_continue(make_state([AIMessage(content="Hello!")])) == "__end__"

    def test_ends_after_one_tool_round(self):
        msg = make_ai_message(tool_calls=[{"name": "get_navigation", "args": {}, "id": "1"}])
        assert should_continue(make_state([msg], tool_rounds=1)) == "__end__"


# ---------------------------------------------------------------------------
# Message conversion and context injection
# ---------------------------------------------------------------------------

class TestMessageConversion:
    def test_roles_mapped(self):
        converted = to_langchain_messages([
            MessageItem(role="user", content="hi"),
            MessageItem(role="assistant", content="hello"),
            MessageItem(role="user", content="where is 外滩?"),
        ])
        assert [type(m) for m in converted] == [HumanMessage, AIMessage, HumanMessage]
        assert converted[2].content == "where is 外滩?"

    def test_image_attached_to_last_user_message(self):
        image = ImageInput(base64="aGVsbG8=", media_type="image/png")
        converted = to_langchain_messages(
            [MessageItem(role="user", content="old"), MessageItem(role="user", content="what is this?")],
            image,
        )
        assert converted[0].content == "old"
        blocks = converted[1].content
        assert blocks[0] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,aGVsbG8="}}
        assert blocks[1] == {"type": "text", "text": "what is this?"}

    def test_empty_caption_gets_default_prompt(self):
        image = ImageInput(base64="aGVsbG8=", media_type="image/jpeg")
        converted = to_langchain_messages([MessageItem(role="user", content="")], image)
        assert converted[0].content[1]["text"] == DEFAULT_IMAGE_PROMPT

    def test_initial_state(self):
        request = ChatRequest.model_validate({
            "messages": [{"role": "user", "content": "hi"}],
            "origin": ORIGIN,
            "city": "上海",
            "navContext": {"destinationLocation": "121.49,31.24", "destinationName": "外滩"},
        })
        state = build_initial_state(request)
        assert state["tool_rounds"] == 0
        assert state["has_places"] is False
        assert state["origin"] == ORIGIN
        assert state["user_city"] == "上海"
        assert state["nav_context"]["destination_name"] == "外滩"

    def test_inject_navigation_context(self):
        state = make_state(nav_context={"destination_location": "121.49,31.24", "destination_name": "外滩"})
        args = _inject_context("get_navigation", {"destination": "The Bund"}, state)
        assert args["origin"] == ORIGIN
        assert args["user_city"] == "上海"
        assert args["nav_context"]["destination_name"] == "外滩"

    def test_inject_places_context_only_origin(self):
        args = _inject_context("search_nearby_places", {"type": "restaurant"}, make_state())
        assert args == {"type": "restaurant", "origin": ORIGIN}


# ---------------------------------------------------------------------------
# chatbot node
# ---------------------------------------------------------------------------

class TestChatbot:
    def test_streams_text_and_returns_message(self, mock_stream_writer):
        model = FakeChatModel(text_chunks("Hello", " there"))
        with patch("graph.llm_with_tools", model):
            result = asyncio.run(chatbot(make_state()))

        assert [e["data"] for e in mock_stream_writer.events_of_type("text")] == ["Hello", " there"]
        assert result["messages"][0].content == "Hello there"
        assert not result["messages"][0].tool_calls

    def test_collects_tool_call(self, mock_stream_writer):
        model = FakeChatModel(
            text_chunks("Let me check") + [tool_call_chunk("get_navigation", {"destination": "The Bund"})]
        )
        with patch("graph.llm_with_tools", model):
            result = asyncio.run(chatbot(make_state()))

        call = result["messages"][0].tool_calls[0]
        assert call["name"] == "get_navigation"
        assert call["args"] == {"destination": "The Bund"}

    def test_injects_system_prompt_with_city(self, mock_stream_writer):
        model = FakeChatModel(text_chunks("ok"))
        with patch("graph.llm_with_tools", model):
            asyncio.run(chatbot(make_state(user_city="北京")))

        sent = model.calls[0]
        assert isinstance(sent[0], SystemMessage)
        assert "北京" in sent[0].content

    def test_does_not_double_inject_system_prompt(self, mock_stream_writer):
        model = FakeChatModel(text_chunks("ok"))
        state = make_state([SystemMessage(content="stale"), HumanMessage(content="hi")])
        with patch("graph.llm_with_tools", model):
            asyncio.run(chatbot(state))

        sent = model.calls[0]
        assert sum(isinstance(m, SystemMessage) for m in sent) == 1
        assert sent[0].content != "stale"


# ---------------------------------------------------------------------------
# tool_node
# ---------------------------------------------------------------------------

def _tool_state(*tool_calls, **overrides):
    return make_state([HumanMessage(content="go"), make_ai_message(tool_calls=list(tool_calls))], **overrides)


class TestToolNode:
    def test_navigation_event_order(self, mock_stream_writer, provider):
        state = _tool_state({
            "name": "get_navigation",
            "args": {"destination": "The Bund", "localized_name": "外滩", "city": "上海"},
            "id": "c1",
        })
        result = asyncio.run(tool_node(state, run_config(provider)))

        assert mock_stream_writer.kinds() == ["tool_start", "tool_data", "text_clear"]
        start = mock_stream_writer.events[0]["data"]
        assert start == {"tool": "get_navigation", "label": "Finding route..."}
        nav = mock_stream_writer.events[1]["data"]["navigationData"]
        assert nav["destination"]["name"] == "外滩"
        assert nav["destination"]["inputName"] == "The Bund"
        assert nav["transit"]["cost"] == "¥3"
        assert nav["origin"] == ORIGIN

        assert result["tool_rounds"] == 1
        assert result["has_places"] is False
        assert isinstance(result["messages"][0], ToolMessage)
        assert result["messages"][0].tool_call_id == "c1"

    def test_places_sets_has_places(self, mock_stream_writer, provider):
        state = _tool_state({"name": "search_nearby_places", "args": {"type": "attraction"}, "id": "c1"})
        result = asyncio.run(tool_node(state, run_config(provider)))

        assert result["has_places"] is True
        assert mock_stream_writer.events[0]["data"]["label"] == "Searching nearby..."
        places = mock_stream_writer.events_of_type("tool_data")[0]["data"]["placesData"]
        assert [p["name"] for p in places] == ["东方明珠", "豫园"]
        # Searched around the injected origin
        assert provider.calls[0] == ("nearby", ORIGIN, "attraction", None, 1000)

    def test_only_first_tool_call_runs(self, mock_stream_writer, provider):
        state = _tool_state(
            {"name": "search_nearby_places", "args": {"type": "restaurant"}, "id": "c1"},
            {"name": "get_navigation", "args": {"destination": "The Bund"}, "id": "c2"},
        )
        result = asyncio.run(tool_node(state, run_config(provider)))

        assert len(mock_stream_writer.events_of_type("tool_start")) == 1
        assert all(call[0] == "nearby" for call in provider.calls)
        refused = result["messages"][1]
        assert refused.tool_call_id == "c2"
        assert json.loads(refused.content) == {"error": SINGLE_TOOL_MESSAGE}

    def test_not_found_goes_back_to_llm(self, mock_stream_writer):
        provider = FakeMapProvider()
        state = _tool_state({"name": "get_navigation", "args": {"destination": "Nowhere"}, "id": "c1"})
        result = asyncio.run(tool_node(state, run_config(provider)))

        assert mock_stream_writer.kinds() == ["tool_start", "text_clear"]
        assert "Could not find \"Nowhere\"" in json.loads(result["messages"][0].content)["error"]

    def test_missing_provider_reports_failure(self, mock_stream_writer):
        state = _tool_state({"name": "get_navigation", "args": {"destination": "The Bund"}, "id": "c1"})
        result = asyncio.run(tool_node(state, run_config(None)))

        assert json.loads(result["messages"][0].content) == {"error": TOOL_FAILURE_MESSAGE}
        assert mock_stream_writer.kinds() == ["tool_start", "text_clear"]

    def test_unknown_tool(self, mock_stream_writer, provider):
        state = _tool_state({"name": "get_weather", "args": {}, "id": "c1"})
        result = asyncio.run(tool_node(state, run_config(provider)))

        assert mock_stream_writer.kinds() == ["text_clear"]
        assert "Unknown tool" in result["messages"][0].content


# ---------------------------------------------------------------------------
# respond node
# ---------------------------------------------------------------------------

class TestRespond:
    def test_streams_when_no_places(self, mock_stream_writer):
        model = FakeChatModel(text_chunks("Head to ", "外滩!"))
        with patch("graph.llm_followup", model):
            result = asyncio.run(respond(make_state()))

        assert [e["data"] for e in mock_stream_writer.events] == ["Head to ", "外滩!"]
        assert result["messages"][0].content == "Head to 外滩!"

    def test_buffers_and_extracts_enrichment(self, mock_stream_writer):
        model = FakeChatModel(text_chunks(
            '<enrichment>[{"name":"豫园",',
            '"englishName":"Yu Garden","description":"Ming garden"}]</enrichment>',
            "\nA lovely garden nearby.",
        ))
        with patch("graph.llm_followup", model):
            result = asyncio.run(respond(make_state(has_places=True)))

        assert mock_stream_writer.kinds() == ["places_update", "text"]
        assert mock_stream_writer.events[0]["data"][0]["englishName"] == "Yu Garden"
        assert mock_stream_writer.events[1]["data"] == "A lovely garden nearby."
        assert result["messages"][0].content == "A lovely garden nearby."

    def test_buffered_reply_without_block(self, mock_stream_writer):
        model = FakeChatModel(text_chunks("Here ", "they are."))
        with patch("graph.llm_followup", model):
            asyncio.run(respond(make_state(has_places=True)))

        assert mock_stream_writer.events == [{"type": "text", "data": "Here they are."}]


# ---------------------------------------------------------------------------
# Full graph
# ---------------------------------------------------------------------------

def _run_graph(state, provider, first, followup=None):
    async def collect():
        return [
            chunk
            async for chunk in graph.astream(state, config=run_config(provider), stream_mode="custom")
        ]

    with patch("graph.llm_with_tools", first), patch("graph.llm_followup", followup or FakeChatModel()):
        return asyncio.run(collect())


class TestFullGraph:
    def test_plain_answer_is_text_only(self, provider):
        chunks = _run_graph(make_state(), provider, FakeChatModel(text_chunks("Hi", "!")))
        assert chunks == [{"type": "text", "data": "Hi"}, {"type": "text", "data": "!"}]

    def test_navigation_turn(self, provider):
        first = FakeChatModel(
            text_chunks("Let me find ")
            + [tool_call_chunk("get_navigation", {"destination": "The Bund", "localized_name": "外滩", "city": "上海"})]
        )
        followup = FakeChatModel(text_chunks("Head to 外滩 (Wàitān)! ", "Go at dusk."))
        chunks = _run_graph(
            make_state([HumanMessage(content="How do I get to the Bund?")]), provider, first, followup
        )

        kinds = [c["type"] for c in chunks]
        assert kinds == ["text", "tool_start", "tool_data", "text_clear", "text", "text"]
        assert chunks[2]["data"]["navigationData"]["destination"]["location"] == BUND.location
        # Follow-up pass saw the tool result
        assert isinstance(followup.calls[0][-1], ToolMessage)

    def test_places_turn(self, provider):
        first = FakeChatModel([tool_call_chunk("search_nearby_places", {"type": "attraction"})])
        followup = FakeChatModel(text_chunks(
            '<enrichment>[{"name":"东方明珠","englishName":"Oriental Pearl Tower","description":"TV tower"},'
            '{"name":"豫园","englishName":"Yu Garden","description":"Classical garden"}]</enrichment>',
            "Both are close by.",
        ))
        chunks = _run_graph(make_state(), provider, first, followup)

        kinds = [c["type"] for c in chunks]
        assert kinds == ["tool_start", "tool_data", "text_clear", "places_update", "text"]
        assert chunks[-1]["data"] == "Both are close by."
        assert len(chunks[3]["data"]) == 2
