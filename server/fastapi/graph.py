import json
import logging
import re
from typing import Annotated, Literal

from typing_extensions import TypedDict

from langgraph.graph import StateGraph, START, END
from langgraph.graph.message import add_messages
from langgraph.config import get_stream_writer
from langchain_openai import ChatOpenAI
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
    message_chunk_to_message,
)
from langchain_core.runnables import RunnableConfig

import events
from config import CONFIG
from models import ChatRequest, ImageInput, MessageItem
from prompts import DEFAULT_IMAGE_PROMPT, build_system_prompt
from tools import TOOL_LABELS, tools, tools_by_name

logger = logging.getLogger(__name__)

# One tool round-trip per turn: chatbot -> tool_node -> respond
MAX_TOOL_ROUNDS = 1

ENRICHMENT_PATTERN = re.compile(r"<enrichment>(.*?)</enrichment>", re.DOTALL)

SINGLE_TOOL_MESSAGE = (
    "Only one tool call per turn is supported; this call was not executed. "
    "Answer using the result of the first tool call."
)
TOOL_FAILURE_MESSAGE = "The lookup service is unavailable right now. Answer without live map data."


class State(TypedDict):
    """State schema for the chat graph."""

    messages: Annotated[list, add_messages]
    user_city: str | None
    origin: str | None
    nav_context: dict | None
    tool_rounds: int
    has_places: bool


# Initialize the LLM: first pass may call a tool, the follow-up pass may not
llm = ChatOpenAI(model=CONFIG.openai_model, temperature=CONFIG.openai_temperature, streaming=True)
llm_with_tools = llm.bind_tools(tools)
llm_followup = llm.bind_tools(tools, tool_choice="none")


# --- Helpers ---


def _emit(writer, kind: str, data=None) -> None:
    writer({"type": kind, "data": data})


def _text_of(message) -> str:
    """Text content of a message or chunk, whether content is a str or a block list."""
    content = message.content
    if isinstance(content, str):
        return content
    return "".join(
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def _with_system_prompt(state: State) -> list[BaseMessage]:
    history = [m for m in state["messages"] if not isinstance(m, SystemMessage)]
    return [SystemMessage(content=build_system_prompt(state.get("user_city")))] + history


def to_langchain_messages(messages: list[MessageItem], image: ImageInput | None = None) -> list[BaseMessage]:
    """Convert chat history; the image, if any, rides on the last user message."""
    converted: list[BaseMessage] = []
    last = len(messages) - 1
    for i, m in enumerate(messages):
        if m.role == "assistant":
            converted.append(AIMessage(content=m.content))
        elif image is not None and i == last:
            converted.append(
                HumanMessage(
                    content=[
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{image.media_type};base64,{image.base64}"},
                        },
                        {"type": "text", "text": m.content or DEFAULT_IMAGE_PROMPT},
                    ]
                )
            )
        else:
            converted.append(HumanMessage(content=m.content))
    return converted


def build_initial_state(request: ChatRequest) -> State:
    return {
        "messages": to_langchain_messages(request.messages, request.image),
        "user_city": request.city,
        "origin": request.origin,
        "nav_context": request.nav_context.model_dump() if request.nav_context else None,
        "tool_rounds": 0,
        "has_places": False,
    }


def _inject_context(tool_name: str, args: dict, state: State) -> dict:
    """Add the request context the LLM never sees to the tool arguments."""
    if state.get("origin"):
        args["origin"] = state["origin"]
    if tool_name == "get_navigation":
        args["user_city"] = state.get("user_city")
        if state.get("nav_context"):
            args["nav_context"] = state["nav_context"]
    return args


def extract_enrichment(text: str) -> tuple[str, list | None]:
    """Pull the <enrichment>[...]</enrichment> block out of a reply."""
    match = ENRICHMENT_PATTERN.search(text)
    if not match:
        return text.strip(), None

    enrichment = None
    try:
        parsed = json.loads(match.group(1))
        if isinstance(parsed, list):
            enrichment = parsed
        else:
            logger.warning("Enrichment block is not a list")
    except json.JSONDecodeError:
        logger.warning("Failed to parse enrichment block")

    cleaned = (text[: match.start()] + text[match.end():]).strip()
    return cleaned, enrichment


def _post_process_tool_result(tool_name: str, result: str, writer) -> tuple[str, bool]:
    """Lift structured data out of a tool result for the client cards.

    Returns the content for the ToolMessage and whether places were found.
    """
    try:
        payload = json.loads(result)
    except json.JSONDecodeError:
        return result, False
    if not isinstance(payload, dict):
        return result, False

    has_places = False
    if payload.get("navigationData"):
        _emit(writer, events.TOOL_DATA, {"navigationData": payload["navigationData"]})
    if payload.get("results"):
        _emit(writer, events.TOOL_DATA, {"placesData": payload["results"]})
        has_places = True
    if payload.get("error"):
        logger.info("%s returned: %s", tool_name, payload["error"])

    return result, has_places


# --- Nodes ---


async def chatbot(state: State):
    """First pass: stream provisional text while the LLM decides on a tool."""
    writer = get_stream_writer()

    gathered = None
    async for chunk in llm_with_tools.astream(_with_system_prompt(state)):
        text = _text_of(chunk)
        if text:
            _emit(writer, events.TEXT, text)
        gathered = chunk if gathered is None else gathered + chunk

    message = message_chunk_to_message(gathered) if gathered is not None else AIMessage(content="")
    return {"messages": [message]}


async def tool_node(state: State, config: RunnableConfig):
    """Execute the first tool call; extra calls in the same pass are refused."""
    writer = get_stream_writer()
    tool_calls = state["messages"][-1].tool_calls
    first, extra = tool_calls[0], tool_calls[1:]
    tool_name = first["name"]
    has_places = False

    tool_fn = tools_by_name.get(tool_name)
    if tool_fn is None:
        logger.warning("LLM requested unknown tool %s", tool_name)
        content = json.dumps({"error": f"Unknown tool: {tool_name}"})
    else:
        _emit(writer, events.TOOL_START, {"tool": tool_name, "label": TOOL_LABELS.get(tool_name, "Working...")})

        args = _inject_context(tool_name, dict(first["args"]), state)
        try:
            result = await tool_fn.ainvoke(args, config)
        except Exception:
            logger.exception("Tool %s failed", tool_name)
            result = json.dumps({"error": TOOL_FAILURE_MESSAGE})

        content, has_places = _post_process_tool_result(tool_name, str(result), writer)

    results = [ToolMessage(content=content, tool_call_id=first["id"])]
    for call in extra:
        logger.warning("Refusing extra tool call %s in the same turn", call["name"])
        results.append(
            ToolMessage(content=json.dumps({"error": SINGLE_TOOL_MESSAGE}), tool_call_id=call["id"])
        )

    # Whatever streamed before the tool call is superseded by the follow-up
    _emit(writer, events.TEXT_CLEAR, "")

    return {
        "messages": results,
        "tool_rounds": state.get("tool_rounds", 0) + 1,
        "has_places": has_places,
    }


async def respond(state: State):
    """Follow-up pass with the tool result. Place replies are buffered so the
    enrichment block can be split off before any text reaches the client."""
    writer = get_stream_writer()
    buffer_reply = state.get("has_places", False)

    gathered = None
    async for chunk in llm_followup.astream(_with_system_prompt(state)):
        text = _text_of(chunk)
        if text and not buffer_reply:
            _emit(writer, events.TEXT, text)
        gathered = chunk if gathered is None else gathered + chunk

    message = message_chunk_to_message(gathered) if gathered is not None else AIMessage(content="")

    if buffer_reply:
        text, enrichment = extract_enrichment(_text_of(message))
        if enrichment is not None:
            _emit(writer, events.PLACES_UPDATE, enrichment)
        if text:
            _emit(writer, events.TEXT, text)
        message = AIMessage(content=text)

    return {"messages": [message]}


def should_continue(state: State) -> Literal["tool_node", "__end__"]:
    """Route to tool_node if the LLM asked for a tool, otherwise end."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None) and state.get("tool_rounds", 0) < MAX_TOOL_ROUNDS:
        return "tool_node"
    return "__end__"


# Build the graph
graph_builder = StateGraph(State)
graph_builder.add_node("chatbot", chatbot)
graph_builder.add_node("tool_node", tool_node)
graph_builder.add_node("respond", respond)

graph_builder.add_edge(START, "chatbot")
graph_builder.add_conditional_edges("chatbot", should_continue, ["tool_node", END])
graph_builder.add_edge("tool_node", "respond")
graph_builder.add_edge("respond", END)

graph = graph_builder.compile()
