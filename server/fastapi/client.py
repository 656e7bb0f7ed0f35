"""Terminal chat client for the streaming endpoint.

    python client.py --city 上海 --origin 121.4737,31.2304

Type a question, ``go <n>`` to get directions to the n-th place from the last
result list, ``photo <path> [caption]`` to translate a picture, or ``exit``.
"""

import base64
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Iterator, Optional

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from models import NavContext, NavigationData, PlaceResult, TransitSegment
from stream_reducer import ConversationState, Message, StreamReducer

app = typer.Typer()
console = Console()
trace_console = Console(stderr=True)


def build_payload(
    state: ConversationState,
    origin: str | None = None,
    city: str | None = None,
    session_id: str | None = None,
    nav_context: NavContext | None = None,
    image: dict | None = None,
) -> dict:
    payload: dict = {"messages": state.history()}
    if origin:
        payload["origin"] = origin
    if city:
        payload["city"] = city
    if session_id:
        payload["sessionId"] = session_id
    if nav_context is not None:
        payload["navContext"] = nav_context.to_wire()
    if image is not None:
        payload["image"] = image
    return payload


def stream_turn(http_client: httpx.Client, url: str, payload: dict, reducer: StreamReducer, status=None) -> ConversationState:
    """POST one turn and fold the response bytes into the reducer's state."""

    def chunks() -> Iterator[bytes]:
        with http_client.stream(
            "POST",
            url,
            json=payload,
            headers={"Accept": "text/event-stream", "Content-Type": "application/json"},
        ) as resp:
            resp.raise_for_status()
            for chunk in resp.iter_bytes():
                yield chunk
                if status is not None and reducer.state.tool_status is not None:
                    status.update(reducer.state.tool_status.label)

    return reducer.consume(chunks())


def nav_context_for(place: PlaceResult) -> NavContext:
    return NavContext(
        destination_location=place.location,
        destination_name=place.name,
        destination_address=place.address,
    )


def last_places(state: ConversationState) -> list[PlaceResult]:
    for message in reversed(state.messages):
        if message.role == "assistant" and message.places_data:
            return message.places_data
    return []


def render_navigation(nav: NavigationData) -> None:
    lines = [f"[bold]{nav.destination.name}[/bold]  {nav.destination.address}"]
    if nav.transit:
        t = nav.transit
        lines.append(
            f"🚇 {t.total_duration} min · {t.transfer_count} transfer(s) · "
            f"walk {t.total_walking_distance} m · {t.cost}"
        )
        for seg in t.segments:
            if isinstance(seg, TransitSegment):
                lines.append(f"   {seg.line_name}: {seg.departure_stop} → {seg.arrival_stop} ({seg.stop_count} stops)")
            else:
                lines.append(f"   walk {seg.distance} m (~{seg.duration} min)")
    if nav.walking:
        lines.append(f"🚶 {nav.walking.distance} m, ~{nav.walking.duration} min")
    if not nav.transit and not nav.walking:
        lines.append("No route found.")
    console.print(Panel("\n".join(lines), title="Route", expand=False))


def render_places(places: list[PlaceResult]) -> None:
    table = Table(show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Distance", justify="right")
    table.add_column("Rating")
    table.add_column("Cost")
    for i, p in enumerate(places, 1):
        name = f"{p.english_name} ({p.name})" if p.english_name else p.name
        if p.description:
            name += f"\n[dim]{p.description}[/dim]"
        table.add_row(str(i), name, f"{p.distance} m" if p.distance else "", p.rating, p.cost)
    console.print(table)
    console.print("Type [bold]go <n>[/bold] for directions.", style="dim")


def render_reply(message: Message | None) -> None:
    if message is None:
        return
    if message.content:
        console.print(message.content)
    if message.navigation_data:
        render_navigation(message.navigation_data)
    if message.places_data:
        render_places(message.places_data)


def load_image(path: Path) -> dict:
    media_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return {"base64": base64.b64encode(path.read_bytes()).decode("ascii"), "mediaType": media_type}


@app.command()
def chat(
    server: str = typer.Option(
        os.getenv("CHINATRAVEL_URL", "http://localhost:8000"), "--server", help="Base URL of the chat server."
    ),
    origin: Optional[str] = typer.Option(None, "--origin", help='Your position as "lng,lat".'),
    city: Optional[str] = typer.Option(None, "--city", help="Your current city, e.g. 上海."),
    prompt_str: Optional[str] = typer.Option(None, "--prompt", help="Send one message and exit."),
) -> None:
    url = f"{server.rstrip('/')}/chat/stream"
    session_id = str(uuid.uuid4())
    state = ConversationState()

    with httpx.Client(timeout=60) as http_client:

        def run_once(text: str, nav_context: NavContext | None = None, image: dict | None = None) -> None:
            reducer = StreamReducer(state)
            reducer.begin_turn(text, has_image=image is not None)
            payload = build_payload(state, origin, city, session_id, nav_context, image)
            with console.status("Reading image..." if image else "Thinking...") as status:
                stream_turn(http_client, url, payload, reducer, status)
            render_reply(reducer.assistant)

        if prompt_str:
            run_once(prompt_str)
            return

        while True:
            try:
                user_in = typer.prompt("You").strip()
            except (EOFError, KeyboardInterrupt):
                break
            if not user_in:
                continue
            if user_in.lower() in {"exit", "quit", "q"}:
                break

            command, _, rest = user_in.partition(" ")
            if command == "go":
                places = last_places(state)
                try:
                    place = places[int(rest) - 1]
                except (ValueError, IndexError):
                    trace_console.print(f"No place #{rest}; {len(places)} place(s) listed.", style="bold red")
                    continue
                run_once(f"Take me to {place.english_name or place.name}", nav_context=nav_context_for(place))
            elif command == "photo":
                path_str, _, caption = rest.partition(" ")
                try:
                    image = load_image(Path(path_str))
                except OSError as e:
                    trace_console.print(f"Cannot read image: {e}", style="bold red")
                    continue
                run_once(caption, image=image)
            else:
                run_once(user_in)


if __name__ == "__main__":
    app()
