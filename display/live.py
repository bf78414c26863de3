"""Rich live display for one conversation.

The display layer is fully decoupled from the run controller. The controller
calls RunView.refresh() through its on_change hook after every state
mutation; RunView re-renders the active run from the controller's public
state and never mutates it. Text and progress updates are already coalesced
by the controller, so repaints arrive at a bounded rate.

Usage:
    view = RunView(console)
    controller = RunController(backend, on_change=view.refresh)

    with view.make_live() as live:
        view.attach(live)
        answer = await controller.submit(query)
    view.detach()
"""

import time
from typing import Any

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markdown import Markdown
from rich.markup import escape
from rich.spinner import Spinner
from rich.text import Text

from core.controller import RunController
from schemas.events import ThinkingEvent, ToolEndEvent, ToolErrorEvent, ToolStartEvent
from schemas.history import (
    AnsweringState,
    EventGroup,
    RunHistoryItem,
    RunStatus,
    ThinkingState,
    ToolState,
)

THINKING_VERBS = [
    "Analyzing",
    "Investigating",
    "Examining",
    "Evaluating",
    "Quantifying",
    "Correlating",
    "Synthesizing",
    "Cross-referencing",
    "Reconciling",
]


# ── Formatting helpers ────────────────────────────────────────────────────────

def format_tool_name(name: str) -> str:
    """Turn a snake_case tool name into Title Case ("web_search" → "Web Search")."""
    return " ".join(word[:1].upper() + word[1:] for word in name.split("_"))


def format_args(args: dict[str, Any] | None) -> str:
    """Render tool arguments on one line.

    A lone `query` argument is shown quoted and cut at 60 characters;
    otherwise each key=value pair is cut at 40 characters.
    """
    if not args:
        return ""

    if len(args) == 1 and "query" in args:
        query = str(args["query"])
        return f'"{query[:60]}..."' if len(query) > 60 else f'"{query}"'

    parts = []
    for key, value in args.items():
        text = str(value)
        parts.append(f"{key}={text[:40] + '...' if len(text) > 40 else text}")
    return ", ".join(parts)


def format_duration(ms: int | float | None) -> str:
    """Render milliseconds as "850ms" or "1.3s". Empty for zero or None."""
    if not ms:
        return ""
    if ms < 1000:
        return f"{int(ms)}ms"
    return f"{ms / 1000:.1f}s"


# ── Display ───────────────────────────────────────────────────────────────────

class RunView:
    """Renders the controller's most recent run into a Rich Live region."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._live: Live | None = None

    def make_live(self) -> Live:
        """Return a Rich Live context manager ready to use with `with`."""
        return Live(Text(""), console=self.console, refresh_per_second=12, transient=False)

    def attach(self, live: Live) -> None:
        self._live = live

    def detach(self) -> None:
        self._live = None

    def refresh(self, controller: RunController) -> None:
        """on_change hook: repaint from the controller's current state."""
        if self._live is not None:
            self._live.update(self.render(controller))

    def render(self, controller: RunController) -> RenderableType:
        """Build the renderable for the controller's latest run."""
        if not controller.history:
            return Text("")

        item = controller.history[-1]
        lines: list[RenderableType] = [Text.from_markup(f"[bold cyan]❯[/bold cyan] {escape(item.query)}")]
        lines.extend(self._render_group(group) for group in item.events)

        status_line = self._render_working(controller)
        if status_line is not None:
            lines.append(status_line)

        if item.status == RunStatus.PROCESSING:
            if controller.streaming_answer:
                lines.append(Markdown(controller.streaming_answer))
        elif item.answer:
            lines.append(Markdown(item.answer))
        elif controller.streaming_answer:
            lines.append(Markdown(controller.streaming_answer))

        footer = self._render_footer(item, controller.error)
        if footer is not None:
            lines.append(footer)
        return Group(*lines)

    # ── Private ───────────────────────────────────────────────────────────────

    def _render_group(self, group: EventGroup) -> Text:
        event = group.event
        if isinstance(event, ThinkingEvent):
            return Text.from_markup(f"  [dim]⏺ {escape(event.message)}[/dim]")

        if isinstance(event, ToolStartEvent):
            label = f"[bold]{escape(format_tool_name(event.tool))}[/bold]"
            args = format_args(event.args)
            if args:
                label += f" [dim]({escape(args)})[/dim]"

            end = group.end_event
            if isinstance(end, ToolErrorEvent):
                return Text.from_markup(f"  [red]✗[/red] {label} [red]{escape(end.error)}[/red]")
            if isinstance(end, ToolEndEvent):
                duration = format_duration(end.duration)
                suffix = f" [dim]{duration}[/dim]" if duration else ""
                return Text.from_markup(f"  [green]✓[/green] {label}{suffix}")

            progress = f" [dim]— {escape(group.progress_message)}[/dim]" if group.progress_message else ""
            return Text.from_markup(f"  [yellow]●[/yellow] {label}{progress}")

        return Text(f"  {event.type}")

    def _render_working(self, controller: RunController) -> RenderableType | None:
        state = controller.working_state
        if isinstance(state, ThinkingState):
            verb = THINKING_VERBS[int(time.time()) % len(THINKING_VERBS)]
            return Spinner("dots", text=Text(f" {verb}...", style="dim"))
        if isinstance(state, ToolState):
            return Spinner("dots", text=Text(f" Running {format_tool_name(state.tool_name)}...", style="dim"))
        if isinstance(state, AnsweringState) and not controller.streaming_answer:
            return Spinner("dots", text=Text(" Writing answer...", style="dim"))
        return None

    def _render_footer(self, item: RunHistoryItem, error: str | None) -> Text | None:
        if item.status == RunStatus.INTERRUPTED:
            return Text.from_markup("[yellow]⏹  Interrupted[/yellow]")

        if item.status == RunStatus.ERROR:
            return Text.from_markup(f"[bold red]✗  Error:[/bold red] {escape(error or 'unknown error')}")

        if item.status == RunStatus.COMPLETE:
            parts = [format_duration(item.duration) or "0ms"]
            if item.token_usage is not None:
                parts.append(f"{item.token_usage.total_tokens:,} tokens")
            if item.tokens_per_second:
                parts.append(f"{item.tokens_per_second:.1f} tok/s")
            return Text.from_markup(f"[dim]✓  {' · '.join(parts)}[/dim]")

        return None
