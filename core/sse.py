"""Server-sent event framing for the web transport.

Two frame formats share one response body:

    data: {"type": "tool_start", ...}\\n\\n     interim status, one per event
    0:"<escaped answer text>"\\n              final answer, text-stream format

The browser client reads the body line by line and dispatches on the
prefix. Events are translated to frames here so the route handler only
decides *which* events to forward.
"""

import json
from typing import Any

from schemas.events import (
    AgentEvent,
    AnswerStartEvent,
    DoneEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolErrorEvent,
    ToolProgressEvent,
    ToolStartEvent,
)


def format_sse_event(data: dict[str, Any]) -> str:
    """Format a JSON-serializable dict as one SSE data frame."""
    try:
        return f"data: {json.dumps(data)}\n\n"
    except (TypeError, ValueError) as exc:
        return f"data: {json.dumps({'type': 'error', 'message': f'Serialization error: {exc}'})}\n\n"


def escape_text(text: str) -> str:
    r"""Escape backslashes, quotes, and newlines for a 0:"..." text frame."""
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def format_text_frame(text: str) -> str:
    return f'0:"{escape_text(text)}"\n'


def session_frame(session_id: str) -> str:
    return format_sse_event({"type": "session", "sessionId": session_id})


def error_frame(message: str) -> str:
    return format_sse_event({"type": "error", "message": message})


def event_frame(event: AgentEvent) -> str | None:
    """Translate one agent event into its wire frame.

    Returns None for events the web client does not receive: text deltas
    (the answer arrives whole in the text frame) and a done event with an
    empty answer. tool_end frames omit the raw result, which can be large.
    """
    if isinstance(event, ToolEndEvent):
        return format_sse_event(event.model_dump(by_alias=True, exclude={"result"}))

    if isinstance(event, (ThinkingEvent, ToolStartEvent, ToolProgressEvent, ToolErrorEvent, AnswerStartEvent)):
        return format_sse_event(event.model_dump(by_alias=True))

    if isinstance(event, DoneEvent):
        return format_text_frame(event.answer) if event.answer else None

    return None
