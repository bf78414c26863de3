"""Run history and working-state schema.

These are the UI-side records a RunController keeps for its consumer. A
RunHistoryItem is created when a query is submitted, mutated in place while
its status is "processing", and frozen once the run reaches complete,
interrupted, or error. At most one item is ever in "processing".

WorkingState is a separate, lightweight indicator (idle / thinking / running
a tool / answering) that drives spinners and status lines. It is never
persisted.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from schemas.events import AgentEvent, TokenUsage, ToolEndEvent, ToolErrorEvent


class RunStatus(str, Enum):
    """Lifecycle of one RunHistoryItem.

    Extends str so values serialize as "processing", "complete", etc.
    """

    PROCESSING = "processing"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"
    ERROR = "error"


class EventGroup(BaseModel):
    """One rendered line of a run: a thinking step or a tool call.

    Tool groups start with completed=False and are closed by the matching
    tool_end/tool_error, which is stored in end_event. progress_message holds
    the latest coalesced tool_progress text while the tool is running.
    """

    id: str
    event: AgentEvent
    completed: bool = False
    progress_message: str | None = None
    end_event: ToolEndEvent | ToolErrorEvent | None = None


class RunHistoryItem(BaseModel):
    """Display state for one submitted query.

    Attributes:
        id: Unique identifier for the run.
        query: The text the operator submitted.
        events: Rendered event groups in arrival order.
        answer: Final answer text, set when the run completes.
        status: Current lifecycle state. See RunStatus.
        start_time: Epoch seconds when the query was submitted.
        active_tool_id: Id of the tool group currently running, if any.
        duration: Total run time in milliseconds, from the done event.
        token_usage: Provider-reported usage, when available.
        tokens_per_second: Output throughput derived at completion.
    """

    id: str
    query: str
    events: list[EventGroup] = Field(default_factory=list)
    answer: str = ""
    status: RunStatus = RunStatus.PROCESSING
    start_time: float
    active_tool_id: str | None = None
    duration: int | None = None
    token_usage: TokenUsage | None = None
    tokens_per_second: float | None = None

    def find_group(self, group_id: str | None) -> EventGroup | None:
        """Return the event group with the given id, or None."""
        if group_id is None:
            return None
        for group in self.events:
            if group.id == group_id:
                return group
        return None


class IdleState(BaseModel):
    status: Literal["idle"] = "idle"


class ThinkingState(BaseModel):
    status: Literal["thinking"] = "thinking"


class ToolState(BaseModel):
    status: Literal["tool"] = "tool"
    tool_name: str


class AnsweringState(BaseModel):
    status: Literal["answering"] = "answering"
    start_time: float


WorkingState = Annotated[
    Union[IdleState, ThinkingState, ToolState, AnsweringState],
    Field(discriminator="status"),
]
