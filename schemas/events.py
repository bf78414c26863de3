"""Agent event schema.

Events are the public protocol between the event bridge and everything that
renders a run: the terminal display and the SSE endpoint both consume the
same closed set. The bridge emits them in exactly the order the provider
stream caused them, and `done` is always the last event of a run.

Wire names are camelCase (toolCalls, totalTime, tokenUsage, ...) so the JSON
the web client receives matches what the browser code expects. Use
model_dump(by_alias=True) when serializing for a transport.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _WireModel(BaseModel):
    """Base for models that travel over a transport with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)


class TokenUsage(_WireModel):
    """Token accounting reported by the provider for a whole run.

    Attributes:
        input_tokens: Prompt tokens consumed across every step.
        output_tokens: Completion tokens produced across every step.
        total_tokens: Always input_tokens + output_tokens. The bridge
            computes it rather than trusting a provider-reported total.
    """

    input_tokens: int = Field(alias="inputTokens")
    output_tokens: int = Field(alias="outputTokens")
    total_tokens: int = Field(alias="totalTokens")


class ToolCallRecord(_WireModel):
    """One completed, user-visible tool call accumulated during a run."""

    tool: str
    args: dict[str, Any]
    result: str


class ThinkingEvent(_WireModel):
    type: Literal["thinking"] = "thinking"
    message: str


class ToolStartEvent(_WireModel):
    type: Literal["tool_start"] = "tool_start"
    tool: str
    args: dict[str, Any]


class ToolProgressEvent(_WireModel):
    type: Literal["tool_progress"] = "tool_progress"
    message: str


class ToolEndEvent(_WireModel):
    """A tool finished. duration is wall-clock milliseconds, 0 when unknown."""

    type: Literal["tool_end"] = "tool_end"
    tool: str
    args: dict[str, Any]
    result: str
    duration: int


class ToolErrorEvent(_WireModel):
    type: Literal["tool_error"] = "tool_error"
    tool: str
    error: str


class AnswerStartEvent(_WireModel):
    type: Literal["answer_start"] = "answer_start"


class TextDeltaEvent(_WireModel):
    type: Literal["text_delta"] = "text_delta"
    delta: str


class DoneEvent(_WireModel):
    """Terminal event of a run. Emitted exactly once, always last.

    Attributes:
        answer: The provider's final answer text.
        tool_calls: Every non-internal tool call completed in the run, in
            completion order.
        iterations: Number of agent steps the provider reports.
        total_time: Milliseconds from bridge start to done.
        token_usage: Present only when the provider reported usage.
        tokens_per_second: Output throughput, derived from token_usage and
            total_time. None when either is missing or total_time is 0.
    """

    type: Literal["done"] = "done"
    answer: str
    tool_calls: list[ToolCallRecord] = Field(default_factory=list, alias="toolCalls")
    iterations: int
    total_time: int = Field(alias="totalTime")
    token_usage: TokenUsage | None = Field(default=None, alias="tokenUsage")
    tokens_per_second: float | None = Field(default=None, alias="tokensPerSecond")


AgentEvent = Annotated[
    Union[
        ThinkingEvent,
        ToolStartEvent,
        ToolProgressEvent,
        ToolEndEvent,
        ToolErrorEvent,
        AnswerStartEvent,
        TextDeltaEvent,
        DoneEvent,
    ],
    Field(discriminator="type"),
]

agent_event_adapter: TypeAdapter[AgentEvent] = TypeAdapter(AgentEvent)


def parse_event(data: dict) -> AgentEvent:
    """Validate a wire dict back into the matching event model."""
    return agent_event_adapter.validate_python(data)
