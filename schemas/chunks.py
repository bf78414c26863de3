"""Normalized provider chunk schema.

A provider stream yields loosely typed items: a `type` discriminator plus a
payload whose fields depend on that type. The normalizer decodes each item
into exactly one of the models below, each carrying only the fields valid
for its kind. Chunks are consumed immediately by the bridge and never stored.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Chunk(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StepStartChunk(_Chunk):
    type: Literal["step-start"] = "step-start"


class ToolCallChunk(_Chunk):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str = Field(default="", alias="toolCallId")
    tool_name: str = Field(default="", alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultChunk(_Chunk):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str = Field(default="", alias="toolCallId")
    tool_name: str = Field(default="", alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ToolErrorChunk(_Chunk):
    type: Literal["tool-error"] = "tool-error"
    tool_call_id: str = Field(default="", alias="toolCallId")
    tool_name: str = Field(default="", alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)
    error: str = ""


class ToolProgressChunk(_Chunk):
    type: Literal["tool-progress"] = "tool-progress"
    tool_call_id: str = Field(default="", alias="toolCallId")
    message: str = ""


class TextStartChunk(_Chunk):
    type: Literal["text-start"] = "text-start"


class TextDeltaChunk(_Chunk):
    type: Literal["text-delta"] = "text-delta"
    text: str = ""


NormalizedChunk = Annotated[
    Union[
        StepStartChunk,
        ToolCallChunk,
        ToolResultChunk,
        ToolErrorChunk,
        ToolProgressChunk,
        TextStartChunk,
        TextDeltaChunk,
    ],
    Field(discriminator="type"),
]

chunk_adapter: TypeAdapter[NormalizedChunk] = TypeAdapter(NormalizedChunk)

CHUNK_TYPES = frozenset({
    "step-start",
    "tool-call",
    "tool-result",
    "tool-error",
    "tool-progress",
    "text-start",
    "text-delta",
})
