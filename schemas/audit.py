"""Audit entry schema.

One AuditEntry is persisted per externally visible tool result. Internal
memory-maintenance tools never produce an entry. The log is newline-delimited
JSON with the camelCase field names below, one object per line.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditEntry(BaseModel):
    """A persisted, truncated record of one tool invocation.

    Attributes:
        ts: ISO-8601 UTC timestamp taken when the tool result arrived.
        tool: Tool name as reported by the provider.
        args: Arguments the tool was called with.
        result_summary: Stringified result, at most 200 characters plus a
            trailing "..." when it had to be cut.
        source_urls: URLs cited by the result (its `urls` list or single
            `url` field). Empty when the result carries neither.
        tool_call_id: Provider call identifier, unique within a run.
        duration: Wall-clock milliseconds between call and result.
    """

    model_config = ConfigDict(populate_by_name=True)

    ts: str
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    result_summary: str = Field(alias="resultSummary")
    source_urls: list[str] = Field(default_factory=list, alias="sourceUrls")
    tool_call_id: str = Field(alias="toolCallId")
    duration: int | None = None
