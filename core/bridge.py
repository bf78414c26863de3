"""Event bridge.

Translates a provider stream into the closed AgentEvent protocol. This is
the one place that knows both vocabularies:

    provider chunk            →  agent event
    ─────────────────────────────────────────────────────
    step-start                →  thinking("Processing...")
    tool-call                 →  tool_start          (unless internal)
    tool-result               →  tool_end + audit    (unless internal)
    tool-error                →  tool_error          (unless internal)
    tool-progress             →  tool_progress       (unless internal)
    first text-start/-delta   →  answer_start        (once per run)
    text-delta (non-empty)    →  text_delta
    end of stream             →  done                (once, always last)

Internal tools are the agent framework's own memory bookkeeping. Their call
ids are still tracked so the matching result can be recognised and dropped,
but they never reach the UI, the audit log, or done.tool_calls.

The bridge does not catch provider failures. If iterating the stream raises,
the exception propagates to the caller and no done event is produced; the
run controller decides what a failed run looks like.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from core.audit import AuditRecorder
from core.config import INTERNAL_TOOLS
from core.normalizer import normalize_stream
from llm.stream import ProviderStream
from schemas.audit import AuditEntry
from schemas.chunks import (
    StepStartChunk,
    TextDeltaChunk,
    TextStartChunk,
    ToolCallChunk,
    ToolErrorChunk,
    ToolProgressChunk,
    ToolResultChunk,
)
from schemas.events import (
    AgentEvent,
    AnswerStartEvent,
    DoneEvent,
    TextDeltaEvent,
    ThinkingEvent,
    TokenUsage,
    ToolCallRecord,
    ToolEndEvent,
    ToolErrorEvent,
    ToolProgressEvent,
    ToolStartEvent,
)
from utils.results import extract_source_urls, stringify_result, summarize_result

logger = logging.getLogger(__name__)

THINKING_MESSAGE = "Processing..."


@dataclass
class PendingCall:
    """An in-flight tool invocation, keyed by call id until its result arrives."""

    tool_call_id: str
    tool_name: str
    started_at: float


def _elapsed_ms(since: float) -> int:
    return max(0, int((time.perf_counter() - since) * 1000))


def build_token_usage(usage: Any) -> TokenUsage | None:
    """Build TokenUsage from a provider usage summary, or None if there is none.

    Missing counts are treated as zero. total_tokens is always computed.
    """
    if usage is None:
        return None
    if not isinstance(usage, dict):
        usage = dict(vars(usage)) if hasattr(usage, "__dict__") else {}
    input_tokens = int(usage.get("inputTokens") or usage.get("input_tokens") or 0)
    output_tokens = int(usage.get("outputTokens") or usage.get("output_tokens") or 0)
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


def build_audit_entry(
    chunk: ToolResultChunk,
    result_str: str,
    duration_ms: int,
) -> AuditEntry:
    """Build the audit record for one externally visible tool result."""
    return AuditEntry(
        ts=datetime.now(timezone.utc).isoformat(),
        tool=chunk.tool_name,
        args=chunk.args,
        result_summary=summarize_result(result_str),
        source_urls=extract_source_urls(chunk.result),
        tool_call_id=chunk.tool_call_id,
        duration=duration_ms,
    )


class EventBridge:
    """Turns one provider stream into a sequence of AgentEvents.

    The audit recorder and internal tool set are fixed at construction, so
    one bridge can serve many runs. All per-run state (pending calls,
    internal call ids, accumulated tool calls) lives inside run() and is
    discarded when the generator finishes.

    Attributes:
        audit: Optional recorder invoked synchronously for every visible
            tool result. Any exception it raises is logged and contained.
        internal_tools: Tool names whose calls are hidden from output.
    """

    def __init__(
        self,
        audit: AuditRecorder | None = None,
        internal_tools: Iterable[str] = INTERNAL_TOOLS,
    ) -> None:
        self.audit = audit
        self.internal_tools = frozenset(internal_tools)

    async def run(self, stream: ProviderStream) -> AsyncIterator[AgentEvent]:
        """Yield AgentEvents for one provider stream, ending with exactly one done.

        The generator is lazy and cannot be restarted. It suspends whenever
        it waits on the provider for the next chunk or the final values.

        Args:
            stream: The provider stream for a single agent invocation.

        Yields:
            AgentEvent models in source order. DoneEvent is always last.

        Raises:
            Exception: Whatever the provider stream raises while being
                iterated, unchanged.
        """
        run_start = time.perf_counter()
        pending: dict[str, PendingCall] = {}
        internal_ids: set[str] = set()
        tool_calls: list[ToolCallRecord] = []
        answer_started = False

        async for chunk in normalize_stream(stream.full_stream):
            if isinstance(chunk, StepStartChunk):
                yield ThinkingEvent(message=THINKING_MESSAGE)

            elif isinstance(chunk, ToolCallChunk):
                pending[chunk.tool_call_id] = PendingCall(
                    tool_call_id=chunk.tool_call_id,
                    tool_name=chunk.tool_name,
                    started_at=time.perf_counter(),
                )
                if chunk.tool_name in self.internal_tools:
                    internal_ids.add(chunk.tool_call_id)
                    continue
                yield ToolStartEvent(tool=chunk.tool_name, args=chunk.args)

            elif isinstance(chunk, ToolResultChunk):
                duration_ms = self._settle(pending, chunk.tool_call_id, chunk.tool_name)
                result_str = stringify_result(chunk.result)

                if self._is_internal(chunk.tool_call_id, chunk.tool_name, internal_ids):
                    continue

                tool_calls.append(ToolCallRecord(tool=chunk.tool_name, args=chunk.args, result=result_str))
                # Audited even if the consumer stops pulling after tool_end.
                self._record_audit(chunk, result_str, duration_ms)
                yield ToolEndEvent(
                    tool=chunk.tool_name,
                    args=chunk.args,
                    result=result_str,
                    duration=duration_ms,
                )

            elif isinstance(chunk, ToolErrorChunk):
                self._settle(pending, chunk.tool_call_id, chunk.tool_name)
                if self._is_internal(chunk.tool_call_id, chunk.tool_name, internal_ids):
                    continue
                yield ToolErrorEvent(tool=chunk.tool_name, error=chunk.error)

            elif isinstance(chunk, ToolProgressChunk):
                if chunk.tool_call_id in internal_ids:
                    continue
                yield ToolProgressEvent(message=chunk.message)

            elif isinstance(chunk, (TextStartChunk, TextDeltaChunk)):
                if not answer_started:
                    answer_started = True
                    yield AnswerStartEvent()
                if isinstance(chunk, TextDeltaChunk) and chunk.text:
                    yield TextDeltaEvent(delta=chunk.text)

        if not answer_started:
            yield AnswerStartEvent()

        text, usage, steps = await asyncio.gather(stream.text, stream.usage, stream.steps)
        total_time = _elapsed_ms(run_start)
        token_usage = build_token_usage(usage)

        tokens_per_second = None
        if token_usage is not None and total_time > 0:
            tokens_per_second = token_usage.output_tokens / (total_time / 1000)

        yield DoneEvent(
            answer=text or "",
            tool_calls=tool_calls,
            iterations=len(steps or []),
            total_time=total_time,
            token_usage=token_usage,
            tokens_per_second=tokens_per_second,
        )

    # ── Private helpers ───────────────────────────────────────────────────────

    def _is_internal(self, tool_call_id: str, tool_name: str, internal_ids: set[str]) -> bool:
        if tool_call_id in internal_ids:
            internal_ids.discard(tool_call_id)
            return True
        # An internal result whose call was never seen is still internal.
        return tool_name in self.internal_tools

    def _settle(self, pending: dict[str, PendingCall], tool_call_id: str, tool_name: str) -> int:
        """Remove the pending call and return its duration in milliseconds.

        An unmatched result is degraded to a zero duration and logged.
        """
        call = pending.pop(tool_call_id, None)
        if call is None:
            logger.warning(
                "Tool result for '%s' (call %r) has no matching tool call; reporting duration 0.",
                tool_name,
                tool_call_id,
            )
            return 0
        return _elapsed_ms(call.started_at)

    def _record_audit(self, chunk: ToolResultChunk, result_str: str, duration_ms: int) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record(build_audit_entry(chunk, result_str, duration_ms))
        except Exception as exc:
            logger.error("Audit recorder raised for tool '%s': %s", chunk.tool_name, exc)


def bridge_events(
    stream: ProviderStream,
    audit: AuditRecorder | None = None,
    internal_tools: Iterable[str] = INTERNAL_TOOLS,
) -> AsyncIterator[AgentEvent]:
    """Shorthand for EventBridge(audit, internal_tools).run(stream)."""
    return EventBridge(audit=audit, internal_tools=internal_tools).run(stream)
