"""Run controller.

RunController owns one conversation's runs from submission to a terminal
state. It is the consumer side of the event bridge: it pulls one AgentEvent
at a time, folds it into the active RunHistoryItem and the WorkingState, and
coalesces noisy updates (token deltas, tool progress) behind debounced
flushes so renderers repaint at a bounded rate.

Lifecycle of one submit():
    1. Reject if a run is already processing
    2. Append a fresh "processing" RunHistoryItem, reset buffers, open a
       new cancellation token
    3. Start the backend invocation for this session's thread
    4. Pull events from the bridge until done, cancellation, or failure
    5. Move the item to complete / interrupted / error and stop every timer

All state is owned by the controller instance and mutated only on the event
loop thread, one event at a time, so nothing here needs a lock.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterable

from core.audit import AuditRecorder
from core.bridge import EventBridge
from core.coalescer import Debouncer
from core.config import (
    DEFAULT_CLI_MAX_STEPS,
    INTERNAL_TOOLS,
    PROGRESS_FLUSH_SECONDS,
    TEXT_FLUSH_SECONDS,
)
from llm.base import AgentBackend
from schemas.events import (
    AgentEvent,
    AnswerStartEvent,
    DoneEvent,
    TextDeltaEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolErrorEvent,
    ToolProgressEvent,
    ToolStartEvent,
)
from schemas.history import (
    AnsweringState,
    EventGroup,
    IdleState,
    RunHistoryItem,
    RunStatus,
    ThinkingState,
    ToolState,
    WorkingState,
)

logger = logging.getLogger(__name__)


class RunAlreadyActiveError(RuntimeError):
    """Raised by submit() while another run is still processing."""


class RunCancelled(Exception):
    """Signals that the operator cancelled the active run."""


class RunController:
    """Drives runs for one conversation and exposes their display state.

    Attributes:
        history: Every run submitted in this session, oldest first. Only
            the last item can be in "processing".
        working_state: Lightweight indicator for spinners and status lines.
        error: Message of the last failed run, verbatim. Cleared on submit.
        streaming_answer: Answer text flushed so far for the active run.
        session_id: Stable id for the conversation; scopes backend memory.
    """

    def __init__(
        self,
        backend: AgentBackend,
        audit: AuditRecorder | None = None,
        session_id: str | None = None,
        max_steps: int = DEFAULT_CLI_MAX_STEPS,
        internal_tools: Iterable[str] = INTERNAL_TOOLS,
        thread_prefix: str = "cli",
        on_change: Callable[["RunController"], None] | None = None,
        on_text_flush: Callable[[str], None] | None = None,
    ) -> None:
        """Initialise the controller.

        Args:
            backend: Agent framework integration that produces provider
                streams.
            audit: Recorder handed to the event bridge for tool audit entries.
            session_id: Conversation id. A new UUID is generated when omitted.
            max_steps: Step limit passed to every backend invocation.
            internal_tools: Tool names the bridge hides from output.
            thread_prefix: Prefix for the backend thread id ("cli-<session>").
            on_change: Called after every state mutation, typically to
                trigger a repaint.
            on_text_flush: Called with each coalesced chunk of answer text,
                in order, as it is published to streaming_answer.
        """
        self._backend = backend
        self._bridge = EventBridge(audit=audit, internal_tools=internal_tools)
        self._max_steps = max_steps
        self._thread_prefix = thread_prefix
        self._on_change = on_change
        self._on_text_flush = on_text_flush

        self.session_id = session_id or str(uuid.uuid4())
        self.history: list[RunHistoryItem] = []
        self.working_state: WorkingState = IdleState()
        self.error: str | None = None
        self.streaming_answer = ""

        self._text_buffer = ""
        self._pending_progress: str | None = None
        self._text_flush = Debouncer(TEXT_FLUSH_SECONDS, self._flush_text)
        self._progress_flush = Debouncer(PROGRESS_FLUSH_SECONDS, self._flush_progress)
        self._cancel_event: asyncio.Event | None = None

    # ── Public API ────────────────────────────────────────────────────────────

    @property
    def is_processing(self) -> bool:
        return bool(self.history) and self.history[-1].status == RunStatus.PROCESSING

    @property
    def active_item(self) -> RunHistoryItem | None:
        """The run currently processing, or None."""
        return self.history[-1] if self.is_processing else None

    @property
    def thread_id(self) -> str:
        return f"{self._thread_prefix}-{self.session_id}"

    @property
    def resource_id(self) -> str:
        return f"user-{self.session_id}"

    async def submit(self, query: str) -> str | None:
        """Run one query through the agent and fold its events into history.

        Args:
            query: The operator's question.

        Returns:
            The final answer text on success. None when the run was
            cancelled or failed; inspect history[-1].status and error to
            tell which.

        Raises:
            RunAlreadyActiveError: If a run is already processing.
        """
        if self.is_processing:
            raise RunAlreadyActiveError("A run is already in progress.")

        item = RunHistoryItem(id=uuid.uuid4().hex, query=query, start_time=time.time())
        self.history.append(item)
        self._reset_buffers()
        self.error = None
        self.working_state = ThinkingState()
        cancel = asyncio.Event()
        self._cancel_event = cancel
        self._notify()

        logger.info("Run %s started in thread %s.", item.id, self.thread_id)

        try:
            stream = await self._backend.stream(
                query,
                thread=self.thread_id,
                resource=self.resource_id,
                max_steps=self._max_steps,
            )
            return await self._consume(item, self._bridge.run(stream), cancel)

        except RunCancelled:
            logger.info("Run %s cancelled.", item.id)
            self._finish(item, RunStatus.INTERRUPTED)
            return None

        except asyncio.CancelledError:
            logger.info("Run %s interrupted.", item.id)
            self._finish(item, RunStatus.INTERRUPTED)
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return None

        except Exception as exc:
            logger.error("Run %s failed: %s", item.id, exc)
            self.error = str(exc)
            self._finish(item, RunStatus.ERROR)
            return None

        finally:
            if self._cancel_event is cancel:
                self._stop_timers()
                self._cancel_event = None

    def cancel(self) -> None:
        """Cancel the active run.

        Stops event consumption at the next opportunity, publishes any
        buffered answer text, clears both flush timers, and moves the
        active item to "interrupted". The backend invocation itself is not
        force-stopped; its remaining output is simply not observed.
        """
        if self._cancel_event is not None:
            self._cancel_event.set()

        if self._text_flush.pending:
            self._text_flush.flush_now()
        self._stop_timers()
        self._reset_buffers(keep_answer=True)

        item = self.active_item
        if item is not None:
            self._finish(item, RunStatus.INTERRUPTED)
        else:
            self.working_state = IdleState()
            self._notify()

    def new_session(self) -> None:
        """Start a fresh conversation: clear history and rotate the session id.

        Raises:
            RunAlreadyActiveError: If a run is still processing.
        """
        if self.is_processing:
            raise RunAlreadyActiveError("Cannot start a new session while a run is in progress.")
        self.session_id = str(uuid.uuid4())
        self.history = []
        self.error = None
        self._reset_buffers()
        self.working_state = IdleState()
        self._notify()

    # ── Event consumption ─────────────────────────────────────────────────────

    async def _consume(
        self,
        item: RunHistoryItem,
        events: AsyncIterator[AgentEvent],
        cancel: asyncio.Event,
    ) -> str | None:
        final_answer: str | None = None
        try:
            while True:
                try:
                    event = await self._next_event(events, cancel)
                except StopAsyncIteration:
                    break
                if cancel.is_set():
                    raise RunCancelled()
                self._handle_event(item, event)
                if isinstance(event, DoneEvent):
                    final_answer = event.answer
                if cancel.is_set():
                    raise RunCancelled()
        finally:
            try:
                await events.aclose()
            except RuntimeError as exc:
                logger.debug("Event stream still closing: %s", exc)
        return final_answer

    async def _next_event(self, events: AsyncIterator[AgentEvent], cancel: asyncio.Event) -> AgentEvent:
        """Pull the next event, giving up as soon as cancellation is signalled.

        Raises:
            StopAsyncIteration: When the bridge is exhausted.
            RunCancelled: If cancel is set before the next event arrives.
        """
        if cancel.is_set():
            raise RunCancelled()

        pull = asyncio.ensure_future(anext(events))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({pull, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            pull.cancel()
            raise
        finally:
            waiter.cancel()

        if pull in done:
            return pull.result()

        pull.cancel()
        try:
            await pull
        except (asyncio.CancelledError, StopAsyncIteration):
            pass
        except Exception as exc:
            logger.debug("Stream raised after cancellation: %s", exc)
        raise RunCancelled()

    def _handle_event(self, item: RunHistoryItem, event: AgentEvent) -> None:
        """Fold one event into the item and working state."""
        if isinstance(event, ThinkingEvent):
            self.working_state = ThinkingState()
            item.events.append(EventGroup(id=f"thinking-{uuid.uuid4().hex[:8]}", event=event, completed=True))

        elif isinstance(event, ToolStartEvent):
            tool_id = f"tool-{event.tool}-{uuid.uuid4().hex[:8]}"
            self.working_state = ToolState(tool_name=event.tool)
            item.events.append(EventGroup(id=tool_id, event=event, completed=False))
            item.active_tool_id = tool_id

        elif isinstance(event, ToolProgressEvent):
            self._pending_progress = event.message
            self._progress_flush.schedule()
            return

        elif isinstance(event, (ToolEndEvent, ToolErrorEvent)):
            self._progress_flush.cancel()
            self._pending_progress = None
            group = item.find_group(item.active_tool_id)
            if group is not None:
                group.completed = True
                group.end_event = event
            item.active_tool_id = None
            self.working_state = ThinkingState()

        elif isinstance(event, AnswerStartEvent):
            self.working_state = AnsweringState(start_time=time.time())

        elif isinstance(event, TextDeltaEvent):
            self._text_buffer += event.delta
            self._text_flush.schedule()
            return

        elif isinstance(event, DoneEvent):
            self._text_flush.cancel()
            self._reset_buffers()
            item.answer = event.answer
            item.duration = event.total_time
            item.token_usage = event.token_usage
            item.tokens_per_second = event.tokens_per_second
            logger.info(
                "Run %s complete in %dms with %d tool calls.",
                item.id,
                event.total_time,
                len(event.tool_calls),
            )
            self._finish(item, RunStatus.COMPLETE)
            return

        self._notify()

    # ── Coalescing ────────────────────────────────────────────────────────────

    def _flush_text(self) -> None:
        if not self._text_buffer:
            return
        chunk, self._text_buffer = self._text_buffer, ""
        self.streaming_answer += chunk
        if self._on_text_flush is not None:
            self._on_text_flush(chunk)
        self._notify()

    def _flush_progress(self) -> None:
        item = self.active_item
        message, self._pending_progress = self._pending_progress, None
        if item is None or message is None:
            return
        group = item.find_group(item.active_tool_id)
        if group is not None:
            group.progress_message = message
            self._notify()

    # ── Terminal transitions ──────────────────────────────────────────────────

    def _finish(self, item: RunHistoryItem, status: RunStatus) -> None:
        """Move a processing item to a terminal status. No-op if already terminal.

        Timers and working state are shared by every run, so they are only
        reset while item is still the latest run. A cancelled run that winds
        down after the next submit() leaves the new run untouched.
        """
        if item.status == RunStatus.PROCESSING:
            item.status = status
            item.active_tool_id = None
        if not self.history or item is not self.history[-1]:
            return
        self._stop_timers()
        self.working_state = IdleState()
        self._notify()

    def _stop_timers(self) -> None:
        self._text_flush.cancel()
        self._progress_flush.cancel()

    def _reset_buffers(self, keep_answer: bool = False) -> None:
        self._text_buffer = ""
        self._pending_progress = None
        if not keep_answer:
            self.streaming_answer = ""

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
