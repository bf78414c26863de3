"""Provider stream container.

The bridge consumes a stream object with four parts: an async iterable of
raw chunks plus deferred final text, usage, and step list. AgentStream is
the concrete shape backends return. A producer coroutine pushes chunks
through a queue and resolves the three futures when it finishes.

If the producer raises, the exception is re-raised to whoever is iterating
full_stream and is also set on any future still unresolved.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_END = object()


class ProviderStream(Protocol):
    """What the event bridge needs from an agent invocation."""

    @property
    def full_stream(self) -> AsyncIterator[Any]: ...

    @property
    def text(self) -> Awaitable[str]: ...

    @property
    def usage(self) -> Awaitable[dict[str, int] | None]: ...

    @property
    def steps(self) -> Awaitable[list[Any]]: ...


class StreamWriter:
    """Handle the producer uses to emit chunks and final values."""

    def __init__(self, stream: "AgentStream") -> None:
        self._stream = stream

    async def emit(self, chunk_type: str, **payload: Any) -> None:
        await self._stream._queue.put({"type": chunk_type, "payload": payload})

    def finish(self, text: str, usage: dict[str, int] | None, steps: list[Any]) -> None:
        for future, value in (
            (self._stream.text, text),
            (self._stream.usage, usage),
            (self._stream.steps, steps),
        ):
            if not future.done():
                future.set_result(value)


class AgentStream:
    """Concrete ProviderStream fed by a background producer task.

    Example:
        async def produce(writer: StreamWriter) -> None:
            await writer.emit("step-start")
            await writer.emit("text-delta", text="hi")
            writer.finish("hi", {"inputTokens": 3, "outputTokens": 1}, [{}])

        stream = AgentStream.start(produce)
    """

    def __init__(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.text: asyncio.Future = loop.create_future()
        self.usage: asyncio.Future = loop.create_future()
        self.steps: asyncio.Future = loop.create_future()

    @classmethod
    def start(cls, producer: Callable[[StreamWriter], Awaitable[None]]) -> "AgentStream":
        """Create a stream and schedule producer on the running loop."""
        stream = cls()
        stream._task = asyncio.create_task(stream._run(producer))
        return stream

    async def _run(self, producer: Callable[[StreamWriter], Awaitable[None]]) -> None:
        writer = StreamWriter(self)
        try:
            await producer(writer)
        except asyncio.CancelledError:
            for future in (self.text, self.usage, self.steps):
                future.cancel()
            self._queue.put_nowait(asyncio.CancelledError())
            raise
        except Exception as exc:
            logger.error("Agent stream producer failed: %s", exc)
            self._fail(exc)
            await self._queue.put(exc)
            return
        writer.finish("", None, [])
        await self._queue.put(_END)

    def _fail(self, exc: Exception) -> None:
        for future in (self.text, self.usage, self.steps):
            if not future.done():
                future.set_exception(exc)
                # Mark retrieved.
                future.exception()

    @property
    def full_stream(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def cancel(self) -> None:
        """Stop the producer task, if it is still running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
