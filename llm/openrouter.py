"""OpenRouter agent backend.

OpenRouter is a unified proxy that provides access to models from OpenAI,
Anthropic, Google, and others through a single OpenAI-compatible API and one
API key. OpenRouterAgent runs a plain multi-step tool loop on top of it and
reports progress as raw provider chunks, the same shape the event bridge
expects from any agent framework:

    step-start → (text-start, text-delta…)? → (tool-call → tool-result)* → …

Conversation history is kept per thread in memory (the most recent
max_sessions threads, history_limit messages each), and a per-resource
working-memory note is maintained through the internal updateWorkingMemory
tool, which the bridge hides from the operator.

Required environment variable:
    OPENROUTER_API_KEY: Your OpenRouter API key. Add to .env and never commit.
"""

import json
import logging
import os
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import openai
from dotenv import load_dotenv

from llm.base import AgentBackend
from llm.stream import AgentStream, StreamWriter

load_dotenv()

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
WORKING_MEMORY_TOOL = "updateWorkingMemory"
DEFAULT_HISTORY_LIMIT = 20
DEFAULT_MAX_SESSIONS = 256

DEFAULT_SYSTEM_PROMPT = (
    "You are Alpha Sentry, a financial research assistant. Use the available "
    "tools to gather facts before answering, cite the sources you used, and "
    "say plainly when the data is insufficient. Keep the working memory note "
    "up to date with the user's tickers, findings, and open questions."
)

WORKING_MEMORY_TEMPLATE = """# Research Context

## User Profile
- Preferred Tickers:
- Analysis Style:

## Current Research
- Active Tickers:
- Key Findings:
- Open Questions:
"""


@dataclass
class Tool:
    """A function the agent may call.

    Attributes:
        name: Tool name the model sees and calls.
        description: What the tool does, shown to the model.
        parameters: JSON schema for the tool's arguments.
        handler: Coroutine function invoked with the decoded arguments as
            keyword arguments. Its return value is the tool result.
    """

    name: str
    description: str
    parameters: dict[str, Any]
    handler: Callable[..., Awaitable[Any]]

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class _Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    reported: bool = False

    def add(self, usage: Any) -> None:
        self.input_tokens += getattr(usage, "prompt_tokens", 0) or 0
        self.output_tokens += getattr(usage, "completion_tokens", 0) or 0
        self.reported = True

    def as_dict(self) -> dict[str, int] | None:
        if not self.reported:
            return None
        return {"inputTokens": self.input_tokens, "outputTokens": self.output_tokens}


@dataclass
class _ThreadMemory:
    messages: list[dict[str, Any]] = field(default_factory=list)


class OpenRouterAgent(AgentBackend):
    """AgentBackend backed by OpenRouter's OpenAI-compatible chat API.

    Example usage:
        agent = OpenRouterAgent("anthropic/claude-sonnet-4-6", tools=[search_tool])
        stream = await agent.stream("How did NVDA's margins trend?",
                                    thread="cli-1", resource="user-1", max_steps=10)

    Attributes:
        model: OpenRouter model identifier (e.g. "openai/gpt-5.2").
        client: The underlying async OpenAI client configured for OpenRouter.
    """

    def __init__(
        self,
        model: str,
        tools: Iterable[Tool] = (),
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ) -> None:
        """Initialise the agent for a specific model.

        Args:
            model: Routed model string. An "openrouter/" prefix is removed,
                since OpenRouter ids are already "<vendor>/<model>".
            tools: External tools offered to the model in addition to the
                internal working-memory tool.
            system_prompt: Instructions prepended to every invocation.
            history_limit: Number of prior thread messages replayed per run.
            max_sessions: Threads and working-memory notes kept in memory.
                The least recently used one is dropped past this bound.

        Raises:
            KeyError: If OPENROUTER_API_KEY is not set in the environment
                or .env file. Fails at construction rather than at the
                first API call.
        """
        self.model = model.removeprefix("openrouter/")
        self.client = openai.AsyncOpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=os.environ["OPENROUTER_API_KEY"],
        )
        self._system_prompt = system_prompt
        self._history_limit = history_limit
        self._max_sessions = max_sessions
        self._threads: OrderedDict[str, _ThreadMemory] = OrderedDict()
        self._working_memory: OrderedDict[str, str] = OrderedDict()
        self._tools: dict[str, Tool] = {t.name: t for t in tools}

    async def stream(
        self,
        query: str,
        *,
        thread: str,
        resource: str,
        max_steps: int,
    ) -> AgentStream:
        async def produce(writer: StreamWriter) -> None:
            await self._run(writer, query, thread, resource, max_steps)

        return AgentStream.start(produce)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _evict(self, cache: OrderedDict, key: str) -> None:
        """Mark key most recently used and drop the oldest entries past max_sessions."""
        cache.move_to_end(key)
        while len(cache) > self._max_sessions:
            cache.popitem(last=False)

    def _memory_tool(self, resource: str) -> Tool:
        async def update(memory: str) -> dict[str, Any]:
            self._working_memory[resource] = memory
            self._evict(self._working_memory, resource)
            return {"success": True}

        return Tool(
            name=WORKING_MEMORY_TOOL,
            description="Replace the working memory note for this user.",
            parameters={
                "type": "object",
                "properties": {"memory": {"type": "string"}},
                "required": ["memory"],
            },
            handler=update,
        )

    def _system_message(self, resource: str) -> dict[str, Any]:
        note = self._working_memory.get(resource, WORKING_MEMORY_TEMPLATE)
        return {
            "role": "system",
            "content": f"{self._system_prompt}\n\n<working_memory>\n{note}\n</working_memory>",
        }

    async def _run(
        self,
        writer: StreamWriter,
        query: str,
        thread: str,
        resource: str,
        max_steps: int,
    ) -> None:
        memory = self._threads.setdefault(thread, _ThreadMemory())
        self._evict(self._threads, thread)
        tools = {**self._tools, WORKING_MEMORY_TOOL: self._memory_tool(resource)}
        messages: list[dict[str, Any]] = [
            self._system_message(resource),
            *memory.messages[-self._history_limit:],
            {"role": "user", "content": query},
        ]

        usage = _Usage()
        steps: list[dict[str, Any]] = []
        final_text = ""

        for _ in range(max_steps):
            await writer.emit("step-start")
            text, calls = await self._complete_step(writer, messages, tools, usage)
            steps.append({"text": text, "toolCalls": [c.name for c in calls]})
            final_text = text

            if not calls:
                break

            messages.append({
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {"id": c.id, "type": "function", "function": {"name": c.name, "arguments": c.arguments}}
                    for c in calls
                ],
            })
            for call in calls:
                result = await self._invoke(writer, tools, call)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": result})

        memory.messages.append({"role": "user", "content": query})
        memory.messages.append({"role": "assistant", "content": final_text})
        del memory.messages[:-self._history_limit]
        writer.finish(final_text, usage.as_dict(), steps)

    async def _complete_step(
        self,
        writer: StreamWriter,
        messages: list[dict[str, Any]],
        tools: dict[str, Tool],
        usage: _Usage,
    ) -> tuple[str, list[_PendingToolCall]]:
        """Stream one model turn, forwarding text as it arrives."""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            tools=[t.schema() for t in tools.values()],
            stream=True,
            stream_options={"include_usage": True},
        )

        text = ""
        pending: dict[int, _PendingToolCall] = {}
        async for chunk in response:
            if chunk.usage is not None:
                usage.add(chunk.usage)
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            if delta.content:
                if not text:
                    await writer.emit("text-start")
                text += delta.content
                await writer.emit("text-delta", text=delta.content)

            for tc in delta.tool_calls or []:
                call = pending.setdefault(tc.index, _PendingToolCall())
                if tc.id:
                    call.id = tc.id
                if tc.function is not None:
                    call.name += tc.function.name or ""
                    call.arguments += tc.function.arguments or ""

        return text, [pending[i] for i in sorted(pending)]

    async def _invoke(
        self,
        writer: StreamWriter,
        tools: dict[str, Tool],
        call: _PendingToolCall,
    ) -> str:
        """Run one tool call and return the text fed back to the model."""
        try:
            args = json.loads(call.arguments) if call.arguments else {}
        except json.JSONDecodeError:
            logger.warning("Tool '%s' called with invalid JSON arguments.", call.name)
            args = {}
        if not isinstance(args, dict):
            args = {"input": args}

        await writer.emit("tool-call", toolCallId=call.id, toolName=call.name, args=args)

        tool = tools.get(call.name)
        if tool is None:
            error = f"Unknown tool '{call.name}'."
            await writer.emit("tool-error", toolCallId=call.id, toolName=call.name, args=args, error=error)
            return error

        try:
            result = await tool.handler(**args)
        except Exception as exc:
            logger.error("Tool '%s' raised: %s", call.name, exc)
            error = str(exc)
            await writer.emit("tool-error", toolCallId=call.id, toolName=call.name, args=args, error=error)
            return f"Error: {error}"

        await writer.emit("tool-result", toolCallId=call.id, toolName=call.name, args=args, result=result)
        return result if isinstance(result, str) else json.dumps(result, default=str)
