"""Scripted agent backend for demos and tests. No API key required.

ScriptedAgent replays a fixed list of raw provider chunks with small delays,
so the live terminal display and the SSE endpoint can be exercised end to
end without a model. demo_script() builds a representative research run:
one visible search, one internal working-memory update, and a streamed
answer.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from llm.base import AgentBackend
from llm.stream import AgentStream, StreamWriter


@dataclass
class ScriptStep:
    """One raw chunk to emit, after waiting `delay` seconds."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    delay: float = 0.0


@dataclass
class Script:
    steps: list[ScriptStep]
    text: str = ""
    usage: dict[str, int] | None = None
    iterations: int = 1
    fail_with: Exception | None = None


class ScriptedAgent(AgentBackend):
    """AgentBackend that replays a Script for every invocation.

    Attributes:
        script: The chunk script replayed by stream().
        calls: (query, thread, resource, max_steps) for every invocation,
            in order. Lets callers check session scoping.
    """

    def __init__(self, script: Script) -> None:
        self.script = script
        self.calls: list[tuple[str, str, str, int]] = []

    async def stream(self, query: str, *, thread: str, resource: str, max_steps: int) -> AgentStream:
        self.calls.append((query, thread, resource, max_steps))
        script = self.script

        async def produce(writer: StreamWriter) -> None:
            for step in script.steps:
                if step.delay:
                    await asyncio.sleep(step.delay)
                await writer.emit(step.type, **step.payload)
            if script.fail_with is not None:
                raise script.fail_with
            writer.finish(script.text, script.usage, [{}] * script.iterations)

        return AgentStream.start(produce)


def demo_script(delay: float = 0.25) -> Script:
    """A representative run: search, memory update, streamed answer."""
    answer = (
        "NVIDIA's gross margin expanded from 56.9% to 75.0% over the last two "
        "fiscal years, driven by data-center mix. Sources: company filings."
    )
    search_result = {
        "results": ["NVDA FY2024 10-K", "NVDA FY2025 Q3 10-Q"],
        "urls": [
            "https://investor.nvidia.com/financial-info/sec-filings",
            "https://www.sec.gov/cgi-bin/browse-edgar?CIK=NVDA",
        ],
    }
    steps = [
        ScriptStep("step-start"),
        ScriptStep(
            "tool-call",
            {"toolCallId": "call_1", "toolName": "financial_search", "args": {"query": "NVDA gross margin trend"}},
            delay,
        ),
        ScriptStep("tool-progress", {"toolCallId": "call_1", "message": "Fetching filings..."}, delay),
        ScriptStep("tool-progress", {"toolCallId": "call_1", "message": "Parsing income statements..."}, 0.05),
        ScriptStep(
            "tool-result",
            {
                "toolCallId": "call_1",
                "toolName": "financial_search",
                "args": {"query": "NVDA gross margin trend"},
                "result": search_result,
            },
            delay * 2,
        ),
        ScriptStep(
            "tool-call",
            {"toolCallId": "call_2", "toolName": "updateWorkingMemory", "args": {"memory": "Active Tickers: NVDA"}},
        ),
        ScriptStep(
            "tool-result",
            {"toolCallId": "call_2", "toolName": "updateWorkingMemory", "result": {"success": True}},
        ),
        ScriptStep("step-start", delay=delay),
        ScriptStep("text-start"),
    ]
    steps += [ScriptStep("text-delta", {"text": word + " "}, 0.03) for word in answer.split(" ")]
    return Script(
        steps=steps,
        text=answer,
        usage={"inputTokens": 1240, "outputTokens": 48},
        iterations=2,
    )
