"""Agent backend tests.

TestAgentBackendAbstract  — no API key needed, runs in CI
TestAgentStream           — producer/consumer plumbing, no network
TestOpenRouterAgent       — tool loop driven by a fake chat client; the real
                            API call test is skipped if OPENROUTER_API_KEY
                            is not set in the environment or .env file
TestModelRouter           — provider/model string resolution
"""

import asyncio
import os
from types import SimpleNamespace

import pytest

from core.bridge import bridge_events
from llm.base import AgentBackend
from llm.model_router import to_model_string
from llm.openrouter import OpenRouterAgent, Tool
from llm.stream import AgentStream


# ── AgentBackend (abstract) ───────────────────────────────────────────────────

class TestAgentBackendAbstract:
    def test_cannot_instantiate_directly(self):
        with pytest.raises(TypeError, match="abstract"):
            AgentBackend()

    def test_subclass_without_stream_raises(self):
        class IncompleteBackend(AgentBackend):
            pass

        with pytest.raises(TypeError, match="abstract"):
            IncompleteBackend()

    def test_openrouter_agent_is_a_backend(self):
        assert issubclass(OpenRouterAgent, AgentBackend)


# ── AgentStream ───────────────────────────────────────────────────────────────

class TestAgentStream:
    async def test_chunks_and_final_values_reach_the_consumer(self):
        async def produce(writer):
            await writer.emit("step-start")
            await writer.emit("text-delta", text="hi")
            writer.finish("hi", {"inputTokens": 3, "outputTokens": 1}, [{}])

        stream = AgentStream.start(produce)
        chunks = [c async for c in stream.full_stream]

        assert chunks == [
            {"type": "step-start", "payload": {}},
            {"type": "text-delta", "payload": {"text": "hi"}},
        ]
        assert await stream.text == "hi"
        assert await stream.usage == {"inputTokens": 3, "outputTokens": 1}
        assert await stream.steps == [{}]

    async def test_producer_without_finish_settles_defaults(self):
        async def produce(writer):
            await writer.emit("step-start")

        stream = AgentStream.start(produce)
        _ = [c async for c in stream.full_stream]

        assert await stream.text == ""
        assert await stream.usage is None
        assert await stream.steps == []

    async def test_producer_failure_is_raised_to_the_consumer(self):
        async def produce(writer):
            await writer.emit("step-start")
            raise RuntimeError("rate limited")

        stream = AgentStream.start(produce)
        seen = []

        with pytest.raises(RuntimeError, match="rate limited"):
            async for chunk in stream.full_stream:
                seen.append(chunk)

        assert len(seen) == 1
        with pytest.raises(RuntimeError):
            await stream.text

    async def test_cancel_stops_the_producer(self):
        async def produce(writer):
            await asyncio.sleep(10)

        stream = AgentStream.start(produce)
        await asyncio.sleep(0)
        stream.cancel()

        with pytest.raises(asyncio.CancelledError):
            async for _ in stream.full_stream:
                pass
        assert stream.text.cancelled()


# ── OpenRouterAgent ───────────────────────────────────────────────────────────

def _text_chunk(content):
    delta = SimpleNamespace(content=content, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)], usage=None)


def _tool_chunk(index, call_id, name, arguments):
    function = SimpleNamespace(name=name, arguments=arguments)
    tool_call = SimpleNamespace(index=index, id=call_id, function=function)
    delta = SimpleNamespace(content=None, tool_calls=[tool_call])
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)], usage=None)


def _usage_chunk(prompt, completion):
    return SimpleNamespace(
        choices=[],
        usage=SimpleNamespace(prompt_tokens=prompt, completion_tokens=completion),
    )


class FakeCompletions:
    """Replays one scripted response per create() call."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        chunks = self._responses.pop(0)

        async def iterate():
            for chunk in chunks:
                yield chunk

        return iterate()


def _agent_with(monkeypatch, responses, tools=()):
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    agent = OpenRouterAgent("openrouter/openai/gpt-5.2", tools=tools)
    completions = FakeCompletions(responses)
    agent.client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return agent, completions


class TestOpenRouterAgent:
    def test_raises_immediately_if_api_key_missing(self, monkeypatch):
        """Missing key must raise KeyError at construction, not at first call."""
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        with pytest.raises(KeyError):
            OpenRouterAgent(model="openai/gpt-5.2")

    def test_openrouter_prefix_is_removed(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
        assert OpenRouterAgent("openrouter/x-ai/grok-4").model == "x-ai/grok-4"
        assert OpenRouterAgent("anthropic/claude-sonnet-4-6").model == "anthropic/claude-sonnet-4-6"

    async def test_text_only_run(self, monkeypatch):
        agent, _ = _agent_with(monkeypatch, [[_text_chunk("Hello"), _text_chunk(" there"), _usage_chunk(10, 2)]])

        stream = await agent.stream("hi", thread="cli-1", resource="user-1", max_steps=5)
        chunks = [c async for c in stream.full_stream]

        assert [c["type"] for c in chunks] == ["step-start", "text-start", "text-delta", "text-delta"]
        assert await stream.text == "Hello there"
        assert await stream.usage == {"inputTokens": 10, "outputTokens": 2}

    async def test_tool_loop_emits_call_and_result(self, monkeypatch):
        async def lookup(ticker: str) -> dict:
            return {"ticker": ticker, "price": 190.5, "url": "https://example.com/aapl"}

        price_tool = Tool(
            name="price_lookup",
            description="Latest price for a ticker.",
            parameters={"type": "object", "properties": {"ticker": {"type": "string"}}},
            handler=lookup,
        )
        agent, completions = _agent_with(
            monkeypatch,
            [
                [_tool_chunk(0, "call_1", "price_lookup", '{"ticker":'), _tool_chunk(0, None, None, ' "AAPL"}')],
                [_text_chunk("AAPL is at 190.5.")],
            ],
            tools=[price_tool],
        )

        stream = await agent.stream("price of aapl", thread="cli-1", resource="user-1", max_steps=5)
        chunks = [c async for c in stream.full_stream]

        call = next(c for c in chunks if c["type"] == "tool-call")
        result = next(c for c in chunks if c["type"] == "tool-result")
        assert call["payload"]["args"] == {"ticker": "AAPL"}
        assert result["payload"]["result"]["price"] == 190.5
        assert len(await stream.steps) == 2
        assert await stream.usage is None
        assert completions.requests[1]["messages"][-1]["role"] == "tool"

    async def test_unknown_tool_emits_tool_error(self, monkeypatch):
        agent, _ = _agent_with(
            monkeypatch,
            [[_tool_chunk(0, "call_9", "does_not_exist", "{}")], [_text_chunk("Sorry.")]],
        )

        stream = await agent.stream("q", thread="cli-1", resource="user-1", max_steps=5)
        chunks = [c async for c in stream.full_stream]

        errors = [c for c in chunks if c["type"] == "tool-error"]
        assert errors[0]["payload"]["toolName"] == "does_not_exist"

    async def test_working_memory_updates_are_hidden_by_the_bridge(self, monkeypatch):
        agent, _ = _agent_with(
            monkeypatch,
            [
                [_tool_chunk(0, "m1", "updateWorkingMemory", '{"memory": "Active Tickers: NVDA"}')],
                [_text_chunk("Noted.")],
            ],
        )

        stream = await agent.stream("track nvda", thread="cli-1", resource="user-1", max_steps=5)
        events = [e async for e in bridge_events(stream)]

        assert [e.type for e in events] == ["thinking", "thinking", "answer_start", "text_delta", "done"]
        assert agent._working_memory["user-1"] == "Active Tickers: NVDA"

    async def test_thread_history_is_replayed(self, monkeypatch):
        agent, completions = _agent_with(monkeypatch, [[_text_chunk("first")], [_text_chunk("second")]])

        first = await agent.stream("one", thread="cli-1", resource="user-1", max_steps=5)
        _ = [c async for c in first.full_stream]
        second = await agent.stream("two", thread="cli-1", resource="user-1", max_steps=5)
        _ = [c async for c in second.full_stream]

        contents = [m["content"] for m in completions.requests[1]["messages"]]
        assert contents[1:] == ["one", "first", "two"]

    async def test_session_memory_is_bounded(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
        agent = OpenRouterAgent("openai/gpt-5.2", history_limit=2, max_sessions=2)
        completions = FakeCompletions([
            [_tool_chunk(0, "m1", "updateWorkingMemory", '{"memory": "note a"}')],
            [_text_chunk("a1")],
            [_text_chunk("a2")],
            [_text_chunk("b")],
            [_text_chunk("c")],
        ])
        agent.client = SimpleNamespace(chat=SimpleNamespace(completions=completions))

        for query, thread, resource in [
            ("q1", "web-a", "user-a"),
            ("q2", "web-a", "user-a"),
            ("q3", "web-b", "user-b"),
            ("q4", "web-c", "user-c"),
        ]:
            stream = await agent.stream(query, thread=thread, resource=resource, max_steps=5)
            _ = [c async for c in stream.full_stream]

        assert list(agent._threads) == ["web-b", "web-c"]
        assert list(agent._working_memory) == ["user-a"]
        assert len(agent._threads["web-b"].messages) == 2

    async def test_thread_history_is_trimmed_to_limit(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
        agent = OpenRouterAgent("openai/gpt-5.2", history_limit=2)
        agent.client = SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(
            [[_text_chunk("first")], [_text_chunk("second")]],
        )))

        for query in ("one", "two"):
            stream = await agent.stream(query, thread="cli-1", resource="user-1", max_steps=5)
            _ = [c async for c in stream.full_stream]

        assert [m["content"] for m in agent._threads["cli-1"].messages] == ["two", "second"]

    @pytest.mark.skipif(
        not os.getenv("OPENROUTER_API_KEY"),
        reason="OPENROUTER_API_KEY not set — skipping live API call",
    )
    @pytest.mark.live
    async def test_real_api_call_streams_an_answer(self):
        agent = OpenRouterAgent("google/gemini-2.0-flash-001")
        stream = await agent.stream(
            "Say the word pong.", thread="live-1", resource="live-user", max_steps=1,
        )
        events = [e async for e in bridge_events(stream)]

        assert events[-1].type == "done"
        assert len(events[-1].answer.strip()) > 0


# ── Model router ──────────────────────────────────────────────────────────────

class TestModelRouter:
    @pytest.mark.parametrize("provider,model,expected", [
        ("openai", "gpt-5.2", "openai/gpt-5.2"),
        ("anthropic", "claude-sonnet-4-20250514", "anthropic/claude-sonnet-4-20250514"),
        ("google", "gemini-2.5-pro", "google/gemini-2.5-pro"),
        ("xai", "grok-4-1", "openrouter/grok-4-1"),
        ("deepseek", "deepseek-chat", "openrouter/deepseek-chat"),
        ("ollama", "ollama:llama3", "ollama/llama3"),
        ("openrouter", "openrouter:meta/llama-4", "openrouter/meta/llama-4"),
        ("mystery", "some-model", "openai/some-model"),
        ("anthropic", "vendor/model", "vendor/model"),
        (" OpenAI ", "gpt-5.2", "openai/gpt-5.2"),
    ])
    def test_routes(self, provider, model, expected):
        assert to_model_string(provider, model) == expected
