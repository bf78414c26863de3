"""Agent backends and provider stream plumbing."""

from llm.base import AgentBackend
from llm.model_router import to_model_string
from llm.openrouter import OpenRouterAgent, Tool
from llm.stream import AgentStream, StreamWriter

__all__ = ["AgentBackend", "AgentStream", "StreamWriter", "OpenRouterAgent", "Tool", "to_model_string"]
