"""Backend selection for the entry points.

Both the CLI and the web server need an AgentBackend. With an OpenRouter key
configured they get the real OpenRouterAgent for the configured model;
without one they fall back to the scripted demo agent so the full event
pipeline can still be exercised locally.
"""

import logging
import os

from core.config import Settings
from llm.base import AgentBackend
from llm.openrouter import OpenRouterAgent
from stubs import ScriptedAgent, demo_script

logger = logging.getLogger(__name__)


def build_backend(settings: Settings, environ: dict[str, str] | None = None) -> AgentBackend:
    """Return the agent backend for this process."""
    env = os.environ if environ is None else environ
    if env.get("OPENROUTER_API_KEY"):
        logger.info("Using OpenRouter backend with model '%s'.", settings.model_string)
        return OpenRouterAgent(settings.model_string)

    logger.warning("OPENROUTER_API_KEY not set — using the scripted demo agent.")
    return ScriptedAgent(demo_script())
