"""Process configuration.

Every tunable the runtime reads from the environment is collected here into
one frozen Settings object. Entry points (main.py, cli.py) call load_dotenv()
first, then Settings.from_env(), and pass the result down explicitly —
nothing below the entry points reads os.environ for these values.
"""

import os
import pathlib
from dataclasses import dataclass, field

from llm.model_router import DEFAULT_MODEL, DEFAULT_PROVIDER, to_model_string

# Reserved tool names the agent framework uses for its own memory
# maintenance. Calls to these are tracked but never shown or audited.
INTERNAL_TOOLS: frozenset[str] = frozenset({"updateWorkingMemory"})

DEFAULT_CLI_MAX_STEPS = 10
DEFAULT_WEB_MAX_STEPS = 5

TEXT_FLUSH_SECONDS = 0.066
PROGRESS_FLUSH_SECONDS = 0.2


def _split_names(raw: str) -> frozenset[str]:
    return frozenset(name.strip() for name in raw.split(",") if name.strip())


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration.

    Attributes:
        model_provider: Provider id (e.g. "openai", "anthropic", "ollama").
        model: Model id within that provider.
        audit_dir: Directory holding audit.jsonl.
        audit_enabled: False in hosted/ephemeral environments, where the
            audit sink becomes a no-op.
        internal_tools: Built-in internal tool names plus any configured
            extras.
        cli_max_steps: Step limit for terminal runs.
        web_max_steps: Step limit for web runs.
        allowed_origins: CORS origins for the web API.
    """

    model_provider: str = DEFAULT_PROVIDER
    model: str = DEFAULT_MODEL
    audit_dir: pathlib.Path = field(
        default_factory=lambda: pathlib.Path.cwd() / ".alpha_sentry" / "scratchpad"
    )
    audit_enabled: bool = True
    internal_tools: frozenset[str] = INTERNAL_TOOLS
    cli_max_steps: int = DEFAULT_CLI_MAX_STEPS
    web_max_steps: int = DEFAULT_WEB_MAX_STEPS
    allowed_origins: tuple[str, ...] = ("http://localhost:3000",)

    @property
    def audit_file(self) -> pathlib.Path:
        return self.audit_dir / "audit.jsonl"

    @property
    def model_string(self) -> str:
        """The routed "provider/model" string for the configured model."""
        return to_model_string(self.model_provider, self.model)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build Settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ; tests pass
                a plain dict.

        Raises:
            ValueError: If a step limit is not an integer.
        """
        env = os.environ if environ is None else environ

        audit_dir = env.get("ALPHA_SENTRY_AUDIT_DIR", "").strip()
        ephemeral = bool(env.get("ALPHA_SENTRY_EPHEMERAL") or env.get("VERCEL"))
        origins = env.get("ALLOWED_ORIGINS", "http://localhost:3000")

        return cls(
            model_provider=env.get("ALPHA_SENTRY_MODEL_PROVIDER", "").strip() or DEFAULT_PROVIDER,
            model=env.get("ALPHA_SENTRY_MODEL", "").strip() or DEFAULT_MODEL,
            audit_dir=(
                pathlib.Path(audit_dir)
                if audit_dir
                else pathlib.Path.cwd() / ".alpha_sentry" / "scratchpad"
            ),
            audit_enabled=not ephemeral,
            internal_tools=INTERNAL_TOOLS | _split_names(env.get("ALPHA_SENTRY_INTERNAL_TOOLS", "")),
            cli_max_steps=int(env.get("ALPHA_SENTRY_CLI_MAX_STEPS", DEFAULT_CLI_MAX_STEPS)),
            web_max_steps=int(env.get("ALPHA_SENTRY_WEB_MAX_STEPS", DEFAULT_WEB_MAX_STEPS)),
            allowed_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )
