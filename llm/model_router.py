"""Model string routing.

Turns a (provider, model) pair from configuration into the single
"provider/model" string the OpenAI-compatible gateway expects. Providers
without a direct integration are routed through OpenRouter.
"""

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-5.2"

OPENROUTER_FALLBACK_PROVIDERS = frozenset({"xai", "moonshot", "deepseek"})
DIRECT_PROVIDERS = frozenset({"openai", "anthropic", "google"})


def _strip_prefix(model: str, prefix: str) -> str:
    return model[len(prefix):] if model.startswith(prefix) else model


def to_model_string(provider: str, model: str) -> str:
    """Resolve a provider and model id into a routed model string.

    Rules, in order:
        - ollama:     "ollama/<model>", with any "ollama:" prefix removed
        - openrouter: "openrouter/<model>", with any "openrouter:" prefix removed
        - a model that already contains "/" is returned unchanged
        - xai, moonshot, deepseek fall back to "openrouter/<model>"
        - openai, anthropic, google map to "<provider>/<model>"
        - anything else is treated as an OpenAI model

    Examples:
        >>> to_model_string("anthropic", "claude-sonnet-4-20250514")
        'anthropic/claude-sonnet-4-20250514'
        >>> to_model_string("xai", "grok-4-1")
        'openrouter/grok-4-1'
    """
    normalized = provider.lower().strip()

    if normalized == "ollama":
        return f"ollama/{_strip_prefix(model, 'ollama:')}"

    if normalized == "openrouter":
        return f"openrouter/{_strip_prefix(model, 'openrouter:')}"

    if "/" in model:
        return model

    if normalized in OPENROUTER_FALLBACK_PROVIDERS:
        return f"openrouter/{model}"

    if normalized in DIRECT_PROVIDERS:
        return f"{normalized}/{model}"

    return f"openai/{model}"
