"""Raw event normalizer.

Decodes the provider's tagged chunk stream into NormalizedChunk models. This
layer only reshapes data: no filtering of internal tools, no timing, no
events. Unknown chunk types are dropped here (logged at DEBUG) so the bridge
never touches fields that do not exist for a given type.

Provider chunks arrive as {"type": ..., "payload": {...}}. Some providers
put the fields at the top level instead, and some stream SDK objects rather
than dicts; both shapes are accepted.
"""

import logging
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from typing import Any

from pydantic import ValidationError

from schemas.chunks import CHUNK_TYPES, NormalizedChunk, chunk_adapter

logger = logging.getLogger(__name__)


def _as_mapping(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if hasattr(value, "__dict__"):
        return dict(vars(value))
    return {}


def normalize_chunk(raw: Any) -> NormalizedChunk | None:
    """Convert one raw provider chunk into a NormalizedChunk.

    Args:
        raw: A mapping or object with a `type` discriminator and either a
            `payload` mapping or the payload fields inline.

    Returns:
        The matching chunk model, or None when the type is not one the
        bridge understands or the payload does not fit its type.
    """
    data = _as_mapping(raw)
    chunk_type = data.get("type")

    if chunk_type not in CHUNK_TYPES:
        logger.debug("Ignoring provider chunk of type %r.", chunk_type)
        return None

    payload = _as_mapping(data.get("payload"))
    if not payload:
        payload = {k: v for k, v in data.items() if k != "type"}

    fields: dict[str, Any] = {"type": chunk_type}
    for key in ("toolCallId", "toolName", "args", "result", "error", "message"):
        if key in payload and payload[key] is not None:
            fields[key] = payload[key]

    if "args" in fields and not isinstance(fields["args"], Mapping):
        logger.warning("Discarding non-mapping args on %s chunk.", chunk_type)
        del fields["args"]

    if chunk_type == "text-delta":
        text = payload.get("text") or payload.get("textDelta")
        fields["text"] = text if isinstance(text, str) else ""

    if chunk_type == "tool-error" and "error" in fields and not isinstance(fields["error"], str):
        fields["error"] = str(fields["error"])

    try:
        return chunk_adapter.validate_python(fields)
    except ValidationError as exc:
        logger.warning("Dropping malformed %s chunk: %s", chunk_type, exc)
        return None


async def normalize_stream(raw_stream: AsyncIterable[Any]) -> AsyncIterator[NormalizedChunk]:
    """Normalize every chunk of a provider stream, skipping ones that decode to None.

    Exceptions raised by the provider stream propagate unchanged.
    """
    async for raw in raw_stream:
        chunk = normalize_chunk(raw)
        if chunk is not None:
            yield chunk
