"""Tool result helpers.

Tool results arrive as arbitrary values: plain strings, dicts, lists, SDK
objects. These helpers turn them into the string and URL forms the event
protocol and audit log need. None of them raise on odd input — a result that
cannot be serialized cleanly is stringified best-effort instead.
"""

import json
from collections.abc import Mapping
from typing import Any

SUMMARY_MAX_CHARS = 200


def stringify_result(result: Any) -> str:
    """Return result as text: strings pass through, everything else is JSON.

    Values json cannot encode natively fall back to str() per field, and a
    value that still fails (e.g. a circular structure) falls back to repr().
    """
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return repr(result)


def summarize_result(result_str: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    """Truncate a stringified result to `limit` chars, suffixing "..." when cut."""
    if len(result_str) <= limit:
        return result_str
    return result_str[:limit] + "..."


def extract_source_urls(result: Any) -> list[str]:
    """Pull cited URLs out of a tool result.

    Looks for a `urls` list first, then a single `url` string. Results that
    are JSON strings are decoded first. Anything else yields an empty list.
    """
    if isinstance(result, str):
        try:
            result = json.loads(result)
        except (json.JSONDecodeError, ValueError):
            return []

    if not isinstance(result, Mapping):
        return []

    urls = result.get("urls")
    if isinstance(urls, list):
        return [u for u in urls if isinstance(u, str)]

    url = result.get("url")
    if isinstance(url, str):
        return [url]
    return []
