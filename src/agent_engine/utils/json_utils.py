"""JSON serialization helpers shared by the engine.

Tool results, event payloads and usage metadata all go through these so
that non-serializable values (datetimes, Decimals, UUIDs) degrade to
strings instead of raising mid-stream.
"""

from __future__ import annotations

import json

from collections.abc import Callable
from functools import partial
from typing import Any

# Compact form, used for anything that enters model context or the wire.
# Example: json_compact({"key": "value"}) -> '{"key":"value"}'
json_compact: Callable[..., str] = partial(json.dumps, separators=(",", ":"), ensure_ascii=False, default=str)

# Readable form for logs.
json_safe: Callable[..., str] = partial(json.dumps, ensure_ascii=False, default=str)


def safe_json_dumps(obj: Any) -> str:
    """Compact serialization that never raises.

    Returns a JSON error object when the value cannot be serialized at all
    (for example a circular structure).
    """
    try:
        return json_compact(obj)
    except (TypeError, ValueError) as e:
        return json_compact({"error": f"Serialization failed: {e}"})


def byte_size(text: str) -> int:
    """UTF-8 encoded size of ``text``."""
    return len(text.encode("utf-8"))


def parse_json_object(raw: str | None) -> dict[str, Any]:
    """Parse a tool-call argument string into a dict.

    Empty input yields an empty dict.

    Raises:
        ValueError: If the text is not JSON or not a JSON object
    """
    if not raw or not raw.strip():
        return {}
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    return value
