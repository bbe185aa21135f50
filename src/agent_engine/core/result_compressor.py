"""
Size bounding for tool results before they re-enter model context.

Large query results (hundreds of projects or quotation items) would
otherwise eat the context window of every following round. The
compressor keeps as much structure as it can and guarantees the
serialized output never exceeds the byte budget.
"""

from __future__ import annotations

from typing import Any

from agent_engine.core.constants import TOOL_RESULT_MAX_BYTES, TOOL_RESULT_MAX_ITEMS
from agent_engine.utils.json_utils import byte_size, safe_json_dumps
from agent_engine.utils.logger import logger

TRUNCATION_MARKER = "...[truncated]"


def serialize_result(result: Any) -> str:
    """Serialized form of a tool result. Strings pass through unquoted."""
    if isinstance(result, str):
        return result
    return safe_json_dumps(result)


def hard_truncate(text: str, max_bytes: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut ``text`` so that text plus marker fits in ``max_bytes`` UTF-8 bytes."""
    if byte_size(text) <= max_bytes:
        return text
    marker_size = byte_size(marker)
    if marker_size >= max_bytes:
        return marker.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")
    head = text.encode("utf-8")[: max_bytes - marker_size]
    # errors="ignore" drops a multi-byte character split at the cut
    return head.decode("utf-8", errors="ignore") + marker


class ResultCompressor:
    """Bounds the serialized size of tool results."""

    def __init__(self, max_bytes: int = TOOL_RESULT_MAX_BYTES, max_items: int = TOOL_RESULT_MAX_ITEMS):
        self.max_bytes = max_bytes
        self.max_items = max_items

    def compress(self, result: Any) -> str:
        """Return a serialized form of ``result`` no larger than ``max_bytes``."""
        serialized = serialize_result(result)
        size = byte_size(serialized)
        if size <= self.max_bytes:
            return serialized

        if isinstance(result, list):
            candidate = serialize_result(self._shrink_list(result))
        elif isinstance(result, dict):
            candidate = serialize_result(self._shrink_fields(result))
        else:
            candidate = serialized

        compressed = hard_truncate(candidate, self.max_bytes)
        logger.debug(
            f"Compressed tool result {size}B -> {byte_size(compressed)}B",
            result_type=type(result).__name__,
        )
        return compressed

    def _shrink_list(self, items: list[Any]) -> dict[str, Any]:
        shown = items[: self.max_items]
        return {
            "items": shown,
            "_meta": {
                "total": len(items),
                "shown": len(shown),
                "truncated": len(items) - len(shown),
            },
        }

    def _shrink_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        """Truncate every oversized list field, leaving scalar fields untouched.

        Original lengths go under ``_meta.totals`` so they never collide with
        the result's own keys.
        """
        shrunk: dict[str, Any] = {}
        totals: dict[str, int] = {}
        for key, value in data.items():
            if isinstance(value, list) and len(value) > self.max_items:
                shrunk[key] = value[: self.max_items]
                totals[key] = len(value)
            else:
                shrunk[key] = value
        if totals:
            meta = shrunk.get("_meta")
            shrunk["_meta"] = {**meta, "totals": totals} if isinstance(meta, dict) else {"totals": totals}
        return shrunk


__all__ = ["TRUNCATION_MARKER", "ResultCompressor", "hard_truncate", "serialize_result"]
