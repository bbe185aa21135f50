"""
Token counting with tiktoken.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import tiktoken

from agent_engine.core.constants import DEFAULT_FAST_MODEL, TOKEN_CACHE_SIZE

# Cache for tiktoken encoders to avoid recreation
_encoder_cache: dict[str, Any] = {}


def _get_encoder(model: str) -> Any:
    """Get cached encoder for model, falling back to o200k_base for unknown names."""
    if model not in _encoder_cache:
        try:
            _encoder_cache[model] = tiktoken.encoding_for_model(model)
        except KeyError:
            _encoder_cache[model] = tiktoken.get_encoding("o200k_base")
    return _encoder_cache[model]


@lru_cache(maxsize=TOKEN_CACHE_SIZE)
def _count_tokens_cached(text: str, model: str) -> int:
    return len(_get_encoder(model).encode(text))


def count_tokens(text: str, model: str = DEFAULT_FAST_MODEL) -> dict[str, Any]:
    """
    Count tokens for ``text`` as seen by ``model``.

    Returns:
        Dict with exact token count plus character and word stats
    """
    exact_count = _count_tokens_cached(text, model) if text else 0
    char_count = len(text)
    return {
        "exact_tokens": exact_count,
        "char_count": char_count,
        "word_count": len(text.split()),
        "chars_per_token": round(char_count / exact_count, 2) if exact_count else 0,
        "model": model,
    }
