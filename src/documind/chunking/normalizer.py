"""Text cleanup applied to every chunk before it is embedded."""

from __future__ import annotations

import re

MAX_CHUNK_CHARS = 2048

# Word characters, whitespace, and punctuation that survives embedding and keeps URLs intact.
_DISALLOWED = re.compile(r"[^\w\s.,?!;:()\[\]{}'\"\-/@&=%+#]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str | None, *, max_length: int = MAX_CHUNK_CHARS) -> str:
    """Return an embedding-safe version of ``text``.

    Disallowed characters become a space, whitespace runs collapse to a single
    space, and the result is capped at ``max_length`` characters. Applying it
    twice gives the same result as applying it once.
    """
    if not text:
        return ""
    cleaned = _DISALLOWED.sub(" ", text)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned


__all__ = ["MAX_CHUNK_CHARS", "normalize_text"]
