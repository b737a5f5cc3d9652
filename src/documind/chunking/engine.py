from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Sequence, TypeVar

from ..models.common import CleanedChunk, ExtractedUnit
from .normalizer import MAX_CHUNK_CHARS, normalize_text

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChunkBuilder:
    """Turn extracted page units into cleaned chunks, one per viable page."""

    def __init__(self, *, min_chars: int = 10, max_chars: int = MAX_CHUNK_CHARS) -> None:
        self._min_chars = min_chars
        self._max_chars = max_chars

    def build(self, units: Iterable[ExtractedUnit]) -> List[CleanedChunk]:
        chunks: List[CleanedChunk] = []
        dropped = 0
        for unit in units:
            text = normalize_text(unit.raw_text, max_length=self._max_chars)
            if len(text) <= self._min_chars:
                dropped += 1
                logger.debug(
                    "chunking.unit_dropped",
                    extra={"page_number": unit.page_number, "length": len(text)},
                )
                continue
            metadata = {
                **unit.source_metadata.as_dict(),
                "page_number": unit.page_number,
                "chunk_index": len(chunks),
            }
            chunks.append(CleanedChunk(index=len(chunks), text=text, metadata=metadata))
        logger.info("chunking.completed", extra={"chunks": len(chunks), "dropped": dropped})
        return chunks


def batch_chunks(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield order-preserving batches of at most ``size`` items."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


__all__ = ["ChunkBuilder", "batch_chunks"]
