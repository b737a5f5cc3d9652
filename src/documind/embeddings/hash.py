from __future__ import annotations

import hashlib
import math
import struct
from typing import List, Sequence

from .base import EmbeddingProvider


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings for tests and offline runs.

    Each lower-cased token is hashed into a signed bucket, so texts sharing
    words land close together under cosine similarity.
    """

    def __init__(self, dimension: int = 768) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            (value,) = struct.unpack("<Q", digest)
            bucket = value % self.dimension
            vector[bucket] += 1.0 if (value >> 63) == 0 else -1.0
        norm = math.sqrt(sum(item * item for item in vector))
        if math.isclose(norm, 0.0):
            # Keep blank input a valid, non-empty vector.
            vector[0] = 1.0
            return vector
        return [item / norm for item in vector]


__all__ = ["HashEmbeddingProvider"]
