from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence


class EmbeddingProvider(ABC):
    """A remote or local model mapping text to fixed-size vectors."""

    dimension: int

    @abstractmethod
    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        raise NotImplementedError

    def embed_query(self, text: str) -> List[float]:
        vectors = self.embed_documents([text])
        return vectors[0] if vectors else []

    def is_rejection(self, exc: BaseException) -> bool:
        """True when the provider refused this particular input."""
        return False

    def is_retryable(self, exc: BaseException) -> bool:
        return True

    def close(self) -> None:
        """Release network resources held by the provider."""
        return None


__all__ = ["EmbeddingProvider"]
