from __future__ import annotations

from typing import List, Sequence

from openai import (
    APIStatusError,
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    OpenAI,
    PermissionDeniedError,
    UnprocessableEntityError,
)

from .base import EmbeddingProvider


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        dimension: int,
        base_url: str | None = None,
        request_dimensions: bool = True,
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAIEmbeddingProvider requires an API key")
        if not model:
            raise ValueError("OpenAIEmbeddingProvider requires a model name")
        # Retries are owned by EmbeddingClient.
        self._client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
        self._model = model
        self._request_dimensions = request_dimensions
        self.dimension = dimension

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        kwargs = {"model": self._model, "input": list(texts)}
        if self._request_dimensions and self.dimension:
            kwargs["dimensions"] = self.dimension
        response = self._client.embeddings.create(**kwargs)
        ordered = sorted(response.data, key=lambda item: getattr(item, "index", 0))
        return [list(getattr(item, "embedding", None) or []) for item in ordered]

    def is_rejection(self, exc: BaseException) -> bool:
        return isinstance(exc, (BadRequestError, UnprocessableEntityError))

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, (AuthenticationError, PermissionDeniedError, NotFoundError)):
            return False
        if isinstance(exc, APIStatusError):
            return exc.status_code in (408, 409, 429) or exc.status_code >= 500
        return True

    def close(self) -> None:
        self._client.close()


__all__ = ["OpenAIEmbeddingProvider"]
