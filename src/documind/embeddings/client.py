from __future__ import annotations

import logging
import time
from typing import Callable, List

from ..errors import EmbeddingDimensionError, EmbeddingRejectedError, EmbeddingServiceError
from ..telemetry.logger import MetricsRecorder
from .base import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_CANARY_TEXT = "This is a test document to verify the embedding API is working correctly."


class EmbeddingClient:
    """Calls an embedding provider one text at a time and validates each vector.

    Errors the provider reports as retryable are retried with exponential
    backoff; exhausting the retries, or a permanent error such as a bad API
    key, raises :class:`EmbeddingServiceError`. An empty vector, or an error
    the provider classifies as a rejection of this input, raises
    :class:`EmbeddingRejectedError` without retrying.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        dimension: int,
        max_retries: int = 2,
        retry_delay_base: float = 0.5,
        canary_text: str = DEFAULT_CANARY_TEXT,
        metrics: MetricsRecorder | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if dimension <= 0:
            raise ValueError("embedding dimension must be positive")
        self._provider = provider
        self._dimension = dimension
        self._max_retries = max(max_retries, 0)
        self._retry_delay_base = retry_delay_base
        self._canary_text = canary_text
        self._metrics = metrics
        self._sleep = sleep

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        vector = self._call_with_retries(text)
        if not vector:
            raise EmbeddingRejectedError("Embedding service returned an empty vector")
        if len(vector) != self._dimension:
            raise EmbeddingDimensionError(self._dimension, len(vector))
        return vector

    def check_service(self) -> int:
        """Embed the canary sample; any failure means the service is unusable."""
        try:
            vector = self.embed(self._canary_text)
        except EmbeddingServiceError:
            raise
        except Exception as exc:
            raise EmbeddingServiceError(f"Embedding service check failed: {exc}") from exc
        logger.info("embeddings.canary_ok", extra={"dimension": len(vector)})
        return len(vector)

    def close(self) -> None:
        self._provider.close()

    def _call_with_retries(self, text: str) -> List[float]:
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                return list(self._provider.embed_query(text))
            except Exception as exc:
                if self._provider.is_rejection(exc):
                    raise EmbeddingRejectedError(f"Embedding service rejected the input: {exc}") from exc
                if attempt + 1 >= attempts or not self._provider.is_retryable(exc):
                    if self._metrics:
                        self._metrics.record_dependency_failure("embeddings")
                    raise EmbeddingServiceError(f"Embedding request failed after {attempt + 1} attempts: {exc}") from exc
                delay = self._retry_delay_base * (2**attempt)
                logger.warning(
                    "embeddings.retry",
                    extra={"attempt": attempt + 1, "delay_seconds": delay, "error": str(exc)},
                )
                if self._metrics:
                    self._metrics.record_dependency_retry("embeddings")
                self._sleep(delay)
        raise EmbeddingServiceError("Embedding request was not attempted")


__all__ = ["EmbeddingClient", "DEFAULT_CANARY_TEXT"]
