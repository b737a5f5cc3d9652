from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import requests

from ..errors import InvalidDocumentError, SourceUnavailableError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


@dataclass(slots=True)
class AcquisitionResult:
    """Raw document bytes resolved from a job's source location."""

    content: bytes
    source_uri: str
    content_type: str | None = None
    metadata: Dict[str, object] = field(default_factory=dict)


@runtime_checkable
class URLFetcher(Protocol):
    def fetch(self, url: str) -> AcquisitionResult:
        ...


class HttpURLFetcher(URLFetcher):
    """Downloads remote uploads (e.g. cloud storage delivery URLs) over HTTP."""

    user_agent: str = "documind-ingestion/1.0"

    def __init__(self, *, timeout: float = 60.0, session: requests.Session | None = None) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, url: str) -> AcquisitionResult:
        try:
            response = self._session.get(url, headers={"User-Agent": self.user_agent}, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SourceUnavailableError(f"Failed to download {url}: {exc}") from exc
        content_type = response.headers.get("Content-Type")
        return AcquisitionResult(
            content=response.content,
            source_uri=url,
            content_type=content_type.split(";")[0].strip() if content_type else None,
            metadata={"payload_size": len(response.content)},
        )


class AcquisitionService:
    """Resolves a source location (path, file:// or http(s):// URL) to PDF bytes."""

    def __init__(self, url_fetcher: URLFetcher | None = None, *, max_bytes: int | None = None) -> None:
        self._url_fetcher = url_fetcher or HttpURLFetcher()
        self._max_bytes = max_bytes

    def acquire(self, source_location: str) -> AcquisitionResult:
        parsed = urlparse(source_location)
        scheme = parsed.scheme.lower()
        if scheme in {"http", "https"}:
            result = self._url_fetcher.fetch(source_location)
        elif scheme == "file":
            result = self._read_local(unquote(parsed.path), source_location)
        elif scheme and len(scheme) > 1:
            raise SourceUnavailableError(f"Unsupported source scheme '{scheme}' for {source_location}")
        else:
            # Bare paths, including Windows drive letters parsed as one-letter schemes.
            result = self._read_local(source_location, source_location)
        self.validate(result)
        logger.info(
            "acquisition.completed",
            extra={"source": source_location, "payload_size": len(result.content)},
        )
        return result

    def validate(self, result: AcquisitionResult) -> None:
        if not result.content:
            raise InvalidDocumentError(f"Source {result.source_uri} is empty")
        if self._max_bytes and len(result.content) > self._max_bytes:
            raise InvalidDocumentError(
                f"Source {result.source_uri} is {len(result.content)} bytes; limit is {self._max_bytes}"
            )
        if result.content.lstrip()[: len(PDF_MAGIC)] != PDF_MAGIC:
            raise InvalidDocumentError(f"Source {result.source_uri} is not a PDF document")

    def _read_local(self, path: str, source_uri: str) -> AcquisitionResult:
        try:
            payload = Path(path).read_bytes()
        except FileNotFoundError as exc:
            raise SourceUnavailableError(f"File does not exist at path: {path}") from exc
        except OSError as exc:
            raise SourceUnavailableError(f"File at {path} is not readable: {exc}") from exc
        return AcquisitionResult(
            content=payload,
            source_uri=source_uri,
            content_type="application/pdf",
            metadata={"payload_size": len(payload)},
        )


__all__ = ["AcquisitionResult", "AcquisitionService", "HttpURLFetcher", "URLFetcher", "PDF_MAGIC"]
