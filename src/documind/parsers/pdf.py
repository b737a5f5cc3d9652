"""PDF text extraction with position-aware line reconstruction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Iterable, List, Sequence

import fitz  # PyMuPDF
from pypdf import PdfReader

from ..errors import ExtractionError
from ..models.common import ExtractedUnit, SourceMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TextFragment:
    """A run of text placed on the page at (x, y) with a rendered width."""

    text: str
    x: float
    y: float
    width: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def average_char_width(self) -> float:
        return self.width / len(self.text) if self.text else 0.0


def reconstruct_text(fragments: Iterable[TextFragment], *, y_tolerance: float = 2.0) -> str:
    """Rebuild page text from positioned fragments.

    Fragments are ordered top-to-bottom then left-to-right and grouped into a
    line when their y coordinate is within ``y_tolerance`` of the line's first
    fragment. Inside a line a space is inserted wherever the horizontal gap to
    the previous fragment is wider than that fragment's average character.
    """
    ordered = sorted((frag for frag in fragments if frag.text), key=lambda frag: (frag.y, frag.x))
    lines: List[List[TextFragment]] = []
    line_y = 0.0
    for fragment in ordered:
        if lines and abs(fragment.y - line_y) <= y_tolerance:
            lines[-1].append(fragment)
            continue
        lines.append([fragment])
        line_y = fragment.y
    return "\n".join(_join_line(sorted(line, key=lambda frag: frag.x)) for line in lines)


def _join_line(line: Sequence[TextFragment]) -> str:
    parts: List[str] = []
    previous: TextFragment | None = None
    for fragment in line:
        if previous is not None:
            gap = fragment.x - previous.right
            already_spaced = previous.text[-1].isspace() or fragment.text[0].isspace()
            if gap > previous.average_char_width and not already_spaced:
                parts.append(" ")
        parts.append(fragment.text)
        previous = fragment
    return "".join(parts)


class PDFTextExtractor:
    """Extract one text unit per page, falling back to a plain loader on failure."""

    def __init__(self, *, y_tolerance: float = 2.0) -> None:
        self._y_tolerance = y_tolerance

    def extract(self, source: bytes | str | Path, *, filename: str | None = None) -> List[ExtractedUnit]:
        label = filename or (str(source) if not isinstance(source, bytes) else "<bytes>")
        try:
            units = self._extract_layout(source, label)
        except Exception as primary_error:
            logger.warning(
                "extraction.fallback",
                extra={"source": label, "error": str(primary_error)},
                exc_info=True,
            )
            try:
                units = self._extract_plain(source, label)
            except Exception as fallback_error:
                raise ExtractionError(
                    f"Could not extract text from {label}: {primary_error}; fallback failed: {fallback_error}"
                ) from fallback_error

        if not any(unit.raw_text.strip() for unit in units):
            logger.info("extraction.no_text", extra={"source": label, "pages": len(units)})
            return []
        logger.info(
            "extraction.completed",
            extra={"source": label, "pages": len(units), "mode": units[0].source_metadata.extraction_mode},
        )
        return units

    def _extract_layout(self, source: bytes | str | Path, label: str) -> List[ExtractedUnit]:
        if isinstance(source, bytes):
            document = fitz.open(stream=source, filetype="pdf")
        else:
            document = fitz.open(str(source))
        with document:
            info = document.metadata or {}
            metadata = SourceMetadata(
                producer=info.get("producer") or None,
                format_version=info.get("format") or None,
                total_pages=document.page_count,
                source=label,
                filename=label,
                extraction_mode="layout",
            )
            units: List[ExtractedUnit] = []
            for page_index in range(document.page_count):
                page = document[page_index]
                fragments = list(_page_fragments(page))
                text = reconstruct_text(fragments, y_tolerance=self._y_tolerance)
                units.append(ExtractedUnit(page_number=page_index + 1, raw_text=text, source_metadata=metadata))
        return units

    def _extract_plain(self, source: bytes | str | Path, label: str) -> List[ExtractedUnit]:
        payload = source if isinstance(source, bytes) else Path(source).read_bytes()
        reader = PdfReader(BytesIO(payload))
        info = reader.metadata
        header = (reader.pdf_header or "").lstrip("%") or None
        metadata = SourceMetadata(
            producer=(info.producer if info else None) or None,
            format_version=header,
            total_pages=len(reader.pages),
            source=label,
            filename=label,
            extraction_mode="fallback",
        )
        return [
            ExtractedUnit(page_number=index, raw_text=page.extract_text() or "", source_metadata=metadata)
            for index, page in enumerate(reader.pages, start=1)
        ]


def _page_fragments(page: "fitz.Page") -> Iterable[TextFragment]:
    text_dict = page.get_text("dict")
    for block in text_dict.get("blocks", []):
        # 0 = text block
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text:
                    continue
                x0, y0, x1, _ = span.get("bbox", (0.0, 0.0, 0.0, 0.0))
                origin = span.get("origin")
                baseline = origin[1] if origin else y0
                yield TextFragment(text=text, x=float(x0), y=float(baseline), width=float(x1 - x0))


__all__ = ["PDFTextExtractor", "TextFragment", "reconstruct_text"]
