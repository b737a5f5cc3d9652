import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from documind.config.settings import (  # noqa: E402
    AppSettings,
    EmbeddingsSettings,
    GenerationSettings,
    ProgressSettings,
    QueueSettings,
)


def build_pdf(pages):
    import fitz

    document = fitz.open()
    for text in pages:
        page = document.new_page()
        if text:
            page.insert_text((72, 72), text)
    payload = document.tobytes()
    document.close()
    return payload


@pytest.fixture()
def pdf_factory(tmp_path):
    def _make(pages, name="upload.pdf"):
        path = tmp_path / name
        path.write_bytes(build_pdf(pages))
        return path

    return _make


@pytest.fixture()
def test_settings():
    return AppSettings(
        embeddings=EmbeddingsSettings(provider="hash", dimension=64, max_retries=0, retry_delay_base=0.0),
        progress=ProgressSettings(backend="memory"),
        queue=QueueSettings(claim_backend="memory"),
        generation=GenerationSettings(enabled=False),
    )
