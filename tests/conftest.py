"""
Shared fixtures: small generated PDFs and canned Gemini responses.
"""
import json
from unittest.mock import MagicMock

import fitz  # PyMuPDF
import pytest

from index_linker.config import DetectorConfig
from index_linker.errors import DetectionError
from index_linker.models import BoundingBox, IndexLink

PAGE_WIDTH = 600
PAGE_HEIGHT = 800


def build_pdf(page_count: int = 3, existing_links=None) -> bytes:
    """PDF with numbered pages; existing_links is [(page_index, target_index), ...]."""
    doc = fitz.open()
    for i in range(page_count):
        page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        page.insert_text((72, 72), f"Page {i + 1}", fontsize=14)
    for page_index, target_index in existing_links or []:
        doc[page_index].insert_link({
            "kind": fitz.LINK_GOTO,
            "from": fitz.Rect(10, 10, 60, 30),
            "page": target_index,
            "to": fitz.Point(0, 0),
        })
    data = doc.tobytes()
    doc.close()
    return data


def gemini_response(payload, status_code: int = 200, fenced: bool = False):
    """Mock requests.Response carrying a generateContent body."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    if fenced:
        text = f"```json\n{text}\n```"
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    return response


class FakeDetector:
    """Stands in for IndexLinkDetector in pipeline and API tests."""

    def __init__(self, fail_pages=(), target_page: int = 2):
        self.fail_pages = set(fail_pages)
        self.target_page = target_page
        self.calls = []
        self.batch_calls = []

    def _links(self, page_number, ids):
        return [IndexLink(ids.next_id(page_number), f"Entry on {page_number}", self.target_page,
                          BoundingBox(100, 0, 150, 1000))]

    def analyze_page(self, image_b64, page_number, ids=None):
        self.calls.append(page_number)
        if page_number in self.fail_pages:
            raise DetectionError(f"model failed on page {page_number}", status_code=500)
        return self._links(page_number, ids)

    def analyze_pages_batch(self, pages, ids=None):
        self.batch_calls.append([p for p, _ in pages])
        if self.fail_pages & {p for p, _ in pages}:
            raise DetectionError("batch failed", status_code=500)
        return {p: self._links(p, ids) for p, _ in pages}


@pytest.fixture
def pdf_bytes() -> bytes:
    return build_pdf(3)


@pytest.fixture
def detector_config() -> DetectorConfig:
    return DetectorConfig(api_key="test-key", model="gemini-test")


@pytest.fixture
def fake_detector() -> FakeDetector:
    return FakeDetector()
