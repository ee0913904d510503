#!/usr/bin/env python3
"""
Page rasterizer for the detection step.
Renders PDF pages to JPEG at a fixed scale and hands them out base64-encoded.
"""

import base64
import io
import logging
from typing import Dict, Iterable

import fitz  # PyMuPDF
from PIL import Image

from ..errors import PageOutOfRangeError, RasterizationError

logger = logging.getLogger(__name__)

# 1.5x keeps small index print legible for the model without bloating the payload
RENDER_SCALE = 1.5
JPEG_QUALITY = 80


def open_pdf(pdf_bytes: bytes) -> fitz.Document:
    """Open an in-memory PDF, raising RasterizationError if it is unreadable."""
    try:
        return fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise RasterizationError(f"Could not open PDF: {e}") from e


def count_pages(pdf_bytes: bytes) -> int:
    doc = open_pdf(pdf_bytes)
    try:
        return doc.page_count
    finally:
        doc.close()


def _pixmap_to_image(pix: fitz.Pixmap) -> Image.Image:
    return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


def _render_page_jpeg(page: fitz.Page, scale: float = RENDER_SCALE, quality: int = JPEG_QUALITY) -> bytes:
    """Render one page to JPEG bytes."""
    pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    buf = io.BytesIO()
    _pixmap_to_image(pix).save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def get_images_for_pages(pdf_bytes: bytes, page_numbers: Iterable[int]) -> Dict[int, str]:
    """
    Render the requested 1-based pages and return {page_number: base64 JPEG}.

    Out-of-range page numbers are skipped. A page that fails to render is logged
    and left out of the result; callers treat a missing key as "could not render".
    """
    doc = open_pdf(pdf_bytes)
    images: Dict[int, str] = {}
    try:
        page_count = doc.page_count
        for page_number in page_numbers:
            if page_number < 1 or page_number > page_count:
                continue
            if page_number in images:
                continue
            try:
                jpeg = _render_page_jpeg(doc[page_number - 1])
            except Exception as e:
                logger.warning(f"Failed to render page {page_number}: {e}")
                continue
            images[page_number] = base64.b64encode(jpeg).decode("ascii")
    finally:
        doc.close()
    return images


def render_page_jpeg(pdf_bytes: bytes, page_number: int) -> bytes:
    """Raw JPEG for a single page, used for page previews."""
    doc = open_pdf(pdf_bytes)
    try:
        if page_number < 1 or page_number > doc.page_count:
            raise PageOutOfRangeError(page_number, doc.page_count)
        return _render_page_jpeg(doc[page_number - 1])
    finally:
        doc.close()
