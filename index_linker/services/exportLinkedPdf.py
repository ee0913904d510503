#!/usr/bin/env python3
"""
Write detected index links into the PDF as clickable link annotations.

Each link becomes a borderless /Link annotation with an explicit
/GoTo [page /Fit] action, appended to the page's /Annots array.
"""
import logging
import re
from typing import Mapping, Sequence, Tuple

import fitz  # PyMuPDF

from ..models import BoundingBox, IndexLink
from ..utils.raster import open_pdf

logger = logging.getLogger(__name__)

NORMALIZED_SCALE = 1000.0

_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)


def box_to_pdf_rect(box: BoundingBox, width: float, height: float) -> Tuple[float, float, float, float]:
    """
    Map a 0-1000 box (origin top-left, y down) to PDF user space
    (origin bottom-left, y up). Returns (x_left, y_bottom, x_right, y_top).
    """
    x_left = (box.xmin / NORMALIZED_SCALE) * width
    x_right = (box.xmax / NORMALIZED_SCALE) * width
    y_bottom = height - (box.ymax / NORMALIZED_SCALE) * height
    y_top = height - (box.ymin / NORMALIZED_SCALE) * height
    return x_left, y_bottom, x_right, y_top


def _num(value: float) -> str:
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def link_annotation_source(rect: Tuple[float, float, float, float], target_xref: int) -> str:
    """PDF source of a borderless link annotation jumping to the target page."""
    return (
        "<< /Type /Annot /Subtype /Link"
        f" /Rect [{' '.join(_num(v) for v in rect)}]"
        " /Border [0 0 0]"
        f" /A << /Type /Action /S /GoTo /D [{target_xref} 0 R /Fit] >>"
        " >>"
    )


def _append_ref(array_source: str, ref: str) -> str:
    """Append an indirect reference to the source of a PDF array."""
    text = array_source.strip()
    if not (text.startswith("[") and text.endswith("]")):
        raise ValueError(f"Not a PDF array: {array_source!r}")
    return f"{text[:-1].rstrip()} {ref}]"


def _attach_annotation(doc: fitz.Document, page_xref: int, annot_xref: int) -> None:
    """Append the annotation to the page's /Annots, keeping what is already there."""
    ref = f"{annot_xref} 0 R"
    kind, value = doc.xref_get_key(page_xref, "Annots")
    if kind == "array":
        doc.xref_set_key(page_xref, "Annots", _append_ref(value, ref))
    elif kind == "xref":
        # /Annots is an indirect array object shared by reference
        array_xref = int(value.split()[0])
        doc.update_object(array_xref, _append_ref(doc.xref_object(array_xref, compressed=True), ref))
    else:
        doc.xref_set_key(page_xref, "Annots", f"[{ref}]")


def add_index_links(doc: fitz.Document, analyses: Mapping[int, Sequence[IndexLink]]) -> int:
    """
    Add a link annotation for every valid entry. Entries whose page or target
    page is outside the document are skipped. Returns the number of links added.
    """
    page_count = doc.page_count
    added = 0

    for page_number, links in analyses.items():
        page_index = int(page_number) - 1
        if page_index < 0 or page_index >= page_count:
            logger.debug(f"Skipping {len(links)} links on missing page {page_number}")
            continue

        page = doc[page_index]
        width, height = page.mediabox.width, page.mediabox.height

        for link in links:
            target_index = link.target_page - 1
            if target_index < 0 or target_index >= page_count:
                logger.debug(f"Skipping {link.id}: target page {link.target_page} out of range")
                continue

            rect = box_to_pdf_rect(link.box, width, height)
            annot_xref = doc.get_new_xref()
            doc.update_object(annot_xref, link_annotation_source(rect, doc.page_xref(target_index)))
            _attach_annotation(doc, page.xref, annot_xref)
            added += 1

    return added


def export_linked_pdf(pdf_bytes: bytes, analyses: Mapping[int, Sequence[IndexLink]]) -> bytes:
    """Return a new PDF with the index links added; the input bytes are untouched."""
    doc = open_pdf(pdf_bytes)
    try:
        added = add_index_links(doc, analyses)
        logger.info(f"Added {added} index links across {len(analyses)} pages")
        return doc.tobytes(garbage=1, deflate=True)
    finally:
        doc.close()


def indexed_filename(original_name: str) -> str:
    """'book.pdf' -> 'book_indexed.pdf'"""
    base = _PDF_SUFFIX.sub("", original_name or "document")
    return f"{base}_indexed.pdf"
