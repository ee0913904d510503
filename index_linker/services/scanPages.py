#!/usr/bin/env python3
"""
Batch scan: render the selected pages once, then ask the detector about
them one page at a time, in page order, so the service is never hit with
concurrent requests. Every page gets an explicit success/failure result.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import MissingCredentialsError
from ..models import AnalysisState, PageScanResult, ScanReport
from ..utils.raster import get_images_for_pages
from .detectIndexLinks import IndexLinkDetector, LinkIdSequence

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

RENDER_FAILED = "could not render page"


def scan_pages(pdf_bytes: bytes,
               page_numbers: Iterable[int],
               detector: IndexLinkDetector,
               state: AnalysisState = None,
               progress: Optional[ProgressCallback] = None,
               continue_on_error: bool = True,
               single_request: bool = False,
               rasterize: Callable[[bytes, Iterable[int]], Dict[int, str]] = get_images_for_pages) -> ScanReport:
    """
    Detect index links on the given 1-based pages.

    Successful pages are written into `state` (replacing earlier results) as
    soon as they finish. With continue_on_error any error on one page
    is recorded in the report and the scan moves on; otherwise it propagates.
    MissingCredentialsError always propagates.
    """
    pages: List[int] = list(dict.fromkeys(page_numbers))
    total = len(pages)
    images = rasterize(pdf_bytes, pages)
    logger.info(f"Scanning {total} pages ({len(images)} rendered)")

    ids = LinkIdSequence()
    if single_request:
        report = _scan_single_request(pages, images, detector, ids, progress, continue_on_error)
        if state is not None:
            for result in report.succeeded:
                state.set_page(result.page_number, result.links)
    else:
        report = _scan_page_by_page(pages, images, detector, ids, state, progress, continue_on_error)

    logger.info(f"Scan finished: {len(report.succeeded)} ok, {len(report.failed)} failed, "
                f"{report.total_links()} links")
    return report


def _scan_page_by_page(pages: List[int],
                       images: Dict[int, str],
                       detector: IndexLinkDetector,
                       ids: LinkIdSequence,
                       state: Optional[AnalysisState],
                       progress: Optional[ProgressCallback],
                       continue_on_error: bool) -> ScanReport:
    report = ScanReport()
    total = len(pages)
    for position, page_number in enumerate(pages, start=1):
        image_b64 = images.get(page_number)
        if image_b64 is None:
            report.results.append(PageScanResult(page_number, error=RENDER_FAILED))
            continue

        if progress:
            progress(position, total)
        try:
            links = detector.analyze_page(image_b64, page_number, ids=ids)
        except MissingCredentialsError:
            raise
        except Exception as e:
            if not continue_on_error:
                raise
            logger.error(f"Error analyzing page {page_number}: {e}")
            report.results.append(PageScanResult(page_number, error=str(e)))
            continue

        if state is not None:
            state.set_page(page_number, links)
        report.results.append(PageScanResult(page_number, links=links))
    return report


def _scan_single_request(pages: List[int],
                         images: Dict[int, str],
                         detector: IndexLinkDetector,
                         ids: LinkIdSequence,
                         progress: Optional[ProgressCallback],
                         continue_on_error: bool) -> ScanReport:
    report = ScanReport()
    rendered = [(p, images[p]) for p in pages if p in images]
    if progress:
        progress(len(pages), len(pages))

    detected: Dict[int, list] = {}
    error = None
    if rendered:
        try:
            detected = detector.analyze_pages_batch(rendered, ids=ids)
        except MissingCredentialsError:
            raise
        except Exception as e:
            if not continue_on_error:
                raise
            logger.error(f"Batch request failed for pages {[p for p, _ in rendered]}: {e}")
            error = str(e)

    for page_number in pages:
        if page_number not in images:
            report.results.append(PageScanResult(page_number, error=RENDER_FAILED))
        elif error is not None:
            report.results.append(PageScanResult(page_number, error=error))
        else:
            report.results.append(PageScanResult(page_number, links=detected.get(page_number, [])))
    return report
