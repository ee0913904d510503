#!/usr/bin/env python3
"""
FastAPI Index Linker
Features:
- Upload a PDF and preview its pages
- Detect Index / Table of Contents entries on a page or a batch of pages (Gemini vision)
- Export the PDF with clickable links from every entry to its target page
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from index_linker import __version__
from index_linker.config import AppConfig, load_config
from index_linker.errors import (
    DetectionError,
    MissingCredentialsError,
    PageOutOfRangeError,
    RasterizationError,
)
from index_linker.models import AnalysisState
from index_linker.services.detectIndexLinks import IndexLinkDetector
from index_linker.services.exportLinkedPdf import export_linked_pdf, indexed_filename
from index_linker.services.scanPages import scan_pages
from index_linker.utils.page_selection import default_batch_selection, parse_page_selection
from index_linker.utils.raster import count_pages, render_page_jpeg

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"

# ----------------- Messages -----------------
MSG_INVALID_PDF = "Please upload a valid PDF file."
MSG_ANALYZE_FAILED = "Failed to analyze page. Please check your API key or try again."
MSG_SCAN_FAILED = "Batch scan encountered an error."
MSG_NO_LINKS = "No links detected yet. Use 'Detect Links' on index pages first."
MSG_EXPORT_FAILED = "Failed to generate PDF. Please try again."
MSG_SCAN_RUNNING = "Link detection is already running for this document."


# ----------------- Sessions -----------------
@dataclass
class DocumentSession:
    document_id: str
    filename: str
    pdf_bytes: bytes
    page_count: int
    analyses: AnalysisState = field(default_factory=AnalysisState)
    progress: Optional[Tuple[int, int]] = None
    # held for the whole of an analyze or scan request
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class DocumentStore:
    """In-memory uploads, one per session; nothing survives a restart."""

    def __init__(self):
        self._docs: Dict[str, DocumentSession] = {}
        self._lock = threading.Lock()

    def add(self, filename: str, pdf_bytes: bytes, page_count: int) -> DocumentSession:
        session = DocumentSession(uuid.uuid4().hex, filename, pdf_bytes, page_count)
        with self._lock:
            self._docs[session.document_id] = session
        return session

    def get(self, document_id: str) -> DocumentSession:
        with self._lock:
            session = self._docs.get(document_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Document not found. Upload it first.")
        return session

    def remove(self, document_id: str) -> None:
        with self._lock:
            if self._docs.pop(document_id, None) is None:
                raise HTTPException(status_code=404, detail="Document not found. Upload it first.")


# ----------------- Response models -----------------
class BoxModel(BaseModel):
    ymin: int
    xmin: int
    ymax: int
    xmax: int


class LinkModel(BaseModel):
    id: str
    label: str
    targetPage: int
    box: BoxModel


class DocumentModel(BaseModel):
    document_id: str
    filename: str
    page_count: int
    total_links: int
    analyzed_pages: List[int]


class PageLinksModel(BaseModel):
    page: int
    links: List[LinkModel]


class PageFailureModel(BaseModel):
    page: int
    error: str


class ScanModel(BaseModel):
    pages: List[int]
    succeeded: List[PageLinksModel]
    failed: List[PageFailureModel]
    total_links: int


class ProgressModel(BaseModel):
    current: int
    total: int


def _document_model(session: DocumentSession) -> DocumentModel:
    return DocumentModel(
        document_id=session.document_id,
        filename=session.filename,
        page_count=session.page_count,
        total_links=session.analyses.total_links(),
        analyzed_pages=[page for page, _ in session.analyses],
    )


def _page_links(page: int, links) -> PageLinksModel:
    return PageLinksModel(page=page, links=[LinkModel(**link.to_dict()) for link in links])


# ----------------- App -----------------
def create_app(config: AppConfig = None, detector: IndexLinkDetector = None) -> FastAPI:
    config = config or load_config()
    app = FastAPI(title="Index Linker", version=__version__)
    app.state.config = config
    app.state.detector = detector or IndexLinkDetector(config.detector)
    app.state.store = DocumentStore()

    def store() -> DocumentStore:
        return app.state.store

    @app.get("/")
    async def root():
        return {
            "service": "Index Linker",
            "version": __version__,
            "endpoints": {
                "upload": "POST /documents - Upload a PDF",
                "page_image": "GET /documents/{id}/pages/{page}/image - Page preview (JPEG)",
                "analyze": "POST /documents/{id}/pages/{page}/analyze - Detect links on one page",
                "scan": "POST /documents/{id}/scan - Detect links on a page selection",
                "progress": "GET /documents/{id}/progress - Batch scan progress",
                "links": "GET /documents/{id}/links - Detected links",
                "export": "GET /documents/{id}/export - Download the linked PDF",
            },
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "index-linker"}

    @app.post("/documents", response_model=DocumentModel)
    async def upload(file: UploadFile = File(...)):
        if file.content_type != PDF_MEDIA_TYPE:
            raise HTTPException(status_code=400, detail=MSG_INVALID_PDF)
        pdf_bytes = await file.read()
        try:
            page_count = count_pages(pdf_bytes)
        except RasterizationError as e:
            logger.warning(f"Rejected upload {file.filename}: {e}")
            raise HTTPException(status_code=400, detail=MSG_INVALID_PDF)
        session = store().add(file.filename or "document.pdf", pdf_bytes, page_count)
        logger.info(f"Uploaded {session.filename} ({page_count} pages) as {session.document_id}")
        return _document_model(session)

    @app.get("/documents/{document_id}", response_model=DocumentModel)
    def get_document(document_id: str):
        return _document_model(store().get(document_id))

    @app.delete("/documents/{document_id}")
    def delete_document(document_id: str):
        store().remove(document_id)
        return {"status": "deleted", "document_id": document_id}

    @app.get("/documents/{document_id}/pages/{page}/image")
    def page_image(document_id: str, page: int):
        session = store().get(document_id)
        try:
            jpeg = render_page_jpeg(session.pdf_bytes, page)
        except PageOutOfRangeError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return Response(content=jpeg, media_type="image/jpeg")

    @app.post("/documents/{document_id}/pages/{page}/analyze", response_model=PageLinksModel)
    def analyze_page(document_id: str, page: int):
        session = store().get(document_id)
        if page < 1 or page > session.page_count:
            raise HTTPException(status_code=404, detail=f"Page {page} is outside 1..{session.page_count}")
        if not session.lock.acquire(blocking=False):
            raise HTTPException(status_code=409, detail=MSG_SCAN_RUNNING)
        try:
            report = scan_pages(session.pdf_bytes, [page], app.state.detector,
                                state=session.analyses, continue_on_error=False)
        except MissingCredentialsError as e:
            logger.error(f"Analyze page {page}: {e}")
            raise HTTPException(status_code=503, detail=MSG_ANALYZE_FAILED)
        except (DetectionError, RasterizationError) as e:
            logger.error(f"Analyze page {page}: {e}")
            raise HTTPException(status_code=502, detail=MSG_ANALYZE_FAILED)
        finally:
            session.lock.release()
        if report.failed:
            raise HTTPException(status_code=500, detail=MSG_ANALYZE_FAILED)
        return _page_links(page, session.analyses.get_page(page))

    @app.post("/documents/{document_id}/scan", response_model=ScanModel)
    def batch_scan(document_id: str,
                   pages: Optional[str] = Form(None),
                   start: int = Form(1),
                   single_request: bool = Form(False)):
        session = store().get(document_id)
        selection = pages or default_batch_selection(start, session.page_count)
        page_numbers = parse_page_selection(selection, session.page_count)
        if not page_numbers:
            raise HTTPException(status_code=400, detail=f"No valid pages in selection '{selection}'")
        if not session.lock.acquire(blocking=False):
            raise HTTPException(status_code=409, detail=MSG_SCAN_RUNNING)

        def on_progress(current: int, total: int):
            session.progress = (current, total)

        try:
            session.progress = (0, len(page_numbers))
            report = scan_pages(
                session.pdf_bytes,
                page_numbers,
                app.state.detector,
                state=session.analyses,
                progress=on_progress,
                continue_on_error=app.state.config.continue_on_error,
                single_request=single_request,
            )
        except (MissingCredentialsError, DetectionError, RasterizationError) as e:
            logger.error(f"Batch scan of {selection} failed: {e}")
            raise HTTPException(status_code=502, detail=MSG_SCAN_FAILED)
        finally:
            session.progress = None
            session.lock.release()

        return ScanModel(
            pages=page_numbers,
            succeeded=[_page_links(r.page_number, r.links) for r in report.succeeded],
            failed=[PageFailureModel(page=r.page_number, error=r.error) for r in report.failed],
            total_links=report.total_links(),
        )

    @app.get("/documents/{document_id}/progress", response_model=Optional[ProgressModel])
    def scan_progress(document_id: str):
        progress = store().get(document_id).progress
        if progress is None:
            return None
        return ProgressModel(current=progress[0], total=progress[1])

    @app.get("/documents/{document_id}/links", response_model=List[PageLinksModel])
    def list_links(document_id: str, page: Optional[int] = None):
        analyses = store().get(document_id).analyses
        if page is not None:
            return [_page_links(page, analyses.get_page(page))]
        return [_page_links(p, links) for p, links in analyses]

    @app.get("/documents/{document_id}/export")
    def export(document_id: str):
        session = store().get(document_id)
        if not session.analyses.has_links():
            raise HTTPException(status_code=400, detail=MSG_NO_LINKS)
        try:
            pdf_bytes = export_linked_pdf(session.pdf_bytes, session.analyses.as_mapping())
        except Exception as e:
            logger.exception(f"Export failed for {session.document_id}: {e}")
            raise HTTPException(status_code=500, detail=MSG_EXPORT_FAILED)
        filename = indexed_filename(session.filename)
        return Response(
            content=pdf_bytes,
            media_type=PDF_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    cfg = app.state.config
    logging.basicConfig(level=cfg.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
    if not cfg.detector.has_credentials:
        logger.warning("GEMINI_API_KEY is not set; detection requests will fail")
    logger.info(f"Starting Index Linker on http://0.0.0.0:{cfg.port}")
    uvicorn.run(app, host="0.0.0.0", port=cfg.port)
