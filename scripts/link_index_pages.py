#!/usr/bin/env python3
"""
Detect Index / TOC entries on selected pages and write a linked PDF.

Usage:
    GEMINI_API_KEY=... python scripts/link_index_pages.py --input book.pdf --pages 3-6
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from index_linker.config import load_config
from index_linker.errors import IndexLinkerError
from index_linker.models import AnalysisState
from index_linker.services.detectIndexLinks import IndexLinkDetector
from index_linker.services.exportLinkedPdf import export_linked_pdf, indexed_filename
from index_linker.services.scanPages import scan_pages
from index_linker.utils.page_selection import parse_page_selection
from index_linker.utils.raster import count_pages


def build_manifest(input_path: Path, output_path: Path, report, state: AnalysisState) -> dict:
    return {
        "success": state.has_links(),
        "input": str(input_path),
        "output": str(output_path),
        "pages_scanned": [r.page_number for r in report.results],
        "pages_failed": [{"page": r.page_number, "error": r.error} for r in report.failed],
        "total_links": state.total_links(),
        "links": {str(page): [link.to_dict() for link in links] for page, links in state},
    }


def run(args, detector: IndexLinkDetector = None) -> int:
    config = load_config()
    logging.basicConfig(level="DEBUG" if args.verbose else config.log_level,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    input_path = Path(args.input)
    pdf_bytes = input_path.read_bytes()
    page_count = count_pages(pdf_bytes)
    pages = parse_page_selection(args.pages, page_count)
    if not pages:
        print(f"❌ No valid pages in '{args.pages}' (document has {page_count} pages)")
        return 1

    output_path = Path(args.output) if args.output else input_path.with_name(indexed_filename(input_path.name))
    detector = detector or IndexLinkDetector(config.detector)
    state = AnalysisState()

    def on_progress(current, total):
        print(f"🔍 Analyzing page {current}/{total}...")

    report = scan_pages(
        pdf_bytes,
        pages,
        detector,
        state=state,
        progress=on_progress,
        continue_on_error=config.continue_on_error and not args.stop_on_error,
        single_request=args.single_request,
    )

    for result in report.results:
        if result.ok:
            print(f"  Page {result.page_number}: {len(result.links)} links")
        else:
            print(f"  Page {result.page_number}: failed ({result.error})")

    if args.json:
        manifest = build_manifest(input_path, output_path, report, state)
        with open(args.json, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2, ensure_ascii=False)
        print(f"✅ Manifest: {args.json}")

    if not state.has_links():
        print("❌ No index links detected; nothing to export")
        return 1

    output_path.write_bytes(export_linked_pdf(pdf_bytes, state.as_mapping()))
    print(f"✅ Linked PDF with {state.total_links()} links: {output_path}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Detect index entries and add page links to a PDF")
    parser.add_argument("--input", required=True, help="Input PDF path")
    parser.add_argument("--pages", required=True, help='Pages to scan, e.g. "2-5,9"')
    parser.add_argument("--output", help="Output PDF path (default: <input>_indexed.pdf)")
    parser.add_argument("--json", help="Write a JSON manifest of detected links")
    parser.add_argument("--stop-on-error", action="store_true", help="Abort on the first failed page")
    parser.add_argument("--single-request", action="store_true", help="Send all pages in one model request")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    try:
        return run(args)
    except IndexLinkerError as e:
        print(f"❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
