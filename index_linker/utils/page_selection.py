"""
Page selection strings for batch scans, e.g. "1-3, 7, 12-10".
"""
import re
from typing import List

BATCH_WINDOW = 5


def parse_page_selection(selection: str, max_page: int) -> List[int]:
    """
    Parse a comma separated list of pages and ranges into sorted unique pages.

    Ranges may be written backwards. Everything is clamped to 1..max_page and
    parts that are not numbers or ranges are ignored.
    """
    pages = set()
    for part in (selection or "").split(","):
        bounds = [b.strip() for b in part.strip().split("-")]
        if len(bounds) == 2:
            if not (re.fullmatch(r"\d+", bounds[0]) and re.fullmatch(r"\d+", bounds[1])):
                continue
            start, end = sorted((int(bounds[0]), int(bounds[1])))
            pages.update(range(max(1, start), min(max_page, end) + 1))
        elif len(bounds) == 1 and re.fullmatch(r"\d+", bounds[0]):
            page = int(bounds[0])
            if 1 <= page <= max_page:
                pages.add(page)
    return sorted(pages)


def default_batch_selection(current_page: int, page_count: int) -> str:
    """The current page plus the next four, capped at the last page."""
    end_page = min(current_page + BATCH_WINDOW - 1, page_count)
    return f"{current_page}-{max(end_page, current_page)}"
