"""
Data model shared by detection, scanning and export
"""
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """Box normalized to 0..1000 of the page, origin top-left, y downwards."""
    ymin: int
    xmin: int
    ymax: int
    xmax: int

    def to_dict(self) -> Dict[str, int]:
        return {"ymin": self.ymin, "xmin": self.xmin, "ymax": self.ymax, "xmax": self.xmax}


@dataclass(frozen=True)
class IndexLink:
    id: str
    label: str
    target_page: int  # 1-based, not checked against the document here
    box: BoundingBox

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "label": self.label,
            "targetPage": self.target_page,
            "box": self.box.to_dict(),
        }


class AnalysisState:
    """Detected links per page for one document session.

    Results for a page are replaced wholesale on re-analysis, never merged.
    """

    def __init__(self):
        self._pages: Dict[int, List[IndexLink]] = {}

    def set_page(self, page_number: int, links: Sequence[IndexLink]) -> None:
        self._pages[page_number] = list(links)

    def get_page(self, page_number: int) -> List[IndexLink]:
        return list(self._pages.get(page_number, []))

    def clear(self) -> None:
        self._pages.clear()

    def total_links(self) -> int:
        return sum(len(links) for links in self._pages.values())

    def has_links(self) -> bool:
        return any(self._pages.values())

    def as_mapping(self) -> Dict[int, List[IndexLink]]:
        return {page: list(links) for page, links in self._pages.items()}

    def __contains__(self, page_number: int) -> bool:
        return page_number in self._pages

    def __iter__(self) -> Iterator[Tuple[int, List[IndexLink]]]:
        return iter(sorted(self.as_mapping().items()))

    def __len__(self) -> int:
        return len(self._pages)


@dataclass
class PageScanResult:
    page_number: int
    links: List[IndexLink] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScanReport:
    results: List[PageScanResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[PageScanResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[PageScanResult]:
        return [r for r in self.results if not r.ok]

    def analyses(self) -> Dict[int, List[IndexLink]]:
        return {r.page_number: r.links for r in self.succeeded}

    def total_links(self) -> int:
        return sum(len(r.links) for r in self.succeeded)
