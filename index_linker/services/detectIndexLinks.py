#!/usr/bin/env python3
"""
Vision-model Index / Table of Contents detection
Sends rendered pages to Gemini with a response schema and turns the JSON
answer into IndexLink entries with normalized (0-1000) bounding boxes.
"""
import itertools
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from ..config import DetectorConfig
from ..errors import DetectionError, MissingCredentialsError
from ..models import BoundingBox, IndexLink

logger = logging.getLogger(__name__)

BOX_FIELDS = ("ymin", "xmin", "ymax", "xmax")

ENTRY_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "label": {"type": "STRING"},
        "targetPage": {"type": "INTEGER"},
        "ymin": {"type": "INTEGER"},
        "xmin": {"type": "INTEGER"},
        "ymax": {"type": "INTEGER"},
        "xmax": {"type": "INTEGER"},
    },
    "required": ["label", "targetPage", "ymin", "xmin", "ymax", "xmax"],
}

PAGE_SCHEMA = {"type": "ARRAY", "items": ENTRY_SCHEMA}

BATCH_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "pageNumber": {"type": "INTEGER"},
            "entries": {"type": "ARRAY", "items": ENTRY_SCHEMA},
        },
        "required": ["pageNumber", "entries"],
    },
}

PAGE_PROMPT = """
Analyze this image of a document page.
I am looking for "Table of Contents" entries, "Index" entries, or any list of items that link to specific page numbers.

Identify each page number reference found on the page.

Rules:
1. If a line contains multiple page numbers (e.g., "Bananas, 5, 8, 12"), create a SEPARATE entry for each page number (one for 5, one for 8, one for 12).
2. "targetPage": The specific integer page number for that link.
3. "label": The text label associated with the number (e.g., "Bananas").
4. "ymin", "xmin", "ymax", "xmax": The bounding box coordinates normalized 0-1000.
   - IMPORTANT: If a line has MULTIPLE page numbers, the bounding box for each entry must ONLY enclose the specific number digits (e.g. the box around "5", the box around "8") so they can be clicked individually.
   - If a line has a SINGLE page number (typical Table of Contents), the bounding box should enclose the ENTIRE line (label + dots + number) to make it easier to click.

Return a JSON array of these entries.
"""

BATCH_INTRO = "Analyze the following document pages. Identify Table of Contents or Index entries that link to specific page numbers."

BATCH_PROMPT = """
For each page provided above, find all entries with page references.
Return a JSON array where each object corresponds to a page and contains:
- "pageNumber": The integer page number defined above.
- "entries": A list of detected links on that page.

Rules for entries:
- If a line has multiple page numbers, create separate entries for each number.
- If multiple numbers exist on one line, the bounding box for each must ONLY enclose the specific number digits (to allow individual clicking).
- If only one number exists on the line, the bounding box must enclose the whole line.

Each entry in "entries" must contain:
- "label": text of the entry.
- "targetPage": the referenced page number.
- "ymin", "xmin", "ymax", "xmax": bounding box normalized 0-1000 for that page.
"""

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


class LinkIdSequence:
    """Link ids for one detection run: page-<page>-link-<n>, n counting up."""

    def __init__(self):
        self._counter = itertools.count(1)

    def next_id(self, page_number: int) -> str:
        return f"page-{page_number}-link-{next(self._counter)}"


def parse_response_json(text: Optional[str]) -> Any:
    """Parse the model's JSON answer, tolerating ```json fences. None if unusable."""
    if not text or not text.strip():
        return None
    clean = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text.strip()))
    try:
        return json.loads(clean)
    except json.JSONDecodeError:
        logger.error(f"Failed to parse JSON response: {text[:500]}")
        return None


def link_from_entry(raw: Any, page_number: int, ids: LinkIdSequence) -> Optional[IndexLink]:
    """Build an IndexLink from one schema entry; None for malformed entries."""
    if not isinstance(raw, dict):
        return None
    try:
        box = BoundingBox(*(int(raw[name]) for name in BOX_FIELDS))
        target_page = int(raw["targetPage"])
    except (KeyError, TypeError, ValueError):
        logger.warning(f"Skipping malformed entry on page {page_number}: {raw!r}")
        return None
    return IndexLink(
        id=ids.next_id(page_number),
        label=str(raw.get("label") or ""),
        target_page=target_page,
        box=box,
    )


def links_from_entries(entries: Any, page_number: int, ids: LinkIdSequence) -> List[IndexLink]:
    if not isinstance(entries, list):
        return []
    links = []
    for raw in entries:
        link = link_from_entry(raw, page_number, ids)
        if link is not None:
            links.append(link)
    return links


def _image_part(image_b64: str) -> Dict:
    return {"inlineData": {"mimeType": "image/jpeg", "data": image_b64}}


class IndexLinkDetector:
    """Gemini generateContent client for index/TOC entry detection"""

    def __init__(self, config: DetectorConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()

    def analyze_page(self, image_b64: str, page_number: int,
                     ids: LinkIdSequence = None) -> List[IndexLink]:
        """Detect entries on one page. Service errors propagate as DetectionError."""
        self._require_credentials()
        ids = ids or LinkIdSequence()

        parts = [_image_part(image_b64), {"text": PAGE_PROMPT}]
        try:
            text = self._generate(parts, PAGE_SCHEMA)
        except DetectionError as e:
            logger.error(f"Gemini analysis failed for page {page_number}: {e}")
            raise

        links = links_from_entries(parse_response_json(text), page_number, ids)
        logger.info(f"Page {page_number}: detected {len(links)} index links")
        return links

    def analyze_pages_batch(self, pages: Sequence[Tuple[int, str]],
                            ids: LinkIdSequence = None) -> Dict[int, List[IndexLink]]:
        """Detect entries on several pages with a single request.

        `pages` holds (page_number, image_b64) pairs. Pages the model does not
        report are absent from the result.
        """
        self._require_credentials()
        ids = ids or LinkIdSequence()

        parts: List[Dict] = [{"text": BATCH_INTRO}]
        for page_number, image_b64 in pages:
            parts.append({"text": f"--- Page {page_number} ---"})
            parts.append(_image_part(image_b64))
        parts.append({"text": BATCH_PROMPT})

        try:
            text = self._generate(parts, BATCH_SCHEMA)
        except DetectionError as e:
            logger.error(f"Gemini batch analysis failed: {e}")
            raise

        result: Dict[int, List[IndexLink]] = {}
        data = parse_response_json(text)
        if not isinstance(data, list):
            return result
        for page_result in data:
            if not isinstance(page_result, dict):
                continue
            try:
                page_number = int(page_result.get("pageNumber") or 0)
            except (TypeError, ValueError):
                continue
            entries = page_result.get("entries")
            if page_number and isinstance(entries, list):
                result[page_number] = links_from_entries(entries, page_number, ids)
        return result

    def _require_credentials(self):
        if not self.config.has_credentials:
            raise MissingCredentialsError("API Key is missing: set GEMINI_API_KEY")

    def _generate(self, parts: List[Dict], schema: Dict) -> Optional[str]:
        """POST generateContent and return the answer text (thought parts dropped)."""
        url = f"{self.config.endpoint}/models/{self.config.model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
                "thinkingConfig": {"thinkingBudget": self.config.thinking_budget},
            },
        }
        try:
            response = self.session.post(
                url,
                headers={
                    "x-goog-api-key": self.config.api_key,
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise DetectionError(f"Gemini request failed: {e}") from e

        if response.status_code != 200:
            raise DetectionError(
                f"Gemini API error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise DetectionError(f"Gemini returned a non-JSON body: {e}") from e
        return _response_text(body)


def _response_text(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        raise DetectionError(f"Unexpected Gemini response body: {str(body)[:200]}")
    candidates = body.get("candidates") or []
    if not candidates:
        feedback = body.get("promptFeedback") or {}
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            logger.warning(f"Gemini blocked the prompt: {feedback['blockReason']}")
        return None
    if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
        raise DetectionError(f"Unexpected Gemini candidates: {str(candidates)[:200]}")
    content = candidates[0].get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    texts = [str(p.get("text", "")) for p in parts if isinstance(p, dict) and not p.get("thought")]
    return "".join(texts) or None
