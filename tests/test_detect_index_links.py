"""
Tests for the Gemini detection client, with a mocked requests session.
"""
from unittest.mock import MagicMock

import pytest
import requests

from conftest import gemini_response
from index_linker.config import DetectorConfig
from index_linker.errors import DetectionError, MissingCredentialsError
from index_linker.models import BoundingBox
from index_linker.services.detectIndexLinks import (
    IndexLinkDetector,
    LinkIdSequence,
    parse_response_json,
)
from index_linker.services.scanPages import scan_pages

ENTRIES = [
    {"label": "Introduction", "targetPage": 3, "ymin": 100, "xmin": 50, "ymax": 130, "xmax": 950},
    {"label": "Bananas", "targetPage": 5, "ymin": 200, "xmin": 600, "ymax": 230, "xmax": 640},
    {"label": "Bananas", "targetPage": 8, "ymin": 200, "xmin": 660, "ymax": 230, "xmax": 700},
]


def _detector(config, *responses):
    session = MagicMock()
    session.post.side_effect = list(responses)
    return IndexLinkDetector(config, session=session), session


class TestParseResponseJson:

    def test_plain_json(self):
        assert parse_response_json('[{"a": 1}]') == [{"a": 1}]

    def test_fenced_json_matches_unfenced(self):
        payload = '[{"label": "A", "targetPage": 2}]'
        assert parse_response_json(f"```json\n{payload}\n```") == parse_response_json(payload)
        assert parse_response_json(f"```JSON {payload}```") == parse_response_json(payload)
        assert parse_response_json(f"```\n{payload}\n```") == parse_response_json(payload)

    @pytest.mark.parametrize("text", [None, "", "   ", "not json", "[{broken"])
    def test_unusable_text_gives_none(self, text):
        assert parse_response_json(text) is None


class TestAnalyzePage:

    def test_entries_become_links(self, detector_config):
        detector, session = _detector(detector_config, gemini_response(ENTRIES))

        links = detector.analyze_page("BASE64", 2)

        assert [l.label for l in links] == ["Introduction", "Bananas", "Bananas"]
        assert [l.target_page for l in links] == [3, 5, 8]
        assert links[0].box == BoundingBox(ymin=100, xmin=50, ymax=130, xmax=950)
        assert len({l.id for l in links}) == 3
        assert all(l.id.startswith("page-2-link-") for l in links)

    def test_request_shape(self, detector_config):
        detector, session = _detector(detector_config, gemini_response([]))

        detector.analyze_page("BASE64", 1)

        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url.endswith("/models/gemini-test:generateContent")
        assert kwargs["headers"]["x-goog-api-key"] == "test-key"
        body = kwargs["json"]
        parts = body["contents"][0]["parts"]
        assert parts[0] == {"inlineData": {"mimeType": "image/jpeg", "data": "BASE64"}}
        assert "SEPARATE entry" in parts[1]["text"]
        gen = body["generationConfig"]
        assert gen["responseMimeType"] == "application/json"
        assert gen["responseSchema"]["items"]["required"] == [
            "label", "targetPage", "ymin", "xmin", "ymax", "xmax"]
        assert gen["thinkingConfig"] == {"thinkingBudget": 1024}

    def test_fenced_response(self, detector_config):
        detector, _ = _detector(detector_config, gemini_response(ENTRIES, fenced=True))
        assert len(detector.analyze_page("BASE64", 1)) == 3

    def test_unparseable_response_is_empty(self, detector_config):
        detector, _ = _detector(detector_config, gemini_response("Sorry, I can't help"))
        assert detector.analyze_page("BASE64", 1) == []

    def test_malformed_entries_dropped(self, detector_config):
        entries = [ENTRIES[0], {"label": "no box", "targetPage": 4}, "junk"]
        detector, _ = _detector(detector_config, gemini_response(entries))

        links = detector.analyze_page("BASE64", 1)

        assert [l.label for l in links] == ["Introduction"]

    def test_thought_parts_ignored(self, detector_config):
        response = gemini_response([])
        response.json.return_value = {"candidates": [{"content": {"parts": [
            {"text": "thinking about boxes", "thought": True},
            {"text": '[{"label": "X", "targetPage": 2, "ymin": 1, "xmin": 2, "ymax": 3, "xmax": 4}]'},
        ]}}]}
        detector, _ = _detector(detector_config, response)

        assert [l.label for l in detector.analyze_page("BASE64", 1)] == ["X"]

    def test_missing_key_fails_before_network(self):
        detector, session = _detector(DetectorConfig(api_key=""))

        with pytest.raises(MissingCredentialsError):
            detector.analyze_page("BASE64", 1)
        session.post.assert_not_called()

    def test_http_error_propagates(self, detector_config):
        detector, _ = _detector(detector_config, gemini_response("quota", status_code=429))

        with pytest.raises(DetectionError) as exc:
            detector.analyze_page("BASE64", 1)
        assert exc.value.status_code == 429

    def test_transport_error_propagates(self, detector_config):
        detector, _ = _detector(detector_config, requests.ConnectionError("reset"))

        with pytest.raises(DetectionError):
            detector.analyze_page("BASE64", 1)

    @pytest.mark.parametrize("body", [
        {"candidates": ["blocked"]},
        {"candidates": {"content": "x"}},
        ["not", "an", "object"],
    ])
    def test_unexpected_body_shape_is_detection_error(self, detector_config, body):
        response = gemini_response([])
        response.json.return_value = body
        detector, _ = _detector(detector_config, response)

        with pytest.raises(DetectionError):
            detector.analyze_page("BASE64", 1)

    def test_blocked_prompt_is_empty(self, detector_config):
        response = gemini_response([])
        response.json.return_value = {"promptFeedback": {"blockReason": "SAFETY"}}
        detector, _ = _detector(detector_config, response)

        assert detector.analyze_page("BASE64", 1) == []

    def test_scan_survives_odd_body_on_one_page(self, detector_config, pdf_bytes):
        odd = gemini_response([])
        odd.json.return_value = {"candidates": ["blocked"]}
        detector, session = _detector(
            detector_config, gemini_response(ENTRIES[:1]), odd, gemini_response(ENTRIES[:1]))

        report = scan_pages(pdf_bytes, [1, 2, 3], detector)

        assert session.post.call_count == 3
        assert [r.page_number for r in report.succeeded] == [1, 3]
        assert [r.page_number for r in report.failed] == [2]

    def test_shared_sequence_keeps_ids_unique(self, detector_config):
        detector, _ = _detector(detector_config, gemini_response(ENTRIES), gemini_response(ENTRIES))
        ids = LinkIdSequence()

        first = detector.analyze_page("A", 1, ids=ids)
        second = detector.analyze_page("B", 1, ids=ids)

        all_ids = [l.id for l in first + second]
        assert len(set(all_ids)) == 6


class TestAnalyzePagesBatch:

    def test_single_request_for_all_pages(self, detector_config):
        payload = [
            {"pageNumber": 2, "entries": ENTRIES[:1]},
            {"pageNumber": 3, "entries": ENTRIES[1:]},
        ]
        detector, session = _detector(detector_config, gemini_response(payload))

        result = detector.analyze_pages_batch([(2, "IMG2"), (3, "IMG3")])

        assert session.post.call_count == 1
        parts = session.post.call_args.kwargs["json"]["contents"][0]["parts"]
        assert {"text": "--- Page 2 ---"} in parts
        assert {"text": "--- Page 3 ---"} in parts
        assert sorted(result) == [2, 3]
        assert [l.target_page for l in result[3]] == [5, 8]
        assert result[2][0].id.startswith("page-2-")

    def test_pages_without_number_or_entries_skipped(self, detector_config):
        payload = [{"pageNumber": 0, "entries": ENTRIES}, {"pageNumber": 4, "entries": None}]
        detector, _ = _detector(detector_config, gemini_response(payload))

        assert detector.analyze_pages_batch([(4, "IMG")]) == {}

    def test_missing_key(self):
        detector, session = _detector(DetectorConfig())

        with pytest.raises(MissingCredentialsError):
            detector.analyze_pages_batch([(1, "IMG")])
        session.post.assert_not_called()

    def test_error_propagates(self, detector_config):
        detector, _ = _detector(detector_config, gemini_response("down", status_code=503))

        with pytest.raises(DetectionError):
            detector.analyze_pages_batch([(1, "IMG")])
