"""Tests for vision findings parsing and formatting."""

import json

from construction_qa.findings import findings_to_text, parse_findings, summarize_findings
from construction_qa.models import FindingElement, VisualFindingsPayload

RAW = {
    "summary": "Stair section with handrail details",
    "elements": [
        {"type": "handrail", "dimensions": "34\" AFF", "materials": "steel"},
        {"type": "guardrail", "location": "landing"},
        "tread",
    ],
    "annotations": ["PROVIDE NOSING", "SEE STRUCT"],
    "symbols": ["section cut"],
    "detailMarkers": ["5/A-501"],
}


class TestParseFindings:
    """Tests for parse_findings."""

    def test_parse_dict(self):
        """Test parsing a findings dict."""
        payload = parse_findings(RAW)
        assert payload.summary == "Stair section with handrail details"
        assert payload.elements[0] == FindingElement(type="handrail", dimensions="34\" AFF", materials="steel")
        assert payload.elements[2].type == "tread"
        assert payload.detail_markers == ["5/A-501"]

    def test_parse_json_string(self):
        """Test parsing a stored JSON string."""
        assert parse_findings(json.dumps(RAW)) == parse_findings(RAW)

    def test_parse_snake_case_markers(self):
        """Test the alternative detail_markers key."""
        assert parse_findings({"detail_markers": ["1/S-2"]}).detail_markers == ["1/S-2"]

    def test_garbage_becomes_summary(self):
        """Test that non-JSON text degrades to a summary."""
        payload = parse_findings("  The drawing shows a roof drain.  ")
        assert payload.summary == "The drawing shows a roof drain."
        assert payload.elements == []

    def test_non_object_json(self):
        """Test that JSON that is not an object degrades to a summary."""
        payload = parse_findings("[1, 2]")
        assert payload.summary == "[1, 2]"
        assert payload.elements == []

    def test_none(self):
        """Test empty payload."""
        assert parse_findings(None) == VisualFindingsPayload()

    def test_payload_passthrough(self):
        """Test that payload objects are returned as-is."""
        payload = VisualFindingsPayload(summary="x")
        assert parse_findings(payload) is payload


class TestFindingsToText:
    """Tests for findings_to_text."""

    def test_all_parts_included(self):
        """Test that summary, elements, annotations, symbols and markers are included."""
        text = findings_to_text(parse_findings(RAW))
        assert text.startswith("Stair section with handrail details")
        assert "handrail 34\" AFF steel" in text
        assert "guardrail landing" in text
        assert "PROVIDE NOSING SEE STRUCT" in text
        assert "section cut" in text
        assert text.endswith("5/A-501")

    def test_empty_payload(self):
        """Test empty payload gives empty text."""
        assert findings_to_text(VisualFindingsPayload()) == ""


class TestSummarizeFindings:
    """Tests for summarize_findings."""

    def test_summary_with_elements_and_annotations(self):
        """Test prose rendering."""
        text = summarize_findings(parse_findings(RAW))
        assert text == (
            "Stair section with handrail details. "
            "Elements: handrail (34\" AFF), guardrail, tread. "
            "Annotations: PROVIDE NOSING; SEE STRUCT"
        )

    def test_limits(self):
        """Test that only the first 5 elements and 3 annotations are used."""
        payload = VisualFindingsPayload(
            summary="Plan",
            elements=[FindingElement(type=f"e{i}") for i in range(8)],
            annotations=[f"a{i}" for i in range(6)],
        )
        assert summarize_findings(payload) == "Plan. Elements: e0, e1, e2, e3, e4. Annotations: a0; a1; a2"
