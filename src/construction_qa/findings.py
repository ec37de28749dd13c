"""
Parsing and formatting of vision findings.

The vision collaborator returns a JSON object per drawing page. Everything
that reads findings goes through ``parse_findings`` so that malformed
payloads degrade the same way everywhere.
"""

import json
import logging
from typing import Any, List

from .models import FindingElement, VisualFindingsPayload

logger = logging.getLogger(__name__)

ELEMENT_FIELDS = ("type", "shape", "location", "dimensions", "materials", "notes")


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v not in (None, "")]


def _parse_element(raw: Any) -> FindingElement:
    if isinstance(raw, str):
        return FindingElement(type=raw)
    if not isinstance(raw, dict):
        return FindingElement(type=str(raw))
    values = {}
    for name in ELEMENT_FIELDS:
        value = raw.get(name)
        values[name] = str(value) if value not in (None, "") else None
    values["type"] = values["type"] or ""
    return FindingElement(**values)


def parse_findings(raw: Any) -> VisualFindingsPayload:
    """
    Parse a findings payload from a dict, a JSON string or arbitrary text.

    Args:
        raw: Payload as returned by the vision model or stored in the database

    Returns:
        VisualFindingsPayload. Text that is not a JSON object becomes the
        summary with no elements.
    """
    if isinstance(raw, VisualFindingsPayload):
        return raw
    if raw is None:
        return VisualFindingsPayload()

    data = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError:
            return VisualFindingsPayload(summary=raw.strip())

    if not isinstance(data, dict):
        text = raw if isinstance(raw, str) else json.dumps(raw)
        return VisualFindingsPayload(summary=text.strip())

    elements = data.get("elements")
    return VisualFindingsPayload(
        summary=str(data.get("summary") or ""),
        elements=[_parse_element(e) for e in elements] if isinstance(elements, list) else [],
        annotations=_string_list(data.get("annotations")),
        symbols=_string_list(data.get("symbols")),
        detail_markers=_string_list(data.get("detailMarkers", data.get("detail_markers"))),
    )


def findings_to_text(payload: VisualFindingsPayload) -> str:
    """
    Flatten findings into one searchable string used as embedding input.
    """
    parts = [payload.summary]

    for element in payload.elements:
        element_text = " ".join(
            value for value in (
                element.type,
                element.shape,
                element.location,
                element.dimensions,
                element.materials,
                element.notes,
            ) if value
        )
        parts.append(element_text)

    if payload.annotations:
        parts.append(" ".join(payload.annotations))
    if payload.symbols:
        parts.append(" ".join(payload.symbols))
    if payload.detail_markers:
        parts.append(" ".join(payload.detail_markers))

    return " ".join(p for p in parts if p)


def summarize_findings(
    payload: VisualFindingsPayload,
    max_elements: int = 5,
    max_annotations: int = 3
) -> str:
    """
    Short prose rendering for prompt context:
    ``<summary>. Elements: a (dims), b. Annotations: x; y``.
    """
    text = payload.summary

    if payload.elements:
        elements = []
        for element in payload.elements[:max_elements]:
            label = element.type
            if element.dimensions:
                label += f" ({element.dimensions})"
            elements.append(label)
        text += f". Elements: {', '.join(elements)}"

    if payload.annotations:
        text += f". Annotations: {'; '.join(payload.annotations[:max_annotations])}"

    return text
