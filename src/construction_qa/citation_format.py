"""
Citation bracket syntax shared by the system prompt and the citation extractor.

The model is told to cite as ``[<source>, Sheet A-101]``,
``[<source>, Detail 3/A-501]`` or ``[<source>, Page 12]`` and the extractor
parses exactly those forms, so both sides import their vocabulary and
patterns from here.
"""

import re

SHEET_LABEL = "Sheet"
DETAIL_LABEL = "Detail"
PAGE_LABEL = "Page"

DRAWING_LABEL = "Drawing"
SPECIFICATION_LABEL = "Specification"

# Sheet designator: 1-3 letters, hyphen, digits, optional decimal part
SHEET_DESIGNATOR = r"[A-Z]{1,3}-\d+(?:\.\d+)?"

# Detail designator: detail number / sheet designator
DETAIL_DESIGNATOR = rf"\d+/{SHEET_DESIGNATOR}"

SHEET_CITATION_RE = re.compile(
    rf"\[([^\]]+?),\s*{SHEET_LABEL}\s+({SHEET_DESIGNATOR})\]",
    re.IGNORECASE,
)
DETAIL_CITATION_RE = re.compile(
    rf"\[([^\]]+?),\s*{DETAIL_LABEL}\s+({DETAIL_DESIGNATOR})\]",
    re.IGNORECASE,
)
PAGE_CITATION_RE = re.compile(
    rf"\[([^\]]+?),\s*{PAGE_LABEL}\s+(\d+)\]",
    re.IGNORECASE,
)
DETAIL_SHEET_RE = re.compile(rf"/({SHEET_DESIGNATOR})", re.IGNORECASE)


def sheet_citation(source: str, sheet: str) -> str:
    """Render a sheet citation, e.g. ``[Drawing A-101, Sheet A-101]``."""
    return f"[{source}, {SHEET_LABEL} {sheet}]"


def detail_citation(source: str, detail: str) -> str:
    """Render a detail citation, e.g. ``[Drawing A-101, Detail 3/A-501]``."""
    return f"[{source}, {DETAIL_LABEL} {detail}]"


def page_citation(source: str, page: int) -> str:
    """Render a page citation, e.g. ``[Section 09 90 00, Page 5]``."""
    return f"[{source}, {PAGE_LABEL} {page}]"


def location_label(sheet_number, page_number) -> str:
    """``Sheet X`` when the sheet is known, ``Page N`` otherwise."""
    if sheet_number:
        return f"{SHEET_LABEL} {sheet_number}"
    return f"{PAGE_LABEL} {page_number}"


def document_type_label(document_type: str) -> str:
    """Map stored document type to the label used in context blocks."""
    return DRAWING_LABEL if document_type == "drawing" else SPECIFICATION_LABEL


CITATION_INSTRUCTIONS = f"""When answering:
1. Be specific and cite your sources. For drawings with sheet numbers, use: {sheet_citation("Source Name", "X-###")}
2. For specifications or documents without sheet numbers, use: {page_citation("Source Name", "X")}
3. When referencing specific details, use: {detail_citation("Source Name", "#/X-###")}
4. If information is found in multiple locations, cite all relevant sources
5. If you cannot find information in the provided documents, say so clearly
6. For scope questions, be thorough and reference all relevant sections"""
