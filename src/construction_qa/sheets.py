"""
Sheet number and detail callout extraction.

Construction drawings carry a sheet designator in the title block
(``A-101``, ``S-3.1``, ``M-2``) and reference details on other sheets with
callouts such as ``3/A-501`` ("detail 3 on sheet A-501"). This module
recovers both from the plain text of a page.

Sheet detection tries three patterns, most specific first:

1. an explicit label: ``SHEET NO: A-101``, ``DWG A101``, ``DRAWING # M-2.1``
2. a line that holds nothing but a designator
3. any bare ``A-101`` style token on the page

Lowercase designators are accepted by the first two tiers only when
hyphenated (``a-101``), so ordinary words next to numbers are not taken
for sheets. The third tier is deliberately high-recall; it also matches
tokens such as equipment model numbers (``SS-304``) and is accepted as such.
"""

import re
from typing import List, Optional

from .models import DetailReference

SHEET_NUMBER_RE = re.compile(r"^([A-Z]{1,3})-?(\d+(?:\.\d+)?)$")

SHEET_PATTERNS = [
    # 1. Labelled: SHEET / DRAWING / DWG [NO|NUMBER|#] [:] X-###
    re.compile(
        r"(?i:\b(?:SHEET|DRAWING|DWG))(?i:\s*(?:NO\.?|NUMBER|#))?\s*[:#]?\s*"
        r"\b(?!(?i:NO|NUMBER|OF|IS)\b)"
        r"([A-Z]{1,3}\s*-?\s*|(?i:[A-Z]{1,3})\s*-\s*)(\d+(?:\.\d+)?)\b"
    ),
    # 2. Standalone line
    re.compile(
        r"^[ \t]*([A-Z]{1,3}[ \t]*-?[ \t]*|(?i:[A-Z]{1,3})[ \t]*-[ \t]*)(\d+(?:\.\d+)?)[ \t]*$",
        re.MULTILINE,
    ),
    # 3. Bare token anywhere
    re.compile(r"\b([A-Z]{1,3})-(\d+(?:\.\d+)?)\b"),
]

EXPLICIT_DETAIL_RE = re.compile(
    r"\b(?:DETAIL|DTL|SEE)\s*(?:NO\.?|#)?\s*(\d{1,3})\s*/\s*"
    r"([A-Z]{1,3}\s*-?\s*\d+(?:\.\d+)?)\b",
    re.IGNORECASE,
)
BARE_DETAIL_RE = re.compile(
    r"(?<![\w/.])(\d{1,2})\s*/\s*([A-Z]{1,3}-?\d+(?:\.\d+)?)\b"
)
DETAIL_REFERENCE_RE = re.compile(r"^(\d+)/([A-Z]{1,3}-?\d+(?:\.\d+)?)$")

# Bare callouts are only trusted on short lines with small detail numbers;
# longer lines are usually notes full of dimensions and fractions.
MAX_BARE_LINE_LENGTH = 100
MAX_BARE_DETAIL_NUMBER = 50


def normalize_sheet_number(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a sheet designator to ``LETTERS-DIGITS[.DIGITS]``.

    Whitespace is removed, letters are uppercased and a missing hyphen is
    inserted. Returns None if the text is not a sheet designator.

    Example:
        >>> normalize_sheet_number(" a 101 ")
        'A-101'
    """
    if not raw:
        return None
    compact = re.sub(r"\s+", "", raw).upper()
    match = SHEET_NUMBER_RE.match(compact)
    if not match:
        return None
    return f"{match.group(1)}-{match.group(2)}"


def extract_sheet_number(text: str) -> Optional[str]:
    """
    Find the sheet number of a page.

    Args:
        text: Extracted page text

    Returns:
        Normalized sheet number, or None when the page has none
        (common for specification pages).
    """
    if not text:
        return None

    for pattern in SHEET_PATTERNS:
        for match in pattern.finditer(text):
            sheet = normalize_sheet_number(match.group(1) + match.group(2))
            if sheet:
                return sheet
    return None


def _detail_reference(number: str, sheet: str) -> Optional[str]:
    target = normalize_sheet_number(sheet)
    if not target:
        return None
    return f"{int(number)}/{target}"


def extract_detail_references(text: str) -> List[str]:
    """
    Find detail callouts on a page.

    Args:
        text: Extracted page text

    Returns:
        Unique references in first-seen order, each ``"<num>/<sheet>"``.
    """
    if not text:
        return []

    # (position in text, reference)
    found = []

    for match in EXPLICIT_DETAIL_RE.finditer(text):
        ref = _detail_reference(match.group(1), match.group(2))
        if ref:
            found.append((match.start(), ref))

    offset = 0
    for line in text.splitlines(keepends=True):
        if len(line.rstrip("\r\n")) < MAX_BARE_LINE_LENGTH:
            for match in BARE_DETAIL_RE.finditer(line):
                number = int(match.group(1))
                if not 1 <= number <= MAX_BARE_DETAIL_NUMBER:
                    continue
                ref = _detail_reference(match.group(1), match.group(2))
                if ref:
                    found.append((offset + match.start(), ref))
        offset += len(line)

    found.sort(key=lambda item: item[0])
    return list(dict.fromkeys(ref for _, ref in found))


def parse_detail_reference(reference: str) -> Optional[DetailReference]:
    """
    Split ``"3/A-501"`` into detail number and target sheet.

    Returns None for references that are not ``digits/LETTERS-digits``
    after normalization.
    """
    if not reference:
        return None
    compact = re.sub(r"\s+", "", reference).upper()
    match = DETAIL_REFERENCE_RE.match(compact)
    if not match:
        return None
    return DetailReference(
        detail_number=int(match.group(1)),
        target_sheet=normalize_sheet_number(match.group(2)),
    )
