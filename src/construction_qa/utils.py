"""
Utility functions for Construction QA.
"""

import json
import logging
import re
import sys
from typing import Any, Optional

TRUNCATION_MARKER = "... [truncated]"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_EDGE_QUOTES_RE = re.compile(r"^[\"']|[\"']$")


def configure_logging(level: str = "INFO") -> None:
    """
    Send library logs to stderr with a single consistent format.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger("construction_qa")
    root.handlers = [handler]
    root.setLevel(level.upper())
    root.propagate = False


def truncate_content(text: str, max_length: int, marker: str = TRUNCATION_MARKER) -> str:
    """
    Cap page text at ``max_length`` characters, appending a visible marker.

    Args:
        text: Page text
        max_length: Maximum number of characters kept from the original
        marker: Suffix appended when text was cut

    Returns:
        Original text if short enough, otherwise the truncated text + marker
    """
    if len(text) <= max_length:
        return text
    return text[:max_length] + marker


def parse_json_response(text: Optional[str]) -> Any:
    """
    Parse JSON returned by a model, tolerating a surrounding markdown fence.

    Raises:
        ValueError: If the text is empty or not valid JSON
    """
    if not text:
        raise ValueError("Empty model response")
    content = text.strip()
    fenced = _CODE_FENCE_RE.match(content)
    if fenced:
        content = fenced.group(1)
    return json.loads(content)


def strip_quotes(text: str) -> str:
    """Remove one leading and one trailing quote character."""
    return _EDGE_QUOTES_RE.sub("", text.strip())
