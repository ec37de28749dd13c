"""
Citation extraction and resolution.

Answers cite drawings by sheet (``[A-Series.pdf, Sheet A-101]``), details
by ``detail/sheet`` and specifications by page. A document viewer navigates
by page, so sheet citations are resolved to the page that carries the
sheet.
"""

import logging
from dataclasses import replace
from typing import List

from .citation_format import DETAIL_CITATION_RE, DETAIL_SHEET_RE, PAGE_CITATION_RE, SHEET_CITATION_RE
from .models import Citation
from .store import ChunkStore

logger = logging.getLogger(__name__)


def extract_citations(text: str) -> List[Citation]:
    """
    Parse citation brackets out of answer text.

    Sheet citations come first, then detail citations, then page
    citations; each group is in text order. A page citation is skipped if
    the same bracketed text was already captured.

    Example:
        >>> extract_citations("See [A-Series.pdf, Sheet A-101].")
        [Citation(source='A-Series.pdf', full_text='[A-Series.pdf, Sheet A-101]', sheet='A-101', ...)]
    """
    if not text:
        return []

    citations = []

    for match in SHEET_CITATION_RE.finditer(text):
        citations.append(Citation(
            source=match.group(1).strip(),
            sheet=match.group(2).strip().upper(),
            full_text=match.group(0),
        ))

    for match in DETAIL_CITATION_RE.finditer(text):
        detail = match.group(2).strip().upper()
        sheet = DETAIL_SHEET_RE.search(detail)
        citations.append(Citation(
            source=match.group(1).strip(),
            sheet=sheet.group(1) if sheet else None,
            detail=detail,
            full_text=match.group(0),
        ))

    captured = {c.full_text for c in citations}
    for match in PAGE_CITATION_RE.finditer(text):
        if match.group(0) in captured:
            continue
        captured.add(match.group(0))
        citations.append(Citation(
            source=match.group(1).strip(),
            page=int(match.group(2)),
            full_text=match.group(0),
        ))

    return citations


class CitationResolver:
    """
    Fills in the page (and stored filename) of sheet citations.

    Example:
        >>> resolver = CitationResolver(store)
        >>> resolved = resolver.resolve(extract_citations(answer), project_id)
    """

    def __init__(self, store: ChunkStore):
        self.store = store

    def resolve_one(self, citation: Citation, project_id: int) -> Citation:
        if citation.page is not None or not citation.sheet:
            return citation

        chunk = self.store.get_chunk_by_sheet_and_filename(project_id, citation.sheet, citation.source)
        if chunk is not None:
            return replace(citation, page=chunk.page_number, filename=chunk.filename)

        chunks = self.store.get_chunks_by_filename(project_id, citation.source)
        if chunks:
            logger.debug(
                "Sheet %s not found in %s; falling back to page %d",
                citation.sheet, citation.source, chunks[0].page_number
            )
            return replace(citation, page=chunks[0].page_number, filename=chunks[0].filename)

        logger.info("Could not resolve citation %s", citation.full_text)
        return citation

    def resolve(self, citations: List[Citation], project_id: int) -> List[Citation]:
        """
        Resolve every citation that has a sheet but no page.

        Citations that already have a page, and citations that cannot be
        matched to a stored document, are returned unchanged. The result
        has the same length and order as the input.
        """
        return [self.resolve_one(c, project_id) for c in citations]
