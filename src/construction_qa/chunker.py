"""
Construction Document Chunker.

Turns the text of a construction PDF into one chunk per page, tagging each
page with its sheet number and the detail callouts it contains.

Key Features:
- IBM Docling integration for per-page text extraction
- Sheet number and detail callout detection (see ``sheets``)
- Callout edges derived from parsable detail references
- Content capped so a single page never exceeds the embedding context
"""

import logging
from collections import defaultdict
from typing import Iterable, List, Optional, Tuple

from .models import Callout, Chunk
from .sheets import extract_detail_references, extract_sheet_number, parse_detail_reference
from .utils import truncate_content

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_LENGTH = 6000

PageRecord = Tuple[Chunk, List[Callout]]


def build_callouts(chunk: Chunk) -> List[Callout]:
    """
    Derive callout edges from a chunk's detail references.

    References that do not parse are skipped here but stay on the chunk.
    """
    callouts = []
    for raw in chunk.detail_references or []:
        reference = parse_detail_reference(raw)
        if reference is None:
            logger.debug("Skipping unparsable detail reference %r on page %d", raw, chunk.page_number)
            continue
        callouts.append(Callout(
            document_id=chunk.document_id,
            page_number=chunk.page_number,
            sheet_number=chunk.sheet_number,
            detail_reference_raw=raw,
            detail_number=reference.detail_number,
            target_sheet=reference.target_sheet,
        ))
    return callouts


class ConstructionDocumentChunker:
    """
    Main class for chunking construction documents page by page.

    Example:
        >>> chunker = ConstructionDocumentChunker()
        >>> pages = chunker.process_pages(document_id=1, page_texts=["SHEET A-101 ...", ""])
        >>> print(f"Kept {len(pages)} pages")
    """

    def __init__(self, max_chunk_length: int = DEFAULT_MAX_CHUNK_LENGTH):
        """
        Initialize the chunker.

        Args:
            max_chunk_length: Characters of page text kept in a chunk.
                              Default 6000 (~1500 tokens) stays well inside
                              the embedding model's context window.
        """
        self.max_chunk_length = max_chunk_length

    def build_page(self, document_id: int, page_number: int, text: str) -> Optional[PageRecord]:
        """
        Build the chunk and callouts for one page.

        Sheet number and detail references are read from the full page text
        before the content is capped, since title blocks usually sit at the
        end of the extracted text.

        Returns:
            (chunk, callouts), or None for an empty page
        """
        text = (text or "").strip()
        if not text:
            return None

        detail_references = extract_detail_references(text)
        chunk = Chunk(
            document_id=document_id,
            page_number=page_number,
            content=truncate_content(text, self.max_chunk_length),
            sheet_number=extract_sheet_number(text),
            detail_references=detail_references or None,
        )
        return chunk, build_callouts(chunk)

    def process_pages(self, document_id: int, page_texts: Iterable[str]) -> List[PageRecord]:
        """
        Build chunks for every non-empty page.

        Args:
            document_id: Owning document
            page_texts: Page texts in page order (page 1 first)

        Returns:
            List of (chunk, callouts), empty pages skipped
        """
        pages = []
        skipped = 0
        for index, text in enumerate(page_texts):
            record = self.build_page(document_id, index + 1, text)
            if record is None:
                skipped += 1
                continue
            pages.append(record)

        if skipped:
            logger.info("Document %d: skipped %d empty pages", document_id, skipped)
        return pages

    def extract_page_texts(self, pdf_path: str) -> List[str]:
        """
        Extract the text of every page of a PDF with Docling.

        Text items and tables are grouped by the page they were found on.
        Pages without any text are returned as empty strings so that list
        positions match page numbers.

        Args:
            pdf_path: Path to the PDF file

        Returns:
            One string per page
        """
        try:
            from docling.document_converter import DocumentConverter
        except ImportError:
            raise ImportError("Please install docling: pip install construction-qa[pdf]")

        converter = DocumentConverter()
        result = converter.convert(pdf_path)
        doc = result.document

        by_page = defaultdict(list)

        for text in getattr(doc, "texts", None) or []:
            page_no = _page_of(text)
            content = text.text if hasattr(text, "text") else str(text)
            if page_no and content:
                by_page[page_no].append(content)

        for table in getattr(doc, "tables", None) or []:
            page_no = _page_of(table)
            if not page_no:
                continue
            if hasattr(table, "export_to_markdown"):
                by_page[page_no].append(table.export_to_markdown())
            else:
                by_page[page_no].append(str(table))

        pages = getattr(doc, "pages", None) or {}
        page_count = max([len(pages)] + list(by_page.keys()))

        return ["\n".join(by_page.get(n, [])) for n in range(1, page_count + 1)]


def _page_of(item) -> Optional[int]:
    prov = getattr(item, "prov", None)
    if not prov:
        return None
    prov = prov[0] if isinstance(prov, list) else prov
    return getattr(prov, "page_no", None)
