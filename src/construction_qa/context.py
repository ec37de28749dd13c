"""
Context Assembler.

Merges retrieval results across expanded queries, pulls in pages that are
connected through detail callouts, and renders everything into the prompt
context the answer model cites from.

The rendered labels ("Sheet", "Page", "Drawing", ...) come from
``citation_format`` so that the context, the system prompt and the
citation extractor agree on one vocabulary.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence

from .citation_format import document_type_label, location_label
from .findings import summarize_findings
from .models import CHUNK, Chunk, RetrievedContent, SearchResult, VisualFinding
from .rag import EmbeddingIndex
from .sheets import parse_detail_reference
from .store import ChunkFilter, ChunkStore

logger = logging.getLogger(__name__)

BLOCK_SEPARATOR = "\n\n---\n\n"
OCR_HEADER = "[OCR Text]"
VISUAL_FINDINGS_HEADER = "[Visual Analysis Findings]"

DEFAULT_CHUNK_LIMIT = 15
DEFAULT_FINDING_LIMIT = 5
DEFAULT_MAX_CALLOUT_CHUNKS = 6


def merge_results(
    per_query_results: Sequence[Sequence[SearchResult]],
    chunk_limit: int = DEFAULT_CHUNK_LIMIT,
    finding_limit: int = DEFAULT_FINDING_LIMIT
) -> RetrievedContent:
    """
    Union the results of several queries.

    Items are deduplicated by id within their pool; the first occurrence
    wins, walking queries in the order given.

    Args:
        per_query_results: One result list per query
        chunk_limit: Maximum number of chunks kept
        finding_limit: Maximum number of visual findings kept

    Returns:
        RetrievedContent with chunks and findings in first-seen order
    """
    chunks: Dict[int, Chunk] = {}
    findings: Dict[int, VisualFinding] = {}

    for results in per_query_results:
        for result in results:
            pool = chunks if result.source_type == CHUNK else findings
            pool.setdefault(result.id, result.item)

    return RetrievedContent(
        chunks=list(chunks.values())[:chunk_limit],
        visual_findings=list(findings.values())[:finding_limit],
    )


def format_chunk(index: int, chunk: Chunk) -> str:
    label = document_type_label(chunk.document_type)
    location = location_label(chunk.sheet_number, chunk.page_number)
    details = ""
    if chunk.detail_references:
        details = f" (Details: {', '.join(chunk.detail_references)})"

    block = f"[Source {index}: {label} - {chunk.filename}, {location}{details}]\n{chunk.content}"
    if chunk.ocr_text:
        block += f"\n{OCR_HEADER}\n{chunk.ocr_text}"
    return block


def format_finding(index: int, finding: VisualFinding) -> str:
    location = location_label(finding.sheet_number, finding.page_number)
    sheet_type = f" ({finding.sheet_type})" if finding.sheet_type else ""
    header = f"[Visual Finding {index}: {finding.filename}, {location}{sheet_type}]"
    return f"{header}\n{summarize_findings(finding.findings)}"


def format_context(chunks: Sequence[Chunk], findings: Sequence[VisualFinding] = ()) -> str:
    """
    Render chunks and visual findings as labelled, numbered blocks.

    Example:
        [Source 1: Drawing - A-Series.pdf, Sheet A-101 (Details: 3/A-501)]
        <page text>
    """
    parts = []
    if chunks:
        parts.append(BLOCK_SEPARATOR.join(
            format_chunk(i + 1, chunk) for i, chunk in enumerate(chunks)
        ))
    if findings:
        parts.append(VISUAL_FINDINGS_HEADER + "\n" + BLOCK_SEPARATOR.join(
            format_finding(i + 1, finding) for i, finding in enumerate(findings)
        ))
    return "\n\n".join(parts)


class ContextAssembler:
    """
    Retrieval and callout expansion for one question.

    Args:
        store: Chunk Store
        index: Embedding Index used for similarity search
        max_callout_chunks: Extra chunks added through callouts
        finding_limit: Maximum number of visual findings per question
        use_callout_graph: Also follow stored callout edges in both
                           directions, not only the chunks' own references
    """

    def __init__(
        self,
        store: ChunkStore,
        index: EmbeddingIndex,
        max_callout_chunks: int = DEFAULT_MAX_CALLOUT_CHUNKS,
        finding_limit: int = DEFAULT_FINDING_LIMIT,
        use_callout_graph: bool = True
    ):
        self.store = store
        self.index = index
        self.max_callout_chunks = max_callout_chunks
        self.finding_limit = finding_limit
        self.use_callout_graph = use_callout_graph

    def related_sheets(self, project_id: int, chunks: Sequence[Chunk]) -> List[str]:
        """
        Sheets connected to the given chunks.

        Always includes the targets of the chunks' own detail references.
        With the callout graph enabled, also includes both ends of every
        stored callout in the chunks' documents that starts or ends on one
        of the chunks' sheets.
        """
        related: Dict[str, None] = {}

        for chunk in chunks:
            for raw in chunk.detail_references or []:
                reference = parse_detail_reference(raw)
                if reference is not None:
                    related.setdefault(reference.target_sheet, None)

        if self.use_callout_graph:
            sheets = list(dict.fromkeys(c.sheet_number for c in chunks if c.sheet_number))
            document_ids = list(dict.fromkeys(c.document_id for c in chunks))
            for callout in self.store.get_callouts_touching(project_id, document_ids, sheets):
                if callout.sheet_number:
                    related.setdefault(callout.sheet_number, None)
                related.setdefault(callout.target_sheet, None)

        return list(related)

    def expand_with_callouts(
        self,
        chunks: List[Chunk],
        project_id: int,
        max_additional: Optional[int] = None
    ) -> List[Chunk]:
        """
        Append chunks on sheets related through detail callouts.

        Returns:
            The original chunks followed by up to ``max_additional`` chunks
            on related sheets that were not already present, by page number
        """
        if max_additional is None:
            max_additional = self.max_callout_chunks
        if not chunks or max_additional <= 0:
            return list(chunks)

        sheets = self.related_sheets(project_id, chunks)
        if not sheets:
            return list(chunks)

        additional = self.store.get_chunks_by_project(project_id, ChunkFilter(
            sheet_numbers=sheets,
            exclude_ids=[c.id for c in chunks],
            limit=max_additional,
            order_by_page=True,
        ))
        if additional:
            logger.debug("Added %d chunks through callouts on %s", len(additional), ", ".join(sheets))
        return list(chunks) + additional

    def retrieve(self, project_id: int, queries: Sequence[str], limit: int) -> RetrievedContent:
        """
        Search every query, merge the results and expand through callouts.

        Each query gets an equal share (rounded up) of ``limit`` results.
        """
        if not queries:
            return RetrievedContent()

        per_query = math.ceil(limit / len(queries))
        results = self.index.search_many(project_id, queries, top_k=per_query)
        merged = merge_results(results, chunk_limit=limit, finding_limit=self.finding_limit)
        merged.chunks = self.expand_with_callouts(merged.chunks, project_id)

        logger.info(
            "Retrieved %d chunks and %d visual findings for %d queries",
            len(merged.chunks), len(merged.visual_findings), len(queries)
        )
        return merged
