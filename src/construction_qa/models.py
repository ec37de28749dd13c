"""
Data models for Construction QA.

This module contains the core data classes used throughout the library
for representing document pages, callouts, vision findings, search results
and citations.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union


@dataclass
class Chunk:
    """
    One page of one construction document.

    Attributes:
        id: Store identifier (None until inserted)
        document_id: Owning document
        page_number: 1-based page number
        content: Extracted page text (length-capped at ingestion)
        sheet_number: Normalized sheet designator (e.g. "A-101"), if found
        detail_references: Detail callouts found on the page ("3/A-501", ...)
        ocr_text: OCR text supplied by the OCR collaborator
        image_path: Rasterized page image supplied by the rendering collaborator
        embedding: Embedding vector, populated by a separate pass
        filename: Document filename (filled on reads)
        document_type: "drawing" or "spec" (filled on reads)
    """
    document_id: int
    page_number: int
    content: str
    id: Optional[int] = None
    sheet_number: Optional[str] = None
    detail_references: Optional[List[str]] = None
    ocr_text: Optional[str] = None
    image_path: Optional[str] = None
    embedding: Optional[List[float]] = None
    filename: Optional[str] = None
    document_type: Optional[str] = None

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None

    def to_dict(self) -> dict:
        """Convert to dictionary representation (without the vector)."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "page_number": self.page_number,
            "content": self.content,
            "sheet_number": self.sheet_number,
            "detail_references": list(self.detail_references or []),
            "ocr_text": self.ocr_text,
            "image_path": self.image_path,
            "filename": self.filename,
            "document_type": self.document_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        """Create Chunk from dictionary."""
        return cls(
            id=data.get("id"),
            document_id=data["document_id"],
            page_number=data["page_number"],
            content=data["content"],
            sheet_number=data.get("sheet_number"),
            detail_references=data.get("detail_references"),
            ocr_text=data.get("ocr_text"),
            image_path=data.get("image_path"),
            embedding=data.get("embedding"),
            filename=data.get("filename"),
            document_type=data.get("document_type"),
        )


@dataclass(frozen=True)
class DetailReference:
    """A parsed detail callout: detail ``detail_number`` on ``target_sheet``."""
    detail_number: int
    target_sheet: str

    def __str__(self) -> str:
        return f"{self.detail_number}/{self.target_sheet}"


@dataclass
class Callout:
    """
    Directed edge: a page on ``sheet_number`` references a detail on
    ``target_sheet``.
    """
    document_id: int
    page_number: int
    detail_reference_raw: str
    detail_number: int
    target_sheet: str
    sheet_number: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "page_number": self.page_number,
            "sheet_number": self.sheet_number,
            "detail_reference_raw": self.detail_reference_raw,
            "detail_number": self.detail_number,
            "target_sheet": self.target_sheet,
        }


@dataclass
class FindingElement:
    """A drawing element recognised by the vision collaborator."""
    type: str = ""
    shape: Optional[str] = None
    location: Optional[str] = None
    dimensions: Optional[str] = None
    materials: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "shape": self.shape,
            "location": self.location,
            "dimensions": self.dimensions,
            "materials": self.materials,
            "notes": self.notes,
        }


@dataclass
class VisualFindingsPayload:
    """
    Structured vision-analysis result for one drawing page.

    Attributes:
        summary: One-paragraph description of the page
        elements: Recognised drawing elements
        annotations: Text annotations read off the drawing
        symbols: Symbols identified on the drawing
        detail_markers: Detail markers / callout bubbles
    """
    summary: str = ""
    elements: List[FindingElement] = field(default_factory=list)
    annotations: List[str] = field(default_factory=list)
    symbols: List[str] = field(default_factory=list)
    detail_markers: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "elements": [e.to_dict() for e in self.elements],
            "annotations": list(self.annotations),
            "symbols": list(self.symbols),
            "detailMarkers": list(self.detail_markers),
        }


@dataclass
class VisualFinding:
    """Vision findings for one page of a drawing."""
    document_id: int
    page_number: int
    findings: VisualFindingsPayload
    id: Optional[int] = None
    sheet_number: Optional[str] = None
    sheet_type: Optional[str] = None
    embedding: Optional[List[float]] = None
    filename: Optional[str] = None
    document_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "page_number": self.page_number,
            "sheet_number": self.sheet_number,
            "sheet_type": self.sheet_type,
            "findings": self.findings.to_dict(),
            "filename": self.filename,
        }


CHUNK = "chunk"
VISUAL_FINDING = "visual_finding"


@dataclass
class SearchResult:
    """
    Result of a similarity search.

    Attributes:
        source_type: "chunk" or "visual_finding"
        item: The matched Chunk or VisualFinding
        similarity: Cosine similarity to the query (higher is more similar)
    """
    source_type: str
    item: Union[Chunk, VisualFinding]
    similarity: float

    @property
    def id(self) -> Optional[int]:
        return self.item.id

    def to_dict(self) -> dict:
        return {
            "source_type": self.source_type,
            "similarity": self.similarity,
            **self.item.to_dict(),
        }


@dataclass
class RetrievedContent:
    """Chunks and visual findings selected for one question."""
    chunks: List[Chunk] = field(default_factory=list)
    visual_findings: List[VisualFinding] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.chunks and not self.visual_findings


@dataclass
class Citation:
    """
    A citation parsed from generated answer text.

    Attributes:
        source: Document name as written by the model
        full_text: Verbatim bracketed span, used for link replacement
        sheet: Sheet designator, if cited by sheet or detail
        detail: Detail designator ("3/A-501"), if cited by detail
        page: Page number, cited or resolved
        filename: Stored filename, filled by resolution
    """
    source: str
    full_text: str
    sheet: Optional[str] = None
    detail: Optional[str] = None
    page: Optional[int] = None
    filename: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.page is not None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "sheet": self.sheet,
            "detail": self.detail,
            "page": self.page,
            "fullText": self.full_text,
            "filename": self.filename,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Citation":
        return cls(
            source=data["source"],
            full_text=data.get("fullText", data.get("full_text", "")),
            sheet=data.get("sheet"),
            detail=data.get("detail"),
            page=data.get("page"),
            filename=data.get("filename"),
        )


@dataclass
class EmbeddingReport:
    """
    Outcome of one embedding pass over a project.

    ``paused`` is set when the provider reported an exhausted quota; the
    pass can be resumed later and only rows still missing a vector are
    processed again.
    """
    chunks_processed: int = 0
    findings_processed: int = 0
    total: int = 0
    paused: bool = False
    cancelled: bool = False
    failed_items: List[int] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.chunks_processed + self.findings_processed

    @property
    def remaining(self) -> int:
        return self.total - self.processed

    def to_dict(self) -> dict:
        return {
            "chunks_processed": self.chunks_processed,
            "findings_processed": self.findings_processed,
            "processed": self.processed,
            "remaining": self.remaining,
            "paused": self.paused,
            "cancelled": self.cancelled,
        }


@dataclass
class ProcessingResult:
    """
    Result of processing a single document.

    Attributes:
        document_id: Processed document
        filename: Document filename
        chunks: Page chunks that were stored
        page_count: Number of pages in the PDF
        processing_time: Time taken to process in seconds
        success: Whether processing was successful
        error: Error message if processing failed
    """
    document_id: int
    filename: str
    chunks: List[Chunk]
    page_count: int
    processing_time: float
    callouts_created: int = 0
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "document_id": self.document_id,
            "filename": self.filename,
            "chunks_created": len(self.chunks),
            "callouts_created": self.callouts_created,
            "page_count": self.page_count,
            "processing_time": self.processing_time,
            "success": self.success,
            "error": self.error,
        }


DIRECT = "direct"
CHAIN_OF_THOUGHT = "chain_of_thought"
DECOMPOSED = "decomposed"


@dataclass
class GenerationResult:
    """Answer text plus a trace of how it was produced."""
    content: str
    strategy: str
    queries: List[str] = field(default_factory=list)
    subquestions: Optional[List[str]] = None
    chunks_used: int = 0
    findings_used: int = 0
    metadata: Dict = field(default_factory=dict)
