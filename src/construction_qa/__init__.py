"""
Construction QA - question answering over construction drawings and specifications.

This library turns construction PDFs into per-page chunks tagged with sheet
numbers and detail callouts, indexes them together with vision findings,
and answers questions with citations that resolve to document pages.

Key Components:
- ConstructionQAPipeline: Unified high-level interface
- ConstructionDocumentChunker: Per-page chunking, sheet and callout detection
- ChunkStore: Relational storage for documents, chunks, callouts and chats
- EmbeddingIndex: Resumable embedding pass and similarity search
- AnswerGenerator: Query expansion, decomposition and answer generation
- CitationResolver: Maps sheet citations to pages

Example:
    >>> from construction_qa import ConstructionQAPipeline
    >>>
    >>> pipeline = ConstructionQAPipeline.from_settings()
    >>> project_id = pipeline.create_project("Riverside Clinic")
    >>> pipeline.add_document(project_id, "A-Series.pdf", "uploads/A-Series.pdf")
    >>> pipeline.process_project(project_id)
    >>> pipeline.embed_project(project_id)
    >>>
    >>> chat = pipeline.create_chat(project_id)
    >>> reply = pipeline.answer_question(chat["id"], "What is the fire rating of the stair doors?")
    >>> for citation in reply["citations"]:
    ...     print(citation["fullText"], citation["page"])
"""

__version__ = "0.1.0"

# Core pipeline
from .pipeline import ConstructionQAPipeline

# Individual components
from .chunker import ConstructionDocumentChunker, build_callouts
from .citations import CitationResolver, extract_citations
from .config import Settings
from .context import ContextAssembler, format_context, merge_results
from .embeddings import OpenAIEmbedder, SentenceTransformerEmbedder, TextEmbedder
from .generator import AnswerGenerator
from .llm import MODELS, AnthropicChatProvider, CompletionProvider, LLMRouter, OpenAIChatProvider
from .query import QueryExpander
from .rag import EmbeddingIndex
from .retry import RetryPolicy, with_retry
from .store import ChunkFilter, ChunkStore

# Data models
from .models import (
    Callout,
    Chunk,
    Citation,
    DetailReference,
    EmbeddingReport,
    GenerationResult,
    ProcessingResult,
    RetrievedContent,
    SearchResult,
    VisualFinding,
    VisualFindingsPayload,
)

# Utilities
from .findings import findings_to_text, parse_findings, summarize_findings
from .sheets import extract_detail_references, extract_sheet_number, normalize_sheet_number, parse_detail_reference
from .utils import configure_logging

__all__ = [
    # Version
    "__version__",

    # Main pipeline
    "ConstructionQAPipeline",

    # Components
    "ConstructionDocumentChunker",
    "ChunkStore",
    "ChunkFilter",
    "EmbeddingIndex",
    "TextEmbedder",
    "OpenAIEmbedder",
    "SentenceTransformerEmbedder",
    "QueryExpander",
    "ContextAssembler",
    "AnswerGenerator",
    "CitationResolver",
    "LLMRouter",
    "CompletionProvider",
    "OpenAIChatProvider",
    "AnthropicChatProvider",
    "MODELS",
    "RetryPolicy",
    "Settings",

    # Functions
    "build_callouts",
    "extract_citations",
    "extract_sheet_number",
    "extract_detail_references",
    "normalize_sheet_number",
    "parse_detail_reference",
    "merge_results",
    "format_context",
    "parse_findings",
    "findings_to_text",
    "summarize_findings",
    "with_retry",
    "configure_logging",

    # Data models
    "Chunk",
    "Callout",
    "DetailReference",
    "VisualFinding",
    "VisualFindingsPayload",
    "SearchResult",
    "RetrievedContent",
    "Citation",
    "EmbeddingReport",
    "ProcessingResult",
    "GenerationResult",
]
