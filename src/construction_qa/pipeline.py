"""
Unified Construction QA Pipeline.

This module provides a high-level interface that combines all components:
- Per-page document chunking with sheet and callout detection
- Embedding of chunks and vision findings
- Query expansion, retrieval and context assembly
- Answer generation with resolvable citations
- Chat history and titles

Example:
    >>> from construction_qa import ConstructionQAPipeline
    >>> pipeline = ConstructionQAPipeline.from_settings()
    >>> project_id = pipeline.create_project("Riverside Clinic")
    >>> pipeline.add_document(project_id, "A-Series.pdf", "/uploads/A-Series.pdf")
    >>> pipeline.process_project(project_id)
    >>> pipeline.embed_project(project_id)
    >>> chat = pipeline.create_chat(project_id)
    >>> reply = pipeline.answer_question(chat["id"], "What is the corridor door fire rating?")
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from .chunker import ConstructionDocumentChunker
from .citations import CitationResolver, extract_citations
from .config import Settings
from .context import ContextAssembler
from .embeddings import OpenAIEmbedder, TextEmbedder
from .generator import AnswerGenerator
from .llm import ANTHROPIC, OPENAI, AnthropicChatProvider, LLMRouter, OpenAIChatProvider
from .models import EmbeddingReport, ProcessingResult
from .prompts import NO_DOCUMENTS_MESSAGE, title_prompt
from .query import QueryExpander
from .rag import EmbeddingIndex, ProgressCallback
from .retry import RetryPolicy
from .store import ChunkStore
from .utils import strip_quotes

logger = logging.getLogger(__name__)

TITLE_TEMPERATURE = 0.3
TITLE_MAX_TOKENS = 20

PageTextSource = Callable[[Dict], List[str]]


class ConstructionQAPipeline:
    """
    Question answering over a project's construction documents.

    Components are passed in explicitly; ``from_settings`` builds the
    standard set from configuration.

    Example:
        >>> pipeline = ConstructionQAPipeline(store, index, router)
        >>> pipeline.process_document(document_id)
        >>> pipeline.embed_project(project_id)
        >>> pipeline.answer_question(chat_id, "Which sheets show the roof drains?")
    """

    def __init__(
        self,
        store: ChunkStore,
        index: EmbeddingIndex,
        router: LLMRouter,
        chunker: Optional[ConstructionDocumentChunker] = None,
        page_text_source: Optional[PageTextSource] = None,
        default_model: str = "gpt-4o",
        expansion_model: str = "gpt-4o-mini",
        title_model: str = "gpt-4o-mini",
        relevant_content_limit: int = 15,
        max_visual_findings: int = 5,
        max_callout_chunks: int = 6,
        use_multi_query: bool = True,
        use_decomposition: bool = True,
        use_callout_graph: bool = True,
        chat_retention_days: int = 30
    ):
        """
        Initialize the pipeline.

        Args:
            store: Chunk Store
            index: Embedding Index over the same store
            router: Completion router with the configured providers
            chunker: Page chunker (default: 6000-character pages)
            page_text_source: Returns the page texts of a document record;
                              defaults to Docling extraction of its filepath
            default_model: Model used when a question names none
            expansion_model: Model used for expansion and decomposition
            title_model: Model used for chat titles
            relevant_content_limit: Chunks kept per question
            max_visual_findings: Visual findings kept per question
            max_callout_chunks: Extra chunks pulled in through callouts
            use_multi_query: Search alternative phrasings as well
            use_decomposition: Split complex questions into sub-questions
            use_callout_graph: Follow stored callout edges in both directions
            chat_retention_days: Default age limit for delete_old_chats
        """
        self.store = store
        self.index = index
        self.router = router
        self.chunker = chunker or ConstructionDocumentChunker()
        self.page_text_source = page_text_source or (lambda doc: self.chunker.extract_page_texts(doc["filepath"]))
        self.default_model = default_model
        self.title_model = title_model
        self.chat_retention_days = chat_retention_days

        self.assembler = ContextAssembler(
            store,
            index,
            max_callout_chunks=max_callout_chunks,
            finding_limit=max_visual_findings,
            use_callout_graph=use_callout_graph,
        )
        self.expander = QueryExpander(router, model=expansion_model)
        self.generator = AnswerGenerator(
            router,
            self.assembler,
            self.expander,
            use_multi_query=use_multi_query,
            use_decomposition=use_decomposition,
            relevant_content_limit=relevant_content_limit,
        )
        self.resolver = CitationResolver(store)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        embedder: Optional[TextEmbedder] = None
    ) -> "ConstructionQAPipeline":
        """
        Build a pipeline from configuration.

        Providers are only created for the API keys that are set; models of
        a provider without a key are reported as unavailable.
        """
        settings = settings or Settings()

        store = ChunkStore(settings.DATABASE_URL)
        if embedder is None:
            embedder = OpenAIEmbedder(
                api_key=settings.OPENAI_API_KEY or None,
                model=settings.EMBEDDING_MODEL,
                base_url=settings.OPENAI_BASE_URL,
            )
        index = EmbeddingIndex(
            store,
            embedder,
            chunk_batch_size=settings.EMBEDDING_BATCH_SIZE,
            findings_batch_size=settings.FINDINGS_BATCH_SIZE,
            batch_delay=settings.EMBEDDING_BATCH_DELAY,
            retry_policy=RetryPolicy(max_attempts=2, delay=settings.RATE_LIMIT_BACKOFF),
        )

        providers = {}
        if settings.OPENAI_API_KEY:
            providers[OPENAI] = OpenAIChatProvider(
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL,
            )
        if settings.ANTHROPIC_API_KEY:
            providers[ANTHROPIC] = AnthropicChatProvider(api_key=settings.ANTHROPIC_API_KEY)
        if not providers:
            logger.warning("No completion provider configured; set OPENAI_API_KEY or ANTHROPIC_API_KEY")

        return cls(
            store,
            index,
            LLMRouter(providers),
            chunker=ConstructionDocumentChunker(max_chunk_length=settings.MAX_CHUNK_LENGTH),
            default_model=settings.DEFAULT_MODEL,
            expansion_model=settings.EXPANSION_MODEL,
            title_model=settings.TITLE_MODEL,
            relevant_content_limit=settings.RELEVANT_CONTENT_LIMIT,
            max_visual_findings=settings.MAX_VISUAL_FINDINGS,
            max_callout_chunks=settings.MAX_CALLOUT_CHUNKS,
            use_multi_query=settings.USE_MULTI_QUERY,
            use_decomposition=settings.USE_QUERY_DECOMPOSITION,
            use_callout_graph=settings.USE_CALLOUT_GRAPH,
            chat_retention_days=settings.CHAT_RETENTION_DAYS,
        )

    # ------------------------------------------------------------------
    # Projects and documents
    # ------------------------------------------------------------------

    def create_project(self, name: str) -> int:
        return self.store.create_project(name)

    def add_document(
        self,
        project_id: int,
        filename: str,
        filepath: Optional[str] = None,
        document_type: str = "drawing"
    ) -> int:
        return self.store.add_document(project_id, filename, filepath, document_type)

    def process_document(self, document_id: int, page_texts: Optional[List[str]] = None) -> ProcessingResult:
        """
        Chunk one document and store its pages and callouts.

        Args:
            document_id: Document to process
            page_texts: Page texts to use instead of reading the file

        Returns:
            ProcessingResult with the stored chunks

        Raises:
            NotFoundError: If the document does not exist
        """
        start_time = time.time()
        document = self.store.get_document(document_id)

        if page_texts is None:
            page_texts = self.page_text_source(document)

        pages = self.chunker.process_pages(document_id, page_texts)
        chunks, callouts_created = self.store.store_document_pages(document_id, pages, len(page_texts))

        processing_time = time.time() - start_time
        logger.info(
            "Processed %s: %d pages, %d chunks, %d callouts in %.1fs",
            document["filename"], len(page_texts), len(chunks), callouts_created, processing_time
        )
        return ProcessingResult(
            document_id=document_id,
            filename=document["filename"],
            chunks=chunks,
            page_count=len(page_texts),
            processing_time=processing_time,
            callouts_created=callouts_created,
        )

    def process_project(self, project_id: int) -> List[ProcessingResult]:
        """
        Process every unprocessed document of a project.

        A document that fails is recorded as a failed result; the remaining
        documents are still processed.
        """
        documents = self.store.list_unprocessed_documents(project_id)
        logger.info("Processing %d documents for project %d", len(documents), project_id)

        results = []
        for document in documents:
            start_time = time.time()
            try:
                results.append(self.process_document(document["id"]))
            except Exception as e:
                logger.exception("Error processing document %s", document["filename"])
                results.append(ProcessingResult(
                    document_id=document["id"],
                    filename=document["filename"],
                    chunks=[],
                    page_count=0,
                    processing_time=time.time() - start_time,
                    success=False,
                    error=str(e),
                ))
        return results

    def embed_project(self, project_id: int, on_progress: Optional[ProgressCallback] = None) -> EmbeddingReport:
        """Embed everything in the project that has no vector yet."""
        return self.index.embed_unembedded(project_id, on_progress=on_progress)

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def create_chat(self, project_id: int, title: str = "New Chat") -> Dict:
        return self.store.create_chat(project_id, title)

    def get_chat_history(self, chat_id: int) -> List[Dict]:
        self.store.get_chat(chat_id)
        return self.store.get_messages(chat_id)

    def delete_old_chats(self, retention_days: Optional[int] = None) -> int:
        if retention_days is None:
            retention_days = self.chat_retention_days
        return self.store.delete_old_chats(retention_days)

    def available_models(self) -> List[Dict]:
        return self.router.available_models()

    def get_stats(self, project_id: int) -> Dict[str, int]:
        self.store.get_project(project_id)
        return self.store.stats(project_id)

    def _update_title(self, chat_id: int, question: str) -> None:
        try:
            title = self.router.complete(
                self.title_model,
                [{"role": "user", "content": title_prompt(question)}],
                temperature=TITLE_TEMPERATURE,
                max_tokens=TITLE_MAX_TOKENS,
            )
            title = strip_quotes(title)
            if title:
                self.store.update_chat_title(chat_id, title)
        except Exception:
            logger.warning("Error generating chat title for chat %d", chat_id, exc_info=True)

    def answer_question(self, chat_id: int, question: str, model_id: Optional[str] = None) -> Dict:
        """
        Answer a question in a chat and store both messages.

        Args:
            chat_id: Chat the question belongs to
            question: User question
            model_id: Registry model id (default model if None)

        Returns:
            ``{"role": "assistant", "content": str, "citations": [dict, ...]}``

        Raises:
            NotFoundError: If the chat does not exist (nothing is stored)
            UnknownModelError: If the model id is unknown (nothing is stored)
            ProviderError: If the answer model call fails
        """
        model_id = model_id or self.default_model
        self.router.get_config(model_id)
        chat = self.store.get_chat(chat_id)
        project_id = chat["project_id"]

        history = self.store.get_messages(chat_id)
        self.store.add_message(chat_id, "user", question)

        if self.store.count_embedded(project_id) == 0:
            self.store.add_message(chat_id, "assistant", NO_DOCUMENTS_MESSAGE, [])
            return {"role": "assistant", "content": NO_DOCUMENTS_MESSAGE, "citations": []}

        result = self.generator.generate(
            question,
            project_id,
            chat["project_name"],
            history=history,
            model_id=model_id,
        )

        citations = self.resolver.resolve(extract_citations(result.content), project_id)
        citation_dicts = [c.to_dict() for c in citations]
        self.store.add_message(chat_id, "assistant", result.content, citation_dicts)

        if not history:
            self._update_title(chat_id, question)

        return {"role": "assistant", "content": result.content, "citations": citation_dicts}
