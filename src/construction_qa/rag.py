"""
Embedding Index for construction document chunks and vision findings.

This module provides:
- A resumable embedding pass that fills in missing vectors in the store
- Cosine-similarity retrieval over chunks and vision findings of a project
- Concurrent multi-query retrieval for expanded queries

Vectors live next to the rows they describe (``embedding`` columns in the
Chunk Store); there is no separate vector database.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .embeddings import TextEmbedder
from .exceptions import EmbeddingDimensionError, ProviderError, ProviderPayloadTooLarge, ProviderQuotaExhausted
from .findings import findings_to_text
from .models import CHUNK, VISUAL_FINDING, Chunk, EmbeddingReport, SearchResult, VisualFinding
from .retry import RetryPolicy, with_retry
from .store import ChunkFilter, ChunkStore

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CHUNK_BATCH_SIZE = 2
DEFAULT_FINDINGS_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY = 2.0
DEFAULT_TOP_K = 10
DEFAULT_MAX_WORKERS = 4

ProgressCallback = Callable[[int, int], Optional[bool]]
Candidate = Tuple[str, Union[Chunk, VisualFinding]]


@dataclass
class _Batch:
    source_type: str
    items: List[Union[Chunk, VisualFinding]]
    texts: List[str]


class EmbeddingIndex:
    """
    Embedding pass and similarity search over one Chunk Store.

    Example:
        >>> index = EmbeddingIndex(store, OpenAIEmbedder())
        >>> report = index.embed_unembedded(project_id)
        >>> results = index.search(project_id, "fire rating of corridor doors", top_k=5)
        >>> for r in results:
        ...     print(f"{r.similarity:.2f}: {r.source_type} {r.id}")
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder: TextEmbedder,
        chunk_batch_size: int = DEFAULT_CHUNK_BATCH_SIZE,
        findings_batch_size: int = DEFAULT_FINDINGS_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the index.

        Args:
            store: Chunk Store holding chunks, findings and their vectors
            embedder: Embedding provider
            chunk_batch_size: Chunks per provider call. Default 2 keeps a
                              batch near 3000 tokens for low rate-limit tiers.
            findings_batch_size: Findings per provider call (findings text
                                 is short)
            batch_delay: Seconds to wait between batches
            retry_policy: Retry behaviour on rate limits (default: one retry
                          after 60 seconds)
            max_workers: Threads used to embed expanded queries concurrently
            sleep: Sleep function (injected in tests)
        """
        self.store = store
        self.embedder = embedder
        self.chunk_batch_size = chunk_batch_size
        self.findings_batch_size = findings_batch_size
        self.batch_delay = batch_delay
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max_workers
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Embedding pass
    # ------------------------------------------------------------------

    def _batches(self, chunks: List[Chunk], findings: List[VisualFinding]) -> List[_Batch]:
        batches = []
        for i in range(0, len(chunks), self.chunk_batch_size):
            items = chunks[i:i + self.chunk_batch_size]
            batches.append(_Batch(CHUNK, items, [c.content for c in items]))
        for i in range(0, len(findings), self.findings_batch_size):
            items = findings[i:i + self.findings_batch_size]
            texts = [findings_to_text(f.findings) or f"Sheet {f.sheet_number or f.page_number}" for f in items]
            batches.append(_Batch(VISUAL_FINDING, items, texts))
        return batches

    def _call(self, texts: List[str]) -> List[List[float]]:
        vectors = with_retry(
            lambda: self.embedder.embed_batch(texts),
            self.retry_policy,
            sleep=self._sleep,
        )
        if len(vectors) != len(texts):
            raise ProviderError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    def _write(self, source_type: str, item, vector: List[float], report: EmbeddingReport) -> None:
        if source_type == CHUNK:
            self.store.mark_embedded(item.id, vector)
            report.chunks_processed += 1
        else:
            self.store.mark_finding_embedded(item.id, vector)
            report.findings_processed += 1

    def _embed_individually(self, batch: _Batch, report: EmbeddingReport) -> None:
        for item, text in zip(batch.items, batch.texts):
            try:
                vector = self._call([text])[0]
            except ProviderQuotaExhausted:
                raise
            except ProviderError as e:
                logger.error("Failed to embed %s %d (%d chars): %s", batch.source_type, item.id, len(text), e)
                report.failed_items.append(item.id)
                continue
            self._write(batch.source_type, item, vector, report)

    def _embed_batch(self, batch: _Batch, report: EmbeddingReport) -> None:
        try:
            vectors = self._call(batch.texts)
        except ProviderPayloadTooLarge:
            logger.warning(
                "Batch of %d %s items exceeds the model context; embedding one at a time",
                len(batch.items), batch.source_type
            )
            self._embed_individually(batch, report)
            return

        for item, vector in zip(batch.items, vectors):
            self._write(batch.source_type, item, vector, report)

    def embed_unembedded(
        self,
        project_id: int,
        on_progress: Optional[ProgressCallback] = None
    ) -> EmbeddingReport:
        """
        Embed every chunk and visual finding of a project that has no vector.

        Runs one batch at a time with a delay between batches. Rows that
        already have a vector are never touched, so the pass can be re-run
        to resume after a pause, a cancellation or a failure.

        Args:
            project_id: Project to embed
            on_progress: Called as ``on_progress(processed, total)`` after
                         each batch. Returning False stops the pass.

        Returns:
            EmbeddingReport. ``paused`` is set when the provider quota ran
            out; ``cancelled`` when the callback stopped the pass.

        Raises:
            ProviderError: A chunk batch failed for a reason other than quota
                           or payload size. Vectors already written are kept.
        """
        chunks = self.store.get_chunks_by_project(project_id, ChunkFilter(embedded=False))
        findings = self.store.get_visual_findings(project_id, embedded=False)

        report = EmbeddingReport(total=len(chunks) + len(findings))
        if not report.total:
            logger.info("Project %d: nothing to embed", project_id)
            return report

        batches = self._batches(chunks, findings)
        logger.info(
            "Project %d: embedding %d chunks and %d visual findings in %d batches",
            project_id, len(chunks), len(findings), len(batches)
        )

        for index, batch in enumerate(batches):
            if index > 0 and self.batch_delay:
                self._sleep(self.batch_delay)

            try:
                self._embed_batch(batch, report)
            except ProviderQuotaExhausted as e:
                logger.warning(
                    "Embedding quota exhausted after %d/%d items; pausing (%s)",
                    report.processed, report.total, e
                )
                report.paused = True
                break
            except ProviderError as e:
                if batch.source_type != VISUAL_FINDING:
                    raise
                logger.error("Skipping visual findings batch %d: %s", index + 1, e)
            else:
                logger.debug("Batch %d/%d done (%d/%d)", index + 1, len(batches), report.processed, report.total)

            if on_progress is not None and on_progress(report.processed, report.total) is False:
                logger.info("Embedding pass cancelled at %d/%d", report.processed, report.total)
                report.cancelled = True
                break

        return report

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def _load_candidates(self, project_id: int) -> List[Candidate]:
        chunks = self.store.get_chunks_by_project(project_id, ChunkFilter(embedded=True))
        findings = self.store.get_visual_findings(project_id, embedded=True)
        return [(CHUNK, c) for c in chunks] + [(VISUAL_FINDING, f) for f in findings]

    @staticmethod
    def _rank(query_vector: List[float], candidates: List[Candidate], top_k: int) -> List[SearchResult]:
        if not candidates or top_k <= 0:
            return []

        dimension = len(query_vector)
        for source_type, item in candidates:
            if len(item.embedding) != dimension:
                raise EmbeddingDimensionError(
                    f"{source_type} {item.id} has {len(item.embedding)} dimensions, query has {dimension}"
                )

        matrix = np.asarray([item.embedding for _, item in candidates], dtype=float)
        scores = cosine_similarity(np.asarray([query_vector], dtype=float), matrix)[0]

        # Stable sort keeps load order among equal scores
        order = np.argsort(-scores, kind="stable")[:min(top_k, len(candidates))]
        return [
            SearchResult(
                source_type=candidates[i][0],
                item=candidates[i][1],
                similarity=float(scores[i]),
            )
            for i in order
        ]

    def search(self, project_id: int, query: str, top_k: int = DEFAULT_TOP_K) -> List[SearchResult]:
        """
        Find the chunks and visual findings most similar to a query.

        Args:
            project_id: Project to search
            query: Natural language query
            top_k: Maximum number of results

        Returns:
            Up to ``min(top_k, candidates)`` results by similarity descending
        """
        return self.search_many(project_id, [query], top_k)[0]

    def search_many(
        self,
        project_id: int,
        queries: Sequence[str],
        top_k: int = DEFAULT_TOP_K
    ) -> List[List[SearchResult]]:
        """
        Search several queries at once.

        Query embeddings are requested concurrently; all queries are scored
        against one load of the project's vectors.

        Returns:
            One result list per query, in query order
        """
        if not queries:
            return []

        candidates = self._load_candidates(project_id)
        if not candidates:
            logger.info("Project %d has no embedded content", project_id)
            return [[] for _ in queries]

        workers = max(1, min(len(queries), self.max_workers))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            vectors = list(executor.map(self.embedder.embed, queries))

        return [self._rank(vector, candidates, top_k) for vector in vectors]
