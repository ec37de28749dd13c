"""Tests for the embedding index."""

import pytest

from conftest import VOCABULARY, FakeEmbedder
from construction_qa.exceptions import (
    EmbeddingDimensionError,
    ProviderError,
    ProviderPayloadTooLarge,
    ProviderQuotaExhausted,
    ProviderRateLimited,
)
from construction_qa.models import CHUNK, VISUAL_FINDING
from construction_qa.rag import EmbeddingIndex
from construction_qa.retry import RetryPolicy


def make_index(store, embedder, sleeps):
    return EmbeddingIndex(
        store,
        embedder,
        batch_delay=2.0,
        retry_policy=RetryPolicy(max_attempts=2, delay=60.0),
        sleep=sleeps.append,
    )


class TestEmbedUnembedded:
    """Tests for the resumable embedding pass."""

    def test_embeds_all_chunks_in_batches(self, store, index, embedder, sleeps, project):
        """Test batching by two with a delay between batches."""
        report = index.embed_unembedded(project["id"])

        assert report.total == 5
        assert report.chunks_processed == 5
        assert not report.paused and not report.cancelled
        assert [len(texts) for texts in embedder.calls] == [2, 2, 1]
        assert sleeps == [2.0, 2.0]
        assert store.count_embedded(project["id"]) == 5

    def test_second_run_is_a_no_op(self, index, embedder, project):
        """Test that already embedded rows are never re-embedded."""
        index.embed_unembedded(project["id"])
        calls = len(embedder.calls)

        report = index.embed_unembedded(project["id"])

        assert report.total == 0
        assert report.processed == 0
        assert len(embedder.calls) == calls

    def test_findings_embedded_after_chunks(self, store, index, embedder, project):
        """Test that visual findings get their own batch after the chunks."""
        store.add_visual_finding(project["drawing_id"], 4, {"summary": "Stair handrail"}, sheet_number="A-501")

        report = index.embed_unembedded(project["id"])

        assert report.chunks_processed == 5
        assert report.findings_processed == 1
        assert embedder.calls[-1] == ["Stair handrail"]
        assert store.count_embedded(project["id"]) == 6

    def test_empty_findings_use_sheet_label(self, store, index, embedder, project):
        """Test the fallback text for findings without content."""
        store.add_visual_finding(project["drawing_id"], 4, {}, sheet_number="A-501")
        index.embed_unembedded(project["id"])
        assert embedder.calls[-1] == ["Sheet A-501"]

    def test_progress_reported_per_batch(self, index, project):
        """Test progress callback arguments."""
        progress = []
        index.embed_unembedded(project["id"], on_progress=lambda done, total: progress.append((done, total)))
        assert progress == [(2, 5), (4, 5), (5, 5)]

    def test_progress_callback_cancels(self, store, index, project):
        """Test that returning False stops the pass and keeps written vectors."""
        report = index.embed_unembedded(project["id"], on_progress=lambda done, total: False)

        assert report.cancelled
        assert report.processed == 2
        assert store.count_embedded(project["id"]) == 2

    def test_rate_limit_retried_after_delay(self, store, sleeps, project):
        """Test a single retry after the rate-limit delay."""
        embedder = FakeEmbedder(failures=[ProviderRateLimited("429")])
        report = make_index(store, embedder, sleeps).embed_unembedded(project["id"])

        assert report.chunks_processed == 5
        assert sleeps[0] == 60.0
        assert len(embedder.calls) == 4

    def test_rate_limit_twice_fails_chunk_batch(self, store, sleeps, project):
        """Test that a chunk batch failing after the retry propagates."""
        embedder = FakeEmbedder(failures=[ProviderRateLimited("429"), ProviderRateLimited("429")])
        with pytest.raises(ProviderRateLimited):
            make_index(store, embedder, sleeps).embed_unembedded(project["id"])
        assert store.count_embedded(project["id"]) == 0

    def test_payload_too_large_falls_back_to_single_items(self, store, sleeps, project):
        """Test per-item embedding when a batch exceeds the model context."""

        def too_large(texts):
            if len(texts) > 1 or "ROOF PLAN" in texts[0]:
                return ProviderPayloadTooLarge("maximum context length exceeded")
            return None

        embedder = FakeEmbedder(fail_on=too_large)
        report = make_index(store, embedder, sleeps).embed_unembedded(project["id"])

        # Chunk 2 is the roof plan page
        assert report.failed_items == [2]
        assert report.chunks_processed == 4
        assert store.count_embedded(project["id"]) == 4

    def test_quota_exhausted_pauses(self, store, sleeps, project):
        """Test that an exhausted quota pauses and a later run resumes."""
        embedder = FakeEmbedder(failures=[ProviderQuotaExhausted("insufficient_quota")])
        index = make_index(store, embedder, sleeps)

        report = index.embed_unembedded(project["id"])
        assert report.paused
        assert report.processed == 0
        assert report.remaining == 5

        resumed = index.embed_unembedded(project["id"])
        assert not resumed.paused
        assert resumed.chunks_processed == 5

    def test_chunk_batch_error_propagates(self, store, sleeps, project):
        """Test that other provider errors on chunk batches are raised."""
        embedder = FakeEmbedder(failures=[ProviderError("server error")])
        with pytest.raises(ProviderError):
            make_index(store, embedder, sleeps).embed_unembedded(project["id"])

    def test_findings_batch_error_skipped(self, store, sleeps, project):
        """Test that a failing findings batch is skipped."""
        store.add_visual_finding(project["drawing_id"], 4, {"summary": "Handrail elevations"})

        def vision_failure(texts):
            if any("Handrail" in t for t in texts):
                return ProviderError("server error")
            return None

        progress = []
        report = make_index(store, FakeEmbedder(fail_on=vision_failure), sleeps).embed_unembedded(
            project["id"], on_progress=lambda done, total: progress.append((done, total))
        )

        assert report.chunks_processed == 5
        assert report.findings_processed == 0
        assert not report.paused
        assert store.count_embedded(project["id"]) == 5
        assert progress == [(2, 6), (4, 6), (5, 6), (5, 6)]

    def test_empty_project(self, store, index, embedder):
        """Test a project without content."""
        project_id = store.create_project("Empty")
        report = index.embed_unembedded(project_id)
        assert report.total == 0
        assert embedder.calls == []


class TestSearch:
    """Tests for similarity search."""

    def test_most_similar_chunk_first(self, index, project):
        """Test ranking by cosine similarity."""
        index.embed_unembedded(project["id"])

        results = index.search(project["id"], "roof drain", top_k=2)

        assert len(results) == 2
        assert results[0].source_type == CHUNK
        assert results[0].item.sheet_number == "A-201"
        assert results[0].similarity >= results[1].similarity

    def test_top_k_capped_by_candidates(self, index, project):
        """Test that at most min(top_k, candidates) results come back."""
        index.embed_unembedded(project["id"])
        results = index.search(project["id"], "door", top_k=50)

        assert len(results) == 5
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)

    def test_results_carry_document_info(self, index, project):
        """Test that chunk results are joined with their document."""
        index.embed_unembedded(project["id"])
        top = index.search(project["id"], "concrete", top_k=1)[0]
        assert top.item.filename == "Specs.pdf"
        assert top.item.document_type == "spec"

    def test_findings_are_searched(self, store, index, project):
        """Test that visual findings compete with chunks."""
        store.add_visual_finding(project["drawing_id"], 4, {"summary": "Stair handrail"}, sheet_number="A-501")
        index.embed_unembedded(project["id"])

        top = index.search(project["id"], "stair", top_k=1)[0]

        assert top.source_type == VISUAL_FINDING
        assert top.item.sheet_number == "A-501"

    def test_no_embedded_content(self, index, embedder, project):
        """Test that search without vectors returns nothing and skips the embedder."""
        assert index.search(project["id"], "roof drain") == []
        assert embedder.calls == []

    def test_search_is_project_scoped(self, store, index, project):
        """Test that other projects' chunks are not returned."""
        other = store.create_project("Other")
        index.embed_unembedded(project["id"])
        assert index.search(other, "roof drain") == []

    def test_dimension_mismatch(self, store, index, project):
        """Test that vectors of different lengths raise."""
        store.mark_embedded(1, [1.0, 0.0])
        with pytest.raises(EmbeddingDimensionError):
            index.search(project["id"], "door")

    def test_search_many(self, index, embedder, project):
        """Test one result list per query, in query order."""
        index.embed_unembedded(project["id"])
        calls = len(embedder.calls)

        roof, hardware = index.search_many(project["id"], ["roof drain", "door hardware"], top_k=1)

        assert roof[0].item.sheet_number == "A-201"
        assert hardware[0].item.filename == "Specs.pdf"
        assert hardware[0].item.page_number == 1
        assert len(embedder.calls) == calls + 2

    def test_exact_order_and_ties_keep_load_order(self, store, index, project):
        """Test exact cosine scores, descending order and load order among equal scores."""
        def vector(bias=0.0, **weights):
            return [float(weights.get(term, 0.0)) for term in VOCABULARY] + [bias]

        # query "roof" embeds as roof=1 with a 0.1 bias
        store.mark_embedded(1, vector(roof=1.0, bias=0.1))
        store.mark_embedded(2, vector(roof=1.0))
        store.mark_embedded(3, vector(door=1.0, bias=0.1))
        store.mark_embedded(4, vector(door=1.0, bias=0.1))
        store.mark_embedded(5, vector(roof=1.0, bias=0.1))

        results = index.search(project["id"], "roof", top_k=5)

        assert [r.item.id for r in results] == [1, 5, 2, 3, 4]
        assert [r.similarity for r in results] == pytest.approx(
            [1.0, 1.0, 1.0 / 1.01 ** 0.5, 0.01 / 1.01, 0.01 / 1.01]
        )

    def test_search_many_empty(self, index, project):
        """Test no queries."""
        assert index.search_many(project["id"], []) == []
