"""Tests for context merging, formatting and callout expansion."""

from construction_qa.context import ContextAssembler, format_chunk, format_context, format_finding, merge_results
from construction_qa.models import CHUNK, VISUAL_FINDING, Chunk, SearchResult, VisualFinding, VisualFindingsPayload


def chunk(chunk_id, **kwargs):
    defaults = {"document_id": 1, "page_number": chunk_id, "content": f"page {chunk_id}"}
    defaults.update(kwargs)
    return Chunk(id=chunk_id, **defaults)


def finding(finding_id, summary="Findings"):
    return VisualFinding(
        id=finding_id,
        document_id=1,
        page_number=finding_id,
        findings=VisualFindingsPayload(summary=summary),
    )


def hit(item, similarity=0.5):
    source_type = CHUNK if isinstance(item, Chunk) else VISUAL_FINDING
    return SearchResult(source_type=source_type, item=item, similarity=similarity)


class TestMergeResults:
    """Tests for merge_results."""

    def test_union_first_seen(self):
        """Test dedup across queries keeping the first occurrence order."""
        merged = merge_results([
            [hit(chunk(3)), hit(chunk(1))],
            [hit(chunk(1)), hit(chunk(2)), hit(finding(1))],
        ])
        assert [c.id for c in merged.chunks] == [3, 1, 2]
        assert [f.id for f in merged.visual_findings] == [1]

    def test_pools_are_separate(self):
        """Test that a chunk and a finding with the same id both survive."""
        merged = merge_results([[hit(chunk(1)), hit(finding(1))]])
        assert len(merged.chunks) == 1
        assert len(merged.visual_findings) == 1

    def test_limits(self):
        """Test chunk and finding limits."""
        merged = merge_results(
            [[hit(chunk(i)) for i in range(1, 6)] + [hit(finding(i)) for i in range(1, 4)]],
            chunk_limit=2,
            finding_limit=1,
        )
        assert [c.id for c in merged.chunks] == [1, 2]
        assert [f.id for f in merged.visual_findings] == [1]

    def test_empty(self):
        """Test no results."""
        assert merge_results([]).is_empty


class TestFormatting:
    """Tests for context block rendering."""

    def test_drawing_chunk(self):
        """Test a drawing page with sheet and details."""
        block = format_chunk(1, chunk(
            1,
            content="FLOOR PLAN",
            sheet_number="A-101",
            detail_references=["3/A-501", "5/A-502"],
            filename="A-Series.pdf",
            document_type="drawing",
        ))
        assert block == "[Source 1: Drawing - A-Series.pdf, Sheet A-101 (Details: 3/A-501, 5/A-502)]\nFLOOR PLAN"

    def test_spec_chunk_with_ocr(self):
        """Test a spec page without sheet number and with OCR text."""
        block = format_chunk(2, chunk(4, content="PART 1", filename="Specs.pdf", document_type="spec", ocr_text="SCAN"))
        assert block == "[Source 2: Specification - Specs.pdf, Page 4]\nPART 1\n[OCR Text]\nSCAN"

    def test_finding(self):
        """Test a visual finding block."""
        item = VisualFinding(
            document_id=1,
            page_number=4,
            findings=VisualFindingsPayload(summary="Stair details"),
            sheet_number="A-501",
            sheet_type="detail",
            filename="A-Series.pdf",
        )
        assert format_finding(1, item) == "[Visual Finding 1: A-Series.pdf, Sheet A-501 (detail)]\nStair details"

    def test_context_layout(self):
        """Test separators between blocks and sections."""
        chunks = [
            chunk(1, content="ONE", filename="A.pdf", document_type="drawing"),
            chunk(2, content="TWO", filename="A.pdf", document_type="drawing"),
        ]
        item = finding(3, summary="Doors")
        item.filename = "A.pdf"

        context = format_context(chunks, [item])

        assert context == (
            "[Source 1: Drawing - A.pdf, Page 1]\nONE"
            "\n\n---\n\n"
            "[Source 2: Drawing - A.pdf, Page 2]\nTWO"
            "\n\n"
            "[Visual Analysis Findings]\n"
            "[Visual Finding 1: A.pdf, Page 3]\nDoors"
        )

    def test_empty_context(self):
        """Test no content."""
        assert format_context([]) == ""


class TestCalloutExpansion:
    """Tests for ContextAssembler callout expansion."""

    def test_follows_own_detail_references(self, store, index, project):
        """Test that the referenced detail sheet is pulled in."""
        plan = store.get_chunk_by_sheet_and_filename(project["id"], "A-101", "A-Series.pdf")
        assembler = ContextAssembler(store, index)

        expanded = assembler.expand_with_callouts([plan], project["id"])

        assert [c.sheet_number for c in expanded] == ["A-101", "A-501"]

    def test_follows_callouts_backwards(self, store, index, project):
        """Test that a detail sheet pulls in the sheet that references it."""
        detail = store.get_chunk_by_sheet_and_filename(project["id"], "A-501", "A-Series.pdf")

        with_graph = ContextAssembler(store, index).expand_with_callouts([detail], project["id"])
        without_graph = ContextAssembler(store, index, use_callout_graph=False).expand_with_callouts(
            [detail], project["id"]
        )

        assert [c.sheet_number for c in with_graph] == ["A-501", "A-101"]
        assert [c.sheet_number for c in without_graph] == ["A-501"]

    def test_no_duplicates_and_limit(self, store, index, project):
        """Test that present chunks are not added again and the limit holds."""
        plan = store.get_chunk_by_sheet_and_filename(project["id"], "A-101", "A-Series.pdf")
        assembler = ContextAssembler(store, index)

        assert assembler.expand_with_callouts([plan], project["id"], max_additional=0) == [plan]

        expanded = assembler.expand_with_callouts([plan], project["id"])
        assert len({c.id for c in expanded}) == len(expanded)

    def test_related_sheets(self, store, index, project):
        """Test related sheet collection."""
        plan = store.get_chunk_by_sheet_and_filename(project["id"], "A-101", "A-Series.pdf")
        assert ContextAssembler(store, index).related_sheets(project["id"], [plan]) == ["A-501", "A-101"]


class TestRetrieve:
    """Tests for ContextAssembler.retrieve."""

    def test_retrieve_then_expand(self, store, index, project):
        """Test search, merge and callout expansion together."""
        index.embed_unembedded(project["id"])
        assembler = ContextAssembler(store, index)

        content = assembler.retrieve(project["id"], ["door fire rating"], limit=1)

        assert [c.sheet_number for c in content.chunks] == ["A-101", "A-501"]

    def test_per_query_share(self, store, index, embedder, project):
        """Test that each query gets ceil(limit / n) results."""
        index.embed_unembedded(project["id"])
        assembler = ContextAssembler(store, index, max_callout_chunks=0)

        content = assembler.retrieve(project["id"], ["roof drain", "concrete"], limit=3)

        # two results per query, merged and capped at the limit
        assert len(content.chunks) == 3
        assert content.chunks[0].sheet_number == "A-201"

    def test_no_queries(self, store, index, project):
        """Test retrieval without queries."""
        assert ContextAssembler(store, index).retrieve(project["id"], [], limit=5).is_empty
