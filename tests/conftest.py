"""Shared fixtures: in-memory store, keyword embedder and scripted completion provider."""

import re
import threading

import pytest

from construction_qa.chunker import ConstructionDocumentChunker
from construction_qa.embeddings import TextEmbedder
from construction_qa.llm import ANTHROPIC, OPENAI, CompletionProvider, LLMRouter
from construction_qa.prompts import SYNTHESIS_SYSTEM_PROMPT
from construction_qa.rag import EmbeddingIndex
from construction_qa.retry import RetryPolicy
from construction_qa.store import ChunkStore

VOCABULARY = [
    "door", "fire", "rating", "roof", "drain", "wall", "detail",
    "stair", "concrete", "steel", "flashing", "hardware",
]


def keyword_vector(text):
    """One dimension per vocabulary word plus a constant bias dimension."""
    words = re.findall(r"[a-z]+", text.lower())
    return [float(words.count(term)) for term in VOCABULARY] + [0.1]


class FakeEmbedder(TextEmbedder):
    """
    Deterministic embedder. ``failures`` is a list of exceptions raised by
    successive ``embed_batch`` calls before normal behaviour resumes.
    """

    def __init__(self, failures=None, fail_on=None):
        self.failures = list(failures or [])
        self.fail_on = fail_on
        self.calls = []
        self._lock = threading.Lock()

    @property
    def model_name(self):
        return "keyword-test"

    def embed_batch(self, texts):
        with self._lock:
            self.calls.append(list(texts))
            if self.failures:
                raise self.failures.pop(0)
        if self.fail_on is not None:
            error = self.fail_on(texts)
            if error is not None:
                raise error
        return [keyword_vector(t) for t in texts]


class FakeProvider(CompletionProvider):
    """Completion provider answering through a ``responder(messages)`` callable."""

    def __init__(self, name=OPENAI, responder=None):
        self.name = name
        self.responder = responder or (lambda messages: "Answer.")
        self.calls = []

    def complete(self, messages, model, temperature, max_tokens):
        self.calls.append({
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        return self.responder(messages)


def last_user_content(messages):
    return [m for m in messages if m["role"] == "user"][-1]["content"]


@pytest.fixture
def store():
    return ChunkStore("sqlite://")


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def index(store, embedder, sleeps):
    return EmbeddingIndex(
        store,
        embedder,
        batch_delay=2.0,
        retry_policy=RetryPolicy(max_attempts=2, delay=60.0),
        sleep=sleeps.append,
    )


@pytest.fixture
def openai_provider():
    return FakeProvider(OPENAI)


@pytest.fixture
def anthropic_provider():
    return FakeProvider(ANTHROPIC)


@pytest.fixture
def router(openai_provider, anthropic_provider):
    return LLMRouter({OPENAI: openai_provider, ANTHROPIC: anthropic_provider})


DRAWING_PAGES = [
    "FIRST FLOOR PLAN\nCorridor door fire rating 90 minutes.\nSEE DETAIL 3/A-501 FOR DOOR HEAD\nSHEET NO: A-101",
    "",
    "ROOF PLAN\nRoof drain at each low point. Roof drain body cast iron.\nSHEET NO: A-201",
    "WALL SECTIONS\nWall flashing detail at stair parapet.\nSHEET NO: A-501",
]

SPEC_PAGES = [
    "SECTION 08 71 00 DOOR HARDWARE\nHardware for fire rated door assemblies shall be listed.",
    "SECTION 03 30 00 CAST IN PLACE CONCRETE\nConcrete strength 4000 psi at 28 days.",
]


def add_processed_document(store, project_id, filename, pages, document_type="drawing"):
    """Register a document and store its chunked pages."""
    document_id = store.add_document(project_id, filename, document_type=document_type)
    records = ConstructionDocumentChunker().process_pages(document_id, pages)
    store.store_document_pages(document_id, records, len(pages))
    return document_id


@pytest.fixture
def project(store):
    """
    A project with a drawing set (sheets A-101, A-201, A-501 on pages 1, 3, 4)
    and a two-page specification.
    """
    project_id = store.create_project("Riverside Clinic")
    drawing_id = add_processed_document(store, project_id, "A-Series.pdf", DRAWING_PAGES)
    spec_id = add_processed_document(store, project_id, "Specs.pdf", SPEC_PAGES, document_type="spec")
    return {"id": project_id, "drawing_id": drawing_id, "spec_id": spec_id}


EXPANSION_MARKER = "alternative phrasings"
DECOMPOSITION_MARKER = "broken down into simpler sub-questions"
TITLE_MARKER = "descriptive title"


def scripted(
    expansion="[]",
    decomposition='{"simple": true, "subquestions": []}',
    title="Door Ratings",
    answer="Answer.",
    synthesis="Synthesized answer."
):
    """
    Responder that recognises the helper prompts (expansion, decomposition,
    title, synthesis) and answers everything else with ``answer``, which may
    be a string or a callable taking the messages.
    """
    def responder(messages):
        if messages[0]["role"] == "system" and messages[0]["content"] == SYNTHESIS_SYSTEM_PROMPT:
            return synthesis
        prompt = last_user_content(messages)
        if EXPANSION_MARKER in prompt:
            return expansion
        if DECOMPOSITION_MARKER in prompt:
            return decomposition
        if TITLE_MARKER in prompt:
            if isinstance(title, Exception):
                raise title
            return title
        return answer(messages) if callable(answer) else answer
    return responder
