"""Tests for answer generation strategies."""

import pytest

from conftest import last_user_content, scripted
from construction_qa.context import ContextAssembler
from construction_qa.exceptions import UnknownModelError
from construction_qa.generator import AnswerGenerator, unique_queries
from construction_qa.models import CHAIN_OF_THOUGHT, DECOMPOSED, DIRECT
from construction_qa.prompts import PREVIOUS_SUB_ANSWERS_HEADER, SYNTHESIS_SYSTEM_PROMPT
from construction_qa.query import QueryExpander

SIMPLE_QUESTION = "What is the door fire rating?"
COMPLEX_QUESTION = "Compare the roof drain with the wall flashing"


@pytest.fixture
def assembler(store, index, project):
    index.embed_unembedded(project["id"])
    return ContextAssembler(store, index)


@pytest.fixture
def retrievals(assembler):
    """Record every retrieval made through the assembler."""
    calls = []
    original = assembler.retrieve

    def spy(project_id, queries, limit):
        calls.append((list(queries), limit))
        return original(project_id, queries, limit)

    assembler.retrieve = spy
    return calls


def make_generator(router, assembler, **kwargs):
    return AnswerGenerator(router, assembler, QueryExpander(router), **kwargs)


def answer_calls(provider):
    """Provider calls that carry the answering system prompt."""
    return [
        c for c in provider.calls
        if c["messages"][0]["role"] == "system" and c["messages"][0]["content"] != SYNTHESIS_SYSTEM_PROMPT
    ]


class TestUniqueQueries:
    """Tests for unique_queries."""

    def test_dedup_and_blank(self):
        """Test repeated and blank queries are dropped."""
        assert unique_queries(["a", " a ", "", "b", "a"]) == ["a", "b"]


class TestDirectAnswer:
    """Tests for the direct strategy."""

    def test_direct_with_expansion(self, router, openai_provider, assembler, project):
        """Test expansion, retrieval and a single answer call."""
        openai_provider.responder = scripted(
            expansion=f'["door fire rating 90 minutes", "{SIMPLE_QUESTION}"]',
            answer="90 minutes [A-Series.pdf, Sheet A-101]",
        )
        result = make_generator(router, assembler).generate(SIMPLE_QUESTION, project["id"], "Riverside Clinic")

        assert result.strategy == DIRECT
        assert result.content == "90 minutes [A-Series.pdf, Sheet A-101]"
        assert result.queries == [SIMPLE_QUESTION, "door fire rating 90 minutes"]
        assert result.subquestions is None
        assert result.metadata == {"model": "gpt-4o", "complex": False}

        calls = answer_calls(openai_provider)
        assert len(calls) == 1
        assert len(openai_provider.calls) == 2
        system = calls[0]["messages"][0]["content"]
        assert '"Riverside Clinic"' in system
        assert "[Source 1: Drawing - A-Series.pdf, Sheet A-101" in system
        assert last_user_content(calls[0]["messages"]) == SIMPLE_QUESTION

    def test_without_multi_query(self, router, openai_provider, assembler, project):
        """Test that expansion is skipped when disabled."""
        generator = make_generator(router, assembler, use_multi_query=False)
        result = generator.generate(SIMPLE_QUESTION, project["id"], "Riverside Clinic")

        assert result.queries == [SIMPLE_QUESTION]
        assert len(openai_provider.calls) == 1

    def test_malformed_expansion_uses_question(self, router, openai_provider, assembler, project):
        """Test fallback to the original question when expansion is unusable."""
        openai_provider.responder = scripted(expansion="Sure! Here are some ideas:")
        result = make_generator(router, assembler).generate(SIMPLE_QUESTION, project["id"], "Riverside Clinic")

        assert result.queries == [SIMPLE_QUESTION]
        assert result.content == "Answer."

    def test_history_window(self, router, openai_provider, assembler, project):
        """Test that only the last ten history messages are sent."""
        history = [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"}
            for i in range(12)
        ]
        generator = make_generator(router, assembler, use_multi_query=False)
        generator.generate(SIMPLE_QUESTION, project["id"], "Riverside Clinic", history=history)

        messages = openai_provider.calls[0]["messages"]
        assert len(messages) == 12
        assert messages[1]["content"] == "message 2"
        assert messages[-2]["content"] == "message 11"
        assert messages[-1] == {"role": "user", "content": SIMPLE_QUESTION}

    def test_unknown_model(self, router, openai_provider, assembler, project):
        """Test that an unknown model fails before any provider call."""
        with pytest.raises(UnknownModelError):
            make_generator(router, assembler).generate(SIMPLE_QUESTION, project["id"], "P", model_id="nope")
        assert openai_provider.calls == []


class TestChainOfThought:
    """Tests for the chain-of-thought strategy."""

    def test_reasoning_model_gets_scaffold(self, router, openai_provider, anthropic_provider, assembler, project):
        """Test complex question on a reasoning model."""
        openai_provider.responder = scripted()
        anthropic_provider.responder = scripted(answer="Step by step answer.")

        result = make_generator(router, assembler).generate(
            COMPLEX_QUESTION, project["id"], "Riverside Clinic", model_id="claude-sonnet-4"
        )

        assert result.strategy == CHAIN_OF_THOUGHT
        assert result.content == "Step by step answer."
        assert result.metadata["complex"] is True

        prompt = last_user_content(anthropic_provider.calls[0]["messages"])
        assert prompt.startswith(f"Question: {COMPLEX_QUESTION}")
        assert "Think step-by-step" in prompt

        # expansion and decomposition use the helper model
        assert [c["model"] for c in openai_provider.calls] == ["gpt-4o-mini", "gpt-4o-mini"]

    def test_non_reasoning_model_gets_bare_question(self, router, openai_provider, assembler, project):
        """Test complex question on a model without the reasoning flag."""
        openai_provider.responder = scripted()
        result = make_generator(router, assembler).generate(COMPLEX_QUESTION, project["id"], "Riverside Clinic")

        assert result.strategy == DIRECT
        assert last_user_content(answer_calls(openai_provider)[0]["messages"]) == COMPLEX_QUESTION


class TestDecomposition:
    """Tests for the decomposed strategy."""

    SUBQUESTIONS = [
        "Where are the roof drains?",
        "Where is the wall flashing?",
        "How do they connect?",
    ]

    def test_three_subquestions(self, router, openai_provider, assembler, retrievals, project):
        """Test one retrieval and one answer per sub-question, then a synthesis."""
        openai_provider.responder = scripted(
            decomposition='{"simple": false, "subquestions": %s}' % str(self.SUBQUESTIONS).replace("'", '"'),
            answer=lambda messages: "Answer to: " + last_user_content(messages),
            synthesis="Combined [A-Series.pdf, Sheet A-201]",
        )

        result = make_generator(router, assembler).generate(COMPLEX_QUESTION, project["id"], "Riverside Clinic")

        assert result.strategy == DECOMPOSED
        assert result.content == "Combined [A-Series.pdf, Sheet A-201]"
        assert result.subquestions == self.SUBQUESTIONS

        # main retrieval plus one per sub-question
        assert retrievals[1:] == [([q], 10) for q in self.SUBQUESTIONS]

        calls = answer_calls(openai_provider)
        assert [last_user_content(c["messages"]) for c in calls] == self.SUBQUESTIONS

        second_context = calls[1]["messages"][0]["content"]
        assert PREVIOUS_SUB_ANSWERS_HEADER in second_context
        assert f"Sub-question 1: {self.SUBQUESTIONS[0]}\nAnswer: Answer to: {self.SUBQUESTIONS[0]}" in second_context
        assert PREVIOUS_SUB_ANSWERS_HEADER not in calls[0]["messages"][0]["content"]

        synthesis = openai_provider.calls[-1]
        assert synthesis["messages"][0]["content"] == SYNTHESIS_SYSTEM_PROMPT
        assert synthesis["temperature"] == 0.3
        assert "**Sub-question 3**: How do they connect?" in synthesis["messages"][1]["content"]

    def test_single_subquestion_answers_directly(self, router, openai_provider, assembler, retrievals, project):
        """Test that a one-item decomposition is not used."""
        openai_provider.responder = scripted(decomposition='{"simple": false, "subquestions": ["Only one?"]}')

        result = make_generator(router, assembler).generate(COMPLEX_QUESTION, project["id"], "Riverside Clinic")

        assert result.strategy == DIRECT
        assert result.subquestions is None
        assert len(retrievals) == 1

    def test_decomposition_disabled(self, router, openai_provider, assembler, project):
        """Test that no decomposition call is made when disabled."""
        openai_provider.responder = scripted()
        generator = make_generator(router, assembler, use_decomposition=False)

        result = generator.generate(COMPLEX_QUESTION, project["id"], "Riverside Clinic")

        assert result.metadata["complex"] is False
        prompts = [last_user_content(c["messages"]) for c in openai_provider.calls]
        assert not any("sub-questions" in p for p in prompts)
