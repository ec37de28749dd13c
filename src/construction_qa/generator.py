"""
Answer Generator.

Answers one question in one of three ways:

- direct: system prompt with the retrieved context, recent history, question
- chain of thought: as direct, but complex questions on a reasoning model
  get a step-by-step scaffold in place of the bare question
- decomposed: complex questions that split into several sub-questions are
  answered one sub-question at a time, each with its own retrieval, and
  the sub-answers are synthesized into one final answer
"""

import logging
from typing import Dict, List, Optional, Sequence

from .context import ContextAssembler, format_context
from .llm import LLMRouter
from .models import CHAIN_OF_THOUGHT, DECOMPOSED, DIRECT, GenerationResult, RetrievedContent
from .prompts import (
    SYNTHESIS_SYSTEM_PROMPT,
    chain_of_thought_prompt,
    synthesis_prompt,
    system_prompt,
    with_previous_answers,
)
from .query import QueryExpander

logger = logging.getLogger(__name__)

DEFAULT_RELEVANT_CONTENT_LIMIT = 15
DEFAULT_SUBQUESTION_LIMIT = 10
HISTORY_LIMIT = 10
SYNTHESIS_TEMPERATURE = 0.3


def unique_queries(queries: Sequence[str]) -> List[str]:
    """Drop blank and repeated queries, keeping the first occurrence."""
    return list(dict.fromkeys(q.strip() for q in queries if q and q.strip()))


class AnswerGenerator:
    """
    Produces the answer text for one question.

    Args:
        router: Completion router for the registry models
        assembler: Retrieval and context assembly
        expander: Query expansion and decomposition
        use_multi_query: Search alternative phrasings as well
        use_decomposition: Split complex questions into sub-questions
        relevant_content_limit: Chunks kept for the main question
        subquestion_limit: Chunks retrieved per sub-question
    """

    def __init__(
        self,
        router: LLMRouter,
        assembler: ContextAssembler,
        expander: QueryExpander,
        use_multi_query: bool = True,
        use_decomposition: bool = True,
        relevant_content_limit: int = DEFAULT_RELEVANT_CONTENT_LIMIT,
        subquestion_limit: int = DEFAULT_SUBQUESTION_LIMIT
    ):
        self.router = router
        self.assembler = assembler
        self.expander = expander
        self.use_multi_query = use_multi_query
        self.use_decomposition = use_decomposition
        self.relevant_content_limit = relevant_content_limit
        self.subquestion_limit = subquestion_limit

    def _answer(
        self,
        question: str,
        context: str,
        history: Sequence[Dict],
        project_name: str,
        model_id: str,
        chain_of_thought: bool = False
    ) -> str:
        messages = [{"role": "system", "content": system_prompt(project_name, context)}]
        for message in list(history)[-HISTORY_LIMIT:]:
            messages.append({"role": message["role"], "content": message["content"]})

        user_turn = chain_of_thought_prompt(question) if chain_of_thought else question
        messages.append({"role": "user", "content": user_turn})

        return self.router.complete(model_id, messages)

    def _answer_decomposed(
        self,
        subquestions: List[str],
        project_id: int,
        history: Sequence[Dict],
        project_name: str,
        model_id: str
    ) -> str:
        answers: List[str] = []
        for i, subquestion in enumerate(subquestions):
            logger.info("Answering sub-question %d/%d: %s", i + 1, len(subquestions), subquestion)
            content = self.assembler.retrieve(project_id, [subquestion], self.subquestion_limit)
            context = with_previous_answers(
                format_context(content.chunks, content.visual_findings),
                subquestions,
                answers,
            )
            answers.append(self._answer(subquestion, context, history, project_name, model_id))

        return self.router.complete(
            model_id,
            [
                {"role": "system", "content": SYNTHESIS_SYSTEM_PROMPT},
                {"role": "user", "content": synthesis_prompt(subquestions, answers)},
            ],
            temperature=SYNTHESIS_TEMPERATURE,
        )

    def generate(
        self,
        question: str,
        project_id: int,
        project_name: str,
        history: Optional[Sequence[Dict]] = None,
        model_id: str = "gpt-4o"
    ) -> GenerationResult:
        """
        Answer a question about a project's documents.

        Args:
            question: User question
            project_id: Project whose documents are searched
            project_name: Shown to the model in the system prompt
            history: Earlier messages of the chat (``role``/``content``)
            model_id: Registry model id

        Returns:
            GenerationResult with the answer text and the strategy used

        Raises:
            UnknownModelError: If ``model_id`` is not in the registry
            ProviderError: If the answer model call fails
        """
        config = self.router.get_config(model_id)
        history = history or []
        logger.info("Using model: %s (%s)", model_id, config.name)

        queries = [question]
        if self.use_multi_query:
            queries = unique_queries([question] + self.expander.expand(question))
            logger.info("Searching with %d query variations", len(queries))

        content: RetrievedContent = self.assembler.retrieve(project_id, queries, self.relevant_content_limit)

        complex_question = self.use_decomposition and self.expander.is_complex(question, len(content.chunks))
        subquestions = None
        if complex_question:
            logger.info("Complex question, attempting decomposition")
            subquestions = self.expander.decompose(question)

        if subquestions and len(subquestions) > 1:
            logger.info("Using decomposition into %d sub-questions", len(subquestions))
            answer = self._answer_decomposed(subquestions, project_id, history, project_name, model_id)
            strategy = DECOMPOSED
        else:
            subquestions = None
            chain_of_thought = complex_question and config.reasoning
            context = format_context(content.chunks, content.visual_findings)
            answer = self._answer(question, context, history, project_name, model_id, chain_of_thought)
            strategy = CHAIN_OF_THOUGHT if chain_of_thought else DIRECT

        return GenerationResult(
            content=answer,
            strategy=strategy,
            queries=queries,
            subquestions=subquestions,
            chunks_used=len(content.chunks),
            findings_used=len(content.visual_findings),
            metadata={"model": model_id, "complex": complex_question},
        )
