"""
Query expansion, complexity detection and decomposition.

Expansion rephrases a question along three axes so that retrieval can find
content that is worded differently in specs, on drawings and in code
references. Decomposition splits a multi-part question into sub-questions
that are answered one after another.

Neither step ever fails the question: any provider or parsing problem
falls back to answering the original question directly.
"""

import logging
import re
from typing import List, Optional

from .llm import LLMRouter
from .prompts import decomposition_prompt, expansion_prompt
from .utils import parse_json_response

logger = logging.getLogger(__name__)

DEFAULT_EXPANSION_MODEL = "gpt-4o-mini"

EXPANSION_COUNT = 3
EXPANSION_TEMPERATURE = 0.5
EXPANSION_MAX_TOKENS = 200
DECOMPOSITION_TEMPERATURE = 0.3
DECOMPOSITION_MAX_TOKENS = 300

LONG_QUESTION_WORDS = 15
MANY_SOURCES = 10

COMPLEXITY_INDICATORS = [
    re.compile(r"\b(why|how|explain|compare|difference|relationship|impact|affect)\b", re.IGNORECASE),
    re.compile(r"\b(multiple|several|various|all|entire|complete)\b", re.IGNORECASE),
    re.compile(r"\b(conflict|issue|problem|concern|coordination)\b", re.IGNORECASE),
    # Multiple conditions
    re.compile(r"\band\b.*\band\b", re.IGNORECASE),
    # Multiple questions
    re.compile(r"\?.*\?"),
]


def _string_items(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class QueryExpander:
    """
    LLM-backed query expansion and decomposition.

    Example:
        >>> expander = QueryExpander(router)
        >>> expander.expand("What is the fire rating of the stair doors?")
        ['What fire rating do the specifications require for stair doors?', ...]
    """

    def __init__(self, router: LLMRouter, model: str = DEFAULT_EXPANSION_MODEL):
        self.router = router
        self.model = model

    def _ask(self, prompt: str, temperature: float, max_tokens: int):
        response = self.router.complete(
            self.model,
            [{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return parse_json_response(response)

    def expand(self, question: str) -> List[str]:
        """
        Ask for alternative phrasings of a question.

        Returns:
            Up to 3 alternatives, or ``[question]`` when the model call fails
            or does not return a non-empty JSON array of strings.
        """
        try:
            parsed = self._ask(expansion_prompt(question), EXPANSION_TEMPERATURE, EXPANSION_MAX_TOKENS)
        except Exception as e:
            logger.warning("Query expansion failed, using original question: %s", e, exc_info=True)
            return [question]

        alternatives = _string_items(parsed)
        if not alternatives:
            logger.warning("Query expansion returned no usable phrasings, using original question")
            return [question]
        return alternatives[:EXPANSION_COUNT]

    @staticmethod
    def is_complex(question: str, retrieved_count: int = 0) -> bool:
        """
        Heuristic: long questions, questions with reasoning or multi-part
        wording, and questions that pull in many sources are complex.
        """
        if len(question.split()) > LONG_QUESTION_WORDS:
            return True
        if any(pattern.search(question) for pattern in COMPLEXITY_INDICATORS):
            return True
        return retrieved_count > MANY_SOURCES

    def decompose(self, question: str) -> Optional[List[str]]:
        """
        Ask whether a question should be split into sub-questions.

        Returns:
            Sub-questions in dependency order, or None when the question is
            simple, the list is empty or the response cannot be used.
        """
        try:
            parsed = self._ask(decomposition_prompt(question), DECOMPOSITION_TEMPERATURE, DECOMPOSITION_MAX_TOKENS)
        except Exception as e:
            logger.warning("Query decomposition failed, answering directly: %s", e, exc_info=True)
            return None

        if not isinstance(parsed, dict) or parsed.get("simple"):
            return None
        subquestions = _string_items(parsed.get("subquestions"))
        return subquestions or None
