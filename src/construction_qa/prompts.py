"""
Prompt templates for answering questions about construction documents.
"""

from typing import List

from .citation_format import CITATION_INSTRUCTIONS

NO_DOCUMENTS_MESSAGE = (
    "I don't have any processed documents for this project yet. "
    "Please upload and process documents first."
)

SYSTEM_PROMPT_TEMPLATE = """You are an expert construction document analyst with deep knowledge of:

## Domain Expertise
- Building codes (IBC, IRC, NEC, UPC, IMC)
- Construction methods and sequencing
- Material properties and compatibilities
- Spatial relationships in floor plans
- MEP (Mechanical, Electrical, Plumbing) system interactions
- Structural load paths and engineering principles
- Constructability and coordination issues
- AIA standards and construction documentation practices

## Reasoning Approach
When analyzing construction documents:
1. **Synthesize** information across multiple document sources (drawings, specs, details)
2. **Infer** implicit requirements from industry standards and common practice
3. **Identify** conflicts, gaps, ambiguities, or coordination issues
4. **Explain** the reasoning behind specifications and design decisions
5. **Consider** constructability, sequencing, and real-world implications
6. **Provide context** about how different building systems interact

## Response Quality Standards
- Provide engineering reasoning and technical insight, not just text retrieval
- Note assumptions and confidence levels when making inferences
- Identify when information requires professional engineering judgment
- Suggest follow-up questions for deeper understanding
- Flag potential issues or areas requiring clarification

## Project Context
You are analyzing documents for project: "{project_name}"

## Citation Requirements
{citation_instructions}

## Formatting Guidelines
- Use **bold** for important terms, requirements, or key points
- Use bullet points (-) for lists of items, requirements, or findings
- Use numbered lists (1. 2. 3.) for sequential steps or prioritized items
- Use headers (##) to organize longer responses into sections
- Structure your responses for easy readability

## Available Document Context
{context}"""

CHAIN_OF_THOUGHT_TEMPLATE = """Question: {question}

Think step-by-step before providing your final answer:

1. **Understanding**: What is being asked, both explicitly and implicitly?
2. **Information Gathering**: What relevant information is available in the context?
3. **Analysis**: What can be inferred from standards, practices, and relationships?
4. **Synthesis**: How do different pieces of information connect?
5. **Considerations**: What are potential issues, alternatives, or additional context?

Then provide your final answer with proper citations."""

EXPANSION_PROMPT_TEMPLATE = """Given this construction question: "{question}"

Generate 3 alternative phrasings that would help find relevant information in construction documents:
1. Technical/specification focused phrasing
2. Visual/drawing focused phrasing
3. Compliance/code/standards focused phrasing

Return ONLY a JSON array of the 3 alternative questions, nothing else.
Example format: ["question 1", "question 2", "question 3"]"""

DECOMPOSITION_PROMPT_TEMPLATE = """Analyze this construction question and determine if it needs to be broken down into simpler sub-questions:

"{question}"

If the question is simple and can be answered directly, return: {{"simple": true, "subquestions": []}}

If the question is complex and requires multiple steps or pieces of information, break it down into 2-4 sub-questions in logical dependency order.

Return ONLY a JSON object in this format:
{{
  "simple": false,
  "subquestions": ["sub-question 1", "sub-question 2", ...]
}}"""

SYNTHESIS_SYSTEM_PROMPT = (
    "You are synthesizing multiple sub-answers into a comprehensive response. "
    "Maintain all citations and organize the information logically."
)

TITLE_PROMPT_TEMPLATE = (
    'Generate a brief, descriptive title (5-7 words max) for a conversation that starts '
    'with this question: "{question}". Just return the title, nothing else.'
)

PREVIOUS_SUB_ANSWERS_HEADER = "## Previous Sub-Answers:"


def system_prompt(project_name: str, context: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(
        project_name=project_name,
        citation_instructions=CITATION_INSTRUCTIONS,
        context=context,
    )


def chain_of_thought_prompt(question: str) -> str:
    return CHAIN_OF_THOUGHT_TEMPLATE.format(question=question)


def expansion_prompt(question: str) -> str:
    return EXPANSION_PROMPT_TEMPLATE.format(question=question)


def decomposition_prompt(question: str) -> str:
    return DECOMPOSITION_PROMPT_TEMPLATE.format(question=question)


def title_prompt(question: str) -> str:
    return TITLE_PROMPT_TEMPLATE.format(question=question)


def with_previous_answers(context: str, subquestions: List[str], answers: List[str]) -> str:
    """
    Append earlier sub-answers to a sub-question's context so later
    sub-questions can build on them.
    """
    if not answers:
        return context
    previous = "\n\n".join(
        f"Sub-question {i + 1}: {subquestions[i]}\nAnswer: {answer}"
        for i, answer in enumerate(answers)
    )
    return f"{context}\n\n{PREVIOUS_SUB_ANSWERS_HEADER}\n{previous}"


def synthesis_prompt(subquestions: List[str], answers: List[str]) -> str:
    pairs = "\n\n---\n\n".join(
        f"**Sub-question {i + 1}**: {question}\n**Answer**: {answer}"
        for i, (question, answer) in enumerate(zip(subquestions, answers))
    )
    return (
        "Based on the following sub-questions and their answers, provide a comprehensive "
        "final answer that synthesizes all the information:\n\n"
        f"{pairs}\n\n"
        "Provide a well-organized, comprehensive answer that combines insights from all "
        "sub-answers. Maintain all citations from the sub-answers exactly as written."
    )
