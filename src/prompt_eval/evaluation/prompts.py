"""Message builders for the three pipeline stages and score extraction.

Public API (the "studs"):
    prompt_generation_messages: Ask the prompt model for a system prompt
    answer_messages: Put a question to the work model under a system prompt
    scoring_messages: Ask the scoring model to grade an answer
    extract_score: First integer in a grading response (0 if none)
"""

from __future__ import annotations

import re

from ..llm.types import ChatMessage
from .models import Framework, TestCase

_INTEGER = re.compile(r"\d+")

PROMPT_GENERATION_TEMPLATE = """\
Using the project background and the prompt framework definition below, \
write a high-quality system prompt.

**Project background and material:**
{context}

---

**Prompt framework definition:**
Name: {name}
Description: {description}
Core components:
{properties}

---

Combine the project background with the framework definition and output a \
system prompt that can be used directly to guide the work model. Output only \
the prompt itself, without any explanation or heading."""

SCORING_TEMPLATE = """\
You are a strict grading expert. Grade the model's answer against the \
question and the reference answer.
Rubric: the maximum score is {max_score}.
- {max_score}: complete and correct, consistent with the reference answer
- 1 to {below_max}: partially correct or incomplete
- 0: wrong, irrelevant or missing
Reply with a single Arabic numeral only, without any other words, symbols \
or explanation.

---
**Question:**
{question}

---
**Reference answer:**
{reference}

---
**Model's answer:**
{answer}"""


def prompt_generation_messages(context: str, framework: Framework) -> list[ChatMessage]:
    properties = "\n".join(f"- {p.name}: {p.description}" for p in framework.properties)
    return [
        ChatMessage.user(
            PROMPT_GENERATION_TEMPLATE.format(
                context=context,
                name=framework.name,
                description=framework.description,
                properties=properties,
            )
        )
    ]


def answer_messages(system_prompt: str, test_case: TestCase) -> list[ChatMessage]:
    return [ChatMessage.system(system_prompt), ChatMessage.user(test_case.question)]


def scoring_messages(test_case: TestCase, model_answer: str) -> list[ChatMessage]:
    return [
        ChatMessage.user(
            SCORING_TEMPLATE.format(
                max_score=test_case.max_score,
                below_max=max(test_case.max_score - 1, 0),
                question=test_case.question,
                reference=test_case.reference_answer,
                answer=model_answer,
            )
        )
    ]


def extract_score(text: str | None) -> int:
    """Return the first integer in ``text``, or 0 when there is none.

    >>> extract_score("Score: 8/10")
    8
    >>> extract_score("no idea")
    0
    """
    if not text:
        return 0
    match = _INTEGER.search(text.strip())
    return int(match.group()) if match else 0


__all__ = [
    "prompt_generation_messages",
    "answer_messages",
    "scoring_messages",
    "extract_score",
    "PROMPT_GENERATION_TEMPLATE",
    "SCORING_TEMPLATE",
]
