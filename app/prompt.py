"""Prompt template for grounded documentation answers."""
from app.context import ContextWindow

PREAMBLE = (
    "You are a very enthusiastic company representative who loves to help people! "
    "Given the following sections from the documentation, answer the question using only "
    "that information, outputted in Markdown format. If you are unsure and the answer is "
    'not explicitly written in the documentation, say "{i_dont_know}"'
)

TEMPLATE = """{preamble}

Context sections:
---
{context}

Question: "{question}"

Answer (including related code snippets if available):"""


def build_prompt(context: ContextWindow, question: str, i_dont_know: str) -> str:
    """Render the generation prompt around the budgeted context.

    Pure and deterministic: the same inputs always produce the same string.

    Args:
        context: Budgeted context window.
        question: Sanitized user question.
        i_dont_know: Verbatim fallback answer the model must use when unsure.

    Returns:
        str: The full prompt.
    """
    preamble = PREAMBLE.format(i_dont_know=i_dont_know)
    return TEMPLATE.format(preamble=preamble, context=context.text, question=question)
