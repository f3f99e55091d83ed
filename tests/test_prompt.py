"""Tests for the prompt template."""

from app.context import ContextWindow
from app.prompt import build_prompt

EXPECTED = (
    "You are a very enthusiastic company representative who loves to help people! Given the "
    "following sections from the documentation, answer the question using only that information, "
    "outputted in Markdown format. If you are unsure and the answer is not explicitly written in "
    'the documentation, say "Sorry, I am not sure how to answer that."\n'
    "\n"
    "Context sections:\n"
    "---\n"
    "Refunds within 30 days.\n"
    "---\n"
    "\n"
    "\n"
    'Question: "What is the refund policy?"\n'
    "\n"
    "Answer (including related code snippets if available):"
)


def _context() -> ContextWindow:
    return ContextWindow(text="Refunds within 30 days.\n---\n", used_tokens=10, references=("refunds.md",))


def test_prompt_snapshot():
    prompt = build_prompt(_context(), "What is the refund policy?", "Sorry, I am not sure how to answer that.")

    assert prompt == EXPECTED


def test_prompt_is_deterministic():
    args = (_context(), "What is the refund policy?", "No idea!")

    assert build_prompt(*args) == build_prompt(*args) == build_prompt(*args)


def test_custom_fallback_text_is_verbatim():
    prompt = build_prompt(_context(), "q", 'Ask {support} at "help desk"')

    assert 'say "Ask {support} at "help desk""' in prompt


def test_question_with_braces_is_not_formatted():
    prompt = build_prompt(_context(), "What does {id} mean?", "x")

    assert 'Question: "What does {id} mean?"' in prompt


def test_empty_context_keeps_template_shape():
    prompt = build_prompt(ContextWindow(text="", used_tokens=0, references=()), "q", "x")

    assert "Context sections:\n---\n\n\nQuestion:" in prompt
