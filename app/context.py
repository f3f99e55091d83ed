"""Token-budgeted context assembly from ranked file sections.

Provides:
- FileSection: one retrieved chunk with its path, token count and similarity.
- ContextWindow: the assembled context text, tokens used, and deduplicated references.
- build_context: walks ranked sections until the token cutoff is reached.
"""
from dataclasses import dataclass
from typing import List, Sequence, Tuple

SECTION_SEPARATOR = "\n---\n"


@dataclass(frozen=True)
class FileSection:
    """A retrieved chunk of a source file.

    Attributes:
        path: Path of the file the chunk belongs to; used as the reference.
        content: Chunk text.
        token_count: Tokens in `content`, computed at ingestion time.
        similarity: Cosine similarity to the query (higher is better).
    """
    path: str
    content: str
    token_count: int
    similarity: float


@dataclass(frozen=True)
class ContextWindow:
    text: str
    used_tokens: int
    references: Tuple[str, ...]


def build_context(sections: Sequence[FileSection], cutoff: int) -> ContextWindow:
    """Accumulate ranked sections into a context window bounded by `cutoff` tokens.

    Sections are taken in the given order (never re-sorted). The running total
    includes the current section before the check, and the walk stops as soon as it
    reaches `cutoff`, before that section's text is appended. A first section that
    alone meets the cutoff therefore yields an empty context.

    Args:
        sections: Sections ranked best-first.
        cutoff: Token budget for the context.

    Returns:
        ContextWindow: Text of the included sections, each stripped and followed by
            a separator line, the tokens they use, and their paths in first-seen order.
    """
    running = 0
    used = 0
    parts: List[str] = []
    references: List[str] = []
    for section in sections:
        running += section.token_count
        if running >= cutoff:
            break
        used = running
        parts.append(section.content.strip() + SECTION_SEPARATOR)
        if section.path not in references:
            references.append(section.path)
    return ContextWindow(text="".join(parts), used_tokens=used, references=tuple(references))
