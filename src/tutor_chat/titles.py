from __future__ import annotations

import re

from tutor_chat.models import PLACEHOLDER_TITLE

TITLE_WORD_LIMIT = 10

_BLOCK_MATH_RE = re.compile(r"\$\$[\s\S]*?\$\$")
_INLINE_MATH_RE = re.compile(r"\$[^$]*?\$")
_TAG_RE = re.compile(r"<[^>]*>")
_ARTEFACT_RE = re.compile(r"<Artefact>[\s\S]*?</Artefact>", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def needs_title(current_title: str | None) -> bool:
    title = (current_title or "").strip()
    return title == "" or title == PLACEHOLDER_TITLE


def title_from_response(response_text: str, *, max_words: int = TITLE_WORD_LIMIT) -> str:
    """Derive a short chat title from the first words of an assistant reply.

    Math, diagrams, markup and punctuation are removed first. Falls back to
    the placeholder title when nothing usable is left.
    """
    text = _BLOCK_MATH_RE.sub(" ", response_text)
    text = _INLINE_MATH_RE.sub(" ", text)
    text = _ARTEFACT_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    text = _NON_WORD_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()

    words = [w for w in text.split(" ") if w]
    title = " ".join(words[:max_words])
    return title or PLACEHOLDER_TITLE
