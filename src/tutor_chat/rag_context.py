"""Formatting of the synthetic context turn that is appended to a forked conversation.

The context turn carries retrieved course material, the bridge instructions,
the student's question and the struggle-topic directive. It only ever exists
in the fork handed to the provider, so anything that reads stored history
(the memory agent, restored transcripts from older records) strips it back
out with :func:`strip_retrieval_context`.
"""

from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger

from tutor_chat.models import RetrievedChunk

MATERIALS_OPEN = "<course_materials>"
MATERIALS_CLOSE = "</course_materials>"

NO_DOCUMENTS_NOTICE = "No relevant documents found in the course materials for this question."

CONTEXT_SEPARATOR = "\n\n---\n\n"

QUESTION_MARKER = "Student's question:"

BRIDGE_PROMPT = f"""\
Based on the course materials and context provided above, help the student using the \
Socratic method. Ask ONLY ONE question at a time.

1. Ask one question only, then wait for the student's answer.
2. Cite specific source locations (chapter, section or module) when you use the materials.
3. If no relevant documents were found, say that the course materials do not cover this \
and continue from general engineering knowledge.
4. Build on the student's previous answer and acknowledge what they got right.

{QUESTION_MARKER}"""

STRUGGLE_CHECK_ALLOWED = "PROACTIVE_STRUGGLE_CHECK: ALLOWED"
STRUGGLE_CHECK_NOT_ALLOWED = "PROACTIVE_STRUGGLE_CHECK: NOT ALLOWED"

_MATERIALS_RE = re.compile(r"<course_materials>[\s\S]*?</course_materials>")
_BRIDGE_RE = re.compile(r"Based on the course materials[\s\S]*?Student's question:")
_DIRECTIVE_RE = re.compile(r"\n*<struggle_directive>[\s\S]*?</struggle_directive>\s*")


def _parse_metadata(metadata: Any) -> dict:
    if isinstance(metadata, dict):
        return metadata
    if isinstance(metadata, str) and metadata.strip():
        try:
            parsed = json.loads(metadata)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError as ex:
            logger.warning(f"Could not parse retrieved chunk metadata: {ex}")
    return {}


def _objective_text(objective: Any) -> str:
    if isinstance(objective, str):
        return objective
    if isinstance(objective, dict):
        return str(
            objective.get("text")
            or objective.get("LearningObjective")
            or objective.get("learningObjective")
            or ""
        )
    return ""


def format_documents(chunks: list[RetrievedChunk]) -> str:
    """Render retrieved chunks as a ``<course_materials>`` block.

    An empty result still produces a block, holding :data:`NO_DOCUMENTS_NOTICE`,
    so the provider always gets an explicit signal about retrieval.
    """
    if not chunks:
        return f"{MATERIALS_OPEN}\n{NO_DOCUMENTS_NOTICE}\n{MATERIALS_CLOSE}"

    lines = [MATERIALS_OPEN]
    for index, chunk in enumerate(chunks, start=1):
        metadata = _parse_metadata(chunk.metadata)
        lines.append(f"\n--- Document {index} ---")

        chapter = metadata.get("topicOrWeekTitle") or ""
        if chapter:
            lines.append(f"chapter: {chapter}")

        objectives = metadata.get("learningObjectives")
        if isinstance(objectives, list):
            texts = [t for t in (_objective_text(o) for o in objectives) if t]
            if texts:
                lines.append("learningObjectives:")
                lines.extend(f"  {i}. {text}" for i, text in enumerate(texts, start=1))

        lines.append(f"content: {chunk.content}")
    lines.append(MATERIALS_CLOSE)
    return "\n".join(lines)


def format_struggle_directive(struggle_topics: list[str], *, allow_check: bool) -> str:
    lines = ["<struggle_directive>"]
    if struggle_topics:
        lines.append(f"Student struggles with: {', '.join(struggle_topics)}")
    if struggle_topics and allow_check:
        lines.append(STRUGGLE_CHECK_ALLOWED)
        lines.append(
            "If it fits naturally, you may end this reply by asking whether the student now "
            "feels confident with ONE of these topics, followed on its own line by the tag "
            '<questionUnstruggle Topic="TOPIC"> with TOPIC replaced by that topic.'
        )
    else:
        lines.append(STRUGGLE_CHECK_NOT_ALLOWED)
        lines.append("Do not ask the student about their confidence with any struggle topic in this reply.")
    lines.append("</struggle_directive>")
    return "\n".join(lines)


def build_context_turn(
    chunks: list[RetrievedChunk],
    question: str,
    *,
    struggle_topics: list[str],
    allow_struggle_check: bool,
) -> str:
    materials = format_documents(chunks)
    directive = format_struggle_directive(struggle_topics, allow_check=allow_struggle_check)
    return f"{materials}{CONTEXT_SEPARATOR}{BRIDGE_PROMPT} {question}\n\n{directive}"


def strip_retrieval_context(text: str) -> str:
    """Return only the student's own words from a turn that may carry retrieval context."""
    if MATERIALS_OPEN not in text and QUESTION_MARKER not in text:
        return text.strip()

    content = _MATERIALS_RE.sub("", text)
    content = _DIRECTIVE_RE.sub("", content)
    content = content.replace(CONTEXT_SEPARATOR, "")
    content = _BRIDGE_RE.sub("", content)

    marker_index = content.find(QUESTION_MARKER)
    if marker_index != -1:
        content = content[marker_index + len(QUESTION_MARKER):]
    return content.strip()
