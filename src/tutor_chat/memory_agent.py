"""Struggle-topic memory.

The memory agent keeps, per student and course, a sorted list of lowercase
topics the student has had trouble with. After enough conversation it asks
the model to name new topics from a short window of recent turns and merges
them into the stored list. The topics already on record go into the
analysis system prompt so the model only reports new ones, and the reply is
a JSON object with a ``StruggleTopics`` array. The chat core reads the list
back into the system prompt and the per-exchange struggle directive.
"""

from __future__ import annotations

import json
from typing import Protocol, runtime_checkable

from loguru import logger

from tutor_chat.provider import LLMProvider

STRUGGLE_ANALYSIS_PROMPT = """\
Analyze the following conversation between a student and an AI tutor. Identify specific \
topics, concepts, or subject areas that the student appears to be struggling with or \
having difficulty understanding.

Focus on:
- Technical concepts or topics the student asked questions about
- Areas where the student seemed confused or needed clarification
- Topics that required multiple explanations or follow-up questions
- Subject matter the student explicitly mentioned having trouble with

Each topic should be a concise phrase (1-3 words) representing a specific concept or \
subject area. Do not repeat a topic that is already recorded for this student.

Respond with ONLY a JSON object of this form, with no other text:
{"StruggleTopics": ["thermodynamics", "nernst equation", "mass flow rates"]}

Return {"StruggleTopics": []} when the student is not struggling with anything new.
"""

ANALYSIS_MAX_TOKENS = 256
ANALYSIS_TEMPERATURE = 0.2


@runtime_checkable
class StruggleMemory(Protocol):
    async def get_struggle_topics(self, user_id: str, course_name: str) -> list[str]: ...

    async def analyze(self, user_id: str, course_name: str, exchange_text: str) -> None: ...

    async def remove_struggle_topic(self, user_id: str, course_name: str, topic: str) -> bool: ...


class StruggleTopicStore(Protocol):
    def get_struggle_topics(self, user_id: str, course_name: str) -> list[str]: ...

    def set_struggle_topics(self, user_id: str, course_name: str, topics: list[str]) -> None: ...


def normalize_topics(raw: list[str]) -> list[str]:
    """Trim, lowercase, drop empties and duplicates, keeping first-seen order."""
    seen: list[str] = []
    for item in raw:
        topic = item.strip().strip("\"'").strip().lower()
        if topic and topic not in seen:
            seen.append(topic)
    return seen


def build_analysis_prompt(existing: list[str]) -> str:
    recorded = ", ".join(existing) if existing else "(none)"
    return f"{STRUGGLE_ANALYSIS_PROMPT}\nTopics already recorded for this student: {recorded}\n"


def parse_topics(reply: str) -> list[str]:
    """Read the ``StruggleTopics`` array from a JSON reply.

    Markdown code fences around the object are tolerated. A reply that is not
    a JSON object with a list under ``StruggleTopics`` yields no topics.
    """
    text = reply.strip()
    if text.startswith("```"):
        text = text.strip("`").strip()
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as ex:
        logger.warning(f"Struggle analysis reply is not valid JSON: {ex}")
        return []
    topics = parsed.get("StruggleTopics") if isinstance(parsed, dict) else None
    if not isinstance(topics, list):
        logger.warning("Struggle analysis reply has no StruggleTopics array")
        return []
    return normalize_topics([t for t in topics if isinstance(t, str)])


def merge_topics(existing: list[str], new: list[str]) -> list[str]:
    return sorted(set(normalize_topics(existing)) | set(normalize_topics(new)))


class MemoryAgent:
    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        repository: StruggleTopicStore,
        *,
        max_tokens: int = ANALYSIS_MAX_TOKENS,
        temperature: float = ANALYSIS_TEMPERATURE,
    ):
        self._provider = provider
        self._model = model
        self._repository = repository
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def get_struggle_topics(self, user_id: str, course_name: str) -> list[str]:
        return list(self._repository.get_struggle_topics(user_id, course_name))

    async def analyze(self, user_id: str, course_name: str, exchange_text: str) -> None:
        if not user_id:
            logger.warning("Struggle analysis skipped: no user id")
            return
        if not exchange_text.strip():
            logger.debug("Struggle analysis skipped: nothing to analyze")
            return

        existing = self._repository.get_struggle_topics(user_id, course_name)
        messages = [
            {"role": "system", "content": build_analysis_prompt(existing)},
            {"role": "user", "content": exchange_text},
        ]
        reply = await self._provider.create_message(
            self._model,
            self._max_tokens,
            self._temperature,
            messages,
        )
        new_topics = parse_topics(reply or "")
        if not new_topics:
            logger.debug(f"Struggle analysis for {user_id}/{course_name} found no topics")
            return

        merged = merge_topics(existing, new_topics)
        self._repository.set_struggle_topics(user_id, course_name, merged)
        logger.info(
            f"Struggle topics for {user_id}/{course_name}: "
            f"{len(existing)} -> {len(merged)} ({', '.join(new_topics)})"
        )

    async def remove_struggle_topic(self, user_id: str, course_name: str, topic: str) -> bool:
        target = topic.strip().lower()
        existing = self._repository.get_struggle_topics(user_id, course_name)
        remaining = [t for t in existing if t.strip().lower() != target]
        if len(remaining) == len(existing):
            return False
        self._repository.set_struggle_topics(user_id, course_name, remaining)
        logger.info(f"Removed struggle topic {target!r} for {user_id}/{course_name}")
        return True
