from __future__ import annotations

import random
import re

CONFIDENT_RESPONSES = [
    "Great! Is there anything else I can help you with?",
    "Excellent! Feel free to ask if you have any other questions.",
    "Wonderful! Let me know if there's anything more you'd like to explore.",
    "That's fantastic! I'm here if you need help with anything else.",
    "Perfect! What else would you like to work on?",
]

PRACTICE_RESPONSES = [
    "No problem! Would you like to practice more with this topic?",
    "That's perfectly fine! Let's keep practicing. What would you like to focus on?",
    "I understand. Let's work through some more examples together. Which part would you like to explore?",
    "Of course! Let's dive deeper. What would you like to practice?",
]

ALREADY_MASTERED_RESPONSES = [
    "It looks like you have already mastered this topic. Keep up the good work!",
]

_TAG_RE = re.compile(r"<questionUnstruggle\s+Topic=[\"'][^\"']*[\"']\s*>", re.IGNORECASE)
_TOPIC_RE = re.compile(r"<questionUnstruggle\s+Topic=[\"']([^\"']*)[\"']\s*>", re.IGNORECASE)


def has_unstruggle_question(text: str) -> bool:
    return _TAG_RE.search(text) is not None


def strip_unstruggle_tag(text: str, topic: str) -> str:
    tag_re = re.compile(
        rf"\s*<questionUnstruggle\s+Topic=[\"']{re.escape(topic)}[\"']\s*>\s*",
        re.IGNORECASE,
    )
    stripped = tag_re.sub("", text)
    return re.sub(r"\n{3,}", "\n\n", stripped).strip()


def student_reply(topic: str, confident: bool) -> str:
    if confident:
        return f"Yes, I'm confident with {topic}."
    return f"No, I need more practice with {topic}."


def pick_response(confident: bool, *, removed: bool = True, rng: random.Random | None = None) -> str:
    chooser = rng or random
    if not confident:
        return chooser.choice(PRACTICE_RESPONSES)
    if not removed:
        return chooser.choice(ALREADY_MASTERED_RESPONSES)
    return chooser.choice(CONFIDENT_RESPONSES)


def find_unstruggle_topic(text: str) -> str | None:
    """Topic of the last confidence question tag in ``text``, if any."""
    matches = _TOPIC_RE.findall(text)
    return matches[-1].strip() if matches else None
