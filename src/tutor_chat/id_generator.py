from __future__ import annotations

from datetime import UTC, datetime

_MASK32 = 0xFFFFFFFF


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


def hash48hex(value: str) -> str:
    """48-bit non-cryptographic hash of ``value`` as 12 lowercase hex characters.

    Two independent 32-bit lanes are mixed per input byte; the result is the
    low 16 bits of lane two followed by all 32 bits of lane one.
    """
    h1 = 0x9E3779B9
    h2 = 0x85EBCA6B

    for b in value.encode("utf-8"):
        h1 ^= b
        h1 = _imul(h1, 0x85EBCA6B)
        h1 ^= h1 >> 13
        h1 = _imul(h1, 0xC2B2AE35)
        h1 ^= h1 >> 16

        x = h2 ^ ((b + 0x9E3779B9) & _MASK32)
        x = _imul(x, 0x27D4EB2D)
        x ^= x >> 15
        x = _imul(x, 0x165667B1)
        x ^= x >> 17
        h2 = x

    value48 = ((h2 & 0xFFFF) << 32) | h1
    return f"{value48:012x}"


def iso_millis(timestamp: datetime) -> str:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    timestamp = timestamp.astimezone(UTC)
    return timestamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{timestamp.microsecond // 1000:03d}Z"


def chat_id(user_id: str, course_name: str, timestamp: datetime) -> str:
    return hash48hex(f"{user_id}-{course_name}-{iso_millis(timestamp)}")


def message_id(text: str, chat_id: str, timestamp: datetime) -> str:
    first_ten_words = " ".join(text.split(" ")[:10])
    return hash48hex(f"{first_ten_words}-{chat_id}-{iso_millis(timestamp)}")
