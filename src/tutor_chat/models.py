from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Sender = Literal["user", "bot"]

PLACEHOLDER_TITLE = "New Chat"


@dataclass(frozen=True)
class ChatMessage:
    id: str
    sender: Sender
    user_id: str
    course_name: str
    text: str
    timestamp: int
    retrieved_documents: list[str] = field(default_factory=list)

    @property
    def role(self) -> str:
        return "user" if self.sender == "user" else "assistant"

    def to_turn(self) -> dict:
        return {"role": self.role, "content": self.text}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "sender": self.sender,
            "userId": self.user_id,
            "courseName": self.course_name,
            "text": self.text,
            "timestamp": self.timestamp,
        }
        if self.retrieved_documents:
            data["retrievedDocuments"] = list(self.retrieved_documents)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        sender = "user" if data.get("sender") == "user" else "bot"
        return cls(
            id=str(data.get("id", "")),
            sender=sender,
            user_id=str(data.get("userId", "")),
            course_name=str(data.get("courseName", "")),
            text=str(data.get("text", "")),
            timestamp=int(data.get("timestamp", 0)),
            retrieved_documents=list(data.get("retrievedDocuments") or []),
        )


@dataclass(frozen=True)
class ContentUnit:
    """A topic or week of a course. Only published units feed retrieval."""

    title: str
    published: bool = False
    item_titles: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Course:
    id: str
    name: str
    content_units: list[ContentUnit] = field(default_factory=list)

    def published_item_titles(self) -> list[str]:
        titles: list[str] = []
        for unit in self.content_units:
            if not unit.published:
                continue
            for title in unit.item_titles:
                if title and title not in titles:
                    titles.append(title)
        return titles


@dataclass(frozen=True)
class LearningObjective:
    id: str
    text: str
    unit_title: str = ""
    item_title: str = ""


@dataclass
class StoredChat:
    id: str
    course_name: str
    user_id: str
    title: str = PLACEHOLDER_TITLE
    messages: list[ChatMessage] = field(default_factory=list)
    is_deleted: bool = False


@dataclass(frozen=True)
class RetrievedChunk:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0


@dataclass(frozen=True)
class RetrievalFilter:
    course_name: str
    item_titles: list[str]


@dataclass(frozen=True)
class InitResult:
    chat_id: str
    greeting: ChatMessage
