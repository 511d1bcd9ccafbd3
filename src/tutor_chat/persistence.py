from __future__ import annotations

from typing import Protocol, runtime_checkable

from tutor_chat.models import ChatMessage, Course, LearningObjective, StoredChat


@runtime_checkable
class ChatPersistence(Protocol):
    """Document-store operations the chat core reads and writes.

    Reads may raise; the orchestrator treats every call as best-effort.
    """

    async def get_course(self, course_name: str) -> Course | None: ...

    async def get_learning_objectives(self, course_id: str) -> list[LearningObjective]: ...

    async def get_base_system_prompt(self, course_id: str) -> str | None: ...

    async def get_selected_greeting(self, course_id: str) -> str | None: ...

    async def get_user_chats(self, course_name: str, user_id: str) -> list[StoredChat]: ...

    async def create_chat(self, chat: StoredChat) -> None: ...

    async def append_chat_message(
        self,
        course_name: str,
        user_id: str,
        chat_id: str,
        message: ChatMessage,
    ) -> None: ...

    async def update_chat_title(self, course_name: str, user_id: str, chat_id: str, title: str) -> None: ...
