from __future__ import annotations

import json
import sqlite3

from tutor_chat.memory.events import utc_now
from tutor_chat.memory.store import ChatStore
from tutor_chat.models import ChatMessage, ContentUnit, Course, LearningObjective, StoredChat


class ChatRepository:
    """SQLite-backed chat persistence.

    The async methods implement ``ChatPersistence``; the synchronous ones
    seed course data and hold the per-student struggle topics.
    """

    def __init__(self, store: ChatStore):
        self._store = store

    # -- course data -------------------------------------------------------

    async def get_course(self, course_name: str) -> Course | None:
        row = self._store.execute(
            "SELECT id, name FROM courses WHERE name = ? LIMIT 1",
            (course_name,),
        ).fetchone()
        if row is None:
            return None
        unit_rows = self._store.execute(
            "SELECT title, published, item_titles_json FROM content_units WHERE course_id = ? ORDER BY seq ASC",
            (row["id"],),
        ).fetchall()
        units = [
            ContentUnit(
                title=u["title"],
                published=bool(u["published"]),
                item_titles=list(json.loads(u["item_titles_json"])),
            )
            for u in unit_rows
        ]
        return Course(id=row["id"], name=row["name"], content_units=units)

    async def get_learning_objectives(self, course_id: str) -> list[LearningObjective]:
        rows = self._store.execute(
            """
            SELECT id, text, unit_title, item_title
            FROM learning_objectives
            WHERE course_id = ?
            ORDER BY seq ASC
            """,
            (course_id,),
        ).fetchall()
        return [
            LearningObjective(
                id=r["id"],
                text=r["text"],
                unit_title=r["unit_title"],
                item_title=r["item_title"],
            )
            for r in rows
        ]

    async def get_base_system_prompt(self, course_id: str) -> str | None:
        return self._course_prompt_column(course_id, "base_system_prompt")

    async def get_selected_greeting(self, course_id: str) -> str | None:
        return self._course_prompt_column(course_id, "selected_greeting")

    def save_course(self, course: Course) -> None:
        self._store.execute(
            """
            INSERT INTO courses (id, name) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name
            """,
            (course.id, course.name),
        )
        self._store.execute("DELETE FROM content_units WHERE course_id = ?", (course.id,))
        self._store.executemany(
            """
            INSERT INTO content_units (course_id, seq, title, published, item_titles_json)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (course.id, seq, unit.title, 1 if unit.published else 0, json.dumps(list(unit.item_titles)))
                for seq, unit in enumerate(course.content_units)
            ],
        )
        self._store.commit()

    def save_learning_objectives(self, course_id: str, objectives: list[LearningObjective]) -> None:
        self._store.execute("DELETE FROM learning_objectives WHERE course_id = ?", (course_id,))
        self._store.executemany(
            """
            INSERT INTO learning_objectives (id, course_id, seq, text, unit_title, item_title)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (o.id, course_id, seq, o.text, o.unit_title, o.item_title)
                for seq, o in enumerate(objectives)
            ],
        )
        self._store.commit()

    def set_base_system_prompt(self, course_id: str, prompt: str | None) -> None:
        self._set_course_prompt_column(course_id, "base_system_prompt", prompt)

    def set_selected_greeting(self, course_id: str, greeting: str | None) -> None:
        self._set_course_prompt_column(course_id, "selected_greeting", greeting)

    # -- chats -------------------------------------------------------------

    async def get_user_chats(self, course_name: str, user_id: str) -> list[StoredChat]:
        rows = self._store.execute(
            """
            SELECT id, course_name, user_id, title, is_deleted
            FROM chats
            WHERE course_name = ? AND user_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (course_name, user_id),
        ).fetchall()
        return [
            StoredChat(
                id=r["id"],
                course_name=r["course_name"],
                user_id=r["user_id"],
                title=r["title"],
                messages=self._load_messages(r["id"]),
                is_deleted=bool(r["is_deleted"]),
            )
            for r in rows
        ]

    async def create_chat(self, chat: StoredChat) -> None:
        now = utc_now()
        try:
            self._store.execute(
                """
                INSERT INTO chats (id, course_name, user_id, title, is_deleted, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO NOTHING
                """,
                (chat.id, chat.course_name, chat.user_id, chat.title, 1 if chat.is_deleted else 0, now, now),
            )
            for message in chat.messages:
                self._insert_message(chat.id, message)
        except sqlite3.Error:
            self._store.rollback()
            raise
        self._store.commit()

    async def append_chat_message(
        self,
        course_name: str,
        user_id: str,
        chat_id: str,
        message: ChatMessage,
    ) -> None:
        self._require_chat(course_name, user_id, chat_id)
        try:
            self._insert_message(chat_id, message)
            self._store.execute("UPDATE chats SET updated_at = ? WHERE id = ?", (utc_now(), chat_id))
        except sqlite3.Error:
            self._store.rollback()
            raise
        self._store.commit()

    async def update_chat_title(self, course_name: str, user_id: str, chat_id: str, title: str) -> None:
        self._require_chat(course_name, user_id, chat_id)
        self._store.execute(
            "UPDATE chats SET title = ?, updated_at = ? WHERE id = ?",
            (title.strip(), utc_now(), chat_id),
        )
        self._store.commit()

    def mark_chat_deleted(self, chat_id: str) -> bool:
        cur = self._store.execute(
            "UPDATE chats SET is_deleted = 1, updated_at = ? WHERE id = ? AND is_deleted = 0",
            (utc_now(), chat_id),
        )
        self._store.commit()
        return cur.rowcount > 0

    # -- struggle topics ---------------------------------------------------

    def get_struggle_topics(self, user_id: str, course_name: str) -> list[str]:
        row = self._store.execute(
            "SELECT topics_json FROM struggle_topics WHERE user_id = ? AND course_name = ? LIMIT 1",
            (user_id, course_name),
        ).fetchone()
        if row is None:
            return []
        try:
            topics = json.loads(row["topics_json"])
        except json.JSONDecodeError:
            return []
        return [str(t) for t in topics] if isinstance(topics, list) else []

    def set_struggle_topics(self, user_id: str, course_name: str, topics: list[str]) -> None:
        self._store.execute(
            """
            INSERT INTO struggle_topics (user_id, course_name, topics_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, course_name)
            DO UPDATE SET topics_json = excluded.topics_json, updated_at = excluded.updated_at
            """,
            (user_id, course_name, json.dumps(list(topics), ensure_ascii=True), utc_now()),
        )
        self._store.commit()

    # -- helpers -----------------------------------------------------------

    def _course_prompt_column(self, course_id: str, column: str) -> str | None:
        row = self._store.execute(
            f"SELECT {column} FROM course_prompts WHERE course_id = ? LIMIT 1",
            (course_id,),
        ).fetchone()
        if row is None:
            return None
        return row[column]

    def _set_course_prompt_column(self, course_id: str, column: str, value: str | None) -> None:
        self._store.execute(
            f"""
            INSERT INTO course_prompts (course_id, {column}) VALUES (?, ?)
            ON CONFLICT(course_id) DO UPDATE SET {column} = excluded.{column}
            """,
            (course_id, value),
        )
        self._store.commit()

    def _require_chat(self, course_name: str, user_id: str, chat_id: str) -> None:
        row = self._store.execute(
            "SELECT 1 FROM chats WHERE id = ? AND course_name = ? AND user_id = ? LIMIT 1",
            (chat_id, course_name, user_id),
        ).fetchone()
        if row is None:
            raise ValueError(f"Chat does not exist: {chat_id}")

    def _insert_message(self, chat_id: str, message: ChatMessage) -> None:
        row = self._store.execute(
            "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM chat_messages WHERE chat_id = ?",
            (chat_id,),
        ).fetchone()
        seq = int(row["max_seq"]) + 1
        self._store.execute(
            """
            INSERT INTO chat_messages (
                id, chat_id, seq, sender, user_id, course_name, text, timestamp, retrieved_documents_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                chat_id,
                seq,
                message.sender,
                message.user_id,
                message.course_name,
                message.text,
                message.timestamp,
                json.dumps(list(message.retrieved_documents), ensure_ascii=True),
            ),
        )

    def _load_messages(self, chat_id: str) -> list[ChatMessage]:
        rows = self._store.execute(
            """
            SELECT id, sender, user_id, course_name, text, timestamp, retrieved_documents_json
            FROM chat_messages
            WHERE chat_id = ?
            ORDER BY seq ASC
            """,
            (chat_id,),
        ).fetchall()
        return [
            ChatMessage(
                id=r["id"],
                sender="user" if r["sender"] == "user" else "bot",
                user_id=r["user_id"],
                course_name=r["course_name"],
                text=r["text"],
                timestamp=int(r["timestamp"]),
                retrieved_documents=list(json.loads(r["retrieved_documents_json"])),
            )
            for r in rows
        ]
