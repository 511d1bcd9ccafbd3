from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any


class ChatStore:
    def __init__(self, db_path: str):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._initialize_schema()

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        return self._conn.executemany(query, seq_of_params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS courses (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE
            );

            CREATE TABLE IF NOT EXISTS content_units (
                course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                title TEXT NOT NULL,
                published INTEGER NOT NULL CHECK (published IN (0, 1)),
                item_titles_json TEXT NOT NULL DEFAULT '[]',
                PRIMARY KEY (course_id, seq)
            );

            CREATE TABLE IF NOT EXISTS learning_objectives (
                id TEXT PRIMARY KEY,
                course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                text TEXT NOT NULL,
                unit_title TEXT NOT NULL DEFAULT '',
                item_title TEXT NOT NULL DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS course_prompts (
                course_id TEXT PRIMARY KEY REFERENCES courses(id) ON DELETE CASCADE,
                base_system_prompt TEXT NULL,
                selected_greeting TEXT NULL
            );

            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                course_name TEXT NOT NULL,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0 CHECK (is_deleted IN (0, 1)),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chat_messages (
                id TEXT NOT NULL,
                chat_id TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                sender TEXT NOT NULL CHECK (sender IN ('user', 'bot')),
                user_id TEXT NOT NULL,
                course_name TEXT NOT NULL,
                text TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                retrieved_documents_json TEXT NOT NULL DEFAULT '[]',
                PRIMARY KEY (chat_id, seq)
            );

            CREATE TABLE IF NOT EXISTS struggle_topics (
                user_id TEXT NOT NULL,
                course_name TEXT NOT NULL,
                topics_json TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, course_name)
            );

            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                chat_id TEXT NOT NULL,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_chats_course_user
                ON chats(course_name, user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_chat_messages_chat_seq
                ON chat_messages(chat_id, seq);
            CREATE INDEX IF NOT EXISTS idx_events_chat_created
                ON events(chat_id, created_at);
            """
        )
        self._conn.commit()
