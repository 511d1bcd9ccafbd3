from __future__ import annotations

import json
from datetime import UTC, datetime
from uuid import uuid4

from tutor_chat.memory.store import ChatStore

CHAT_STARTED = "chat.started"
CHAT_RESTORED = "chat.restored"
CHAT_DELETED = "chat.deleted"
CHAT_EVICTED = "chat.evicted"
MESSAGE_APPENDED = "message.appended"


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


class EventEmitter:
    def __init__(self, store: ChatStore):
        self._store = store

    def emit(self, chat_id: str, event_type: str, payload: dict) -> None:
        self._store.execute(
            """
            INSERT INTO events (id, chat_id, type, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                str(uuid4()),
                chat_id,
                event_type,
                json.dumps(payload, ensure_ascii=True),
                utc_now(),
            ),
        )
        self._store.commit()

    def list_events(self, chat_id: str) -> list[dict]:
        rows = self._store.execute(
            "SELECT type, payload_json, created_at FROM events WHERE chat_id = ? ORDER BY rowid ASC",
            (chat_id,),
        ).fetchall()
        return [
            {"type": row["type"], "payload": json.loads(row["payload_json"]), "created_at": row["created_at"]}
            for row in rows
        ]
