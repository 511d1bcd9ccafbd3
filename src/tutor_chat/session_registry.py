from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from tutor_chat.models import ChatMessage

DEFAULT_INACTIVITY_TIMEOUT_SECONDS = 300.0


@dataclass
class SessionEntry:
    """Live state of one active chat."""

    chat_id: str
    turns: list[dict] = field(default_factory=list)
    transcript: list[ChatMessage] = field(default_factory=list)
    timer: asyncio.TimerHandle | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionRegistry:
    """Active chats keyed by chat id, each with an inactivity timer.

    Timers are event-loop callbacks scheduled with ``loop.call_later``. A timer
    that fires while the chat's lock is held re-arms itself instead of
    evicting, so a chat is only ever dropped between exchanges.
    """

    def __init__(
        self,
        inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT_SECONDS,
        on_evict: Callable[[str], None] | None = None,
    ):
        self._timeout = inactivity_timeout_seconds
        self._on_evict = on_evict
        self._entries: dict[str, SessionEntry] = {}

    @property
    def inactivity_timeout_seconds(self) -> float:
        return self._timeout

    def create(
        self,
        chat_id: str,
        turns: list[dict] | None = None,
        transcript: list[ChatMessage] | None = None,
    ) -> SessionEntry | None:
        if chat_id in self._entries:
            logger.warning(f"Chat {chat_id} is already active; not registering it again")
            return None
        entry = SessionEntry(
            chat_id=chat_id,
            turns=list(turns or []),
            transcript=list(transcript or []),
        )
        self._entries[chat_id] = entry
        self._arm(entry)
        logger.debug(f"Registered chat {chat_id} (active={len(self._entries)})")
        return entry

    def touch(self, chat_id: str) -> None:
        entry = self._entries.get(chat_id)
        if entry is None:
            return
        self._cancel_timer(entry)
        self._arm(entry)

    def evict(self, chat_id: str) -> bool:
        entry = self._entries.pop(chat_id, None)
        if entry is None:
            return False
        self._cancel_timer(entry)
        logger.debug(f"Evicted chat {chat_id} (active={len(self._entries)})")
        return True

    def has(self, chat_id: str) -> bool:
        return chat_id in self._entries

    def get(self, chat_id: str) -> SessionEntry | None:
        return self._entries.get(chat_id)

    def chat_ids(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def shutdown(self) -> int:
        """Cancel every outstanding inactivity timer. Returns how many were cancelled."""
        cancelled = 0
        for entry in self._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None
                cancelled += 1
        logger.info(f"Cancelled {cancelled} inactivity timer(s)")
        return cancelled

    def _arm(self, entry: SessionEntry) -> None:
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self._timeout, self._expire, entry.chat_id)

    @staticmethod
    def _cancel_timer(entry: SessionEntry) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    def _expire(self, chat_id: str) -> None:
        entry = self._entries.get(chat_id)
        if entry is None:
            return
        entry.timer = None
        if entry.lock.locked():
            logger.debug(f"Chat {chat_id} is mid-exchange; re-arming inactivity timer")
            self._arm(entry)
            return

        self.evict(chat_id)
        logger.info(f"Chat {chat_id} evicted after {self._timeout:g}s of inactivity")
        if self._on_evict is not None:
            try:
                self._on_evict(chat_id)
            except Exception as ex:
                logger.error(f"Eviction callback failed for chat {chat_id}: {ex}")
