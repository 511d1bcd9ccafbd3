"""Chat orchestration core.

``ChatApp`` multiplexes many tutoring conversations in one event loop. Each
active chat lives in the ``SessionRegistry`` as a canonical list of turns plus
the user-visible transcript. An exchange retrieves course material, builds a
forked prompt that carries the material and the struggle-topic directive,
streams the reply, and commits only the student's words and the reply to the
canonical store. Enrichment, persistence, title and analysis steps are
best-effort: their failures are logged and never reach the caller.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from loguru import logger

from tutor_chat import id_generator
from tutor_chat.errors import ChatNotFoundError, RateLimitExceededError
from tutor_chat.memory.events import (
    CHAT_DELETED,
    CHAT_EVICTED,
    CHAT_RESTORED,
    CHAT_STARTED,
    MESSAGE_APPENDED,
    EventEmitter,
)
from tutor_chat.memory_agent import StruggleMemory
from tutor_chat.models import ChatMessage, Course, InitResult, RetrievalFilter, RetrievedChunk, Sender, StoredChat
from tutor_chat.persistence import ChatPersistence
from tutor_chat.provider import ChunkCallback, LLMProvider
from tutor_chat.rag_context import build_context_turn, strip_retrieval_context
from tutor_chat.retrieval.retriever import Retriever
from tutor_chat.session_registry import SessionEntry, SessionRegistry
from tutor_chat.system_prompt import build_greeting, build_system_prompt
from tutor_chat.titles import needs_title, title_from_response
from tutor_chat.unstruggle import has_unstruggle_question, pick_response, student_reply


@dataclass
class ChatSettings:
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 4096
    temperature: float = 0.7
    context_window: int | None = None
    inactivity_timeout_seconds: float = 300.0
    max_exchanges_per_chat: int = 50
    memory_agent_min_turns: int = 6
    memory_agent_window: int = 3
    retrieval_limit: int = 3
    retrieval_score_threshold: float = 0.4


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _millis(timestamp: datetime) -> int:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return int(timestamp.timestamp() * 1000)


def _ignore_chunk(chunk: str) -> None:
    pass


class ChatApp:
    def __init__(
        self,
        provider: LLMProvider,
        persistence: ChatPersistence,
        *,
        retriever: Retriever | None = None,
        memory: StruggleMemory | None = None,
        settings: ChatSettings | None = None,
        registry: SessionRegistry | None = None,
        event_emitter: EventEmitter | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._provider = provider
        self._persistence = persistence
        self._retriever = retriever
        self._memory = memory
        self._settings = settings or ChatSettings()
        self._registry = registry or SessionRegistry(
            self._settings.inactivity_timeout_seconds,
            on_evict=self._on_evicted,
        )
        self._events = event_emitter
        self._clock = clock or _utc_now

    @property
    def settings(self) -> ChatSettings:
        return self._settings

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self, user_id: str, course_name: str, timestamp: datetime | None = None) -> InitResult:
        """Start a chat, or return the already-active chat derived from the same inputs."""
        ts = timestamp or self._clock()
        cid = id_generator.chat_id(user_id, course_name, ts)

        existing = self._existing_init(cid)
        if existing is not None:
            logger.info(f"Chat {cid} already active; reusing it")
            return existing

        course = await self._fetch_course(course_name)
        system_prompt = await self._compose_system_prompt(course_name, user_id, course)
        greeting_text = build_greeting(await self._fetch_selected_greeting(course))
        greeting = self._new_message(cid, "bot", greeting_text, user_id, course_name, ts)

        # Another initialize for the same id may have finished while we awaited.
        existing = self._existing_init(cid)
        if existing is not None:
            return existing

        self._registry.create(
            cid,
            turns=[{"role": "system", "content": system_prompt}, greeting.to_turn()],
            transcript=[greeting],
        )
        logger.info(f"Chat {cid} started for user {user_id} in {course_name!r}")

        try:
            await self._persistence.create_chat(
                StoredChat(id=cid, course_name=course_name, user_id=user_id, messages=[greeting])
            )
        except Exception as ex:
            logger.error(f"Failed to persist new chat {cid}: {ex}")
        self._emit(cid, CHAT_STARTED, {"chat_id": cid, "user_id": user_id, "course_name": course_name})

        return InitResult(chat_id=cid, greeting=greeting)

    async def restore(self, chat_id: str, course_name: str, user_id: str) -> bool:
        """Bring a persisted chat back into the registry. Returns False when it cannot be restored."""
        if self._registry.has(chat_id):
            self._registry.touch(chat_id)
            return True

        try:
            chats = await self._persistence.get_user_chats(course_name, user_id)
        except Exception as ex:
            logger.error(f"Failed to load chats for restore of {chat_id}: {ex}")
            return False

        stored = next((c for c in chats if c.id == chat_id), None)
        if stored is None:
            logger.warning(f"Chat {chat_id} not found for user {user_id} in {course_name!r}")
            return False
        if stored.is_deleted:
            logger.warning(f"Chat {chat_id} is deleted; not restoring")
            return False

        course = await self._fetch_course(course_name)
        system_prompt = await self._compose_system_prompt(course_name, user_id, course)
        turns = [{"role": "system", "content": system_prompt}]
        turns.extend(message.to_turn() for message in stored.messages)

        if self._registry.has(chat_id):
            self._registry.touch(chat_id)
            return True

        self._registry.create(chat_id, turns=turns, transcript=list(stored.messages))
        logger.info(f"Chat {chat_id} restored with {len(stored.messages)} message(s)")
        self._emit(chat_id, CHAT_RESTORED, {"chat_id": chat_id, "messages": len(stored.messages)})
        return True

    def delete(self, chat_id: str) -> bool:
        if not self._registry.evict(chat_id):
            return False
        logger.info(f"Chat {chat_id} deleted")
        self._emit(chat_id, CHAT_DELETED, {"chat_id": chat_id})
        return True

    def shutdown(self) -> int:
        return self._registry.shutdown()

    def has_chat(self, chat_id: str) -> bool:
        return self._registry.has(chat_id)

    def get_transcript(self, chat_id: str) -> list[ChatMessage]:
        entry = self._registry.get(chat_id)
        return list(entry.transcript) if entry else []

    def get_turns(self, chat_id: str) -> list[dict]:
        entry = self._registry.get(chat_id)
        return [dict(turn) for turn in entry.turns] if entry else []

    # -- exchange ----------------------------------------------------------

    async def exchange(
        self,
        chat_id: str,
        user_text: str,
        user_id: str,
        course_name: str,
        on_chunk: ChunkCallback | None = None,
    ) -> ChatMessage:
        """Run one student turn through retrieval, generation and commit.

        Raises ChatNotFoundError or RateLimitExceededError before anything is
        changed. A generation error propagates after the student's message has
        been committed.
        """
        entry = self._require_entry(chat_id)
        self._check_rate_limit(entry)

        async with entry.lock:
            self._require_same_entry(chat_id, entry)
            self._check_rate_limit(entry)
            self._registry.touch(chat_id)

            previous_reply = self._last_assistant_text(entry.turns)

            user_message = self._new_message(chat_id, "user", user_text, user_id, course_name, self._clock())
            self._commit(entry, user_message)
            pre_commit = list(entry.turns)
            await self._persist_message(chat_id, user_id, course_name, user_message)

            chunks = await self._retrieve(user_text, course_name)
            struggle_topics = await self._fetch_struggle_topics(user_id, course_name)
            allow_check = bool(struggle_topics) and not has_unstruggle_question(previous_reply)

            fork = [dict(turn) for turn in pre_commit]
            fork.append({
                "role": "user",
                "content": build_context_turn(
                    chunks,
                    user_text,
                    struggle_topics=struggle_topics,
                    allow_struggle_check=allow_check,
                ),
            })

            logger.debug(
                f"Chat {chat_id}: generating with {len(fork)} turn(s), {len(chunks)} chunk(s), "
                f"{len(struggle_topics)} struggle topic(s), check={'on' if allow_check else 'off'}"
            )
            reply_text = await self._provider.stream_chat(
                self._settings.model,
                self._settings.max_tokens,
                self._settings.temperature,
                fork,
                on_chunk or _ignore_chunk,
                context_window=self._settings.context_window,
            )

            reply = self._new_message(
                chat_id,
                "bot",
                reply_text,
                user_id,
                course_name,
                self._clock(),
                retrieved_documents=[c.content for c in chunks if c.content],
            )
            self._commit(entry, reply)
            await self._persist_message(chat_id, user_id, course_name, reply)

            await self._backfill_title(chat_id, user_id, course_name, reply_text)
            await self._analyze_struggles(chat_id, user_id, course_name, pre_commit)

            return reply

    async def resolve_struggle_topic(
        self,
        chat_id: str,
        topic: str,
        confident: bool,
        user_id: str,
        course_name: str,
    ) -> ChatMessage:
        """Answer a struggle-topic confidence question with a canned reply, without generation."""
        entry = self._require_entry(chat_id)
        self._check_rate_limit(entry)

        async with entry.lock:
            self._require_same_entry(chat_id, entry)
            self._check_rate_limit(entry)
            self._registry.touch(chat_id)

            answer = self._new_message(
                chat_id, "user", student_reply(topic, confident), user_id, course_name, self._clock()
            )
            self._commit(entry, answer)
            await self._persist_message(chat_id, user_id, course_name, answer)

            removed = False
            if confident:
                removed = await self._remove_struggle_topic(user_id, course_name, topic)

            reply = self._new_message(
                chat_id,
                "bot",
                pick_response(confident, removed=removed),
                user_id,
                course_name,
                self._clock(),
            )
            self._commit(entry, reply)
            await self._persist_message(chat_id, user_id, course_name, reply)
            return reply

    # -- helpers -----------------------------------------------------------

    def _existing_init(self, chat_id: str) -> InitResult | None:
        entry = self._registry.get(chat_id)
        if entry is None:
            return None
        self._registry.touch(chat_id)
        greeting = next((m for m in entry.transcript if m.sender == "bot"), None)
        if greeting is None:
            return None
        return InitResult(chat_id=chat_id, greeting=greeting)

    def _require_entry(self, chat_id: str) -> SessionEntry:
        entry = self._registry.get(chat_id)
        if entry is None:
            raise ChatNotFoundError(chat_id)
        return entry

    def _require_same_entry(self, chat_id: str, entry: SessionEntry) -> None:
        # Deleted, or deleted and restored, while waiting for the lock.
        if self._registry.get(chat_id) is not entry:
            logger.warning(f"Chat {chat_id} was replaced while waiting for its lock")
            raise ChatNotFoundError(chat_id)

    def _check_rate_limit(self, entry: SessionEntry) -> None:
        limit = self._settings.max_exchanges_per_chat
        user_turns = sum(1 for m in entry.transcript if m.sender == "user")
        if user_turns >= limit:
            logger.warning(f"Chat {entry.chat_id} reached the limit of {limit} messages")
            raise RateLimitExceededError(entry.chat_id, limit)

    @staticmethod
    def _last_assistant_text(turns: list[dict]) -> str:
        for turn in reversed(turns):
            if turn.get("role") == "assistant":
                return str(turn.get("content", ""))
        return ""

    @staticmethod
    def _new_message(
        chat_id: str,
        sender: Sender,
        text: str,
        user_id: str,
        course_name: str,
        timestamp: datetime,
        *,
        retrieved_documents: list[str] | None = None,
    ) -> ChatMessage:
        return ChatMessage(
            id=id_generator.message_id(text, chat_id, timestamp),
            sender=sender,
            user_id=user_id,
            course_name=course_name,
            text=text,
            timestamp=_millis(timestamp),
            retrieved_documents=list(retrieved_documents or []),
        )

    @staticmethod
    def _commit(entry: SessionEntry, message: ChatMessage) -> None:
        entry.transcript.append(message)
        entry.turns.append(message.to_turn())

    def _emit(self, chat_id: str, event_type: str, payload: dict) -> None:
        if self._events is None:
            return
        try:
            self._events.emit(chat_id, event_type, payload)
        except Exception as ex:
            logger.warning(f"Failed to record {event_type} for chat {chat_id}: {ex}")

    def _on_evicted(self, chat_id: str) -> None:
        self._emit(chat_id, CHAT_EVICTED, {"chat_id": chat_id})

    async def _persist_message(self, chat_id: str, user_id: str, course_name: str, message: ChatMessage) -> None:
        try:
            await self._persistence.append_chat_message(course_name, user_id, chat_id, message)
        except Exception as ex:
            logger.error(f"Failed to persist message {message.id} in chat {chat_id}: {ex}")
            return
        self._emit(chat_id, MESSAGE_APPENDED, {"message_id": message.id, "sender": message.sender})

    async def _fetch_course(self, course_name: str) -> Course | None:
        try:
            return await self._persistence.get_course(course_name)
        except Exception as ex:
            logger.warning(f"Could not load course {course_name!r}: {ex}")
            return None

    async def _fetch_selected_greeting(self, course: Course | None) -> str | None:
        if course is None:
            return None
        try:
            return await self._persistence.get_selected_greeting(course.id)
        except Exception as ex:
            logger.warning(f"Could not load greeting for course {course.name!r}: {ex}")
            return None

    async def _fetch_struggle_topics(self, user_id: str, course_name: str) -> list[str]:
        if self._memory is None:
            return []
        try:
            return list(await self._memory.get_struggle_topics(user_id, course_name) or [])
        except Exception as ex:
            logger.warning(f"Could not load struggle topics for {user_id}/{course_name}: {ex}")
            return []

    async def _compose_system_prompt(self, course_name: str, user_id: str, course: Course | None) -> str:
        objectives = []
        base_prompt = None
        if course is not None:
            try:
                objectives = await self._persistence.get_learning_objectives(course.id)
            except Exception as ex:
                logger.warning(f"Could not load learning objectives for {course_name!r}: {ex}")
            try:
                base_prompt = await self._persistence.get_base_system_prompt(course.id)
            except Exception as ex:
                logger.warning(f"Could not load base prompt for {course_name!r}: {ex}")

        struggle_topics = await self._fetch_struggle_topics(user_id, course_name)
        return build_system_prompt(
            course_name,
            objectives,
            struggle_topics,
            base_prompt=base_prompt,
        )

    async def _retrieve(self, query: str, course_name: str) -> list[RetrievedChunk]:
        if self._retriever is None:
            return []
        try:
            course = await self._persistence.get_course(course_name)
            item_titles = course.published_item_titles() if course else []
            if not item_titles:
                logger.debug(f"No published items in {course_name!r}; skipping retrieval")
                return []
            return list(await self._retriever.retrieve(
                query,
                limit=self._settings.retrieval_limit,
                score_threshold=self._settings.retrieval_score_threshold,
                filter=RetrievalFilter(course_name=course_name, item_titles=item_titles),
            ))
        except Exception as ex:
            logger.warning(f"Retrieval failed for {course_name!r}; continuing without documents: {ex}")
            return []

    async def _backfill_title(self, chat_id: str, user_id: str, course_name: str, reply_text: str) -> None:
        try:
            chats = await self._persistence.get_user_chats(course_name, user_id)
            stored = next((c for c in chats if c.id == chat_id), None)
            if stored is None or not needs_title(stored.title):
                return
            title = title_from_response(reply_text)
            if needs_title(title):
                logger.debug(f"Chat {chat_id}: reply gave no usable title words")
                return
            await self._persistence.update_chat_title(course_name, user_id, chat_id, title)
            logger.info(f"Chat {chat_id} titled {title!r}")
        except Exception as ex:
            logger.warning(f"Could not update title for chat {chat_id}: {ex}")

    def _analysis_window(self, history: list[dict]) -> str | None:
        """Format the trailing turns of the history for struggle analysis.

        ``history`` is the store as it stood once the student's turn was
        appended and before the reply was committed. The system turn counts
        toward the threshold but is never part of the window.
        """
        if len(history) <= self._settings.memory_agent_min_turns:
            return None
        lines = []
        for turn in history[-self._settings.memory_agent_window:]:
            if turn.get("role") == "system":
                continue
            content = str(turn.get("content", ""))
            if turn.get("role") == "user":
                lines.append(f"Student: {strip_retrieval_context(content)}")
            else:
                lines.append(f"AI Tutor: {content.strip()}")
        return "\n\n".join(lines)

    async def _analyze_struggles(self, chat_id: str, user_id: str, course_name: str, history: list[dict]) -> None:
        if self._memory is None:
            return
        window = self._analysis_window(history)
        if window is None:
            logger.debug(f"Chat {chat_id}: struggle analysis skipped, not enough history")
            return
        try:
            await self._memory.analyze(user_id, course_name, window)
        except Exception as ex:
            logger.error(f"Struggle analysis failed for chat {chat_id}: {ex}")

    async def _remove_struggle_topic(self, user_id: str, course_name: str, topic: str) -> bool:
        if self._memory is None:
            return False
        try:
            return bool(await self._memory.remove_struggle_topic(user_id, course_name, topic))
        except Exception as ex:
            logger.error(f"Could not remove struggle topic {topic!r} for {user_id}/{course_name}: {ex}")
            return False
