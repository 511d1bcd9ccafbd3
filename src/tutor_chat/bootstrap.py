from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from qdrant_client import AsyncQdrantClient

from tutor_chat.app_config import AppConfig, RuntimeEnv
from tutor_chat.chat_app import ChatApp, ChatSettings
from tutor_chat.logging_config import setup_logging
from tutor_chat.memory import ChatRepository, ChatStore, EventEmitter
from tutor_chat.memory_agent import MemoryAgent
from tutor_chat.provider import LLMProvider, create_provider
from tutor_chat.retrieval.qdrant_retriever import OpenAIEmbedder, QdrantRetriever


@dataclass
class AppRuntime:
    chat_app: ChatApp
    provider: LLMProvider
    store: ChatStore
    repository: ChatRepository
    retriever: QdrantRetriever | None
    log_descriptions: list[str]

    async def close(self) -> None:
        self.chat_app.shutdown()
        if self.retriever is not None:
            await self.retriever.close()
        self.store.close()


def build_settings(app: AppConfig) -> ChatSettings:
    return ChatSettings(
        model=app.model,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        context_window=app.context_window,
        inactivity_timeout_seconds=app.chat_inactivity_timeout_seconds,
        max_exchanges_per_chat=app.max_exchanges_per_chat,
        memory_agent_min_turns=app.memory_agent_min_turns,
        memory_agent_window=app.memory_agent_window,
        retrieval_limit=app.retrieval_limit,
        retrieval_score_threshold=app.retrieval_score_threshold,
    )


def build_retriever(app: AppConfig, env: RuntimeEnv) -> QdrantRetriever | None:
    if app.developer_mode or not app.qdrant_url:
        return None
    if not env.openai_api_key:
        logger.warning("QdrantUrl is set but OPENAI_API_KEY is missing; retrieval disabled")
        return None
    client = AsyncQdrantClient(url=app.qdrant_url, api_key=env.qdrant_api_key)
    embedder = OpenAIEmbedder(env.openai_api_key, app.embedding_model)
    return QdrantRetriever(client, app.qdrant_collection, embedder)


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    db_path = Path(app.chat_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    store = ChatStore(str(db_path))
    repository = ChatRepository(store)
    event_emitter = EventEmitter(store)

    if app.developer_mode:
        logger.info("Developer mode: using the mock provider without retrieval")
        provider = create_provider("mock", "")
    else:
        provider = create_provider(app.provider_name, env.provider_api_key, base_url=app.provider_base_url)

    retriever = build_retriever(app, env)
    memory = MemoryAgent(provider, app.model, repository)

    chat_app = ChatApp(
        provider,
        repository,
        retriever=retriever,
        memory=memory,
        settings=build_settings(app),
        event_emitter=event_emitter,
    )

    return AppRuntime(
        chat_app=chat_app,
        provider=provider,
        store=store,
        repository=repository,
        retriever=retriever,
        log_descriptions=log_descriptions,
    )
