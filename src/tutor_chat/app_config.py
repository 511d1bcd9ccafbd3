from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

OLLAMA_DEFAULT_CONTEXT_WINDOW = 32768


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str
    openai_api_key: str | None
    qdrant_api_key: str | None


@dataclass
class AppConfig:
    provider_name: str
    model: str
    provider_base_url: str | None
    max_tokens: int
    temperature: float
    context_window: int | None
    chat_inactivity_timeout_seconds: float
    max_exchanges_per_chat: int
    memory_agent_min_turns: int
    memory_agent_window: int
    retrieval_limit: int
    retrieval_score_threshold: float
    chat_db_path: str
    qdrant_url: str | None
    qdrant_collection: str
    embedding_model: str
    developer_mode: bool
    user_id: str
    course_name: str | None
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_app_config(config: dict, environ: dict | None = None) -> AppConfig:
    env = os.environ if environ is None else environ
    provider_name = str(config.get("Provider", "anthropic")).strip().lower()

    context_window = config.get("ContextWindow")
    if context_window is None and provider_name == "ollama":
        context_window = OLLAMA_DEFAULT_CONTEXT_WINDOW

    return AppConfig(
        provider_name=provider_name,
        model=config.get("Model", "claude-sonnet-4-5-20250929"),
        provider_base_url=_optional_str(config.get("ProviderBaseUrl")),
        max_tokens=int(config.get("MaxTokens", 4096)),
        temperature=float(config.get("Temperature", 0.7)),
        context_window=int(context_window) if context_window else None,
        chat_inactivity_timeout_seconds=float(config.get("ChatInactivityTimeoutSeconds", 300)),
        max_exchanges_per_chat=int(config.get("MaxExchangesPerChat", 50)),
        memory_agent_min_turns=int(config.get("MemoryAgentMinTurns", 6)),
        memory_agent_window=int(config.get("MemoryAgentWindow", 3)),
        retrieval_limit=int(config.get("RetrievalLimit", 3)),
        retrieval_score_threshold=float(config.get("RetrievalScoreThreshold", 0.4)),
        chat_db_path=str(config.get("ChatDbPath", ".tutor_chat/chats.db")),
        qdrant_url=_optional_str(config.get("QdrantUrl")),
        qdrant_collection=str(config.get("QdrantCollection", "course_documents")),
        embedding_model=str(config.get("EmbeddingModel", "text-embedding-3-small")),
        developer_mode=(
            _to_bool(config.get("DeveloperMode", False), default=False)
            or _to_bool(env.get("DEVELOPING_MODE"), default=False)
        ),
        user_id=str(config.get("UserId", "local-user")),
        course_name=_optional_str(config.get("CourseName")),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str, environ: dict | None = None) -> RuntimeEnv:
    env = os.environ if environ is None else environ
    if provider_name in ("openai", "ollama"):
        provider_api_key = env.get("OPENAI_API_KEY", "")
        provider_env_var = "OPENAI_API_KEY"
    else:
        provider_api_key = env.get("ANTHROPIC_API_KEY", "")
        provider_env_var = "ANTHROPIC_API_KEY"

    return RuntimeEnv(
        provider_api_key=provider_api_key,
        provider_env_var=provider_env_var,
        openai_api_key=env.get("OPENAI_API_KEY"),
        qdrant_api_key=env.get("QDRANT_API_KEY"),
    )
