from collections.abc import Callable
from typing import Protocol, runtime_checkable

ChunkCallback = Callable[[str], None]

OLLAMA_DEFAULT_BASE_URL = "http://localhost:11434/v1"


@runtime_checkable
class LLMProvider(Protocol):
    async def stream_chat(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
        on_chunk: ChunkCallback,
        *,
        context_window: int | None = None,
    ) -> str:
        """Stream a reply to role-tagged ``messages``.

        Each text delta is passed to ``on_chunk`` as it arrives; the full
        accumulated reply is returned. ``messages`` may include system turns.
        """
        ...

    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
    ) -> str:
        """Non-streaming message creation (used for struggle-topic analysis)."""
        ...


def create_provider(provider_name: str, api_key: str, *, base_url: str | None = None) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from tutor_chat.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key)
    if name == "openai":
        from tutor_chat.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, base_url=base_url)
    if name == "ollama":
        from tutor_chat.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key or "ollama", base_url=base_url or OLLAMA_DEFAULT_BASE_URL)
    if name == "mock":
        from tutor_chat.providers.mock_provider import MockProvider
        return MockProvider()
    raise ValueError(
        f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai', 'ollama', 'mock'"
    )
