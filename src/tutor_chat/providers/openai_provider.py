import openai
from loguru import logger
from tenacity import retry

from tutor_chat.provider import ChunkCallback
from tutor_chat.providers.common import default_retry_kwargs

_RETRYABLE = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
)


def _to_openai_messages(messages: list[dict]) -> list[dict]:
    """Convert role-tagged turns to OpenAI chat format.

    Content is coerced to a string and empty system turns are dropped.
    """
    out: list[dict] = []
    for msg in messages:
        role = msg["role"]
        content = msg.get("content", "")
        if not isinstance(content, str):
            content = str(content)
        if role == "system" and not content:
            continue
        out.append({"role": role, "content": content})
    return out


class OpenAIProvider:
    """Chat provider for the OpenAI API and OpenAI-compatible servers (Ollama)."""

    def __init__(self, api_key: str, *, base_url: str | None = None):
        self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)

    @retry(**default_retry_kwargs(_RETRYABLE))
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
        """Stream a chat response, forwarding text deltas to ``on_chunk``.

        When ``context_window`` is set it is sent as the Ollama ``num_ctx`` option.
        """
        oai_messages = _to_openai_messages(messages)
        text_content = ""
        finish_reason: str | None = None

        logger.debug(
            f"API request: model={model}, max_tokens={max_tokens}, messages={len(oai_messages)}"
        )
        kwargs: dict = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
            stream=True,
        )
        if context_window:
            kwargs["extra_body"] = {"options": {"num_ctx": context_window}}

        stream = await self._client.chat.completions.create(**kwargs)

        async for chunk in stream:
            choice = chunk.choices[0] if chunk.choices else None
            if choice is None:
                continue

            if choice.finish_reason:
                finish_reason = choice.finish_reason

            delta = choice.delta
            if delta is None:
                continue

            if delta.content:
                on_chunk(delta.content)
                text_content += delta.content

        logger.debug(f"API response: finish_reason={finish_reason}, text_len={len(text_content)}")
        return text_content

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
    ) -> str:
        oai_messages = _to_openai_messages(messages)
        logger.debug(f"Analysis API request: model={model}, messages={len(oai_messages)}")
        response = await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
        )
        text = response.choices[0].message.content or ""
        logger.debug(f"Analysis API response: len={len(text)}")
        return text
