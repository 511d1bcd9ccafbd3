import anthropic
from loguru import logger
from tenacity import retry

from tutor_chat.provider import ChunkCallback
from tutor_chat.providers.common import default_retry_kwargs, split_system_prompt

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
)


class AnthropicProvider:
    def __init__(self, api_key: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

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

        ``context_window`` is ignored; the hosted models size their own context.
        """
        system_prompt, turns = split_system_prompt(messages)
        parts: list[str] = []

        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(turns)}")
        async with self._client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=turns,
        ) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    parts.append(event.delta.text)
                    on_chunk(event.delta.text)

            response = await stream.get_final_message()

        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return "".join(parts)

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
    ) -> str:
        """Non-streaming message creation (used for struggle-topic analysis)."""
        system_prompt, turns = split_system_prompt(messages)
        logger.debug(f"Analysis API request: model={model}, messages={len(turns)}")
        kwargs: dict = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=turns,
        )
        if system_prompt:
            kwargs["system"] = system_prompt
        response = await self._client.messages.create(**kwargs)
        usage = response.usage
        logger.debug(
            f"Analysis API response: input_tokens={usage.input_tokens}, "
            f"output_tokens={usage.output_tokens}"
        )
        return "".join(block.text for block in response.content if block.type == "text")
