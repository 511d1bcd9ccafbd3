import asyncio

from loguru import logger

from tutor_chat.provider import ChunkCallback

MOCK_RESPONSE = "This is a test response in developer mode."
MOCK_CHUNK_SIZE = 15
MOCK_CHUNK_DELAY_SECONDS = 0.03
MOCK_ANALYSIS = '{"StruggleTopics": ["developer mode", "test topic"]}'


class MockProvider:
    """Offline provider for developer mode. Streams a canned reply in small chunks."""

    def __init__(
        self,
        response: str = MOCK_RESPONSE,
        *,
        chunk_size: int = MOCK_CHUNK_SIZE,
        delay_seconds: float = MOCK_CHUNK_DELAY_SECONDS,
        analysis: str = MOCK_ANALYSIS,
    ):
        self._response = response
        self._chunk_size = chunk_size
        self._delay_seconds = delay_seconds
        self._analysis = analysis

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
        logger.debug(f"Mock stream: messages={len(messages)}")
        for start in range(0, len(self._response), self._chunk_size):
            on_chunk(self._response[start:start + self._chunk_size])
            if self._delay_seconds:
                await asyncio.sleep(self._delay_seconds)
        return self._response

    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
    ) -> str:
        return self._analysis
