import asyncio
import unittest
from types import SimpleNamespace

from tutor_chat.providers.anthropic_provider import AnthropicProvider


class _FakeStreamContext:
    def __init__(self, events: list[object], final_message: object):
        self._events = events
        self._final_message = final_message

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def __aiter__(self):
        self._iter = iter(self._events)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration

    async def get_final_message(self):
        return self._final_message


class _FakeMessages:
    def __init__(self, stream_ctx=None, create_response=None):
        self._stream_ctx = stream_ctx
        self._create_response = create_response
        self.stream_kwargs: dict | None = None
        self.create_kwargs: dict | None = None

    def stream(self, **kwargs):
        self.stream_kwargs = kwargs
        return self._stream_ctx

    async def create(self, **kwargs):
        self.create_kwargs = kwargs
        return self._create_response


class _FakeClient:
    def __init__(self, stream_ctx=None, create_response=None):
        self.messages = _FakeMessages(stream_ctx, create_response)


def _text_delta(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=text))


class AnthropicProviderTests(unittest.TestCase):
    def _make_provider(self, stream_ctx=None, create_response=None) -> AnthropicProvider:
        provider = AnthropicProvider.__new__(AnthropicProvider)
        provider._client = _FakeClient(stream_ctx, create_response)
        return provider

    def test_stream_chat_forwards_text_deltas(self) -> None:
        events = [
            SimpleNamespace(type="message_start"),
            _text_delta("Entropy measures "),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="input_json_delta")),
            _text_delta("disorder."),
        ]
        final_message = SimpleNamespace(
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=10, output_tokens=5),
        )
        provider = self._make_provider(stream_ctx=_FakeStreamContext(events, final_message))
        chunks: list[str] = []

        text = asyncio.run(
            provider.stream_chat(
                "m",
                100,
                0.7,
                [
                    {"role": "system", "content": "policy"},
                    {"role": "assistant", "content": "Hello!"},
                    {"role": "user", "content": "What is entropy?"},
                ],
                chunks.append,
            )
        )

        self.assertEqual("Entropy measures disorder.", text)
        self.assertEqual(["Entropy measures ", "disorder."], chunks)
        sent = provider._client.messages.stream_kwargs
        self.assertEqual("policy", sent["system"])
        self.assertEqual(["assistant", "user"], [m["role"] for m in sent["messages"]])
        self.assertEqual(0.7, sent["temperature"])

    def test_create_message_joins_text_blocks(self) -> None:
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="entropy, "),
                SimpleNamespace(type="text", text="enthalpy"),
            ],
            usage=SimpleNamespace(input_tokens=5, output_tokens=3),
        )
        provider = self._make_provider(create_response=response)

        text = asyncio.run(provider.create_message("m", 100, 0.2, [{"role": "user", "content": "analyze"}]))

        self.assertEqual("entropy, enthalpy", text)
        self.assertNotIn("system", provider._client.messages.create_kwargs)


if __name__ == "__main__":
    unittest.main()
