import asyncio
import unittest
from types import SimpleNamespace

from tutor_chat.providers.openai_provider import OpenAIProvider, _to_openai_messages


class ToOpenAIMessagesTests(unittest.TestCase):
    def test_passes_roles_through(self) -> None:
        result = _to_openai_messages([
            {"role": "system", "content": "policy"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "hi"},
        ])
        self.assertEqual(["system", "assistant", "user"], [m["role"] for m in result])
        self.assertEqual("policy", result[0]["content"])

    def test_drops_empty_system_turns_and_coerces_content(self) -> None:
        result = _to_openai_messages([
            {"role": "system", "content": ""},
            {"role": "user", "content": 42},
        ])
        self.assertEqual([{"role": "user", "content": "42"}], result)


class _FakeStream:
    def __init__(self, chunks):
        self._chunks = chunks

    def __aiter__(self):
        self._iter = iter(self._chunks)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class _FakeCompletions:
    def __init__(self, result):
        self._result = result
        self.kwargs: dict | None = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self._result


class _FakeClient:
    def __init__(self, result):
        self.chat = SimpleNamespace(completions=_FakeCompletions(result))


def _chunk(content, finish_reason=None) -> SimpleNamespace:
    return SimpleNamespace(choices=[
        SimpleNamespace(finish_reason=finish_reason, delta=SimpleNamespace(content=content)),
    ])


class OpenAIProviderStreamTests(unittest.TestCase):
    def _make_provider(self, result) -> OpenAIProvider:
        provider = OpenAIProvider.__new__(OpenAIProvider)
        provider._client = _FakeClient(result)
        return provider

    def test_stream_chat_text_response(self) -> None:
        chunks = [
            _chunk("Hello"),
            SimpleNamespace(choices=[]),
            _chunk(" world"),
            _chunk(None, finish_reason="stop"),
        ]
        provider = self._make_provider(_FakeStream(chunks))
        received: list[str] = []

        text = asyncio.run(
            provider.stream_chat("gpt-4o", 100, 0.7, [{"role": "user", "content": "hi"}], received.append)
        )

        self.assertEqual("Hello world", text)
        self.assertEqual(["Hello", " world"], received)
        kwargs = provider._client.chat.completions.kwargs
        self.assertTrue(kwargs["stream"])
        self.assertNotIn("extra_body", kwargs)

    def test_context_window_sent_as_num_ctx(self) -> None:
        provider = self._make_provider(_FakeStream([_chunk("ok", finish_reason="stop")]))

        asyncio.run(
            provider.stream_chat(
                "llama3", 100, 0.7, [{"role": "user", "content": "hi"}], lambda c: None, context_window=32768
            )
        )

        kwargs = provider._client.chat.completions.kwargs
        self.assertEqual({"options": {"num_ctx": 32768}}, kwargs["extra_body"])

    def test_create_message_returns_content(self) -> None:
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="entropy"))])
        provider = self._make_provider(response)

        text = asyncio.run(provider.create_message("gpt-4o", 50, 0.2, [{"role": "user", "content": "x"}]))

        self.assertEqual("entropy", text)


if __name__ == "__main__":
    unittest.main()
