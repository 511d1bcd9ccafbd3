from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    """Dispatches REPL slash commands. Anything not starting with ``/`` is left for the chat."""

    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_chats: Callable[[], Awaitable[None]],
        on_new: Callable[[], Awaitable[None]],
        on_resume: Callable[[str], Awaitable[None]],
        on_delete: Callable[[], Awaitable[None]],
        on_struggle_answer: Callable[[str, bool], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_chats = on_chats
        self._on_new = on_new
        self._on_resume = on_resume
        self._on_delete = on_delete
        self._on_struggle_answer = on_struggle_answer
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, argument = trimmed.partition(" ")
        argument = argument.strip()

        if command == "/help":
            await self._on_help()
            return True
        if command == "/chats":
            await self._on_chats()
            return True
        if command == "/new":
            await self._on_new()
            return True
        if command == "/resume" and argument:
            await self._on_resume(argument)
            return True
        if command == "/delete":
            await self._on_delete()
            return True
        if command in ("/confident", "/practice") and argument:
            await self._on_struggle_answer(argument, command == "/confident")
            return True

        self._on_unknown(trimmed)
        return True
