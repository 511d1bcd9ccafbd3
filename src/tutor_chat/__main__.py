import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from tutor_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from tutor_chat.bootstrap import AppRuntime, bootstrap_runtime
from tutor_chat.commands.router import CommandRouter
from tutor_chat.errors import ChatError
from tutor_chat.unstruggle import find_unstruggle_topic, strip_unstruggle_tag

DEFAULT_COURSE_NAME = "General"

HELP_TEXT = """\
Commands:
  /help               show this help
  /chats              list your chats in this course
  /new                start a new chat
  /resume <id>        continue a saved chat
  /delete             delete the current chat and start a new one
  /confident <topic>  tell the tutor you are now confident with a struggle topic
  /practice <topic>   tell the tutor you need more practice with a struggle topic
  exit | quit         leave
"""


class ChatRepl:
    def __init__(self, runtime: AppRuntime, user_id: str, course_name: str):
        self._runtime = runtime
        self._app = runtime.chat_app
        self._user_id = user_id
        self._course_name = course_name
        self._chat_id: str | None = None
        self.router = CommandRouter(
            on_help=self._help,
            on_chats=self._chats,
            on_new=self.new_chat,
            on_resume=self._resume,
            on_delete=self._delete,
            on_struggle_answer=self._struggle_answer,
            on_unknown=self._unknown,
        )

    async def new_chat(self) -> None:
        result = await self._app.initialize(self._user_id, self._course_name)
        self._chat_id = result.chat_id
        print(f"[chat {result.chat_id}]")
        print(f"tutor> {result.greeting.text}\n")

    async def send(self, text: str) -> None:
        if self._chat_id is None or not self._app.has_chat(self._chat_id):
            print("(this chat is no longer active; starting a new one)")
            await self.new_chat()

        print("tutor> ", end="", flush=True)
        reply = await self._app.exchange(
            self._chat_id,
            text,
            self._user_id,
            self._course_name,
            on_chunk=lambda chunk: print(chunk, end="", flush=True),
        )
        print("\n")
        topic = find_unstruggle_topic(reply.text)
        if topic:
            print(f"(answer with /confident {topic} or /practice {topic})\n")

    async def _help(self) -> None:
        print(HELP_TEXT)

    async def _chats(self) -> None:
        chats = await self._runtime.repository.get_user_chats(self._course_name, self._user_id)
        visible = [c for c in chats if not c.is_deleted]
        if not visible:
            print("No saved chats.\n")
            return
        for chat in visible:
            marker = "*" if chat.id == self._chat_id else " "
            print(f"{marker} {chat.id}  {chat.title}  ({len(chat.messages)} messages)")
        print()

    async def _resume(self, chat_id: str) -> None:
        if not await self._app.restore(chat_id, self._course_name, self._user_id):
            print(f"Chat {chat_id} could not be restored.\n")
            return
        self._chat_id = chat_id
        transcript = self._app.get_transcript(chat_id)
        print(f"[chat {chat_id}, {len(transcript)} messages]")
        if transcript:
            last = transcript[-1]
            speaker = "you" if last.sender == "user" else "tutor"
            print(f"{speaker}> {last.text}\n")

    async def _delete(self) -> None:
        if self._chat_id is not None:
            self._app.delete(self._chat_id)
            self._runtime.repository.mark_chat_deleted(self._chat_id)
            print(f"Deleted chat {self._chat_id}.")
        await self.new_chat()

    async def _struggle_answer(self, topic: str, confident: bool) -> None:
        if self._chat_id is None:
            return
        reply = await self._app.resolve_struggle_topic(
            self._chat_id, topic, confident, self._user_id, self._course_name
        )
        print(f"tutor> {strip_unstruggle_tag(reply.text, topic)}\n")

    def _unknown(self, command: str) -> None:
        print(f"Unknown command: {command} (try /help)\n")


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    if not app.developer_mode and app.provider_name != "ollama" and not env.provider_api_key:
        logger.error(f"{env.provider_env_var} environment variable is required.")
        sys.exit(1)

    runtime = await bootstrap_runtime(app, env)
    course_name = app.course_name or DEFAULT_COURSE_NAME
    repl = ChatRepl(runtime, app.user_id, course_name)

    print("tutor-chat (type 'exit' to quit, '/help' for commands)")
    print(f"Course: {course_name}  User: {app.user_id}")
    print(f"Provider: {'mock (developer mode)' if app.developer_mode else app.provider_name} ({app.model})")
    print(f"Retrieval: {'on' if runtime.retriever else 'off'}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        await repl.new_chat()
        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                if await repl.router.try_handle(trimmed):
                    continue
                await repl.send(trimmed)
            except ChatError as ex:
                print(f"\n{ex}\n")
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
