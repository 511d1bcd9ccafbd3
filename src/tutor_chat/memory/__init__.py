from tutor_chat.memory.chat_repository import ChatRepository
from tutor_chat.memory.events import EventEmitter
from tutor_chat.memory.store import ChatStore

__all__ = [
    "ChatRepository",
    "ChatStore",
    "EventEmitter",
]
