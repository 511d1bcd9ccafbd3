import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from tutor_chat.memory import ChatRepository, ChatStore, EventEmitter


PROJECT_ROOT = Path(__file__).resolve().parents[2]


class ChatStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"{self.__class__.__name__.lower()}-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._store = ChatStore(str(self._tmp_dir / "chats.db"))
        self._events = EventEmitter(self._store)
        self._repo = ChatRepository(self._store)

    def tearDown(self) -> None:
        self._store.close()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)
