import asyncio
import sqlite3

from tests.memory.base import ChatStoreTestCase
from tutor_chat.models import ChatMessage, ContentUnit, Course, LearningObjective, StoredChat


def _message(mid: str, sender: str, text: str, ts: int, docs: list[str] | None = None) -> ChatMessage:
    return ChatMessage(
        id=mid,
        sender=sender,
        user_id="u1",
        course_name="Thermo",
        text=text,
        timestamp=ts,
        retrieved_documents=docs or [],
    )


class CourseDataTests(ChatStoreTestCase):
    def test_course_round_trip_keeps_unit_order(self) -> None:
        course = Course(
            id="c1",
            name="Thermo",
            content_units=[
                ContentUnit(title="Week 1", published=True, item_titles=["Entropy"]),
                ContentUnit(title="Week 2", published=False, item_titles=["Exergy"]),
            ],
        )
        self._repo.save_course(course)

        loaded = asyncio.run(self._repo.get_course("Thermo"))
        self.assertEqual(course, loaded)
        self.assertEqual(["Entropy"], loaded.published_item_titles())
        self.assertIsNone(asyncio.run(self._repo.get_course("Unknown")))

    def test_saving_course_again_replaces_units(self) -> None:
        self._repo.save_course(Course(id="c1", name="Thermo", content_units=[ContentUnit(title="Old")]))
        self._repo.save_course(Course(id="c1", name="Thermo", content_units=[ContentUnit(title="New")]))

        loaded = asyncio.run(self._repo.get_course("Thermo"))
        self.assertEqual(["New"], [u.title for u in loaded.content_units])

    def test_learning_objectives_and_prompt_overrides(self) -> None:
        self._repo.save_course(Course(id="c1", name="Thermo"))
        objectives = [
            LearningObjective(id="lo1", text="Define entropy", unit_title="Week 1", item_title="Entropy"),
            LearningObjective(id="lo2", text="Use steam tables"),
        ]
        self._repo.save_learning_objectives("c1", objectives)
        self._repo.set_base_system_prompt("c1", "Custom policy")
        self._repo.set_selected_greeting("c1", "Hi there")

        self.assertEqual(objectives, asyncio.run(self._repo.get_learning_objectives("c1")))
        self.assertEqual("Custom policy", asyncio.run(self._repo.get_base_system_prompt("c1")))
        self.assertEqual("Hi there", asyncio.run(self._repo.get_selected_greeting("c1")))
        self.assertIsNone(asyncio.run(self._repo.get_base_system_prompt("other")))


class ChatPersistenceTests(ChatStoreTestCase):
    def test_create_append_and_load_chat(self) -> None:
        greeting = _message("g", "bot", "Hello", 1)
        asyncio.run(self._repo.create_chat(StoredChat(id="chat1", course_name="Thermo", user_id="u1", messages=[greeting])))
        asyncio.run(self._repo.append_chat_message("Thermo", "u1", "chat1", _message("m1", "user", "Q", 2)))
        asyncio.run(self._repo.append_chat_message("Thermo", "u1", "chat1", _message("m2", "bot", "A", 3, ["doc"])))

        chats = asyncio.run(self._repo.get_user_chats("Thermo", "u1"))
        self.assertEqual(1, len(chats))
        chat = chats[0]
        self.assertEqual("New Chat", chat.title)
        self.assertFalse(chat.is_deleted)
        self.assertEqual(["g", "m1", "m2"], [m.id for m in chat.messages])
        self.assertEqual(["doc"], chat.messages[-1].retrieved_documents)

    def test_create_chat_twice_keeps_one_record(self) -> None:
        chat = StoredChat(id="chat1", course_name="Thermo", user_id="u1")
        asyncio.run(self._repo.create_chat(chat))
        asyncio.run(self._repo.create_chat(chat))

        row = self._store.execute("SELECT COUNT(*) AS c FROM chats WHERE id = ?", ("chat1",)).fetchone()
        self.assertEqual(1, int(row["c"]))

    def test_append_to_unknown_chat_raises(self) -> None:
        with self.assertRaises(ValueError):
            asyncio.run(self._repo.append_chat_message("Thermo", "u1", "missing", _message("m", "user", "x", 1)))

    def test_failed_create_leaves_no_partial_chat(self) -> None:
        bad = _message("g", "tutor", "Hello", 1)
        with self.assertRaises(sqlite3.IntegrityError):
            asyncio.run(self._repo.create_chat(StoredChat(id="chat1", course_name="Thermo", user_id="u1", messages=[bad])))

        self.assertEqual([], asyncio.run(self._repo.get_user_chats("Thermo", "u1")))

        asyncio.run(self._repo.create_chat(StoredChat(id="chat2", course_name="Thermo", user_id="u1")))
        with self.assertRaises(sqlite3.IntegrityError):
            asyncio.run(self._repo.append_chat_message("Thermo", "u1", "chat2", bad))
        self.assertEqual([], asyncio.run(self._repo.get_user_chats("Thermo", "u1"))[0].messages)

    def test_chats_are_scoped_to_user_and_course(self) -> None:
        asyncio.run(self._repo.create_chat(StoredChat(id="a", course_name="Thermo", user_id="u1")))
        asyncio.run(self._repo.create_chat(StoredChat(id="b", course_name="Thermo", user_id="u2")))
        asyncio.run(self._repo.create_chat(StoredChat(id="c", course_name="Fluids", user_id="u1")))

        self.assertEqual(["a"], [c.id for c in asyncio.run(self._repo.get_user_chats("Thermo", "u1"))])

    def test_update_title_and_mark_deleted(self) -> None:
        asyncio.run(self._repo.create_chat(StoredChat(id="chat1", course_name="Thermo", user_id="u1")))
        asyncio.run(self._repo.update_chat_title("Thermo", "u1", "chat1", "  Entropy basics "))

        self.assertTrue(self._repo.mark_chat_deleted("chat1"))
        self.assertFalse(self._repo.mark_chat_deleted("chat1"))

        chat = asyncio.run(self._repo.get_user_chats("Thermo", "u1"))[0]
        self.assertEqual("Entropy basics", chat.title)
        self.assertTrue(chat.is_deleted)


class StruggleTopicStorageTests(ChatStoreTestCase):
    def test_topics_default_empty_and_round_trip(self) -> None:
        self.assertEqual([], self._repo.get_struggle_topics("u1", "Thermo"))

        self._repo.set_struggle_topics("u1", "Thermo", ["enthalpy", "entropy"])
        self._repo.set_struggle_topics("u1", "Thermo", ["entropy"])

        self.assertEqual(["entropy"], self._repo.get_struggle_topics("u1", "Thermo"))
        self.assertEqual([], self._repo.get_struggle_topics("u1", "Fluids"))


class EventEmitterTests(ChatStoreTestCase):
    def test_events_are_recorded_in_order(self) -> None:
        self._events.emit("chat1", "chat.started", {"chat_id": "chat1"})
        self._events.emit("chat1", "message.appended", {"message_id": "m1"})
        self._events.emit("chat2", "chat.started", {"chat_id": "chat2"})

        events = self._events.list_events("chat1")
        self.assertEqual(["chat.started", "message.appended"], [e["type"] for e in events])
        self.assertEqual({"message_id": "m1"}, events[1]["payload"])
