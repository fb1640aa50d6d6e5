import json
import tempfile
from pathlib import Path

import pytest

from podcast_assistant.domain.conversation import DEFAULT_CONVERSATION_TITLE
from podcast_assistant.domain.exceptions import AuthRequired, NotFoundError
from podcast_assistant.domain.models import Message
from podcast_assistant.infrastructure.storage.json_store import JsonConversationStore


def test_json_store_create_and_list():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage", user_id="u1")
        conv = store.create_conversation()
        assert conv.title == DEFAULT_CONVERSATION_TITLE
        store.add_message(conv.id, Message.user("hi"))
        store.add_message(conv.id, Message.assistant("hello there"))
        msgs = store.list_messages(conv.id)
        assert [m.role for m in msgs] == ["user", "assistant"]
        assert msgs[1].content == "hello there"
        convs = store.list_conversations()
        assert [c.id for c in convs] == [conv.id]


def test_list_orders_by_updated_at_desc():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage", user_id="u1")
        older = store.create_conversation("older")
        newer = store.create_conversation("newer")
        assert [c.id for c in store.list_conversations()] == [newer.id, older.id]
        store.update_conversation_title(older.id, "renamed")
        convs = store.list_conversations()
        assert [c.id for c in convs] == [older.id, newer.id]
        assert convs[0].title == "renamed"
        store.add_message(newer.id, Message.user("bump"))
        assert store.list_conversations()[0].id == newer.id


def test_titles_are_truncated_to_thirty_characters():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage", user_id="u1")
        exact = "a" * 30
        conv = store.create_conversation(exact)
        assert conv.title == exact
        store.update_conversation_title(conv.id, "b" * 31)
        assert store.get_conversation(conv.id).title == "b" * 30 + "..."


def test_delete_removes_messages_and_conversation():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage", user_id="u1")
        conv = store.create_conversation()
        store.add_message(conv.id, Message.user("hi"))
        store.delete_conversation(conv.id)
        assert store.list_messages(conv.id) == []
        assert store.list_conversations() == []
        with pytest.raises(NotFoundError):
            store.get_conversation(conv.id)


def test_conversations_are_scoped_to_user():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        alice = JsonConversationStore(root=root, user_id="alice")
        bob = JsonConversationStore(root=root, user_id="bob")
        conv = alice.create_conversation()
        alice.add_message(conv.id, Message.user("secret"))
        assert bob.list_conversations() == []
        assert bob.list_messages(conv.id) == []
        with pytest.raises(NotFoundError):
            bob.add_message(conv.id, Message.user("intrusion"))
        with pytest.raises(NotFoundError):
            bob.delete_conversation(conv.id)


def test_missing_user_is_rejected_before_any_write():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonConversationStore(root=root, user_id=None)
        with pytest.raises(AuthRequired):
            store.create_conversation()
        with pytest.raises(AuthRequired):
            store.list_conversations()
        assert list((root / "conversations").iterdir()) == []


def test_recent_user_messages_newest_first():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage", user_id="u1")
        c1 = store.create_conversation()
        c2 = store.create_conversation()
        store.add_message(c1.id, Message.user("first"))
        store.add_message(c1.id, Message.assistant("reply"))
        store.add_message(c2.id, Message.user("second"))
        assert store.recent_user_messages(10) == ["second", "first"]
        assert store.recent_user_messages(1) == ["second"]


def test_default_api_key_file():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonConversationStore(root=root, user_id="u1")
        assert store.get_default_api_key("gemini") is None
        (root / "default_api_keys.json").write_text(json.dumps({"gemini": "shared-key"}), encoding="utf-8")
        assert store.get_default_api_key("gemini") == "shared-key"
        assert store.get_default_api_key("other") is None
        (root / "default_api_keys.json").write_text("{broken", encoding="utf-8")
        assert store.get_default_api_key("gemini") is None
