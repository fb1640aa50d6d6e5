import json
import tempfile
from pathlib import Path

from podcast_assistant.credentials.store import CredentialStore
from podcast_assistant.domain.exceptions import RequestFailed
from podcast_assistant.infrastructure.storage.json_store import JsonConversationStore
from podcast_assistant.infrastructure.storage.local_state import LocalStateStore
from podcast_assistant.session.controller import (
    CREDENTIAL_NOTICE,
    GENERIC_FAILURE_NOTICE,
    SessionController,
    TurnState,
)
from podcast_assistant.session.history import LocalHistory
from podcast_assistant.streaming.engine import StreamingResponseEngine


def record(text):
    return json.dumps({"candidates": [{"content": {"parts": [{"text": text}]}}]})


class SettingsStub:
    max_context_messages = 10
    stream_timeout = 120.0
    title_max_length = 30
    long_term_memory_limit = 50
    interests_limit = 100


class FakeProvider:
    name = "fake"

    def __init__(self, chunks=(), error=None):
        self.chunks = list(chunks)
        self.error = error
        self.prompts = []
        self.stream_calls = 0
        self.closed = False

    def build_payload(self, full_prompt, generation=None, safety_settings=None):
        self.prompts.append(full_prompt)
        return {}

    def stream_raw(self, payload, api_key):
        self.stream_calls += 1
        try:
            for chunk in self.chunks:
                yield chunk
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class Harness:
    def __init__(self, root, provider, api_key="test-key", user_id="u1"):
        self.store = JsonConversationStore(root=Path(root) / ".storage", user_id=user_id)
        state = LocalStateStore(Path(root) / "state.json")
        self.credentials = CredentialStore(state)
        if api_key:
            self.credentials.set_api_key(api_key)
        self.provider = provider
        self.notices = []
        self.updates = []
        self.credential_requests = 0
        self.on_update_hook = None
        self.controller = SessionController(
            store=self.store,
            engine=StreamingResponseEngine(provider, SettingsStub()),
            credentials=self.credentials,
            history=LocalHistory(state),
            on_notice=self.notices.append,
            on_update=self._on_update,
            on_credential_required=self._on_credential_required,
            cfg=SettingsStub(),
        )

    def _on_update(self, messages):
        self.updates.append([(m.role, m.content) for m in messages])
        if self.on_update_hook is not None:
            self.on_update_hook(messages)

    def _on_credential_required(self):
        self.credential_requests += 1


ANSWER = [record("Try "), record("Serial.")]


def test_full_turn_persists_both_messages():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider(["\n".join(ANSWER)]))
        result = h.controller.submit("Recommend some true crime podcasts please")
        assert result.status == "completed"
        assert result.assistant_message.content == "Try Serial."
        assert h.controller.state is TurnState.IDLE
        assert h.controller.draft == ""

        stored = h.store.list_messages(result.conversation_id)
        assert [(m.role, m.content) for m in stored] == [
            ("user", "Recommend some true crime podcasts please"),
            ("assistant", "Try Serial."),
        ]
        assert stored[1].id == result.assistant_message.id
        conv = h.store.get_conversation(result.conversation_id)
        assert conv.title == "Recommend some true crime podc..."
        assert h.controller.interests == ["true crime"]
        assert ("assistant", "Try ") in h.updates[-2]


def test_submit_while_streaming_is_rejected():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider([a + "\n" for a in ANSWER]))
        nested = []

        def hook(messages):
            if h.controller.state is TurnState.STREAMING and not nested:
                nested.append(h.controller.submit("second question"))

        h.on_update_hook = hook
        result = h.controller.submit("first question")
        assert result.status == "completed"
        assert [r.status for r in nested] == ["busy"]
        assert h.provider.stream_calls == 1
        assert len(h.store.list_messages(result.conversation_id)) == 2


def test_missing_credential_keeps_draft_and_sends_nothing():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider([a + "\n" for a in ANSWER]), api_key="")
        result = h.controller.submit("hello")
        assert result.status == "credential_required"
        assert result.notice == CREDENTIAL_NOTICE
        assert h.credential_requests == 1
        assert h.controller.draft == "hello"
        assert h.provider.stream_calls == 0
        assert h.store.list_conversations() == []
        assert h.controller.state is TurnState.IDLE

        h.credentials.set_api_key("now-set")
        assert h.controller.submit(h.controller.draft).status == "completed"


def test_stream_failure_discards_partial_reply():
    with tempfile.TemporaryDirectory() as d:
        error = RequestFailed(400, "API key not valid")
        h = Harness(d, FakeProvider([ANSWER[0] + "\n"], error=error))
        result = h.controller.submit("hello")
        assert result.status == "failed"
        assert result.error is error
        assert h.notices == [error.message]
        assert h.controller.state is TurnState.IDLE
        assert [m.role for m in h.controller.messages] == ["user"]
        assert [m.role for m in h.store.list_messages(result.conversation_id)] == ["user"]
        assert h.provider.closed is True


def test_unexpected_error_gives_generic_notice():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider(error=RuntimeError("boom")))
        result = h.controller.submit("hello")
        assert result.status == "failed"
        assert result.error.code == "INTERNAL_ERROR"
        assert h.notices == [GENERIC_FAILURE_NOTICE]
        assert not h.controller.is_busy


def test_abandon_mid_stream_stops_updates_and_skips_persist():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider([a + "\n" for a in ANSWER]))

        def hook(messages):
            if messages and messages[-1].role == "assistant" and messages[-1].content:
                h.controller.abandon()

        h.on_update_hook = hook
        result = h.controller.submit("hello")
        assert result.status == "abandoned"
        assert h.controller.messages == []
        assert h.controller.conversation_id is None
        assert [m.role for m in h.store.list_messages(result.conversation_id)] == ["user"]
        assert all(("assistant", "Try Serial.") not in u for u in h.updates)
        assert h.provider.closed is True
        assert h.controller.state is TurnState.IDLE


def test_unauthenticated_user_keeps_draft():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider(ANSWER), user_id=None)
        result = h.controller.submit("hello")
        assert result.status == "failed"
        assert result.error.code == "AUTH_REQUIRED"
        assert h.controller.draft == "hello"
        assert h.controller.messages == []
        assert h.provider.stream_calls == 0


def test_second_turn_carries_history_and_memory():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider([ANSWER[0]]))
        first = h.controller.submit("any good history podcasts?")
        second = h.controller.submit("and comedy ones?")
        assert second.conversation_id == first.conversation_id
        prompt = h.provider.prompts[1]
        assert "Conversation history:\nUser: any good history podcasts?\n\nAssistant: Try " in prompt
        assert "LONG-TERM MEMORY CONTEXT:" in prompt
        assert "history" in prompt.split("LONG-TERM MEMORY CONTEXT:")[1]
        assert prompt.endswith("User's new message: and comedy ones?")
        title = h.store.get_conversation(first.conversation_id).title
        assert title == "any good history podcasts?"


def test_navigation_between_conversations():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider([ANSWER[1]]))
        first = h.controller.submit("first chat")
        assert h.controller.new_chat() is True
        assert h.notices == ["Started a new chat"]
        second = h.controller.submit("second chat")
        assert second.conversation_id != first.conversation_id
        assert [c.id for c in h.controller.list_conversations()] == [second.conversation_id, first.conversation_id]

        assert h.controller.load_conversation(first.conversation_id) is True
        assert [m.content for m in h.controller.messages] == ["first chat", "Serial."]

        assert h.controller.rename_conversation(first.conversation_id, "Renamed") is True
        assert h.store.get_conversation(first.conversation_id).title == "Renamed"

        assert h.controller.delete_conversation(first.conversation_id) is True
        assert h.controller.conversation_id is None
        assert h.controller.messages == []
        assert [c.id for c in h.controller.list_conversations()] == [second.conversation_id]


def test_theme_and_interest_shortcuts():
    with tempfile.TemporaryDirectory() as d:
        h = Harness(d, FakeProvider([ANSWER[1]]))
        assert h.controller.submit("   ").status == "rejected"
        h.controller.submit_theme("True Crime")
        assert "I want to research about True Crime podcasts." in h.provider.prompts[0]
        h.controller.submit_interest("comedy")
        assert h.provider.prompts[1].endswith("User's new message: Tell me more about comedy podcasts")
