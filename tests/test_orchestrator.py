"""
End-to-end behavior of send_turn and the read operations, against a real
SQLite store and a mocked Groq client.
"""

from unittest.mock import patch

import groq
import pytest
from sqlmodel import Session, select

from models import Conversation, Turn
from conversations.context import AttachmentPart, TextPart, assemble
from conversations.errors import (
    BackendRateLimited,
    BackendUnavailable,
    BackendUnknown,
    Forbidden,
    InvalidInput,
    NotFound,
)

from conftest import REPLY_TEXT, TITLE_TEXT, status_error


def _all_turns(engine):
    with Session(engine) as session:
        return session.exec(select(Turn)).all()


def _all_conversations(engine):
    with Session(engine) as session:
        return session.exec(select(Conversation)).all()


class TestSendTurn:
    def test_first_message_scenario(self, orchestrator, store, alice, backend, scheduler):
        reply = orchestrator.send_turn(alice, "Hi")

        turns = store.list_ordered(reply.conversation_id)
        assert [(t.role, t.content) for t in turns] == [("user", "Hi"), ("assistant", REPLY_TEXT)]
        assert turns[1].created_at >= turns[0].created_at
        assert reply.id == turns[1].id

        # Title arrives only once the deferred task has run
        scheduler.drain(timeout=5)
        assert store.get_conversation(reply.conversation_id).title == TITLE_TEXT
        assert len(backend.title_calls()) == 1

    def test_new_conversation_uses_requested_model(self, orchestrator, store, alice, backend):
        reply = orchestrator.send_turn(alice, "Hi", model_id="gpt-oss-120b")
        assert store.get_conversation(reply.conversation_id).model_id == "gpt-oss-120b"
        assert backend.chat_calls()[0]["model"] == "openai/gpt-oss-120b"

    def test_new_conversation_defaults_model(self, orchestrator, store, alice):
        reply = orchestrator.send_turn(alice, "Hi")
        assert store.get_conversation(reply.conversation_id).model_id == "llama-3.3-70b"

    def test_existing_conversation_keeps_its_model(self, orchestrator, store, alice, backend):
        conversation = orchestrator.create_conversation(alice, model_id="llama-4-scout")
        orchestrator.send_turn(alice, "Hi", model_id="gpt-oss-120b", conversation_id=conversation.id)
        assert backend.chat_calls()[0]["model"] == "meta-llama/llama-4-scout-17b-16e-instruct"
        assert store.get_conversation(conversation.id).model_id == "llama-4-scout"

    def test_full_history_is_sent_in_order(self, orchestrator, alice, backend):
        first = orchestrator.send_turn(alice, "one")
        orchestrator.send_turn(alice, "two", conversation_id=first.conversation_id)

        messages = backend.chat_calls()[-1]["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "one"),
            ("assistant", REPLY_TEXT),
            ("user", "two"),
        ]

    def test_missing_conversation_is_not_found_and_writes_nothing(self, orchestrator, engine, alice, backend):
        with pytest.raises(NotFound):
            orchestrator.send_turn(alice, "Hi", conversation_id=4242)
        assert _all_turns(engine) == []
        assert backend.calls == []

    def test_foreign_conversation_is_forbidden(self, orchestrator, store, alice, bob, backend):
        conversation = orchestrator.create_conversation(bob)
        for text, attachment in [("Hi", None), ("", "img-ref-1"), ("x" * 500, None)]:
            with pytest.raises(Forbidden):
                orchestrator.send_turn(alice, text, conversation_id=conversation.id, attachment=attachment)
        assert store.list_ordered(conversation.id) == []
        assert backend.calls == []

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_input_rejected_before_any_write(self, orchestrator, engine, alice, text):
        with pytest.raises(InvalidInput):
            orchestrator.send_turn(alice, text)
        assert _all_conversations(engine) == []
        assert _all_turns(engine) == []

    def test_attachment_only_message_is_accepted(self, orchestrator, store, alice, backend):
        reply = orchestrator.send_turn(alice, "", model_id="llama-4-scout", attachment="img-ref-1")

        turns = store.list_ordered(reply.conversation_id)
        assert turns[0].attachment == "img-ref-1"
        assert assemble(turns)[0].parts == (TextPart(""), AttachmentPart("img-ref-1"))

        sent = backend.chat_calls()[0]["messages"][0]
        assert sent["content"] == [
            {"type": "text", "text": ""},
            {"type": "image_url", "image_url": {"url": "img-ref-1"}},
        ]

    def test_attachment_only_opening_keeps_placeholder_title(self, orchestrator, store, alice, backend, scheduler):
        reply = orchestrator.send_turn(alice, "", model_id="llama-4-scout", attachment="img-ref-1")
        scheduler.drain(timeout=5)
        assert store.get_conversation(reply.conversation_id).title == "New Chat"
        assert backend.title_calls() == []


class TestBackendFailures:
    def test_rate_limit_keeps_user_turn_and_does_not_retry(self, orchestrator, store, alice, backend):
        conversation = orchestrator.create_conversation(alice)
        backend.error = status_error(groq.RateLimitError, 429)

        with pytest.raises(BackendRateLimited):
            orchestrator.send_turn(alice, "Hi", conversation_id=conversation.id)

        turns = store.list_ordered(conversation.id)
        assert [(t.role, t.content) for t in turns] == [("user", "Hi")]
        assert len(backend.chat_calls()) == 1

    def test_unavailable_propagates(self, orchestrator, store, alice, backend):
        conversation = orchestrator.create_conversation(alice)
        backend.error = status_error(groq.InternalServerError, 500)
        with pytest.raises(BackendUnavailable):
            orchestrator.send_turn(alice, "Hi", conversation_id=conversation.id)
        assert [t.role for t in store.list_ordered(conversation.id)] == ["user"]

    def test_failed_first_turn_still_gets_a_title(self, orchestrator, store, alice, backend, scheduler):
        conversation = orchestrator.create_conversation(alice)
        backend.error = status_error(groq.RateLimitError, 429)
        with pytest.raises(BackendRateLimited):
            orchestrator.send_turn(alice, "Hi", conversation_id=conversation.id)

        scheduler.drain(timeout=5)
        assert store.get_conversation(conversation.id).title == TITLE_TEXT

        backend.error = None
        orchestrator.send_turn(alice, "Hi again", conversation_id=conversation.id)
        scheduler.drain(timeout=5)
        assert len(backend.title_calls()) == 1

    def test_empty_completion_records_no_assistant_turn(self, orchestrator, store, alice, backend):
        conversation = orchestrator.create_conversation(alice)
        backend.reply = "   "
        with pytest.raises(BackendUnknown):
            orchestrator.send_turn(alice, "Hi", conversation_id=conversation.id)
        assert [t.role for t in store.list_ordered(conversation.id)] == ["user"]

    def test_recovery_after_failure(self, orchestrator, store, alice, backend):
        conversation = orchestrator.create_conversation(alice)
        backend.error = status_error(groq.RateLimitError, 429)
        with pytest.raises(BackendRateLimited):
            orchestrator.send_turn(alice, "Hi", conversation_id=conversation.id)

        backend.error = None
        orchestrator.send_turn(alice, "Hi again", conversation_id=conversation.id)
        assert [t.role for t in store.list_ordered(conversation.id)] == ["user", "user", "assistant"]


class TestTitles:
    def test_title_scheduled_once_per_conversation(self, orchestrator, alice, backend, scheduler):
        with patch.object(scheduler, "schedule", wraps=scheduler.schedule) as spy:
            first = orchestrator.send_turn(alice, "Hi")
            for text in ["two", "three", "four"]:
                orchestrator.send_turn(alice, text, conversation_id=first.conversation_id)
            scheduler.drain(timeout=5)

        assert spy.call_count == 1
        assert spy.call_args.args[0] == first.conversation_id
        assert len(backend.title_calls()) == 1

    def test_title_failure_never_reaches_caller(self, orchestrator, store, alice, backend, scheduler):
        backend.title_error = status_error(groq.AuthenticationError, 401)
        reply = orchestrator.send_turn(alice, "Hi")
        scheduler.drain(timeout=5)
        assert reply.content == REPLY_TEXT
        assert store.get_conversation(reply.conversation_id).title == "New Chat"

    def test_title_does_not_wait_for_slow_generation(self, orchestrator, alice, backend, scheduler):
        backend.chat_delay = 1.0
        with patch.object(scheduler, "schedule", wraps=scheduler.schedule) as spy:
            orchestrator.send_turn(alice, "Hi")

        assert spy.call_args.kwargs["delay"] == scheduler.delay
        # The title request went out while the reply was still being generated
        assert len(backend.title_calls()) == 1

    def test_deleted_conversation_title_write_is_a_no_op(self, orchestrator, store, alice):
        conversation = orchestrator.create_conversation(alice)
        store.delete_conversation(conversation.id)
        orchestrator._apply_title(conversation.id, "Hi")  # must not raise
        assert store.get_conversation(conversation.id) is None


class TestReads:
    def test_list_only_own_conversations(self, orchestrator, alice, bob):
        mine = orchestrator.create_conversation(alice, title="mine")
        orchestrator.create_conversation(bob, title="theirs")
        assert [c.id for c in orchestrator.list_conversations(alice)] == [mine.id]

    def test_explicit_conversation_gets_placeholder_title(self, orchestrator, alice):
        assert orchestrator.create_conversation(alice, title="  ").title == "New Chat"

    def test_get_conversation_returns_ordered_turns(self, orchestrator, alice):
        reply = orchestrator.send_turn(alice, "Hi")
        conversation, turns = orchestrator.get_conversation(reply.conversation_id, alice)
        assert conversation.id == reply.conversation_id
        assert [t.role for t in turns] == ["user", "assistant"]

    def test_get_foreign_and_missing(self, orchestrator, alice, bob):
        theirs = orchestrator.create_conversation(bob)
        with pytest.raises(Forbidden):
            orchestrator.get_conversation(theirs.id, alice)
        with pytest.raises(NotFound):
            orchestrator.get_conversation(9999, alice)

    def test_delete_cascades_and_cancels_title(self, orchestrator, store, engine, alice, scheduler, backend):
        scheduler.delay = 5
        reply = orchestrator.send_turn(alice, "Hi")
        assert scheduler.is_pending(reply.conversation_id)

        orchestrator.delete_conversation(reply.conversation_id, alice)

        assert not scheduler.is_pending(reply.conversation_id)
        assert store.get_conversation(reply.conversation_id) is None
        assert _all_turns(engine) == []
        assert backend.title_calls() == []

    def test_delete_foreign_is_forbidden(self, orchestrator, store, alice, bob):
        theirs = orchestrator.create_conversation(bob)
        with pytest.raises(Forbidden):
            orchestrator.delete_conversation(theirs.id, alice)
        assert store.get_conversation(theirs.id) is not None


class TestSerialization:
    def test_serialized_orchestrator_still_completes(self, store, generation, scheduler, alice):
        from conversations.orchestrator import Orchestrator
        from conversations.titles import TitleDeriver

        orchestrator = Orchestrator(store, generation, TitleDeriver(generation), scheduler, serialize=True)
        reply = orchestrator.send_turn(alice, "Hi")
        assert reply.role == "assistant"
        assert not orchestrator.locks.get(reply.conversation_id).locked()
