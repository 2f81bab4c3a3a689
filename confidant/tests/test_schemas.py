"""Tests for the conversation data model and scope rendering."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from confidant.common.schemas import (
    Message,
    Participant,
    QueryScope,
    SpeechAct,
    SpeechActKind,
    SpeechActStatus,
    render_scope,
    render_speech_act,
)


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestParticipant:
    def test_address_is_normalized(self):
        p = Participant(address="  Alice@Example.COM ")
        assert p.address == "alice@example.com"

    def test_identity_is_address_only(self):
        a = Participant(address="alice@example.com", display_name="Alice")
        b = Participant(address="ALICE@example.com", display_name="A. Smith")
        assert a == b
        assert len({a, b}) == 1

    def test_accepts_bare_string(self):
        msg = Message(id="m1", thread_id="t1", sender="bob@example.com", timestamp=T0)
        assert msg.sender.address == "bob@example.com"

    def test_accepts_export_field_names(self):
        p = Participant.model_validate({"email": "carol@example.com", "name": "Carol"})
        assert p.address == "carol@example.com"
        assert p.label == "Carol"

    def test_blank_address_rejected(self):
        with pytest.raises(ValidationError):
            Participant(address="   ")


class TestMessage:
    def test_participants_deduplicated_sender_first(self):
        msg = Message(
            id="m1",
            thread_id="t1",
            sender="alice@example.com",
            recipients=["bob@example.com", "Bob@example.com", "alice@example.com"],
            cc=["carol@example.com", "bob@example.com"],
            timestamp=T0,
        )
        assert [p.address for p in msg.recipients] == ["bob@example.com", "alice@example.com"]
        assert [p.address for p in msg.participants] == [
            "alice@example.com", "bob@example.com", "carol@example.com",
        ]
        assert msg.participant_addresses == frozenset(
            {"alice@example.com", "bob@example.com", "carol@example.com"}
        )

    def test_naive_timestamp_is_utc(self):
        msg = Message(id="m1", thread_id="t1", sender="a@example.com", timestamp=datetime(2024, 1, 1, 12))
        assert msg.timestamp.tzinfo == timezone.utc

    def test_mail_export_aliases(self):
        msg = Message.model_validate({
            "message_id": "m1",
            "thread_id": "t1",
            "from": {"email": "alice@example.com", "name": "Alice"},
            "to": [{"email": "bob@example.com"}],
            "cc": None,
            "subject": "Hi",
            "body": "Hello",
            "timestamp": "2024-03-01T09:00:00Z",
        })
        assert msg.id == "m1"
        assert msg.sender.display_name == "Alice"
        assert msg.cc == []

    def test_messages_are_immutable(self):
        msg = Message(id="m1", thread_id="t1", sender="a@example.com", timestamp=T0)
        with pytest.raises(ValidationError):
            msg.body = "changed"


class TestSpeechAct:
    def _act(self, **overrides):
        data = dict(
            kind="commitment",
            content="Send the report",
            actor="alice@example.com",
            participants=["alice@example.com", "bob@example.com"],
            source_message_id="m1",
            thread_id="t1",
            timestamp=T0,
            confidence=0.8,
        )
        data.update(overrides)
        return SpeechAct(**data)

    def test_defaults(self):
        act = self._act()
        assert act.id.startswith("act_")
        assert act.kind == SpeechActKind.COMMITMENT
        assert act.status == SpeechActStatus.OPEN

    @pytest.mark.parametrize("confidence", [-0.1, 1.5])
    def test_confidence_out_of_range_rejected(self, confidence):
        with pytest.raises(ValidationError):
            self._act(confidence=confidence)

    def test_blank_content_rejected(self):
        with pytest.raises(ValidationError):
            self._act(content="   ")

    def test_type_alias(self):
        act = SpeechAct.model_validate({
            "type": "decision",
            "content": "Use Postgres",
            "actor": "alice@example.com",
            "source_message_id": "m1",
            "thread_id": "t1",
            "timestamp": T0.isoformat(),
            "confidence": 1,
        })
        assert act.kind == SpeechActKind.DECISION

    def test_render(self):
        act = self._act(id="act_1")
        assert render_speech_act(act) == "[COMMITMENT] alice@example.com: Send the report (act_1)"


class TestRenderScope:
    def test_empty_scope(self):
        scope = QueryScope(requester=Participant(address="alice@example.com"))
        assert scope.is_empty
        assert render_scope(scope) == "(no accessible conversation history)"
