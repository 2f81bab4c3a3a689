"""
Tests for SpeechActIndex

Dedup/merge, rejection of malformed facts, queries and ledger integration.
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from confidant.common.schemas import Message, SpeechAct, SpeechActKind, SpeechActStatus
from confidant.memory import AccessLedger, SpeechActIndex, normalize_content


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

ALICE = "alice@example.com"
BOB = "bob@example.com"
CHARLIE = "charlie@example.com"


def make_act(
    content="Send the report by Friday",
    participants=(ALICE, BOB),
    act_id=None,
    kind="commitment",
    actor=ALICE,
    thread_id="t-1",
    source="msg-1",
    confidence=0.8,
    minutes=0,
):
    data = dict(
        kind=kind,
        content=content,
        actor=actor,
        participants=list(participants),
        source_message_id=source,
        thread_id=thread_id,
        timestamp=T0 + timedelta(minutes=minutes),
        confidence=confidence,
    )
    if act_id:
        data["id"] = act_id
    return SpeechAct(**data)


class TestNormalizeContent:
    @pytest.mark.parametrize("a,b", [
        ("Send the report.", "send the report"),
        ("  Send   the\nreport ", "Send the report"),
        ("ＳＥＮＤ the report", "send the report"),
        ("Straße", "STRASSE"),
    ])
    def test_equivalent(self, a, b):
        assert normalize_content(a) == normalize_content(b)

    def test_inner_punctuation_kept(self):
        assert normalize_content("v1.2 ships") != normalize_content("v12 ships")


class TestDedup:
    @pytest.fixture
    def ledger(self):
        ledger = AccessLedger()
        ledger.track_message(Message(
            id="msg-1", thread_id="t-1", sender=ALICE, recipients=[BOB], timestamp=T0,
        ))
        return ledger

    @pytest.fixture
    def index(self, ledger):
        return SpeechActIndex(ledger)

    def test_scenario_c(self, ledger, index):
        first = index.add(make_act(act_id="act-1", participants=[ALICE, BOB]))
        assert ledger.has_access_to_speech_act(BOB, first.id)
        assert not ledger.has_access_to_speech_act(CHARLIE, first.id)

        merged = index.add(make_act(
            act_id="act-2",
            content="send the report by friday!",
            participants=[ALICE, BOB, CHARLIE],
            source="msg-2",
        ))

        assert index.count() == 1
        assert merged.id == "act-1"
        assert {p.address for p in merged.participants} == {ALICE, BOB, CHARLIE}
        assert ledger.has_access_to_speech_act(CHARLIE, "act-1")
        # standing on the source message, never its body
        assert ledger.has_access_to_message(CHARLIE, "msg-1")
        assert not ledger.has_access_to_message_body(CHARLIE, "msg-1")

    def test_scenario_c_merged_id_answers_like_canonical(self, ledger, index):
        index.add(make_act(act_id="act-1", participants=[ALICE, BOB]))
        index.add(make_act(
            act_id="act-2",
            content="send the report by friday!",
            participants=[ALICE, BOB, CHARLIE],
            source="msg-2",
        ))

        assert index.get("act-2").id == "act-1"
        assert ledger.has_access_to_speech_act(BOB, "act-2")
        assert ledger.has_access_to_speech_act(CHARLIE, "act-2")
        assert ledger.all_have_access_to_speech_act([ALICE, BOB, CHARLIE], "act-2")
        assert not ledger.has_access_to_speech_act("eve@example.com", "act-2")

    def test_merged_id_follows_later_widening(self, ledger, index):
        index.add(make_act(act_id="act-1", participants=[ALICE, BOB]))
        index.add(make_act(act_id="act-2", participants=[ALICE, BOB]))
        index.add(make_act(act_id="act-3", participants=[ALICE, CHARLIE]))

        assert ledger.has_access_to_speech_act(CHARLIE, "act-2")
        assert ledger.snapshot().act_aliases == {"act-2": "act-1", "act-3": "act-1"}

    def test_higher_confidence_content_wins(self, index):
        index.add(make_act(act_id="act-1", content="Send the report by Friday", confidence=0.6))
        merged = index.add(make_act(act_id="act-2", content="send the report by Friday.", confidence=0.95))

        assert merged.id == "act-1"
        assert merged.content == "send the report by Friday."
        assert merged.confidence == 0.95
        assert merged.metadata["merged_from"] == ["act-2"]

    def test_lower_confidence_duplicate_keeps_content(self, index):
        index.add(make_act(act_id="act-1", confidence=0.9))
        merged = index.add(make_act(act_id="act-2", content="SEND the report by friday", confidence=0.3))

        assert merged.content == "Send the report by Friday"
        assert merged.confidence == 0.9

    def test_position_of_first_occurrence_kept(self, index):
        index.add(make_act(act_id="act-1", content="First"))
        index.add(make_act(act_id="act-2", content="Second"))
        index.add(make_act(act_id="act-3", content="first", confidence=0.99))

        assert [a.id for a in index.get_all()] == ["act-1", "act-2"]

    def test_alias_resolves_to_canonical(self, index):
        index.add(make_act(act_id="act-1"))
        index.add(make_act(act_id="act-2"))

        assert index.get("act-2").id == "act-1"

    @pytest.mark.parametrize("field,value", [
        ("thread_id", "t-2"),
        ("kind", "decision"),
        ("actor", BOB),
    ])
    def test_different_key_is_not_a_duplicate(self, index, field, value):
        index.add(make_act(act_id="act-1"))
        index.add(make_act(act_id="act-2", **{field: value}))

        assert index.count() == 2

    def test_re_adding_same_act_is_idempotent(self, index):
        act = make_act(act_id="act-1")
        index.add(act)
        index.add(act)

        assert index.count() == 1
        assert index.get("act-1").metadata == {}


class TestRejection:
    def test_blank_content_rejected(self, caplog):
        index = SpeechActIndex()
        bad = make_act(act_id="act-1").model_copy(update={"content": "   "})

        with caplog.at_level(logging.WARNING, logger="confidant.memory.speech_acts"):
            assert index.add(bad) is None

        assert index.count() == 0
        assert "empty content" in caplog.text

    @pytest.mark.parametrize("confidence", [-0.01, 1.01, float("nan")])
    def test_confidence_out_of_range_rejected(self, confidence):
        index = SpeechActIndex()
        bad = make_act(act_id="act-1").model_copy(update={"confidence": confidence})

        assert index.add(bad) is None
        assert index.count() == 0

    def test_batch_continues_after_rejection(self):
        index = SpeechActIndex()
        good = make_act(act_id="act-1")
        bad = make_act(act_id="act-2", content="Other").model_copy(update={"confidence": 7.0})
        also_good = make_act(act_id="act-3", content="Another")

        stored = index.add_many([good, bad, also_good])

        assert [a.id for a in stored] == ["act-1", "act-3"]

    def test_id_reused_for_different_fact_rejected(self):
        index = SpeechActIndex()
        index.add(make_act(act_id="act-1"))

        assert index.add(make_act(act_id="act-1", content="Something else")) is None
        assert index.get("act-1").content == "Send the report by Friday"

    def test_rejected_act_grants_nothing(self):
        ledger = AccessLedger()
        index = SpeechActIndex(ledger)
        bad = make_act(act_id="act-1", participants=[CHARLIE]).model_copy(update={"confidence": 2.0})

        index.add(bad)

        assert not ledger.has_access_to_speech_act(CHARLIE, "act-1")


class TestQueries:
    @pytest.fixture
    def index(self):
        index = SpeechActIndex()
        index.add_many([
            make_act(act_id="a1", content="Ship on Monday", kind="decision", minutes=0, confidence=0.9),
            make_act(act_id="a2", content="Can you review?", kind="request", minutes=5,
                     participants=[ALICE, CHARLIE], thread_id="t-2"),
            make_act(act_id="a3", content="What is the deadline?", kind="question", minutes=10,
                     confidence=0.4),
        ])
        return index

    def test_get_by_type(self, index):
        assert [a.id for a in index.get_by_type(SpeechActKind.DECISION)] == ["a1"]
        assert [a.id for a in index.get_by_type("question")] == ["a3"]
        assert index.get_by_type("gossip") == []

    def test_get_by_thread(self, index):
        assert [a.id for a in index.get_by_thread("t-1")] == ["a1", "a3"]
        assert index.get_by_thread("unknown") == []

    def test_get_by_participant(self, index):
        assert [a.id for a in index.get_by_participant(CHARLIE)] == ["a2"]

    def test_query_filters_combine(self, index):
        assert [a.id for a in index.query(thread_id="t-1", min_confidence=0.5)] == ["a1"]
        assert [a.id for a in index.query(after=T0 + timedelta(minutes=1), before=T0 + timedelta(minutes=9))] == ["a2"]
        assert index.query(kind="nonsense") == []

    def test_time_bounds_are_inclusive(self, index):
        assert [a.id for a in index.query(after=T0, before=T0 + timedelta(minutes=10))] == ["a1", "a2", "a3"]
        assert [a.id for a in index.query(after=T0 + timedelta(minutes=10))] == ["a3"]
        assert [a.id for a in index.query(before=T0)] == ["a1"]
        assert [a.id for a in index.query(after=T0 + timedelta(minutes=5), before=T0 + timedelta(minutes=5))] == ["a2"]

    def test_update_status(self, index):
        updated = index.update_status("a2", "completed")

        assert updated.status == SpeechActStatus.COMPLETED
        assert index.get("a2").status == SpeechActStatus.COMPLETED
        assert index.update_status("missing", "completed") is None

    def test_records_round_trip(self, index):
        index.add(make_act(act_id="dup", content="ship on monday", kind="decision"))
        records = index.to_records()

        restored = SpeechActIndex()
        assert restored.load_records(records) == 3

        assert [a.id for a in restored.get_all()] == ["a1", "a2", "a3"]
        assert restored.get("dup").id == "a1"
        assert restored.get("a2") == index.get("a2")
