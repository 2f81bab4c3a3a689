"""
Tests for SpeechActDetector

The detector is the boundary where model output becomes SpeechActs:
malformed candidates are discarded one by one, never fatally.
"""

import json
import logging
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from confidant.common.llm_client import TextGenerator
from confidant.common.schemas import Message, SpeechActKind
from confidant.ingest import SpeechActDetector, build_speech_acts


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def message():
    return Message(
        id="msg-1",
        thread_id="t-1",
        sender={"address": "alice@example.com", "display_name": "Alice"},
        recipients=["bob@example.com"],
        cc=["carol@example.com"],
        subject="Release",
        body="I'll send the release notes by Friday. Can you review them?",
        timestamp=T0,
    )


@pytest.fixture
def generator():
    gen = Mock(spec=TextGenerator)
    gen.is_available = True
    return gen


class TestBuildSpeechActs:
    def test_valid_candidates(self, message):
        acts, rejected = build_speech_acts(message, [
            {"type": "COMMITMENT", "content": "Send the release notes by Friday", "confidence": 0.9},
            {"type": "REQUEST", "content": "Review the notes", "confidence": 0.7, "metadata": {"target": "bob"}},
        ])

        assert rejected == []
        assert [a.kind for a in acts] == [SpeechActKind.COMMITMENT, SpeechActKind.REQUEST]
        act = acts[0]
        assert act.actor.address == "alice@example.com"
        assert {p.address for p in act.participants} == {
            "alice@example.com", "bob@example.com", "carol@example.com",
        }
        assert act.source_message_id == "msg-1"
        assert act.thread_id == "t-1"
        assert act.timestamp == T0
        assert acts[1].metadata == {"target": "bob", "raw_type": "request"}

    def test_unmapped_types_become_other(self, message):
        acts, _ = build_speech_acts(message, [
            {"type": "GREETING", "content": "Hi team", "confidence": 0.99},
        ])

        assert acts[0].kind == SpeechActKind.OTHER
        assert acts[0].metadata["raw_type"] == "greeting"

    @pytest.mark.parametrize("candidate,reason", [
        ({"content": "No type", "confidence": 0.5}, "missing type"),
        ({"type": "REQUEST", "content": "  ", "confidence": 0.5}, "empty content"),
        ({"type": "REQUEST", "confidence": 0.5}, "empty content"),
        ({"type": "REQUEST", "content": "x", "confidence": 1.5}, "confidence"),
        ({"type": "REQUEST", "content": "x", "confidence": -0.2}, "confidence"),
        ({"type": "REQUEST", "content": "x", "confidence": "high"}, "confidence"),
        ({"type": "REQUEST", "content": "x", "confidence": True}, "confidence"),
        ({"type": "REQUEST", "content": "x"}, "confidence"),
        ("not an object", "not an object"),
    ])
    def test_invalid_candidates_rejected(self, message, candidate, reason):
        acts, rejected = build_speech_acts(message, [candidate])

        assert acts == []
        assert len(rejected) == 1
        assert reason in rejected[0].reason

    def test_partial_success(self, message, caplog):
        with caplog.at_level(logging.WARNING, logger="confidant.ingest.detector"):
            acts, rejected = build_speech_acts(message, [
                {"type": "DECISION", "content": "Ship on Monday", "confidence": 0.8},
                {"type": "DECISION", "content": "", "confidence": 0.8},
                {"type": "QUESTION", "content": "When is the review?", "confidence": 1},
            ])

        assert len(acts) == 2
        assert len(rejected) == 1
        assert "Discarded speech act candidate from msg-1" in caplog.text


class TestSpeechActDetector:
    def test_detect_parses_fenced_array(self, message, generator):
        generator.generate.return_value = "```json\n" + json.dumps([
            {"type": "COMMITMENT", "content": "Send notes by Friday", "confidence": 0.9},
            {"type": "QUESTION", "content": "Can you review?", "confidence": 3},
        ]) + "\n```"
        detector = SpeechActDetector(generator)

        result = detector.detect(message)

        assert result.ok
        assert [a.content for a in result.acts] == ["Send notes by Friday"]
        assert len(result.rejected) == 1

    def test_prompt_contains_message(self, message, generator):
        generator.generate.return_value = "[]"
        detector = SpeechActDetector(generator, temperature=0.1)

        detector.detect(message)

        prompt = generator.generate.call_args[0][0]
        assert "Alice <alice@example.com>" in prompt
        assert "carol@example.com" in prompt
        assert "release notes by Friday" in prompt
        assert generator.generate.call_args.kwargs["temperature"] == 0.1

    def test_wrapped_object_is_unwrapped(self, message, generator):
        generator.generate.return_value = json.dumps({"speech_acts": [
            {"type": "REQUEST", "content": "Review the notes", "confidence": 0.6},
        ]})

        result = SpeechActDetector(generator).detect(message)

        assert [a.kind for a in result.acts] == [SpeechActKind.REQUEST]

    def test_unparseable_output_is_an_error_result(self, message, generator):
        generator.generate.return_value = "I could not find any speech acts, sorry."

        result = SpeechActDetector(generator).detect(message)

        assert not result.ok
        assert "unparseable" in result.error
        assert result.acts == []

    def test_generation_failure_is_an_error_result(self, message, generator):
        generator.generate.side_effect = RuntimeError("rate limited")

        result = SpeechActDetector(generator).detect(message)

        assert not result.ok
        assert "rate limited" in result.error

    def test_unavailable_detector(self, message):
        result = SpeechActDetector(None).detect(message)

        assert result.error == "detector unavailable"

    def test_detect_batch(self, message, generator):
        generator.generate.return_value = "[]"
        other = message.model_copy(update={"id": "msg-2"})

        results = SpeechActDetector(generator).detect_batch([message, other])

        assert [r.message_id for r in results] == ["msg-1", "msg-2"]
        assert all(r.ok and r.acts == [] for r in results)
