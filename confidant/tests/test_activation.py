"""
Tests for ActivationDecider and the LLM signal source.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from confidant.activation import ActivationDecider, ActivationSignalSource, LLMActivationSignalSource
from confidant.common.config import AssistantConfig
from confidant.common.llm_client import TextGenerator
from confidant.common.schemas import ActivationDecision, Message, SpeechAct
from confidant.ingest import build_threads


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
BOT = "bot@example.com"


def make_message(mid, to, cc=(), body="Status update attached.", subject="Weekly sync", minutes=0, thread_id="t-1"):
    return Message(
        id=mid,
        thread_id=thread_id,
        sender="alice@example.com",
        recipients=list(to),
        cc=list(cc),
        subject=subject,
        body=body,
        timestamp=T0 + timedelta(minutes=minutes),
    )


def make_act(kind, content, source="msg-1"):
    return SpeechAct(
        kind=kind,
        content=content,
        actor="alice@example.com",
        participants=["alice@example.com", "bob@example.com"],
        source_message_id=source,
        thread_id="t-1",
        timestamp=T0,
        confidence=0.8,
    )


@pytest.fixture
def assistant():
    return AssistantConfig(
        name="Confidant",
        address=BOT,
        aliases=["Conf"],
        areas_of_responsibility=["onboarding"],
        expertise_keywords=["budget", "hiring plan"],
    )


@pytest.fixture
def decider(assistant):
    return ActivationDecider(assistant)


class TestDecide:
    def test_in_to_line(self, decider):
        decision = decider.decide(make_message("msg-1", ["bob@example.com", "BOT@example.com"]))

        assert decision.should_respond
        assert decision.confidence == 1.0
        assert "To: line" in decision.reasons[0]

    def test_cc_alone_is_not_enough(self, decider):
        decision = decider.decide(make_message("msg-1", ["bob@example.com"], cc=[BOT]))

        assert not decision.should_respond

    @pytest.mark.parametrize("body", [
        "Confidant, can you weigh in?",
        "Thanks conf!",
        "Asking CONFIDANT here.",
    ])
    def test_mentioned_by_name_or_alias(self, decider, body):
        decision = decider.decide(make_message("msg-1", ["bob@example.com"], body=body))

        assert decision.should_respond
        assert decision.confidence == 0.9

    def test_partial_word_is_not_a_mention(self, decider):
        decision = decider.decide(make_message("msg-1", ["bob@example.com"], body="A conference call at 3pm"))

        assert not decision.should_respond

    def test_valid_signal_is_used(self, decider):
        signal = {"should_respond": True, "confidence": 0.65, "reasons": ["pronoun refers to assistant"]}

        decision = decider.decide(make_message("msg-1", ["bob@example.com"]), signal=signal)

        assert decision == ActivationDecision(**signal)

    def test_invalid_signal_is_ignored(self, decider):
        decision = decider.decide(
            make_message("msg-1", ["bob@example.com"]),
            signal={"should_respond": True, "confidence": 4.2},
        )

        assert not decision.should_respond

    def test_question_about_expertise(self, decider):
        acts = [
            make_act("other", "Budget is fine"),
            make_act("question", "Who owns the Budget for Q3?"),
        ]

        decision = decider.decide(make_message("msg-1", ["bob@example.com"]), acts=acts)

        assert decision.should_respond
        assert decision.confidence == 0.7
        assert "budget" in decision.reasons[0]

    def test_statement_about_expertise_is_ignored(self, decider):
        decision = decider.decide(
            make_message("msg-1", ["bob@example.com"]),
            acts=[make_act("decision", "The budget is approved")],
        )

        assert not decision.should_respond

    def test_no_rule_matched(self, decider):
        decision = decider.decide(make_message("msg-1", ["bob@example.com"]))

        assert not decision.should_respond
        assert decision.reasons

    def test_decider_without_address_never_matches_to_line(self):
        decider = ActivationDecider(AssistantConfig(name="Helper"))

        assert not decider.is_addressed(make_message("msg-1", ["bob@example.com"]))


class TestDecideBatch:
    def test_history_and_signal_source(self, decider):
        messages = [
            make_message("msg-1", ["bob@example.com"], minutes=0),
            make_message("msg-2", [BOT], minutes=5),
            make_message("msg-3", ["bob@example.com"], minutes=10),
        ]
        threads = build_threads(messages)
        source = Mock(spec=ActivationSignalSource)
        source.evaluate.return_value = {"should_respond": False, "confidence": 0.8, "reasons": ["chatter"]}

        decisions = decider.decide_batch(messages, threads, signal_source=source)

        assert set(decisions) == {"msg-1", "msg-2", "msg-3"}
        assert decisions["msg-2"].confidence == 1.0
        # addressed messages never consult the signal source
        assert source.evaluate.call_count == 2
        history = source.evaluate.call_args_list[1][0][1]
        assert [m.id for m in history] == ["msg-1", "msg-2"]


class TestToLog:
    def test_log_record(self, decider):
        message = make_message("msg-1", [BOT])
        decision = decider.decide(message)

        log = decider.to_log(message, decision)

        assert log.message_id == "msg-1"
        assert log.thread_id == "t-1"
        assert log.should_respond
        assert log.assistant_addressed
        assert log.log_id.startswith("act_log_")


class TestLLMActivationSignalSource:
    @pytest.fixture
    def generator(self):
        gen = Mock(spec=TextGenerator)
        gen.is_available = True
        return gen

    def test_parses_decision(self, generator, assistant):
        generator.generate.return_value = json.dumps(
            {"should_respond": True, "confidence": 0.75, "reasons": ["question about onboarding"]}
        )
        source = LLMActivationSignalSource(generator)

        decision = source.evaluate(make_message("msg-1", ["bob@example.com"]), [], assistant)

        assert decision.should_respond
        assert decision.confidence == 0.75

    def test_prompt_includes_config_and_history(self, generator, assistant):
        generator.generate.return_value = '{"should_respond": false, "confidence": 0.9, "reasons": []}'
        history = [make_message("msg-0", ["bob@example.com"], body="x" * 300, minutes=-5)]
        source = LLMActivationSignalSource(generator)

        source.evaluate(make_message("msg-1", ["bob@example.com"]), history, assistant)

        prompt = generator.generate.call_args[0][0]
        assert "Aliases: Conf" in prompt
        assert "Areas of responsibility: onboarding" in prompt
        assert "PREVIOUS THREAD MESSAGES:" in prompt
        assert "x" * 200 + "..." in prompt
        assert "x" * 201 not in prompt

    @pytest.mark.parametrize("setup", ["raises", "garbage", "out_of_range"])
    def test_failures_default_to_responding(self, generator, assistant, setup):
        if setup == "raises":
            generator.generate.side_effect = RuntimeError("timeout")
        elif setup == "garbage":
            generator.generate.return_value = "maybe?"
        else:
            generator.generate.return_value = '{"should_respond": true, "confidence": 9}'
        source = LLMActivationSignalSource(generator)

        decision = source.evaluate(make_message("msg-1", ["bob@example.com"]), [], assistant)

        assert decision.should_respond
        assert decision.confidence == 0.5
        assert "Error in activation logic" in decision.reasons[0]

    def test_unavailable_defaults_to_responding(self, assistant):
        decision = LLMActivationSignalSource(None).evaluate(
            make_message("msg-1", ["bob@example.com"]), [], assistant,
        )

        assert decision.should_respond
        assert decision.confidence == 0.5
