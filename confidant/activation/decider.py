"""
Activation Decider

Decides whether the assistant should interject in a conversation.

The decider is a pure function of the message, its earlier thread history
and an optional signal: it never touches the access ledger. Decisions are
returned to the caller, which owns the audit trail (see `to_log`).

Rules, first match wins:
1. Assistant address in To:           -> respond, confidence 1.0
2. Assistant name or alias mentioned  -> respond, confidence 0.9
3. A valid external signal            -> use it as given
4. Question/request touching the assistant's responsibilities or
   expertise keywords                 -> respond, confidence 0.7
5. Otherwise                          -> do not respond
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from ..common.config import AssistantConfig
from ..common.llm_client import TextGenerator
from ..common.llm_utils import parse_llm_json
from ..common.schemas import ActivationDecision, ActivationLog, Message, SpeechAct, SpeechActKind, Thread

logger = logging.getLogger("confidant.activation.decider")

ActivationSignal = Union[ActivationDecision, Dict[str, Any]]

HISTORY_LIMIT = 5
HISTORY_BODY_CHARS = 200


ACTIVATION_PROMPT = """You are an AI assistant helping {name} decide whether to respond to an email.

{name}'s configuration:
- Name: {name}
- Aliases: {aliases}
- Email: {address}
- Areas of responsibility: {responsibilities}
- Expertise keywords: {expertise}

You need to determine if {name} should respond to the following email.

{name} should respond if ANY of these conditions are met:
1. {name} is in the "To:" line of the email
2. {name} is directly mentioned by name (including aliases)
3. A pronoun appears to refer to {name} based on context
4. A question is asked about something in {name}'s areas of responsibility
5. A request is made for something {name} is responsible for
6. {name}'s expertise is needed based on keywords
7. A previous task assigned to {name} is referenced

EMAIL TO ANALYZE:
From: {sender}
To: {recipients}
CC: {cc}
Subject: {subject}
Body:
{body}

{thread_context}

Analyze whether {name} should respond. Respond with JSON in this format:
{{
  "should_respond": true/false,
  "confidence": 0.0-1.0,
  "reasons": ["reason 1", "reason 2", ...]
}}

Be conservative - if you're unsure, lean toward responding (better to be available than to miss something important)."""


def _join_or_none(items: Sequence[str]) -> str:
    return ", ".join(items) if items else "none"


def _mentions(text: str, term: str) -> bool:
    term = term.strip()
    if not term:
        return False
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text, re.IGNORECASE) is not None


def format_history(history: Sequence[Message]) -> str:
    """Last few earlier messages, bodies truncated"""
    if not history:
        return ""
    lines = ["PREVIOUS THREAD MESSAGES:"]
    for message in history[-HISTORY_LIMIT:]:
        body = message.body
        if len(body) > HISTORY_BODY_CHARS:
            body = body[:HISTORY_BODY_CHARS] + "..."
        lines.append(f"[{message.timestamp.isoformat()}] From: {message.sender.label}")
        lines.append(body)
        lines.append("---")
    return "\n".join(lines)


def earlier_messages(message: Message, thread: Optional[Thread]) -> List[Message]:
    if thread is None:
        return []
    return [m for m in thread.messages if m.timestamp < message.timestamp]


class ActivationSignalSource(ABC):
    """External producer of activation signals (e.g. an LLM judgment)"""

    @abstractmethod
    def evaluate(
        self,
        message: Message,
        history: Sequence[Message],
        assistant: AssistantConfig,
    ) -> ActivationSignal:
        """Return a signal payload for the decider."""


class LLMActivationSignalSource(ActivationSignalSource):
    """
    Asks an LLM whether the assistant should respond.

    Any failure yields the conservative default: respond, confidence 0.5.
    """

    def __init__(self, generator: Optional[TextGenerator] = None, temperature: float = 0.3):
        self._generator = generator
        self._temperature = temperature

    @property
    def is_available(self) -> bool:
        return self._generator is not None and self._generator.is_available

    def build_prompt(self, message: Message, history: Sequence[Message], assistant: AssistantConfig) -> str:
        def fmt(p):
            return f"{p.display_name or ''} <{p.address}>"

        return ACTIVATION_PROMPT.format(
            name=assistant.name,
            aliases=_join_or_none(assistant.aliases),
            address=assistant.address or "none",
            responsibilities=_join_or_none(assistant.areas_of_responsibility),
            expertise=_join_or_none(assistant.expertise_keywords),
            sender=fmt(message.sender),
            recipients=", ".join(fmt(p) for p in message.recipients),
            cc=", ".join(fmt(p) for p in message.cc) or "none",
            subject=message.subject,
            body=message.body,
            thread_context=format_history(history),
        )

    @staticmethod
    def _fallback(reason: str) -> ActivationDecision:
        return ActivationDecision(
            should_respond=True,
            confidence=0.5,
            reasons=[f"Error in activation logic - responding by default ({reason})"],
        )

    def evaluate(
        self,
        message: Message,
        history: Sequence[Message],
        assistant: AssistantConfig,
    ) -> ActivationDecision:
        if not self.is_available:
            return self._fallback("LLM unavailable")

        try:
            raw = self._generator.generate(
                self.build_prompt(message, history, assistant),
                temperature=self._temperature,
            )
        except Exception as e:
            logger.error("Failed to make activation decision for %s: %s", message.id, e)
            return self._fallback(str(e))

        data = parse_llm_json(raw)
        try:
            return ActivationDecision.model_validate(data)
        except ValidationError:
            logger.warning("Invalid activation signal for %s: %r", message.id, raw[:200])
            return self._fallback("invalid LLM response")


class ActivationDecider:
    """
    Rule-based activation decisions for one assistant identity.

    Usage:
        decider = ActivationDecider(config.assistant)
        decision = decider.decide(message, thread)
        audit_store.save(decider.to_log(message, decision))
    """

    def __init__(self, assistant: AssistantConfig):
        self._assistant = assistant
        self._address = assistant.address.strip().lower()

    @property
    def assistant(self) -> AssistantConfig:
        return self._assistant

    def is_addressed(self, message: Message) -> bool:
        """Assistant is in the To: line"""
        return bool(self._address) and any(p.address == self._address for p in message.recipients)

    def _mentioned_as(self, message: Message) -> Optional[str]:
        text = f"{message.subject}\n{message.body}"
        for term in [self._assistant.name, *self._assistant.aliases]:
            if term and _mentions(text, term):
                return term
        return None

    def _topic_hits(self, acts: Iterable[SpeechAct]) -> List[str]:
        terms = [*self._assistant.areas_of_responsibility, *self._assistant.expertise_keywords]
        hits = []
        for act in acts:
            if act.kind not in (SpeechActKind.QUESTION, SpeechActKind.REQUEST):
                continue
            for term in terms:
                if _mentions(act.content, term) and term not in hits:
                    hits.append(term)
        return hits

    @staticmethod
    def _validate_signal(signal: ActivationSignal) -> Optional[ActivationDecision]:
        if isinstance(signal, ActivationDecision):
            return signal
        try:
            return ActivationDecision.model_validate(signal)
        except ValidationError as e:
            logger.warning("Ignoring invalid activation signal: %s", e)
            return None

    def decide(
        self,
        message: Message,
        thread: Optional[Thread] = None,
        signal: Optional[ActivationSignal] = None,
        acts: Sequence[SpeechAct] = (),
    ) -> ActivationDecision:
        """
        Decide whether to respond to `message`.

        Args:
            message: The candidate message
            thread: Its thread (for context only)
            signal: Payload from an ActivationSignalSource
            acts: Speech acts detected in the message

        Returns:
            ActivationDecision whose reasons name the rule that fired
        """
        decision = self._decide(message, signal, acts)
        logger.info(
            "Activation for %s: respond=%s confidence=%.2f (%s)",
            message.id, decision.should_respond, decision.confidence, "; ".join(decision.reasons),
        )
        return decision

    def _decide(
        self,
        message: Message,
        signal: Optional[ActivationSignal],
        acts: Sequence[SpeechAct],
    ) -> ActivationDecision:
        name = self._assistant.name

        if self.is_addressed(message):
            return ActivationDecision(should_respond=True, confidence=1.0, reasons=[f"{name} is in the To: line"])

        mentioned = self._mentioned_as(message)
        if mentioned:
            return ActivationDecision(
                should_respond=True,
                confidence=0.9,
                reasons=[f"{name} is mentioned by name ({mentioned})"],
            )

        if signal is not None:
            validated = self._validate_signal(signal)
            if validated is not None:
                return validated

        hits = self._topic_hits(acts)
        if hits:
            return ActivationDecision(
                should_respond=True,
                confidence=0.7,
                reasons=[f"Question or request about {', '.join(hits)}"],
            )

        return ActivationDecision(
            should_respond=False,
            confidence=0.6,
            reasons=[f"{name} is not addressed and no relevant topic was found"],
        )

    def decide_batch(
        self,
        messages: Sequence[Message],
        threads: Sequence[Thread] = (),
        signal_source: Optional[ActivationSignalSource] = None,
    ) -> Dict[str, ActivationDecision]:
        """
        Decide for several messages, each with its earlier thread history.

        The signal source is only consulted when the assistant is neither
        addressed nor mentioned.
        """
        by_thread = {t.thread_id: t for t in threads}
        decisions = {}
        for message in messages:
            thread = by_thread.get(message.thread_id)
            signal = None
            if signal_source is not None and not self.is_addressed(message) and not self._mentioned_as(message):
                signal = signal_source.evaluate(message, earlier_messages(message, thread), self._assistant)
            decisions[message.id] = self.decide(message, thread, signal=signal)
        return decisions

    def to_log(self, message: Message, decision: ActivationDecision) -> ActivationLog:
        """Audit record for an external activation store"""
        return ActivationLog(
            thread_id=message.thread_id,
            message_id=message.id,
            should_respond=decision.should_respond,
            confidence=decision.confidence,
            reasons=list(decision.reasons),
            assistant_addressed=self.is_addressed(message),
        )
