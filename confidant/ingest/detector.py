"""
Speech Act Detector

LLM-backed extraction of speech acts from a single message.
This is the boundary where untrusted model output becomes SpeechAct
records: every candidate is validated, malformed ones are discarded and
reported, and the rest of the batch goes through.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..common.errors import DetectorOutputError
from ..common.llm_client import TextGenerator
from ..common.llm_utils import parse_llm_json_array
from ..common.schemas import Message, Participant, SpeechAct, SpeechActKind

logger = logging.getLogger("confidant.ingest.detector")


# The model may answer with any of the finer-grained types it was shown;
# everything that is not one of the tracked kinds is kept as OTHER.
KIND_MAP: Dict[str, SpeechActKind] = {
    "commitment": SpeechActKind.COMMITMENT,
    "decision": SpeechActKind.DECISION,
    "request": SpeechActKind.REQUEST,
    "question": SpeechActKind.QUESTION,
}


SPEECH_ACT_DETECTION_PROMPT = """You are an expert at analyzing email communication and identifying speech acts.

A speech act is a specific communicative action performed through language. Examples include:
- REQUEST: Asking someone to do something ("Can you send me the report?")
- QUESTION: Seeking information ("What is the deadline?")
- COMMITMENT: Promising or committing to do something ("I will finish this by Friday")
- DECISION: Stating a decision that has been made ("We've decided to use React")
- STATEMENT: Declaring facts or information ("The meeting is at 2pm")
- GREETING: Social opening ("Hi team")
- ACKNOWLEDGMENT: Confirming receipt or understanding ("Got it, thanks")
- SUGGESTION: Proposing an idea ("How about we use approach X?")
- OBJECTION: Expressing disagreement or concern ("I'm worried about the timeline")
- AGREEMENT: Expressing agreement ("That sounds good to me")

Analyze the following email and extract ALL speech acts.

Email from: {sender}
To: {recipients}
CC: {cc}
Subject: {subject}
Body:
{body}

For each speech act, provide:
1. type: One of the types listed above (in UPPERCASE)
2. content: The specific text or paraphrased content of the speech act
3. confidence: A number between 0 and 1 indicating your confidence in this classification
4. metadata: Any additional context (optional object)

Respond with a JSON array only, e.g.
[{{"type": "COMMITMENT", "content": "Send the report by Friday", "confidence": 0.9}}]

JSON:"""


@dataclass
class RejectedCandidate:
    """A detector candidate that failed validation"""
    raw: Any
    reason: str


@dataclass
class DetectionResult:
    """Result of detecting speech acts in one message"""
    message_id: str
    acts: List[SpeechAct] = field(default_factory=list)
    rejected: List[RejectedCandidate] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _format_address(participant: Participant) -> str:
    if participant.display_name:
        return f"{participant.display_name} <{participant.address}>"
    return participant.address


def _valid_confidence(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return 0.0 <= value <= 1.0


def map_kind(raw_type: str) -> SpeechActKind:
    return KIND_MAP.get(raw_type.strip().lower(), SpeechActKind.OTHER)


def build_speech_acts(
    message: Message,
    candidates: Sequence[Any],
) -> Tuple[List[SpeechAct], List[RejectedCandidate]]:
    """
    Turn raw detector candidates into SpeechActs for `message`.

    The actor is the sender; the participants are everyone on the message.
    Candidates with a missing type, blank content, or a confidence outside
    [0, 1] are rejected individually.

    Returns:
        (accepted acts, rejected candidates)
    """
    acts = []
    rejected = []

    for candidate in candidates:
        if not isinstance(candidate, dict):
            rejected.append(RejectedCandidate(candidate, "candidate is not an object"))
            continue

        raw_type = candidate.get("type", candidate.get("kind"))
        if not isinstance(raw_type, str) or not raw_type.strip():
            rejected.append(RejectedCandidate(candidate, "missing type"))
            continue

        content = candidate.get("content")
        if not isinstance(content, str) or not content.strip():
            rejected.append(RejectedCandidate(candidate, "empty content"))
            continue

        confidence = candidate.get("confidence")
        if not _valid_confidence(confidence):
            rejected.append(RejectedCandidate(candidate, f"confidence out of range: {confidence!r}"))
            continue

        metadata = candidate.get("metadata")
        metadata = dict(metadata) if isinstance(metadata, dict) else {}
        metadata["raw_type"] = raw_type.strip().lower()

        try:
            acts.append(SpeechAct(
                kind=map_kind(raw_type),
                content=content,
                actor=message.sender,
                participants=message.participants,
                source_message_id=message.id,
                thread_id=message.thread_id,
                timestamp=message.timestamp,
                confidence=float(confidence),
                metadata=metadata,
            ))
        except ValidationError as e:
            rejected.append(RejectedCandidate(candidate, str(e)))

    for item in rejected:
        logger.warning("Discarded speech act candidate from %s: %s", message.id, item.reason)

    return acts, rejected


class BaseDetector(ABC):
    """
    Abstract detector capability.

    Implementations never raise for bad model output; problems are reported
    in the DetectionResult.
    """

    @abstractmethod
    def detect(self, message: Message) -> DetectionResult:
        """Detect speech acts in one message."""

    def detect_batch(self, messages: Sequence[Message]) -> List[DetectionResult]:
        return [self.detect(message) for message in messages]


class SpeechActDetector(BaseDetector):
    """Detects speech acts by prompting a TextGenerator."""

    def __init__(
        self,
        generator: Optional[TextGenerator] = None,
        temperature: float = 0.3,
        max_tokens: int = 2048,
    ):
        """
        Args:
            generator: LLM used for detection (None disables detection)
            temperature: Low for consistent classification
            max_tokens: Response budget
        """
        self._generator = generator
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def is_available(self) -> bool:
        return self._generator is not None and self._generator.is_available

    def build_prompt(self, message: Message) -> str:
        return SPEECH_ACT_DETECTION_PROMPT.format(
            sender=_format_address(message.sender),
            recipients=", ".join(_format_address(p) for p in message.recipients) or "(none)",
            cc=", ".join(_format_address(p) for p in message.cc) or "(none)",
            subject=message.subject,
            body=message.body,
        )

    @staticmethod
    def _parse(raw: str) -> List[Any]:
        candidates = parse_llm_json_array(raw)
        if candidates is None:
            raise DetectorOutputError(f"unparseable detector output: {raw[:80]!r}")
        return candidates

    def detect(self, message: Message) -> DetectionResult:
        if not self.is_available:
            return DetectionResult(message_id=message.id, error="detector unavailable")

        try:
            raw = self._generator.generate(
                self.build_prompt(message),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
        except Exception as e:
            logger.warning("Speech act detection failed for %s: %s", message.id, e)
            return DetectionResult(message_id=message.id, error=f"generation failed: {e}")

        try:
            candidates = self._parse(raw)
        except DetectorOutputError as e:
            logger.warning("Unparseable detector output for %s: %s", message.id, e)
            return DetectionResult(message_id=message.id, error=str(e))

        acts, rejected = build_speech_acts(message, candidates)
        logger.info(
            "Detected %d speech act(s) in %s (%d discarded)",
            len(acts), message.id, len(rejected),
        )
        return DetectionResult(message_id=message.id, acts=acts, rejected=rejected)
