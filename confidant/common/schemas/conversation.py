"""
Conversation Schema

Core principle: a grant is recorded per message and per derived fact.
Threads and scopes are derived views, recomputed from those records and
never edited directly.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# Enums
# ============================================================================

class SpeechActKind(str, Enum):
    """Categories of derived facts"""
    COMMITMENT = "commitment"
    DECISION = "decision"
    REQUEST = "request"
    QUESTION = "question"
    OTHER = "other"


class SpeechActStatus(str, Enum):
    """Lifecycle state, owned by workflows outside the index"""
    OPEN = "open"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class KnowledgeCategory(str, Enum):
    """Categories of curated knowledge entries"""
    DECISION = "decision"
    COMMITMENT = "commitment"
    PROJECT_INFO = "project_info"
    PERSON = "person"
    PREFERENCE = "preference"
    OTHER = "other"


# ============================================================================
# Helpers
# ============================================================================

def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so that ordering never mixes kinds."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def dedupe_participants(participants: Iterable["Participant"]) -> List["Participant"]:
    """Keep the first participant seen for each address, preserving order."""
    seen: Dict[str, Participant] = {}
    for participant in participants:
        if participant.address not in seen:
            seen[participant.address] = participant
    return list(seen.values())


def generate_act_id() -> str:
    return f"act_{uuid.uuid4().hex[:16]}"


def generate_log_id() -> str:
    return f"act_log_{uuid.uuid4().hex[:16]}"


def generate_knowledge_id() -> str:
    return f"kn_{uuid.uuid4().hex[:16]}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Participants and messages
# ============================================================================

class Participant(BaseModel):
    """
    A person taking part in a conversation.

    Identity is the address alone: two participants with the same address and
    different display names are the same participant.
    """
    model_config = ConfigDict(frozen=True)

    address: str = Field(..., min_length=1, validation_alias=AliasChoices("address", "email"))
    display_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("display_name", "name"))

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_address(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"address": data}
        return data

    @field_validator("address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("address must not be blank")
        return value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Participant):
            return self.address == other.address
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.address)

    @property
    def label(self) -> str:
        return self.display_name or self.address


class Message(BaseModel):
    """An email-style message. Immutable once ingested."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "message_id"))
    thread_id: str = Field(..., min_length=1)
    sender: Participant = Field(..., validation_alias=AliasChoices("sender", "from"))
    recipients: List[Participant] = Field(default_factory=list, validation_alias=AliasChoices("recipients", "to"))
    cc: List[Participant] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    timestamp: datetime
    in_reply_to: Optional[str] = None

    @field_validator("recipients", "cc", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("recipients", "cc")
    @classmethod
    def _dedupe(cls, value: List[Participant]) -> List[Participant]:
        return dedupe_participants(value)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def participants(self) -> List[Participant]:
        """Sender, recipients and cc, one entry per address"""
        return dedupe_participants([self.sender, *self.recipients, *self.cc])

    @property
    def participant_addresses(self) -> frozenset:
        return frozenset(p.address for p in self.participants)


class Thread(BaseModel):
    """A conversation thread. Only ever built by ThreadBuilder."""
    model_config = ConfigDict(frozen=True)

    thread_id: str
    subject: str
    messages: List[Message]
    participants: List[Participant]

    @property
    def message_ids(self) -> List[str]:
        return [m.id for m in self.messages]

    @property
    def started_at(self) -> Optional[datetime]:
        return self.messages[0].timestamp if self.messages else None

    @property
    def last_activity(self) -> Optional[datetime]:
        return self.messages[-1].timestamp if self.messages else None


# ============================================================================
# Derived facts
# ============================================================================

class SpeechAct(BaseModel):
    """
    A structured fact derived from message text.

    `participants` is who was exposed to the utterance; it is what grants
    fact-level access. Only `status` may change after insertion.
    """
    id: str = Field(default_factory=generate_act_id)
    kind: SpeechActKind = Field(..., validation_alias=AliasChoices("kind", "type"))
    content: str
    actor: Participant
    participants: List[Participant] = Field(default_factory=list)
    source_message_id: str = Field(..., min_length=1)
    thread_id: str = Field(..., min_length=1)
    timestamp: datetime
    confidence: float = Field(..., ge=0.0, le=1.0)
    status: SpeechActStatus = Field(default=SpeechActStatus.OPEN)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content must not be blank")
        return value

    @field_validator("participants")
    @classmethod
    def _dedupe(cls, value: List[Participant]) -> List[Participant]:
        return dedupe_participants(value)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def participant_addresses(self) -> frozenset:
        return frozenset(p.address for p in self.participants)


# ============================================================================
# Knowledge and summaries
# ============================================================================

class KnowledgeEntry(BaseModel):
    """
    A curated fact kept alongside the conversation.

    Visibility comes from `source_message_ids` alone: an entry may be shared
    with whoever has access to at least one of its source messages.
    """
    id: str = Field(default_factory=generate_knowledge_id)
    category: KnowledgeCategory = KnowledgeCategory.OTHER
    title: str
    content: str
    source_message_ids: List[str] = Field(default_factory=list)
    participants: List[Participant] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    tags: List[str] = Field(default_factory=list)

    @field_validator("participants")
    @classmethod
    def _dedupe(cls, value: List[Participant]) -> List[Participant]:
        return dedupe_participants(value)


class ThreadSummary(BaseModel):
    """Condensed form of older messages of one thread, built per request"""
    thread_id: str
    summary: str
    key_points: List[str] = Field(default_factory=list)
    participants: List[Participant] = Field(default_factory=list)
    message_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Query and decision results
# ============================================================================

class ScopedThread(BaseModel):
    """The part of one thread a requester may see"""
    thread_id: str
    subject: str
    messages: List[Message] = Field(default_factory=list)
    acts: List[SpeechAct] = Field(default_factory=list)
    started_at: Optional[datetime] = None


class QueryScope(BaseModel):
    """
    Requester-scoped view handed to a reasoning step.

    Recomputed per request, never persisted. `referenced_messages` are
    messages the requester may ask about through a restated fact but whose
    body they may not read.
    """
    requester: Participant
    audience: List[Participant] = Field(default_factory=list)
    visible_threads: Set[str] = Field(default_factory=set)
    visible_messages: Set[str] = Field(default_factory=set)
    visible_acts: Set[str] = Field(default_factory=set)
    referenced_messages: Set[str] = Field(default_factory=set)
    threads: List[ScopedThread] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.threads

    @property
    def messages(self) -> List[Message]:
        return [m for t in self.threads for m in t.messages]

    @property
    def acts(self) -> List[SpeechAct]:
        return [a for t in self.threads for a in t.acts]


class AccessCheck(BaseModel):
    """Whether something can be shared with everyone present"""
    allowed: bool
    reason: Optional[str] = None
    restricted_participants: List[Participant] = Field(default_factory=list)


class ParticipantContext(BaseModel):
    """Everything one participant has been granted"""
    participant: Participant
    messages: List[str] = Field(default_factory=list)
    referenced_messages: List[str] = Field(default_factory=list)
    speech_acts: List[str] = Field(default_factory=list)
    first_seen: Optional[datetime] = None


class ActivationDecision(BaseModel):
    """Whether the assistant should interject"""
    should_respond: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)


class ActivationLog(BaseModel):
    """Audit record of one activation decision"""
    log_id: str = Field(default_factory=generate_log_id)
    thread_id: str
    message_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    should_respond: bool
    confidence: float
    reasons: List[str] = Field(default_factory=list)
    assistant_addressed: bool = False


class LedgerSnapshot(BaseModel):
    """Serializable form of the access grant relation"""
    participants: List[Participant] = Field(default_factory=list)
    first_seen: Dict[str, datetime] = Field(default_factory=dict)
    messages: Dict[str, List[str]] = Field(default_factory=dict)
    message_grants: Dict[str, List[str]] = Field(default_factory=dict)
    standing_grants: Dict[str, List[str]] = Field(default_factory=dict)
    act_grants: Dict[str, List[str]] = Field(default_factory=dict)
    act_aliases: Dict[str, str] = Field(default_factory=dict)
