"""
Confidant Conversation Schemas

Messages, threads, speech acts, and the scoped views built from them.
"""

from .conversation import (
    Participant,
    Message,
    Thread,
    SpeechAct,
    SpeechActKind,
    SpeechActStatus,
    KnowledgeCategory,
    KnowledgeEntry,
    ThreadSummary,
    ScopedThread,
    QueryScope,
    AccessCheck,
    ParticipantContext,
    ActivationDecision,
    ActivationLog,
    LedgerSnapshot,
    dedupe_participants,
    ensure_utc,
    generate_act_id,
)
from .templates import (
    render_scope,
    render_thread,
    render_message,
    render_speech_act,
    render_summaries,
    render_knowledge,
)

__all__ = [
    "Participant",
    "Message",
    "Thread",
    "SpeechAct",
    "SpeechActKind",
    "SpeechActStatus",
    "KnowledgeCategory",
    "KnowledgeEntry",
    "ThreadSummary",
    "ScopedThread",
    "QueryScope",
    "AccessCheck",
    "ParticipantContext",
    "ActivationDecision",
    "ActivationLog",
    "LedgerSnapshot",
    "dedupe_participants",
    "ensure_utc",
    "generate_act_id",
    "render_scope",
    "render_thread",
    "render_message",
    "render_speech_act",
    "render_summaries",
    "render_knowledge",
]
