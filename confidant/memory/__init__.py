"""
Memory - Privacy-Scoped Knowledge

Key Components:
- AccessLedger: Per-message and per-fact access grants (monotonic)
- SpeechActIndex: Deduplicating store of derived facts
- ContextAssembler: Requester-scoped views (QueryScope)
- KnowledgeBase: Thread-safe facade with write-through persistence
"""

from .ledger import AccessLedger, as_participant, address_of
from .speech_acts import SpeechActIndex, normalize_content, dedup_key
from .assembler import ContextAssembler, estimate_tokens, split_recent, trim
from .knowledge_base import KnowledgeBase, IngestReport

__all__ = [
    "AccessLedger",
    "as_participant",
    "address_of",
    "SpeechActIndex",
    "normalize_content",
    "dedup_key",
    "ContextAssembler",
    "estimate_tokens",
    "split_recent",
    "trim",
    "KnowledgeBase",
    "IngestReport",
]
