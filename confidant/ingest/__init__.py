"""
Ingest - Conversation Capture

Turns raw messages into threads and candidate speech acts.

Key Components:
- build_threads / ThreadBuilder: Deterministic thread construction
- load_messages: JSON message loader
- parse_eml / load_eml: RFC 822 message parsing with header-based threading
- SpeechActDetector: LLM-backed speech act extraction (validated at the boundary)
"""

from .thread_builder import (
    ThreadBuilder,
    build_threads,
    thread_participants,
    is_participant,
    strip_reply_prefix,
)
from .loader import load_messages, parse_messages
from .eml import load_eml, load_eml_directory, parse_eml
from .detector import (
    BaseDetector,
    SpeechActDetector,
    DetectionResult,
    RejectedCandidate,
    build_speech_acts,
)

__all__ = [
    "ThreadBuilder",
    "build_threads",
    "thread_participants",
    "is_participant",
    "strip_reply_prefix",
    "load_messages",
    "parse_messages",
    "parse_eml",
    "load_eml",
    "load_eml_directory",
    "BaseDetector",
    "SpeechActDetector",
    "DetectionResult",
    "RejectedCandidate",
    "build_speech_acts",
]
