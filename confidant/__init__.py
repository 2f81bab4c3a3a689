"""
Confidant

Privacy-scoped memory for multi-party email conversations.

Philosophy:
- Grants are recorded per message and per derived fact, never per thread
- Access only accumulates: nothing tracked is ever revoked
- A requester only ever sees what every person in the room was entitled to
- The language model is a collaborator at the edges, never inside the core

Usage:
    from confidant.common import load_config, LLMClient
    from confidant.common.schemas import Message, Participant, SpeechAct
    from confidant.ingest import build_threads, SpeechActDetector
    from confidant.memory import AccessLedger, SpeechActIndex, ContextAssembler, KnowledgeBase
    from confidant.activation import ActivationDecider
    from confidant.retriever import QueryAnswerer
"""

__version__ = "0.1.0"
