"""
Retriever - Scoped Question Answering

Key Components:
- QueryAnswerer: Builds the privacy prompt from a QueryScope and asks the LLM
- ScopedAnswer: Answer with sources and privacy restriction notes
- ConversationSummarizer: Per-request summaries of older scoped messages
"""

from .answerer import QueryAnswerer, ScopedAnswer, PRIVACY_SYSTEM_PROMPT
from .summarizer import ConversationSummarizer, RECENT_WINDOW_SIZE

__all__ = [
    "QueryAnswerer",
    "ScopedAnswer",
    "PRIVACY_SYSTEM_PROMPT",
    "ConversationSummarizer",
    "RECENT_WINDOW_SIZE",
]
