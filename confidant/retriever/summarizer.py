"""
Conversation Summarizer

Condenses older messages so a long thread fits an answer prompt: the newest
messages stay in full and everything before them becomes a short summary
with key points.

Summaries are built from a QueryScope and never cached. The same thread
summarizes differently for different groups, because each group sees a
different set of messages.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..common.llm_client import TextGenerator
from ..common.llm_utils import parse_llm_json
from ..common.schemas import Message, QueryScope, ThreadSummary, dedupe_participants
from ..memory.assembler import split_recent

logger = logging.getLogger("confidant.retriever.summarizer")

RECENT_WINDOW_SIZE = 10
SUMMARY_BATCH_SIZE = 5
FALLBACK_POINT_CHARS = 160


SUMMARY_PROMPT = """Summarize the following email thread concisely. Extract:
1. A brief summary (2-3 sentences)
2. Key points as bullet points (3-7 points)

Focus on decisions made, commitments, questions asked, and important information shared.

{emails}

Return ONLY a JSON object with this structure:
{{
  "summary": "Brief 2-3 sentence summary",
  "key_points": ["Point 1", "Point 2"]
}}"""


EMAIL_TEMPLATE = """EMAIL {n} ({timestamp})
From: {sender}
To: {recipients}
Subject: {subject}

{body}
---"""


def _first_sentence(text: str) -> str:
    line = " ".join(text.split())
    for stop in (". ", "? ", "! "):
        idx = line.find(stop)
        if idx >= 0:
            line = line[: idx + 1]
    if len(line) > FALLBACK_POINT_CHARS:
        line = line[: FALLBACK_POINT_CHARS - 3].rstrip() + "..."
    return line


class ConversationSummarizer:
    """
    Summarizes batches of messages with a TextGenerator.

    Falls back to an extractive summary (one key point per message) when no
    LLM is available or generation fails.

    Usage:
        summarizer = ConversationSummarizer(LLMClient.from_config(config.llm))
        recent, summaries = summarizer.condense(scope)
    """

    def __init__(
        self,
        generator: Optional[TextGenerator] = None,
        recent_window: int = RECENT_WINDOW_SIZE,
        batch_size: int = SUMMARY_BATCH_SIZE,
        max_tokens: int = 512,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._generator = generator
        self._recent_window = recent_window
        self._batch_size = batch_size
        self._max_tokens = max_tokens

    @property
    def has_llm(self) -> bool:
        return self._generator is not None and self._generator.is_available

    @property
    def recent_window(self) -> int:
        return self._recent_window

    def condense(self, scope: QueryScope) -> Tuple[QueryScope, List[ThreadSummary]]:
        """
        Split off each thread's older messages and summarize them.

        Returns:
            (scope with only the recent messages, summaries in thread order)
        """
        recent, older = split_recent(scope, self._recent_window)
        summaries: List[ThreadSummary] = []
        for thread in scope.threads:
            messages = older.get(thread.thread_id)
            if messages:
                summaries.extend(self.summarize_batches(messages, thread.thread_id))
        if summaries:
            logger.info(
                "Summarized %d older message(s) into %d summary block(s)",
                sum(len(m) for m in older.values()), len(summaries),
            )
        return recent, summaries

    def summarize_batches(self, messages: Sequence[Message], thread_id: str) -> List[ThreadSummary]:
        """Summarize `messages` in chunks of `batch_size`, oldest first"""
        return [
            self.summarize(messages[i:i + self._batch_size], thread_id)
            for i in range(0, len(messages), self._batch_size)
        ]

    def summarize(self, messages: Sequence[Message], thread_id: str) -> ThreadSummary:
        """
        Summarize one batch of messages.

        Raises:
            ValueError: `messages` is empty
        """
        if not messages:
            raise ValueError("Cannot summarize an empty message list")

        if self.has_llm:
            try:
                return self._summarize_with_llm(messages, thread_id)
            except Exception as e:
                logger.warning("LLM summary failed for thread %s: %s", thread_id, e)

        return self._summarize_fallback(messages, thread_id)

    # ------------------------------------------------------------------

    @staticmethod
    def _base(messages: Sequence[Message], thread_id: str) -> Dict:
        return {
            "thread_id": thread_id,
            "participants": dedupe_participants(p for m in messages for p in m.participants),
            "message_ids": [m.id for m in messages],
        }

    def build_prompt(self, messages: Sequence[Message]) -> str:
        emails = "\n\n".join(
            EMAIL_TEMPLATE.format(
                n=n,
                timestamp=m.timestamp.isoformat(),
                sender=m.sender.label,
                recipients=", ".join(p.label for p in m.recipients) or "(none)",
                subject=m.subject,
                body=m.body.strip(),
            )
            for n, m in enumerate(messages, 1)
        )
        return SUMMARY_PROMPT.format(emails=emails)

    def _summarize_with_llm(self, messages: Sequence[Message], thread_id: str) -> ThreadSummary:
        raw = self._generator.generate(
            self.build_prompt(messages),
            max_tokens=self._max_tokens,
            temperature=0.2,
        )
        data = parse_llm_json(raw)
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise ValueError(f"no summary in LLM output: {raw[:80]!r}")
        points = data.get("key_points") or []
        if not isinstance(points, list):
            points = [points]
        return ThreadSummary(
            summary=summary.strip(),
            key_points=[str(p).strip() for p in points if str(p).strip()],
            **self._base(messages, thread_id),
        )

    def _summarize_fallback(self, messages: Sequence[Message], thread_id: str) -> ThreadSummary:
        first, last = messages[0], messages[-1]
        senders = ", ".join(p.label for p in dedupe_participants(m.sender for m in messages))
        summary = (
            f"{len(messages)} earlier message(s) between "
            f"{first.timestamp.date().isoformat()} and {last.timestamp.date().isoformat()} "
            f"from {senders}."
        )
        points = []
        for m in messages:
            gist = _first_sentence(m.body) or m.subject or "(empty message)"
            points.append(f"{m.sender.label}: {gist}")
        return ThreadSummary(summary=summary, key_points=points, **self._base(messages, thread_id))
