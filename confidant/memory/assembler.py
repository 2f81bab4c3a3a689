"""
Context Assembler

Builds the requester-scoped view of the knowledge base.

The scope is the only thing a downstream reasoning step gets to see, so
everything in it has already passed the ledger. It is recomputed on every
request and never cached.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..common.config import ContextConfig
from ..common.schemas import Message, Participant, QueryScope, ScopedThread, SpeechAct, Thread, dedupe_participants
from .ledger import AccessLedger, ParticipantLike, as_participant
from .speech_acts import SpeechActIndex

logger = logging.getLogger("confidant.memory.assembler")

CHARS_PER_TOKEN = 4


def _tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _message_tokens(message: Message) -> int:
    return _tokens(message.subject) + _tokens(message.body)


def estimate_tokens(scope: QueryScope) -> int:
    """Rough token count of a scope (~4 characters per token)"""
    return (
        sum(_message_tokens(m) for m in scope.messages)
        + sum(_tokens(a.content) for a in scope.acts)
    )


def trim(scope: QueryScope, max_tokens: int) -> QueryScope:
    """
    Drop the oldest message bodies until the scope fits `max_tokens`.

    Facts are kept, and a thread whose messages were all dropped stays in the
    scope with its facts. Never adds anything.
    """
    total = estimate_tokens(scope)
    if total <= max_tokens:
        return scope

    dropped = set()
    for message in sorted(scope.messages, key=lambda m: (m.timestamp, m.id)):
        if total <= max_tokens:
            break
        dropped.add(message.id)
        total -= _message_tokens(message)

    logger.info("Trimmed %d message(s) from scope to fit %d tokens", len(dropped), max_tokens)
    threads = [
        t.model_copy(update={"messages": [m for m in t.messages if m.id not in dropped]})
        for t in scope.threads
    ]
    return scope.model_copy(update={
        "threads": threads,
        "visible_messages": scope.visible_messages - dropped,
    })


def split_recent(scope: QueryScope, recent_window: int) -> Tuple[QueryScope, Dict[str, List[Message]]]:
    """
    Keep the newest `recent_window` messages of each scoped thread in full.

    Returns:
        (scope holding only the recent messages, older messages by thread id)

    Older messages are still part of what the group may see; they are
    returned so that a caller can condense them. Facts are never split off.
    """
    if recent_window < 0:
        raise ValueError(f"recent_window must be >= 0, got {recent_window}")

    older: Dict[str, List[Message]] = {}
    threads = []
    for thread in scope.threads:
        cut = max(len(thread.messages) - recent_window, 0)
        if cut:
            older[thread.thread_id] = thread.messages[:cut]
            thread = thread.model_copy(update={"messages": thread.messages[cut:]})
        threads.append(thread)

    if not older:
        return scope, older
    return scope.model_copy(update={"threads": threads}), older


class ContextAssembler:
    """
    Assembles QueryScopes from a ledger, an index and built threads.

    Usage:
        assembler = ContextAssembler(max_tokens=46000)
        scope = assembler.assemble(None, "alice@example.com", ledger, index, threads)
    """

    def __init__(self, max_tokens: Optional[int] = None, min_confidence: float = 0.0):
        """
        Args:
            max_tokens: Trim budget (None = no trimming)
            min_confidence: Facts below this confidence are left out
        """
        self._max_tokens = max_tokens
        self._min_confidence = min_confidence

    @classmethod
    def from_config(cls, config: ContextConfig) -> "ContextAssembler":
        return cls(max_tokens=config.max_tokens, min_confidence=config.min_confidence)

    @property
    def max_tokens(self) -> Optional[int]:
        return self._max_tokens

    @property
    def min_confidence(self) -> float:
        return self._min_confidence

    def assemble(
        self,
        thread_ids: Optional[Iterable[str]],
        requester: ParticipantLike,
        ledger: AccessLedger,
        index: SpeechActIndex,
        threads: Sequence[Thread],
        audience: Iterable[ParticipantLike] = (),
    ) -> QueryScope:
        """
        Build the scope of what `requester` (and everyone in `audience`) may see.

        - A thread is included if the group can read a message body in it or
          has standing on one of its messages
        - Only messages whose body the whole group may read are included;
          messages known only through standing go to `referenced_messages`
        - Only facts the whole group was exposed to are included
        - Threads by earliest message, messages and facts by timestamp

        Args:
            thread_ids: Candidate threads (None = all threads)
            requester: Who is asking
            ledger: Access grants
            index: Speech acts
            threads: Threads built from the ingested messages
            audience: Others who will see the answer

        Returns:
            QueryScope (empty when nothing is visible)
        """
        requester = as_participant(requester)
        audience = [p for p in dedupe_participants(as_participant(a) for a in audience) if p != requester]
        group: List[Participant] = [requester, *audience]
        wanted = set(thread_ids) if thread_ids is not None else None

        scoped: List[ScopedThread] = []
        visible_messages = set()
        visible_acts = set()
        referenced = set()

        with ledger.lock, index.lock:
            candidates = [t for t in threads if wanted is None or t.thread_id in wanted]
            candidates.sort(key=lambda t: (t.started_at, t.thread_id))

            for thread in candidates:
                messages = ledger.filter_messages(thread.messages, group)
                body_ids = {m.id for m in messages}
                standing = [
                    m.id for m in thread.messages
                    if m.id not in body_ids
                    and all(ledger.has_access_to_message(p, m.id) for p in group)
                ]
                if not messages and not standing:
                    continue

                acts = ledger.filter_speech_acts(index.get_by_thread(thread.thread_id), group)
                acts = [a for a in acts if a.confidence >= self._min_confidence]
                acts.sort(key=self._act_order)

                # Subject and start time come from the first readable message,
                # not the thread, whose first message may be hidden.
                scoped.append(ScopedThread(
                    thread_id=thread.thread_id,
                    subject=messages[0].subject if messages else "",
                    messages=messages,
                    acts=acts,
                    started_at=messages[0].timestamp if messages else None,
                ))
                visible_messages.update(body_ids)
                visible_acts.update(a.id for a in acts)
                referenced.update(standing)

        scope = QueryScope(
            requester=requester,
            audience=audience,
            visible_threads={t.thread_id for t in scoped},
            visible_messages=visible_messages,
            visible_acts=visible_acts,
            referenced_messages=referenced,
            threads=scoped,
        )
        logger.debug(
            "Assembled scope for %s: %d thread(s), %d message(s), %d fact(s)",
            requester.address, len(scoped), len(visible_messages), len(visible_acts),
        )

        if self._max_tokens is not None:
            scope = trim(scope, self._max_tokens)
        return scope

    @staticmethod
    def _act_order(act: SpeechAct):
        return act.timestamp
