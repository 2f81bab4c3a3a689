"""
Thread Builder

Groups a flat collection of messages into ordered conversation threads.
Pure: no storage, no network, output depends only on input.
"""

import logging
import re
from typing import Dict, Iterable, List, Sequence

from ..common.schemas import Message, Participant, Thread, dedupe_participants

logger = logging.getLogger("confidant.ingest.thread_builder")

_REPLY_PREFIX = re.compile(r"^\s*((re|fw|fwd|aw|sv)\s*:\s*)+", re.IGNORECASE)


def thread_participants(thread: Thread) -> List[Participant]:
    """Recompute a thread's participants from its messages"""
    return dedupe_participants(p for m in thread.messages for p in m.participants)


def is_participant(message: Message, address: str) -> bool:
    return address.strip().lower() in message.participant_addresses


def strip_reply_prefix(subject: str) -> str:
    """'Re: Fwd: Budget' -> 'Budget'"""
    return _REPLY_PREFIX.sub("", subject).strip()


def _message_order(message: Message):
    return (message.timestamp, message.id)


def build_threads(messages: Sequence[Message]) -> List[Thread]:
    """
    Build threads from messages.

    - Messages are grouped by thread_id and ordered by (timestamp, id)
    - Subject is the earliest message's subject
    - Participants are the union of sender/recipients/cc over the thread
    - Threads are ordered by their earliest message (thread_id breaks ties)
    - A repeated message id is ignored after its first occurrence

    Args:
        messages: Messages in any order

    Returns:
        List of Thread objects
    """
    grouped: Dict[str, List[Message]] = {}
    seen_ids = set()

    for message in messages:
        if message.id in seen_ids:
            logger.debug("Ignoring duplicate message id %s", message.id)
            continue
        seen_ids.add(message.id)
        grouped.setdefault(message.thread_id, []).append(message)

    threads = []
    for thread_id, thread_messages in grouped.items():
        ordered = sorted(thread_messages, key=_message_order)
        threads.append(Thread(
            thread_id=thread_id,
            subject=ordered[0].subject,
            messages=ordered,
            participants=dedupe_participants(p for m in ordered for p in m.participants),
        ))

    threads.sort(key=lambda t: (t.messages[0].timestamp, t.thread_id))
    return threads


class ThreadBuilder:
    """Injectable wrapper around build_threads"""

    def build(self, messages: Iterable[Message]) -> List[Thread]:
        return build_threads(list(messages))
