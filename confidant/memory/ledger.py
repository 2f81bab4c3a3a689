"""
Access Ledger

The single source of truth for "who may see what".

Grants are keyed by participant address and recorded per message id and
per speech-act id, never per thread: someone copied on one message of a
thread must not see the others.

Three relations are kept apart:
- message grants: direct participants of a message; they may read its body
- standing grants: people a fact from the message was restated to; they may
  ask about the message but not read its body
- act grants: people exposed to a derived fact; they may read the fact text

All three only ever grow.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Union

from ..common.schemas import (
    AccessCheck,
    KnowledgeEntry,
    LedgerSnapshot,
    Message,
    Participant,
    ParticipantContext,
    SpeechAct,
)

logger = logging.getLogger("confidant.memory.ledger")

ParticipantLike = Union[Participant, str]


def as_participant(value: ParticipantLike) -> Participant:
    if isinstance(value, Participant):
        return value
    return Participant(address=value)


def address_of(value: ParticipantLike) -> str:
    if isinstance(value, Participant):
        return value.address
    return str(value).strip().lower()


class AccessLedger:
    """
    Records and answers access grants.

    Thread safety: every method runs under `lock`, an RLock that the
    SpeechActIndex and KnowledgeBase share so that a fact and its grant
    become visible together.
    """

    def __init__(self, lock: Optional[threading.RLock] = None):
        self._lock = lock or threading.RLock()
        self._participants: Dict[str, Participant] = {}
        self._first_seen: Dict[str, datetime] = {}
        self._messages: Dict[str, FrozenSet[str]] = {}
        self._message_grants: Dict[str, Set[str]] = {}
        self._standing_grants: Dict[str, Set[str]] = {}
        self._act_grants: Dict[str, Set[str]] = {}
        self._act_aliases: Dict[str, str] = {}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def _register(self, participant: Participant, seen_at: Optional[datetime]) -> None:
        if participant.address not in self._participants:
            self._participants[participant.address] = participant
        if seen_at is None:
            return
        first = self._first_seen.get(participant.address)
        if first is None or seen_at < first:
            self._first_seen[participant.address] = seen_at

    @staticmethod
    def _grant(relation: Dict[str, Set[str]], address: str, item_id: str) -> bool:
        granted = relation.setdefault(address, set())
        if item_id in granted:
            return False
        granted.add(item_id)
        return True

    def track_message(self, message: Message) -> bool:
        """
        Grant body access to everyone on the message.

        Returns:
            True if the message was new, False if it was already tracked
        """
        with self._lock:
            if message.id in self._messages:
                return False

            participants = message.participants
            self._messages[message.id] = frozenset(p.address for p in participants)
            for participant in participants:
                self._register(participant, message.timestamp)
                self._grant(self._message_grants, participant.address, message.id)

            logger.debug("Tracked message %s for %d participant(s)", message.id, len(participants))
            return True

    def track_messages(self, messages: Iterable[Message]) -> int:
        return sum(1 for m in messages if self.track_message(m))

    def track_speech_act(self, act: SpeechAct) -> None:
        """
        Grant fact access to everyone exposed to the act, and standing on its
        source message to those who were not on that message directly.

        Standing never implies body access.
        """
        with self._lock:
            direct = self._messages.get(act.source_message_id, frozenset())
            widened = []

            for participant in act.participants:
                self._register(participant, act.timestamp)
                is_new = self._grant(self._act_grants, participant.address, act.id)
                if participant.address in direct:
                    continue
                self._grant(self._standing_grants, participant.address, act.source_message_id)
                if is_new and act.source_message_id in self._messages:
                    widened.append(participant.address)

            # Exposure sets come from the detector and are trusted as given.
            if widened:
                logger.warning(
                    "Speech act %s extends standing on message %s to non-participants: %s",
                    act.id, act.source_message_id, ", ".join(sorted(widened)),
                )

    def track_speech_acts(self, acts: Iterable[SpeechAct]) -> None:
        for act in acts:
            self.track_speech_act(act)

    def track(self, item: Union[Message, SpeechAct]) -> None:
        """Track a message or a speech act"""
        if isinstance(item, Message):
            self.track_message(item)
        elif isinstance(item, SpeechAct):
            self.track_speech_act(item)
        else:
            raise TypeError(f"Cannot track {type(item).__name__}")

    def alias_speech_act(self, alias_id: str, canonical_id: str) -> None:
        """
        Let a merged-away act id answer with its canonical act's grants.

        The alias follows every later grant on the canonical act.
        """
        with self._lock:
            if alias_id == canonical_id:
                return
            self._act_aliases.setdefault(alias_id, canonical_id)

    def _canonical_act(self, act_id: str) -> str:
        return self._act_aliases.get(act_id, act_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_access_to_message(self, participant: ParticipantLike, message_id: str) -> bool:
        """Direct participation, or standing through a restated fact"""
        address = address_of(participant)
        with self._lock:
            return (
                message_id in self._message_grants.get(address, ())
                or message_id in self._standing_grants.get(address, ())
            )

    def has_access_to_message_body(self, participant: ParticipantLike, message_id: str) -> bool:
        """Direct participation only"""
        with self._lock:
            return message_id in self._message_grants.get(address_of(participant), ())

    def has_access_to_speech_act(self, participant: ParticipantLike, act_id: str) -> bool:
        with self._lock:
            return self._canonical_act(act_id) in self._act_grants.get(address_of(participant), ())

    def all_have_access_to_message(self, participants: Sequence[ParticipantLike], message_id: str) -> bool:
        """Every participant may read the message body. False for an empty group."""
        addresses = [address_of(p) for p in participants]
        with self._lock:
            return bool(addresses) and all(
                message_id in self._message_grants.get(a, ()) for a in addresses
            )

    def all_have_access_to_speech_act(self, participants: Sequence[ParticipantLike], act_id: str) -> bool:
        addresses = [address_of(p) for p in participants]
        with self._lock:
            act_id = self._canonical_act(act_id)
            return bool(addresses) and all(
                act_id in self._act_grants.get(a, ()) for a in addresses
            )

    def filter_messages(
        self,
        messages: Iterable[Message],
        requesters: Iterable[ParticipantLike],
    ) -> List[Message]:
        """Keep messages whose body every requester may read, in input order"""
        group = list(requesters)
        with self._lock:
            return [m for m in messages if self.all_have_access_to_message(group, m.id)]

    def filter_speech_acts(
        self,
        acts: Iterable[SpeechAct],
        requesters: Iterable[ParticipantLike],
    ) -> List[SpeechAct]:
        """Keep facts every requester may see, in input order"""
        group = list(requesters)
        with self._lock:
            return [a for a in acts if self.all_have_access_to_speech_act(group, a.id)]

    def filter_knowledge_entries(
        self,
        entries: Iterable[KnowledgeEntry],
        requesters: Iterable[ParticipantLike],
    ) -> List[KnowledgeEntry]:
        """
        Keep entries every requester may hear about, in input order.

        A requester qualifies with access (direct or standing) to at least one
        of the entry's source messages. An entry without sources is never
        shared, and an empty group gets nothing.
        """
        group = list(requesters)
        if not group:
            return []
        with self._lock:
            return [
                e for e in entries
                if all(
                    any(self.has_access_to_message(p, mid) for mid in e.source_message_ids)
                    for p in group
                )
            ]

    def check_access(
        self,
        source_message_ids: Sequence[str],
        participants: Sequence[ParticipantLike],
    ) -> AccessCheck:
        """
        Check whether information drawn from `source_message_ids` can be
        shared with everyone in `participants`.

        A participant passes with access (direct or standing) to at least one
        source message.
        """
        restricted = []
        with self._lock:
            for value in participants:
                if not any(self.has_access_to_message(value, mid) for mid in source_message_ids):
                    address = address_of(value)
                    restricted.append(self._participants.get(address) or as_participant(value))

        if restricted:
            names = ", ".join(p.label for p in restricted)
            return AccessCheck(
                allowed=False,
                reason=f"Cannot share this information due to the presence of: {names}",
                restricted_participants=restricted,
            )
        return AccessCheck(allowed=True)

    def get_all_participants(self) -> List[Participant]:
        """Every participant ever tracked, in first-seen order"""
        with self._lock:
            return list(self._participants.values())

    def get_participant_context(self, participant: ParticipantLike) -> Optional[ParticipantContext]:
        address = address_of(participant)
        with self._lock:
            known = self._participants.get(address)
            if known is None:
                return None
            return ParticipantContext(
                participant=known,
                messages=sorted(self._message_grants.get(address, ())),
                referenced_messages=sorted(self._standing_grants.get(address, ())),
                speech_acts=sorted(self._act_grants.get(address, ())),
                first_seen=self._first_seen.get(address),
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                participants=list(self._participants.values()),
                first_seen=dict(self._first_seen),
                messages={mid: sorted(addrs) for mid, addrs in self._messages.items()},
                message_grants={a: sorted(ids) for a, ids in self._message_grants.items()},
                standing_grants={a: sorted(ids) for a, ids in self._standing_grants.items()},
                act_grants={a: sorted(ids) for a, ids in self._act_grants.items()},
                act_aliases=dict(self._act_aliases),
            )

    def _missing_from(self, snapshot: LedgerSnapshot) -> List[str]:
        missing = []
        relations = (
            ("message", self._message_grants, snapshot.message_grants),
            ("standing", self._standing_grants, snapshot.standing_grants),
            ("act", self._act_grants, snapshot.act_grants),
        )
        for name, current, incoming in relations:
            for address, ids in current.items():
                lost = ids - set(incoming.get(address, ()))
                missing.extend(f"{name}:{address}:{item}" for item in sorted(lost))
        for alias, canonical in self._act_aliases.items():
            if snapshot.act_aliases.get(alias) != canonical:
                missing.append(f"alias:{alias}:{canonical}")
        return missing

    def restore(self, snapshot: LedgerSnapshot) -> None:
        """
        Merge a snapshot into the ledger.

        Grants are monotonic: a snapshot that lacks grants this ledger already
        holds is a programming error. It fails the assertion in development;
        under `python -O` the existing grants are kept and the union wins.
        """
        with self._lock:
            missing = self._missing_from(snapshot)
            assert not missing, f"restore would revoke {len(missing)} grant(s): {missing[:5]}"
            if missing:
                logger.warning("Ignoring %d grant removal(s) during restore", len(missing))

            for participant in snapshot.participants:
                self._register(participant, snapshot.first_seen.get(participant.address))
            for mid, addresses in snapshot.messages.items():
                if mid not in self._messages:
                    self._messages[mid] = frozenset(addresses)
            for target, incoming in (
                (self._message_grants, snapshot.message_grants),
                (self._standing_grants, snapshot.standing_grants),
                (self._act_grants, snapshot.act_grants),
            ):
                for address, ids in incoming.items():
                    target.setdefault(address, set()).update(ids)
                    if address not in self._participants:
                        self._participants[address] = Participant(address=address)
            for alias, canonical in snapshot.act_aliases.items():
                self._act_aliases.setdefault(alias, canonical)
