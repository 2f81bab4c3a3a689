"""
Speech Act Index

Append-only store of derived facts with deduplication.

Two acts are the same fact when thread, kind, normalized content and actor
match. The duplicate is merged into the first entry: it keeps its id and
position, takes the higher-confidence content, and its participant set
becomes the union of both. The merged act is re-tracked in the ledger in the
same critical section, so the wider exposure is granted before any reader can
see the merged fact.
"""

import logging
import math
import string
import threading
import unicodedata
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..common.schemas import SpeechAct, SpeechActKind, SpeechActStatus, dedupe_participants
from .ledger import AccessLedger, ParticipantLike, address_of

logger = logging.getLogger("confidant.memory.speech_acts")

DedupKey = Tuple[str, SpeechActKind, str, str]

_EDGE_CHARS = string.punctuation + string.whitespace


def normalize_content(text: str) -> str:
    """NFKC, casefold, collapse whitespace, strip surrounding punctuation"""
    text = unicodedata.normalize("NFKC", text).casefold()
    text = " ".join(text.split())
    return text.strip(_EDGE_CHARS)


def dedup_key(act: SpeechAct) -> DedupKey:
    return (act.thread_id, act.kind, normalize_content(act.content), act.actor.address)


def rejection_reason(act: SpeechAct) -> Optional[str]:
    """Why an act cannot be stored, or None"""
    if not isinstance(act.content, str) or not act.content.strip():
        return "empty content"
    confidence = act.confidence
    if not isinstance(confidence, (int, float)) or math.isnan(confidence):
        return f"invalid confidence {confidence!r}"
    if not 0.0 <= confidence <= 1.0:
        return f"confidence out of range: {confidence}"
    return None


def _merge(existing: SpeechAct, incoming: SpeechAct) -> SpeechAct:
    winner = incoming if incoming.confidence > existing.confidence else existing

    metadata = dict(winner.metadata)
    merged_from = list(existing.metadata.get("merged_from", []))
    if incoming.id != existing.id and incoming.id not in merged_from:
        merged_from.append(incoming.id)
    if merged_from:
        metadata["merged_from"] = merged_from

    return existing.model_copy(update={
        "content": winner.content,
        "confidence": winner.confidence,
        "metadata": metadata,
        "participants": dedupe_participants([*existing.participants, *incoming.participants]),
    })


class SpeechActIndex:
    """
    Insertion-ordered index of speech acts.

    Thread-safe. When built with a ledger, the index shares the ledger's lock
    and tracks every stored (or merged) act in it.
    """

    def __init__(self, ledger: Optional[AccessLedger] = None):
        self._ledger = ledger
        self._lock = ledger.lock if ledger is not None else threading.RLock()
        self._acts: Dict[str, SpeechAct] = {}
        self._keys: Dict[DedupKey, str] = {}
        self._aliases: Dict[str, str] = {}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def add(self, act: SpeechAct) -> Optional[SpeechAct]:
        """
        Store an act, or merge it into an existing duplicate.

        Returns:
            The stored act (the canonical one after a merge), or None if the
            act was rejected
        """
        reason = rejection_reason(act)
        if reason:
            logger.warning("Rejected speech act %s: %s", act.id, reason)
            return None

        key = dedup_key(act)
        with self._lock:
            canonical_id = self._keys.get(key)

            if canonical_id is None:
                if act.id in self._acts or act.id in self._aliases:
                    logger.warning("Rejected speech act %s: id already used by a different fact", act.id)
                    return None
                self._acts[act.id] = act
                self._keys[key] = act.id
                for alias in act.metadata.get("merged_from", []):
                    if alias not in self._acts:
                        self._aliases.setdefault(alias, act.id)
                        if self._ledger is not None:
                            self._ledger.alias_speech_act(alias, act.id)
                stored = act
                logger.debug("Indexed speech act %s (%s) in thread %s", act.id, act.kind.value, act.thread_id)
            else:
                stored = _merge(self._acts[canonical_id], act)
                self._acts[canonical_id] = stored
                if act.id != canonical_id:
                    self._aliases[act.id] = canonical_id
                    if self._ledger is not None:
                        self._ledger.alias_speech_act(act.id, canonical_id)
                logger.debug("Merged speech act %s into %s", act.id, canonical_id)

            if self._ledger is not None:
                self._ledger.track_speech_act(stored)
            return stored

    def add_many(self, acts: Iterable[SpeechAct]) -> List[SpeechAct]:
        """Add acts one by one; rejected acts are skipped"""
        stored = []
        for act in acts:
            result = self.add(act)
            if result is not None:
                stored.append(result)
        return stored

    def resolve(self, act_id: str) -> Optional[str]:
        with self._lock:
            if act_id in self._acts:
                return act_id
            return self._aliases.get(act_id)

    def get(self, act_id: str) -> Optional[SpeechAct]:
        with self._lock:
            canonical = self.resolve(act_id)
            return self._acts.get(canonical) if canonical else None

    def get_by_type(self, kind: Union[SpeechActKind, str]) -> List[SpeechAct]:
        try:
            kind = SpeechActKind(kind)
        except ValueError:
            return []
        with self._lock:
            return [a for a in self._acts.values() if a.kind == kind]

    def get_by_thread(self, thread_id: str) -> List[SpeechAct]:
        with self._lock:
            return [a for a in self._acts.values() if a.thread_id == thread_id]

    def get_by_participant(self, participant: ParticipantLike) -> List[SpeechAct]:
        """Acts the participant was exposed to (not a privacy check)"""
        address = address_of(participant)
        with self._lock:
            return [a for a in self._acts.values() if address in a.participant_addresses]

    def get_all(self) -> List[SpeechAct]:
        with self._lock:
            return list(self._acts.values())

    def count(self) -> int:
        with self._lock:
            return len(self._acts)

    def query(
        self,
        kind: Optional[Union[SpeechActKind, str]] = None,
        thread_id: Optional[str] = None,
        participant: Optional[ParticipantLike] = None,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        min_confidence: Optional[float] = None,
    ) -> List[SpeechAct]:
        """Filter acts; every given criterion must hold. Time bounds are inclusive."""
        if kind is not None:
            try:
                kind = SpeechActKind(kind)
            except ValueError:
                return []
        address = address_of(participant) if participant is not None else None

        def matches(act: SpeechAct) -> bool:
            if kind is not None and act.kind != kind:
                return False
            if thread_id is not None and act.thread_id != thread_id:
                return False
            if address is not None and address not in act.participant_addresses:
                return False
            if after is not None and act.timestamp < after:
                return False
            if before is not None and act.timestamp > before:
                return False
            if min_confidence is not None and act.confidence < min_confidence:
                return False
            return True

        with self._lock:
            return [a for a in self._acts.values() if matches(a)]

    def update_status(self, act_id: str, status: Union[SpeechActStatus, str]) -> Optional[SpeechAct]:
        """Change an act's lifecycle status. Returns the updated act, or None if unknown."""
        status = SpeechActStatus(status)
        with self._lock:
            canonical = self.resolve(act_id)
            if canonical is None:
                return None
            updated = self._acts[canonical].model_copy(update={"status": status})
            self._acts[canonical] = updated
            logger.info("Speech act %s marked %s", canonical, status.value)
            return updated

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "acts": [a.model_dump(mode="json") for a in self._acts.values()],
                "aliases": dict(self._aliases),
            }

    def load_records(self, records: Dict[str, Any]) -> int:
        """
        Re-add acts from `to_records` output.

        Returns:
            Number of acts stored
        """
        acts = [SpeechAct.model_validate(r) for r in records.get("acts", [])]
        with self._lock:
            stored = self.add_many(acts)
            for alias, canonical in records.get("aliases", {}).items():
                if canonical in self._acts and alias not in self._acts:
                    self._aliases[alias] = canonical
                    if self._ledger is not None:
                        self._ledger.alias_speech_act(alias, canonical)
        return len(stored)
