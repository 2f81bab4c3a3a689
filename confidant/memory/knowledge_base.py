"""
Knowledge Base

Facade over the ledger, the speech act index and an optional persistence
backend.

Concurrency: one RLock is shared by the ledger and the index. Ingestion holds
it for each message or act together with its grants, and reads hold it while
they assemble, so a reader never sees a fact without its grant or a grant
without its content.

Persistence is write-through and best-effort: each ingestion batch is one
backend write, a failed write is logged and reported, and in-memory state
stays authoritative.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Union

from ..common.config import ConfidantConfig
from ..common.errors import PersistenceError
from ..common.schemas import LedgerSnapshot, Message, QueryScope, SpeechAct, SpeechActStatus, Thread
from ..ingest.detector import BaseDetector
from ..ingest.thread_builder import build_threads
from ..storage import codec
from ..storage.backend import Entry, KeyValueBackend, build_backend
from .assembler import ContextAssembler
from .ledger import AccessLedger, ParticipantLike
from .speech_acts import SpeechActIndex, rejection_reason

logger = logging.getLogger("confidant.memory.knowledge_base")


@dataclass
class IngestReport:
    """Outcome of one ingestion call"""
    accepted: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    merged: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    detector_errors: List[str] = field(default_factory=list)
    persistence_errors: List[str] = field(default_factory=list)
    acts: List[str] = field(default_factory=list)  # stored by detector ingestion

    @property
    def ok(self) -> bool:
        return not (self.rejected or self.detector_errors or self.persistence_errors)

    def extend(self, other: "IngestReport") -> "IngestReport":
        self.accepted.extend(other.accepted)
        self.duplicates.extend(other.duplicates)
        self.merged.extend(other.merged)
        self.rejected.extend(other.rejected)
        self.detector_errors.extend(other.detector_errors)
        self.persistence_errors.extend(other.persistence_errors)
        self.acts.extend(other.acts)
        return self


class KnowledgeBase:
    """
    Ingests messages and speech acts and answers scoped reads.

    Usage:
        config = load_config()
        kb = KnowledgeBase.from_config(config)
        kb.rehydrate()
        kb.ingest_messages(messages)
        kb.ingest_with_detector(messages, SpeechActDetector(LLMClient.from_config(config.llm)))
        scope = kb.assemble("alice@example.com")
    """

    def __init__(
        self,
        backend: Optional[KeyValueBackend] = None,
        assembler: Optional[ContextAssembler] = None,
    ):
        self._lock = threading.RLock()
        self.ledger = AccessLedger(lock=self._lock)
        self.index = SpeechActIndex(self.ledger)
        self._messages: Dict[str, Message] = {}
        self._backend = backend
        self._assembler = assembler or ContextAssembler()

    @classmethod
    def from_config(cls, config: ConfidantConfig) -> "KnowledgeBase":
        """Backend from `config.storage`, assembly limits from `config.context`"""
        return cls(
            backend=build_backend(config.storage),
            assembler=ContextAssembler.from_config(config.context),
        )

    @property
    def backend(self) -> Optional[KeyValueBackend]:
        return self._backend

    @property
    def assembler(self) -> ContextAssembler:
        return self._assembler

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_messages(self, messages: Iterable[Message]) -> IngestReport:
        report = self._add_messages(messages)
        self._persist_messages(report.accepted, report)
        logger.info(
            "Ingested %d message(s) (%d duplicate(s))",
            len(report.accepted), len(report.duplicates),
        )
        return report

    def ingest_speech_acts(self, acts: Iterable[SpeechAct]) -> IngestReport:
        report = self._add_acts(acts)
        self._persist_acts(report.accepted + report.merged, report)
        logger.info(
            "Ingested %d speech act(s) (%d merged, %d rejected)",
            len(report.accepted), len(report.merged), len(report.rejected),
        )
        return report

    def ingest_with_detector(self, messages: Sequence[Message], detector: BaseDetector) -> IngestReport:
        """
        Ingest messages, then run `detector` on the new ones and ingest the
        acts it finds.

        The detector runs without holding the lock.
        """
        report = self.ingest_messages(messages)
        new_messages = [self._messages[mid] for mid in report.accepted]

        acts: List[SpeechAct] = []
        for result in detector.detect_batch(new_messages):
            if not result.ok:
                report.detector_errors.append(f"{result.message_id}: {result.error}")
            report.rejected.extend(f"{result.message_id}: {r.reason}" for r in result.rejected)
            acts.extend(result.acts)

        act_report = self.ingest_speech_acts(acts)
        report.merged.extend(act_report.merged)
        report.rejected.extend(act_report.rejected)
        report.persistence_errors.extend(act_report.persistence_errors)
        report.acts.extend(act_report.accepted)
        return report

    def update_status(self, act_id: str, status: Union[SpeechActStatus, str]) -> Optional[SpeechAct]:
        updated = self.index.update_status(act_id, status)
        if updated is not None:
            self._write(IngestReport(), [(codec.SPEECH_ACTS, updated.id, codec.encode_speech_act(updated), updated.thread_id)])
        return updated

    def _add_messages(self, messages: Iterable[Message]) -> IngestReport:
        report = IngestReport()
        with self._lock:
            for message in messages:
                if message.id in self._messages:
                    report.duplicates.append(message.id)
                    continue
                self._messages[message.id] = message
                self.ledger.track_message(message)
                report.accepted.append(message.id)
        return report

    def _add_acts(self, acts: Iterable[SpeechAct]) -> IngestReport:
        report = IngestReport()
        with self._lock:
            for act in acts:
                reason = rejection_reason(act)
                if reason:
                    logger.warning("Rejected speech act %s: %s", act.id, reason)
                    report.rejected.append(f"{act.id}: {reason}")
                    continue
                before = self.index.count()
                stored = self.index.add(act)
                if stored is None:
                    report.rejected.append(f"{act.id}: id conflict")
                elif self.index.count() == before:
                    report.merged.append(stored.id)
                else:
                    report.accepted.append(stored.id)
        return report

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _write(self, report: IngestReport, entries: List[Entry]) -> None:
        """One backend write per ingestion batch"""
        if self._backend is None or not entries:
            return
        try:
            self._backend.put_many(entries)
        except PersistenceError as e:
            for namespace, key, _, _ in entries:
                logger.warning("Failed to persist %s/%s: %s", namespace, key, e)
                report.persistence_errors.append(f"{namespace}/{key}: {e}")

    def _ledger_entry(self) -> Entry:
        return (codec.LEDGER, codec.LEDGER_KEY, codec.encode_snapshot(self.ledger.snapshot()), None)

    def _persist_messages(self, message_ids: List[str], report: IngestReport) -> None:
        if self._backend is None or not message_ids:
            return
        with self._lock:
            entries: List[Entry] = [
                (codec.MESSAGES, mid, codec.encode_message(self._messages[mid]), self._messages[mid].thread_id)
                for mid in message_ids
            ]
            entries.append(self._ledger_entry())
        self._write(report, entries)

    def _persist_acts(self, act_ids: List[str], report: IngestReport) -> None:
        if self._backend is None or not act_ids:
            return
        with self._lock:
            entries: List[Entry] = []
            for act_id in dict.fromkeys(act_ids):
                act = self.index.get(act_id)
                if act is not None:
                    entries.append((codec.SPEECH_ACTS, act.id, codec.encode_speech_act(act), act.thread_id))
            entries.append(self._ledger_entry())
        self._write(report, entries)

    def rehydrate(self) -> IngestReport:
        """
        Reload messages, speech acts and grants from the backend.

        Raises:
            PersistenceError: backend could not be read
        """
        report = IngestReport()
        if self._backend is None:
            return report

        messages = [codec.decode_message(d) for d in self._backend.scan(codec.MESSAGES)]
        acts = [codec.decode_speech_act(d) for d in self._backend.scan(codec.SPEECH_ACTS)]
        raw_snapshot = self._backend.get(codec.LEDGER, codec.LEDGER_KEY)

        with self._lock:
            if raw_snapshot is not None:
                self.ledger.restore(codec.decode_snapshot(raw_snapshot))
            report.extend(self._add_messages(messages))
            report.extend(self._add_acts(acts))

        logger.info(
            "Rehydrated %d message(s) and %d speech act(s) from backend",
            len(messages), len(acts),
        )
        return report

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            return self._messages.get(message_id)

    def message_count(self) -> int:
        with self._lock:
            return len(self._messages)

    def threads(self, thread_ids: Optional[Iterable[str]] = None) -> List[Thread]:
        """Threads built from every ingested message (unscoped)"""
        wanted = set(thread_ids) if thread_ids is not None else None
        with self._lock:
            messages = list(self._messages.values())
        threads = build_threads(messages)
        if wanted is None:
            return threads
        return [t for t in threads if t.thread_id in wanted]

    def snapshot(self) -> LedgerSnapshot:
        return self.ledger.snapshot()

    def assemble(
        self,
        requester: ParticipantLike,
        thread_ids: Optional[Iterable[str]] = None,
        audience: Iterable[ParticipantLike] = (),
    ) -> QueryScope:
        """Scope of what `requester` (with `audience` present) may see"""
        if thread_ids is not None:
            thread_ids = list(thread_ids)
        with self._lock:
            threads = self.threads(thread_ids)
            return self._assembler.assemble(
                thread_ids, requester, self.ledger, self.index, threads, audience=audience,
            )
