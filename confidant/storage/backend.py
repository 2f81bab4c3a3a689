"""
Persistence Backends

Key/value storage with a secondary index on thread id. The knowledge base
writes through to a backend; the backend never decides who sees what.

Backends:
- InMemoryBackend: process-local dicts (tests, ephemeral deployments)
- JsonFileBackend: a single JSON file, replaced atomically once per write call
"""

import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..common.config import DEFAULT_STORE_PATH, StorageConfig
from ..common.errors import PersistenceError

logger = logging.getLogger("confidant.storage.backend")

# namespace -> key -> (thread_id, value)
_Table = Dict[str, Dict[str, Tuple[Optional[str], Dict[str, Any]]]]

# (namespace, key, value, thread_id)
Entry = Tuple[str, str, Dict[str, Any], Optional[str]]


class KeyValueBackend(ABC):
    """
    Abstract persistence backend.

    All methods raise PersistenceError on failure.
    """

    @abstractmethod
    def put(self, namespace: str, key: str, value: Dict[str, Any], thread_id: Optional[str] = None) -> None:
        """Store `value` under `namespace/key`, replacing any previous value."""

    def put_many(self, entries: Iterable[Entry]) -> None:
        """
        Store several values in one write.

        Backends that can write atomically override this; the default stores
        the entries one at a time.
        """
        for namespace, key, value, thread_id in entries:
            self.put(namespace, key, value, thread_id=thread_id)

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        """Fetch a value, or None if absent."""

    @abstractmethod
    def query_by_thread(self, namespace: str, thread_id: str) -> List[Dict[str, Any]]:
        """All values in `namespace` stored with `thread_id`, in insertion order."""

    @abstractmethod
    def scan(self, namespace: str) -> List[Dict[str, Any]]:
        """All values in `namespace`, in insertion order."""


class InMemoryBackend(KeyValueBackend):
    """Dict-backed backend. Values are deep-copied in and out."""

    def __init__(self):
        self._tables: _Table = {}

    def put(self, namespace: str, key: str, value: Dict[str, Any], thread_id: Optional[str] = None) -> None:
        self._tables.setdefault(namespace, {})[key] = (thread_id, copy.deepcopy(value))

    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        entry = self._tables.get(namespace, {}).get(key)
        return copy.deepcopy(entry[1]) if entry else None

    def query_by_thread(self, namespace: str, thread_id: str) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(value)
            for tid, value in self._tables.get(namespace, {}).values()
            if tid == thread_id
        ]

    def scan(self, namespace: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(value) for _, value in self._tables.get(namespace, {}).values()]


class JsonFileBackend(InMemoryBackend):
    """
    Backend persisted to one JSON file.

    The file is loaded on first use and rewritten through a temporary file
    and os.replace once per put or put_many, so a crash never leaves it
    half-written and a batch costs a single rewrite.

    File layout:
        {"<namespace>": {"<key>": {"thread_id": ..., "value": {...}}}}
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        super().__init__()
        self._path = Path(path) if path else DEFAULT_STORE_PATH
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self._path.exists():
            try:
                with open(self._path) as f:
                    data = json.load(f)
                self._tables = {
                    namespace: {
                        key: (entry.get("thread_id"), entry["value"])
                        for key, entry in items.items()
                    }
                    for namespace, items in data.items()
                }
            except (json.JSONDecodeError, IOError, KeyError, AttributeError) as e:
                raise PersistenceError(
                    f"Failed to load store {self._path}: {e}", operation="load",
                ) from e
            logger.info("Loaded store from %s", self._path)
        self._loaded = True

    def _save(self) -> None:
        data = {
            namespace: {
                key: {"thread_id": thread_id, "value": value}
                for key, (thread_id, value) in items.items()
            }
            for namespace, items in self._tables.items()
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".store-", suffix=".json")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp, self._path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except (IOError, OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write store {self._path}: {e}", operation="save") from e

    def put(self, namespace: str, key: str, value: Dict[str, Any], thread_id: Optional[str] = None) -> None:
        self.put_many([(namespace, key, value, thread_id)])

    def put_many(self, entries: Iterable[Entry]) -> None:
        """All entries are written, or none are (the batch is rolled back)."""
        entries = list(entries)
        if not entries:
            return
        self._ensure_loaded()
        previous: Dict[Tuple[str, str], Optional[Tuple[Optional[str], Dict[str, Any]]]] = {}
        for namespace, key, value, thread_id in entries:
            previous.setdefault((namespace, key), self._tables.get(namespace, {}).get(key))
            InMemoryBackend.put(self, namespace, key, value, thread_id)
        try:
            self._save()
        except PersistenceError as e:
            for (namespace, key), entry in previous.items():
                if entry is None:
                    del self._tables[namespace][key]
                else:
                    self._tables[namespace][key] = entry
            e.key = ", ".join(f"{namespace}/{key}" for namespace, key in previous)
            raise
        logger.debug("Wrote %d entries to %s", len(entries), self._path)

    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        self._ensure_loaded()
        return super().get(namespace, key)

    def query_by_thread(self, namespace: str, thread_id: str) -> List[Dict[str, Any]]:
        self._ensure_loaded()
        return super().query_by_thread(namespace, thread_id)

    def scan(self, namespace: str) -> List[Dict[str, Any]]:
        self._ensure_loaded()
        return super().scan(namespace)


def build_backend(config: Optional[StorageConfig] = None) -> KeyValueBackend:
    """
    Create the backend named by the storage config.

    Raises:
        ValueError: unknown backend name
    """
    config = config or StorageConfig()
    backend = config.backend.strip().lower()
    if backend == "memory":
        return InMemoryBackend()
    if backend == "json":
        return JsonFileBackend(config.path or None)
    raise ValueError(f"Unknown storage backend: {config.backend}")
