"""
Storage port and the registry that owns backend connections.

A store keeps ad records plus a separate processed-item marker per record id.
`persist_once` is the insert-or-skip unit used by the interception pipeline:
records are never updated in place.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config_loader import StorageSettings
from .models import AdRecord

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class StoragePort(ABC):
    """Backend-agnostic record store"""

    backend = "abstract"

    def __init__(self) -> None:
        self._persist_lock = threading.Lock()

    @abstractmethod
    def connect(self) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def is_processed(self, item_id: str) -> bool: ...

    @abstractmethod
    def mark_processed(self, item_id: str) -> None: ...

    @abstractmethod
    def upsert_record(self, record: AdRecord) -> bool:
        """Insert unless (id, creative_id) already exists. Returns True if inserted."""

    @abstractmethod
    def find_by_id(self, item_id: str) -> Optional[AdRecord]: ...

    @abstractmethod
    def find_by_creative_id(self, creative_id: str) -> List[AdRecord]: ...

    @abstractmethod
    def exists(self, **criteria: Any) -> bool: ...

    @abstractmethod
    def count(self) -> int:
        """Number of stored records."""

    def persist_once(self, record: AdRecord) -> bool:
        """
        Store the record and its marker unless the marker already exists.

        Returns True when the record was written, False when it was skipped.
        The check and both writes happen under one lock.
        """
        with self._persist_lock:
            if self.is_processed(record.id):
                return False
            self.upsert_record(record)
            self.mark_processed(record.id)
            return True

    def __enter__(self) -> "StoragePort":
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.disconnect()


StoreFactory = Callable[[str], StoragePort]


def _default_factories() -> Dict[str, StoreFactory]:
    from .dedupe_store import JsonlStore
    from .sqlite_store import SQLiteStore

    return {
        "sqlite": lambda connection: SQLiteStore(Path(connection)),
        "jsonl": lambda connection: JsonlStore(Path(connection)),
    }


class StorageRegistry:
    """
    Connected stores keyed by (backend, connection).

    Asking twice for the same key returns the same instance. Entries are never
    evicted; `close_all()` disconnects everything at shutdown.
    """

    def __init__(self, factories: Optional[Dict[str, StoreFactory]] = None):
        self._factories = factories if factories is not None else _default_factories()
        self._stores: Dict[Tuple[str, str], StoragePort] = {}
        self._lock = threading.Lock()

    def get(self, backend: str, connection: str) -> StoragePort:
        key = (backend.strip().lower(), str(connection))
        with self._lock:
            store = self._stores.get(key)
            if store is not None:
                return store

            factory = self._factories.get(key[0])
            if factory is None:
                raise StorageError(f"unknown storage backend: {backend}")

            store = factory(key[1])
            store.connect()
            self._stores[key] = store
            logger.info("Storage connected: %s (%s)", key[0], key[1])
            return store

    def for_settings(self, settings: StorageSettings) -> StoragePort:
        return self.get(settings.backend, settings.connection)

    def __len__(self) -> int:
        return len(self._stores)

    def close_all(self) -> None:
        """Disconnect every cached store. Raises StorageError listing failures."""
        with self._lock:
            stores = list(self._stores.items())
            self._stores.clear()

        failures: List[str] = []
        for (backend, connection), store in stores:
            try:
                store.disconnect()
                logger.info("Storage disconnected: %s (%s)", backend, connection)
            except Exception as exc:
                logger.error("Failed to close %s store %s: %s", backend, connection, exc)
                failures.append(f"{backend}:{connection}: {exc}")

        if failures:
            raise StorageError("; ".join(failures))
