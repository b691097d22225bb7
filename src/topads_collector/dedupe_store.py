"""
JSONL store - append-only record and marker logs in one directory
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import AdRecord
from .storage import StorageError, StoragePort

logger = logging.getLogger(__name__)


class JsonlStore(StoragePort):
    """Persists ads and processed markers as JSON lines across runs."""

    backend = "jsonl"

    def __init__(self, directory: Path) -> None:
        super().__init__()
        self.directory = Path(directory)
        self.records_path = self.directory / "records.jsonl"
        self.markers_path = self.directory / "processed.jsonl"
        self.processed_ids: set[str] = set()
        self._records: Dict[Tuple[str, str], AdRecord] = {}
        self._connected = False

    def connect(self) -> None:
        if self._connected:
            return
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot create store directory {self.directory}: {exc}") from exc
        self._load()
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False
        self.processed_ids.clear()
        self._records.clear()

    def _load(self) -> None:
        for payload in self._read_lines(self.markers_path):
            item_key = payload.get("item_key")
            if item_key:
                self.processed_ids.add(str(item_key))

        for payload in self._read_lines(self.records_path):
            try:
                record = AdRecord.model_validate(payload)
            except ValueError:
                logger.warning("Skipping invalid record line")
                continue
            self._records.setdefault((record.id, record.creative_id), record)

    def _read_lines(self, path: Path):
        if not path.exists():
            return
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        payload = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Skipping invalid line in %s", path.name)
                        continue
                    if isinstance(payload, dict):
                        yield payload
        except OSError as exc:
            logger.warning("Failed to read %s: %s", path, exc)

    def _append(self, path: Path, payload: Dict[str, Any]) -> None:
        if not self._connected:
            raise StorageError("jsonl store is not connected")
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(payload, default=str) + "\n")
        except OSError as exc:
            raise StorageError(f"failed to write {path}: {exc}") from exc

    def is_processed(self, item_id: str) -> bool:
        return item_id in self.processed_ids

    def mark_processed(self, item_id: str) -> None:
        if item_id in self.processed_ids:
            return
        self._append(self.markers_path, {"item_key": item_id})
        self.processed_ids.add(item_id)

    def upsert_record(self, record: AdRecord) -> bool:
        key = (record.id, record.creative_id)
        if key in self._records:
            return False
        self._append(self.records_path, record.model_dump(mode="json"))
        self._records[key] = record
        return True

    def find_by_id(self, item_id: str) -> Optional[AdRecord]:
        for (record_id, _), record in self._records.items():
            if record_id == item_id:
                return record
        return None

    def find_by_creative_id(self, creative_id: str) -> List[AdRecord]:
        return [record for (_, cid), record in self._records.items() if cid == creative_id]

    def exists(self, **criteria: Any) -> bool:
        if not criteria:
            return False
        for record in self._records.values():
            if all(getattr(record, key, None) == value for key, value in criteria.items()):
                return True
        return False

    def count(self) -> int:
        return len(self._records)
