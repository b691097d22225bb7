"""SQLite backend for collected ads.

Two tables: ``ads`` holds the records, ``processed_items`` holds one marker
per committed record id. Records are insert-or-ignore only.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional

from .models import AdRecord
from .storage import StorageError, StoragePort

logger = logging.getLogger(__name__)

# Column names accepted by exists(); maps record field -> column
_CRITERIA_COLUMNS = {
    "id": "id",
    "creative_id": "creative_id",
    "advertiser_id": "advertiser_id",
    "advertiser_name": "advertiser_name",
    "source_region": "country_code",
    "country_code": "country_code",
}


class SQLiteStore(StoragePort):
    backend = "sqlite"

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("sqlite store is not connected")
        return self._conn

    def connect(self) -> None:
        """Open the database and create the schema if needed.

        ``check_same_thread`` is disabled because the interception callback
        may run on a different thread than the one that connected. Writes are
        serialised by the persist lock.
        """
        if self._conn is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._initialize_schema(conn)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"cannot open sqlite store {self.path}: {exc}") from exc
        self._conn = conn

    @staticmethod
    def _initialize_schema(conn: sqlite3.Connection) -> None:
        statements: Iterable[str] = (
            """
            CREATE TABLE IF NOT EXISTS ads (
                id              TEXT PRIMARY KEY,
                country_code    TEXT,
                creative_id     TEXT NOT NULL,
                advertiser_id   TEXT,
                advertiser_name TEXT,
                created_at      TEXT NOT NULL,
                media           TEXT,
                metadata        TEXT,
                UNIQUE(id, creative_id)
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_ads_creative_id
                ON ads(creative_id);
            """,
            """
            CREATE TABLE IF NOT EXISTS processed_items (
                item_key     TEXT PRIMARY KEY,
                processed_at TEXT NOT NULL
            );
            """,
        )
        with conn:
            for statement in statements:
                conn.execute(statement)

    def disconnect(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"cannot close sqlite store {self.path}: {exc}") from exc
        finally:
            self._conn = None

    # === Markers ===

    def is_processed(self, item_id: str) -> bool:
        row = self._query_one("SELECT 1 FROM processed_items WHERE item_key = ?", (item_id,))
        return row is not None

    def mark_processed(self, item_id: str) -> None:
        self._write(
            "INSERT OR IGNORE INTO processed_items (item_key, processed_at) VALUES (?, ?)",
            (item_id, _now_iso()),
        )

    # === Records ===

    def upsert_record(self, record: AdRecord) -> bool:
        cursor = self._write(_INSERT_AD, _record_params(record))
        return cursor.rowcount > 0

    def persist_once(self, record: AdRecord) -> bool:
        """Marker check, record insert and marker insert in one transaction."""
        with self._persist_lock:
            try:
                with self.conn:
                    seen = self.conn.execute(
                        "SELECT 1 FROM processed_items WHERE item_key = ?", (record.id,)
                    ).fetchone()
                    if seen is not None:
                        return False
                    self.conn.execute(_INSERT_AD, _record_params(record))
                    self.conn.execute(
                        "INSERT OR IGNORE INTO processed_items (item_key, processed_at) VALUES (?, ?)",
                        (record.id, _now_iso()),
                    )
                    return True
            except sqlite3.Error as exc:
                raise StorageError(f"failed to persist ad {record.id}: {exc}") from exc

    def find_by_id(self, item_id: str) -> Optional[AdRecord]:
        row = self._query_one("SELECT * FROM ads WHERE id = ?", (item_id,))
        return _row_to_record(row) if row is not None else None

    def find_by_creative_id(self, creative_id: str) -> List[AdRecord]:
        try:
            rows = self.conn.execute(
                "SELECT * FROM ads WHERE creative_id = ? ORDER BY created_at", (creative_id,)
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"query failed: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    def exists(self, **criteria: Any) -> bool:
        if not criteria:
            return False
        clauses = []
        params = []
        for key, value in criteria.items():
            column = _CRITERIA_COLUMNS.get(key)
            if column is None:
                raise StorageError(f"unsupported criteria field: {key}")
            clauses.append(f"{column} = ?")
            params.append(value)
        row = self._query_one(f"SELECT 1 FROM ads WHERE {' AND '.join(clauses)} LIMIT 1", tuple(params))
        return row is not None

    def count(self) -> int:
        row = self._query_one("SELECT COUNT(*) AS n FROM ads", ())
        return int(row["n"]) if row is not None else 0

    # === Helpers ===

    def _query_one(self, sql: str, params: tuple) -> Optional[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"query failed: {exc}") from exc

    def _write(self, sql: str, params: tuple) -> sqlite3.Cursor:
        try:
            with self.conn:
                return self.conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StorageError(f"write failed: {exc}") from exc


_INSERT_AD = """
    INSERT OR IGNORE INTO ads
        (id, country_code, creative_id, advertiser_id, advertiser_name, created_at, media, metadata)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _record_params(record: AdRecord) -> tuple:
    return (
        record.id,
        record.source_region,
        record.creative_id,
        record.advertiser_id,
        record.advertiser_name,
        record.created_at.isoformat(),
        json.dumps(record.media, default=str),
        json.dumps(record.metadata, default=str),
    )


def _row_to_record(row: sqlite3.Row) -> AdRecord:
    return AdRecord(
        id=row["id"],
        source_region=row["country_code"] or "",
        creative_id=row["creative_id"],
        advertiser_id=row["advertiser_id"] or "",
        advertiser_name=row["advertiser_name"] or "",
        created_at=datetime.fromisoformat(row["created_at"]),
        media=json.loads(row["media"] or "{}"),
        metadata=json.loads(row["metadata"] or "{}"),
    )
