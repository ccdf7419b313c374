from __future__ import annotations

import json
import os
import sqlite3
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from .models import Product, SyncQueueEntry

SCHEMA_PATH = Path(__file__).with_name("sqlite_schema.sql")
MEMORY = ":memory:"


def _now() -> str:
    return datetime.utcnow().isoformat()


def _dump(obj) -> str:
    return json.dumps(obj, default=str)


def _load(raw: Optional[str], fallback):
    try:
        return json.loads(raw) if raw else fallback
    except Exception:
        return fallback


class OfflineStore:
    """
    Durable local store for catalog caches and the offline sync queue.

    The handle is opened lazily on first use and reused until close(). Every
    public method runs inside its own transaction under the store lock, so
    callers never touch the connection directly.
    """

    def __init__(self, path: str = MEMORY):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # Lifecycle

    def open(self) -> "OfflineStore":
        with self._lock:
            if self._conn is not None:
                return self
            if self.path != MEMORY:
                parent = os.path.dirname(os.path.abspath(self.path))
                os.makedirs(parent, exist_ok=True)
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            with conn:
                conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
            self._conn = conn
            return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def _tx(self):
        # `with conn:` commits on success and rolls back on error.
        self.open()
        return self._conn

    # Catalog caches

    def cache_products(self, products: Iterable) -> int:
        now = _now()
        n = 0
        with self._lock:
            conn = self._tx()
            with conn:
                for p in products or []:
                    row = p.model_dump(mode="json") if isinstance(p, Product) else dict(p)
                    pid = row.get("id")
                    if pid is None:
                        continue
                    conn.execute(
                        """
                        INSERT INTO products (id, data_json, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                          data_json=excluded.data_json,
                          updated_at=excluded.updated_at
                        """,
                        (str(pid), _dump(row), now),
                    )
                    n += 1
        return n

    def cached_products(self) -> list[dict]:
        with self._lock:
            conn = self._tx()
            rows = conn.execute("SELECT data_json FROM products ORDER BY rowid").fetchall()
        return [_load(r["data_json"], {}) for r in rows]

    def cache_categories(self, categories: Iterable) -> int:
        now = _now()
        n = 0
        with self._lock:
            conn = self._tx()
            with conn:
                for c in categories or []:
                    row = {"id": c, "name": c} if isinstance(c, str) else dict(c)
                    cid = row.get("id")
                    if cid is None:
                        continue
                    conn.execute(
                        """
                        INSERT INTO categories (id, data_json, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                          data_json=excluded.data_json,
                          updated_at=excluded.updated_at
                        """,
                        (str(cid), _dump(row), now),
                    )
                    n += 1
        return n

    def cached_categories(self) -> list[dict]:
        with self._lock:
            conn = self._tx()
            rows = conn.execute("SELECT data_json FROM categories ORDER BY rowid").fetchall()
        return [_load(r["data_json"], {}) for r in rows]

    # Sync queue

    def enqueue(self, entity_type: str, entity_id: str, action: str, payload: dict) -> SyncQueueEntry:
        created_at = _now()
        with self._lock:
            conn = self._tx()
            with conn:
                cur = conn.execute(
                    """
                    INSERT INTO sync_queue (entity_type, entity_id, action, payload_json, synced, created_at)
                    VALUES (?, ?, ?, ?, 0, ?)
                    """,
                    (entity_type, str(entity_id), action, _dump(payload), created_at),
                )
                seq = cur.lastrowid
        return SyncQueueEntry(
            id=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            payload=_load(_dump(payload), {}),
            synced=False,
            created_at=created_at,
        )

    def list_unsynced(self) -> list[SyncQueueEntry]:
        with self._lock:
            conn = self._tx()
            rows = conn.execute(
                """
                SELECT seq, entity_type, entity_id, action, payload_json, synced, created_at,
                       attempt_count, last_error, last_attempt_at, synced_at
                FROM sync_queue
                WHERE synced = 0
                ORDER BY seq
                """
            ).fetchall()
        return [self._entry(r) for r in rows]

    def get_entry(self, seq: int) -> Optional[SyncQueueEntry]:
        with self._lock:
            conn = self._tx()
            row = conn.execute(
                """
                SELECT seq, entity_type, entity_id, action, payload_json, synced, created_at,
                       attempt_count, last_error, last_attempt_at, synced_at
                FROM sync_queue
                WHERE seq = ?
                """,
                (seq,),
            ).fetchone()
        return self._entry(row) if row else None

    @staticmethod
    def _entry(r) -> SyncQueueEntry:
        return SyncQueueEntry(
            id=r["seq"],
            entity_type=r["entity_type"],
            entity_id=r["entity_id"],
            action=r["action"],
            payload=_load(r["payload_json"], {}),
            synced=bool(r["synced"]),
            created_at=r["created_at"],
            attempt_count=int(r["attempt_count"] or 0),
            last_error=r["last_error"],
            last_attempt_at=r["last_attempt_at"],
            synced_at=r["synced_at"],
        )

    def mark_synced(self, seq: int) -> bool:
        now = _now()
        with self._lock:
            conn = self._tx()
            with conn:
                cur = conn.execute(
                    """
                    UPDATE sync_queue
                    SET synced = 1, synced_at = ?, last_error = NULL,
                        attempt_count = attempt_count + 1, last_attempt_at = ?
                    WHERE seq = ? AND synced = 0
                    """,
                    (now, now, seq),
                )
                return cur.rowcount > 0

    def record_failure(self, seq: int, error: str) -> None:
        with self._lock:
            conn = self._tx()
            with conn:
                conn.execute(
                    """
                    UPDATE sync_queue
                    SET attempt_count = attempt_count + 1, last_error = ?, last_attempt_at = ?
                    WHERE seq = ? AND synced = 0
                    """,
                    ((error or "")[:1000], _now(), seq),
                )

    def count_unsynced(self) -> int:
        with self._lock:
            conn = self._tx()
            row = conn.execute("SELECT COUNT(1) AS n FROM sync_queue WHERE synced = 0").fetchone()
        return int(row["n"] if row else 0)

    # Receipts

    def save_receipt(self, receipt_type: str, receipt_obj: dict) -> str:
        rid = str(uuid.uuid4())
        with self._lock:
            conn = self._tx()
            with conn:
                conn.execute(
                    """
                    INSERT INTO receipts (id, receipt_type, receipt_json, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (rid, receipt_type, _dump(receipt_obj), _now()),
                )
        return rid

    def last_receipt(self) -> Optional[dict]:
        with self._lock:
            conn = self._tx()
            r = conn.execute(
                """
                SELECT id, receipt_type, receipt_json, created_at
                FROM receipts
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """
            ).fetchone()
        if not r:
            return None
        return {
            "id": r["id"],
            "receipt_type": r["receipt_type"],
            "receipt": _load(r["receipt_json"], {}),
            "created_at": r["created_at"],
        }

    # Key/value settings (branding cache etc.)

    def set_setting(self, key: str, value: Any) -> None:
        with self._lock:
            conn = self._tx()
            with conn:
                conn.execute(
                    """
                    INSERT INTO local_settings (key, value_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                      value_json=excluded.value_json,
                      updated_at=excluded.updated_at
                    """,
                    (key, _dump(value), _now()),
                )

    def get_setting(self, key: str, default=None):
        with self._lock:
            conn = self._tx()
            row = conn.execute("SELECT value_json FROM local_settings WHERE key = ?", (key,)).fetchone()
        if not row:
            return default
        return _load(row["value_json"], default)
