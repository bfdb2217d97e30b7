from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .logging_utils import resolve_logger

MEMORY_PATH = ":memory:"
DEFAULT_MAX_BUNDLES = 200


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResponseCache:
    """SQLite-backed TTL cache for provider responses and finished bundles.

    Reads and writes go through one lock, so a reader never observes a row that
    is half written. Expired rows are never returned and are purged on every
    write; the bundle log keeps only the newest ``max_bundles`` rows.
    """

    def __init__(
        self,
        db_path: Path | str,
        logger: logging.Logger | None = None,
        max_bundles: int = DEFAULT_MAX_BUNDLES,
    ) -> None:
        self.logger = resolve_logger(logger, __name__)
        self.max_bundles = max_bundles
        self.db_path = str(db_path)
        if self.db_path != MEMORY_PATH:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()
        self.purge_expired()

    def _init_schema(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS responses (
                    cache_key TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS bundles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    topic TEXT NOT NULL,
                    risk_level INTEGER NOT NULL,
                    bundle_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    @staticmethod
    def make_key(provider: str, target: str, query: str, page: int = 1) -> str:
        return f"{provider}:{target}:{query.strip().lower()}:{page}"

    def get(self, key: str) -> Any | None:
        now = time.time()
        with self._lock:
            row = self._conn.execute(
                "SELECT payload_json, expires_at FROM responses WHERE cache_key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        if float(row["expires_at"]) <= now:
            return None
        self.logger.debug(f"Cache hit for {key}")
        return json.loads(row["payload_json"])

    def set(self, key: str, payload: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return
        expires_at = time.time() + ttl_seconds
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO responses (cache_key, payload_json, expires_at, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    expires_at = excluded.expires_at,
                    created_at = excluded.created_at
                """,
                (key, json.dumps(payload), expires_at, utc_now_iso()),
            )
            self._conn.commit()
        self.purge_expired()

    def purge_expired(self) -> int:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM responses WHERE expires_at <= ?", (time.time(),))
            self._conn.commit()
            removed = cursor.rowcount
        if removed:
            self.logger.info(f"Purged {removed} expired cache entries")
        return removed

    def record_bundle(self, topic: str, risk_level: int, bundle_json: str) -> int:
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO bundles (topic, risk_level, bundle_json, created_at) VALUES (?, ?, ?, ?)",
                (topic, risk_level, bundle_json, utc_now_iso()),
            )
            row_id = int(cursor.lastrowid)
            if self.max_bundles > 0:
                self._conn.execute(
                    "DELETE FROM bundles WHERE id NOT IN (SELECT id FROM bundles ORDER BY id DESC LIMIT ?)",
                    (self.max_bundles,),
                )
            self._conn.commit()
            return row_id

    def recent_bundles(self, limit: int = 20) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT bundle_json FROM bundles ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [row["bundle_json"] for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
