"""SQLite persistence for cache snapshots and subscriber names."""

from __future__ import annotations

import json
import sqlite3
import time
from typing import Any


class SqliteStore:
    def __init__(self, path: str):
        self.path = path
        self.conn: sqlite3.Connection | None = None

    def init(self) -> None:
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS relay_state (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              updated_at REAL NOT NULL
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def set(self, key: str, value: Any) -> None:
        if not self.conn:
            return
        self.conn.execute(
            """
            INSERT INTO relay_state (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              value=excluded.value,
              updated_at=excluded.updated_at
            """,
            (key, json.dumps(value, separators=(",", ":")), time.time()),
        )
        self.conn.commit()

    def get(self, key: str) -> Any:
        if not self.conn:
            return None
        row = self.conn.execute("SELECT value FROM relay_state WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def keys(self) -> list[str]:
        if not self.conn:
            return []
        return [r[0] for r in self.conn.execute("SELECT key FROM relay_state ORDER BY key").fetchall()]
