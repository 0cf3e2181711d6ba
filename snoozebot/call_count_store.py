"""Per-user call counter with optimistic (version-checked) increments."""

import asyncio
import contextlib
import sqlite3
import time
from pathlib import Path
from typing import Optional, Tuple

from snoozebot import config

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY,
    call_count INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 0,
    updated_ts REAL
);
"""


class CallCountConflictError(RuntimeError):
    pass


class CallCountStore:
    """Each operation opens its own connection, so increments coming from
    different trips behave like independent clients and race only through
    the version column.
    """

    def __init__(self, db_path, logger, max_retries: int = config.CALL_COUNT_MAX_RETRIES) -> None:
        self.db_path = Path(db_path)
        self.logger = logger
        self.max_retries = max(int(max_retries), 1)
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=5.0, isolation_level=None)

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
        self._initialized = True
        self.logger.info("CALL_COUNT_DB_READY path=%s", self.db_path)

    def _read(self, conn: sqlite3.Connection, user_id: int) -> Optional[Tuple[int, int]]:
        row = conn.execute(
            "SELECT call_count, version FROM users WHERE user_id = ?",
            (int(user_id),),
        ).fetchone()
        return (int(row[0]), int(row[1])) if row else None

    def _compare_and_swap(self, conn: sqlite3.Connection, user_id: int, count: int, version: int) -> bool:
        cursor = conn.execute(
            "UPDATE users SET call_count = ?, version = ?, updated_ts = ? WHERE user_id = ? AND version = ?",
            (count + 1, version + 1, time.time(), int(user_id), version),
        )
        return cursor.rowcount == 1

    def get_call_count(self, user_id: int) -> int:
        if not self._initialized:
            self.initialize()
        with contextlib.closing(self._connect()) as conn:
            row = self._read(conn, user_id)
        return row[0] if row else 0

    def increment_call_count_sync(self, user_id: int) -> int:
        if not self._initialized:
            self.initialize()

        with contextlib.closing(self._connect()) as conn:
            for attempt in range(1, self.max_retries + 1):
                row = self._read(conn, user_id)
                if row is None:
                    try:
                        conn.execute(
                            "INSERT INTO users (user_id, call_count, version, updated_ts) VALUES (?, 1, 1, ?)",
                            (int(user_id), time.time()),
                        )
                    except sqlite3.IntegrityError:
                        self.logger.info("CALL_COUNT_CONFLICT user=%s attempt=%s reason=insert", user_id, attempt)
                        continue
                    self.logger.info("CALL_COUNT_INCREMENT user=%s call_count=1", user_id)
                    return 1

                count, version = row
                if self._compare_and_swap(conn, user_id, count, version):
                    self.logger.info("CALL_COUNT_INCREMENT user=%s call_count=%s", user_id, count + 1)
                    return count + 1
                self.logger.info("CALL_COUNT_CONFLICT user=%s attempt=%s version=%s", user_id, attempt, version)

        raise CallCountConflictError(f"call_count_conflict user={user_id}")

    async def increment_call_count(self, user_id: int) -> int:
        return await asyncio.to_thread(self.increment_call_count_sync, user_id)
