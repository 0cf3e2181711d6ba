import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS phones (
    user_id INTEGER PRIMARY KEY,
    phone TEXT NOT NULL,
    updated_ts REAL
);
"""


class PhoneDirectory:
    """user id -> phone number the backend is allowed to call."""

    def __init__(self, db_path) -> None:
        self.db_path = Path(db_path)
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=5.0, isolation_level=None)

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.closing(self._connect()) as conn:
            conn.executescript(SCHEMA)
        self._initialized = True

    def get_phone(self, user_id: int) -> Optional[str]:
        if not self._initialized:
            self.initialize()
        with contextlib.closing(self._connect()) as conn:
            row = conn.execute("SELECT phone FROM phones WHERE user_id = ?", (int(user_id),)).fetchone()
        return row[0] if row and row[0] else None

    def set_phone(self, user_id: int, phone: str) -> None:
        if not self._initialized:
            self.initialize()
        with contextlib.closing(self._connect()) as conn:
            conn.execute(
                "INSERT INTO phones (user_id, phone, updated_ts) VALUES (?, ?, ?) "
                "ON CONFLICT(user_id) DO UPDATE SET phone = excluded.phone, updated_ts = excluded.updated_ts",
                (int(user_id), phone, time.time()),
            )
        logger.info("PHONE_SAVED user=%s", user_id)
