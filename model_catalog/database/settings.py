"""
Key-value settings persisted in the catalog database.

Values are stored as text; typed getters fall back to the supplied default
when a key is missing or cannot be parsed.
"""
import sqlite3
import logging
import threading
from contextlib import nullcontext
from typing import Optional

from .ops import utc_now_iso


class SettingsStore:
    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.Lock] = None):
        self.conn = conn
        self._lock = lock

    def get(self, key: str) -> Optional[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = cur.fetchone()
        return row[0] if row else None

    def get_string(self, key: str, default: str = "") -> str:
        value = self.get(key)
        return default if value is None else value

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value.strip())
        except ValueError:
            logging.warning(f"Setting {key}={value!r} is not an integer; using {default}")
            return default

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value.strip().lower() in ('true', '1', 'yes', 'on')

    def set(self, key: str, value) -> None:
        """Upserts a setting and commits immediately."""
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        with self._lock if self._lock is not None else nullcontext():
            self.conn.execute("""
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """, (key, str(value), utc_now_iso()))
            self.conn.commit()
