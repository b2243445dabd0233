"""
Catalog database connection.

One connection per library, shared by the request side and the background
scan thread. Writers serialize through `write_lock`; WAL keeps readers
unblocked while a scan or merge transaction is open.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional

from .schema import init_schema

# Milliseconds SQLite waits on a lock held by another process (e.g. catalog_query.py)
BUSY_TIMEOUT_MS = 5000


class DBManager:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        """Opens the catalog (creating file and schema on first use). Repeated calls return the same connection."""
        if self._conn:
            return self._conn

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logging.info(f"Opening catalog: {self.db_path}")
        conn = sqlite3.connect(self.db_path, check_same_thread=False)

        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
        conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS};")
        conn.execute("PRAGMA foreign_keys=ON;")

        init_schema(conn)
        self._conn = conn
        logging.debug(f"Catalog schema version {self.schema_version()}")
        return conn

    def schema_version(self) -> Optional[int]:
        cur = self.connect().cursor()
        cur.execute("SELECT MAX(version) FROM schema_version")
        row = cur.fetchone()
        return row[0] if row else None

    def close(self):
        """Folds the WAL back into the catalog file and closes the connection."""
        if not self._conn:
            return
        with self._write_lock:
            try:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            except sqlite3.Error as e:
                logging.warning(f"WAL checkpoint failed on close: {e}")
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def write_lock(self) -> threading.Lock:
        """Shared by the scanner, the merge engine and the settings store."""
        return self._write_lock
