import sqlite3
import threading
from typing import Optional

SCHEMA = '''
CREATE TABLE IF NOT EXISTS client_state (
  key TEXT NOT NULL PRIMARY KEY,
  value TEXT NOT NULL
);
'''

# Fixed keys for persisted client state
CACHE_KEY = "translation_cache"
LANGUAGE_KEY = "app-language"

class KeyValueStore:
    """Small persistent string store, one row per key.

    Writes may come from a worker thread (``asyncio.to_thread``), so the
    connection is shared across threads behind a lock.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(path, check_same_thread=False)
        if path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute(SCHEMA)
        self.conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            cur = self.conn.execute("SELECT value FROM client_state WHERE key=?", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self.conn.execute("INSERT OR REPLACE INTO client_state (key, value) VALUES (?, ?)", (key, value))
            self.conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM client_state WHERE key=?", (key,))
            self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()
