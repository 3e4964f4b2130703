from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional


logger = logging.getLogger(__name__)

ITEM_TABLE = "ItemTable"


class SQLiteStateStore:
    """Key/value access to the host's `state.vscdb`.

    Every call opens and closes its own connection so no lock on the shared
    file outlives a single statement. Reads use a read-only URI connection.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    @contextmanager
    def _connection(self, read_only: bool = False) -> Generator[sqlite3.Connection, None, None]:
        if read_only:
            conn = sqlite3.connect(f"{self.db_path.resolve().as_uri()}?mode=ro", uri=True, timeout=30.0)
        else:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Optional[bytes]:
        if not self.db_path.exists():
            logger.info("event=state_db_missing path=%s", self.db_path)
            return None
        try:
            with self._connection(read_only=True) as conn:
                row = conn.execute(f"SELECT value FROM {ITEM_TABLE} WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            logger.error("event=state_db_read_failed key=%s error=%s", key, exc)
            return None

        if not row or row[0] is None:
            return None
        value = row[0]
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)

    def set(self, key: str, value: bytes) -> bool:
        # The host reads these values back as text, so keep text as text.
        try:
            stored: str | bytes = value.decode("utf-8")
        except UnicodeDecodeError:
            stored = value

        try:
            with self._connection() as conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO {ITEM_TABLE} (key, value) VALUES (?, ?)",
                    (key, stored),
                )
        except sqlite3.Error as exc:
            logger.error("event=state_db_write_failed key=%s error=%s", key, exc)
            return False
        logger.info("event=state_db_write key=%s", key)
        return True

    def raw_bytes(self) -> bytes:
        try:
            return self.db_path.read_bytes()
        except FileNotFoundError:
            logger.info("event=state_db_missing path=%s", self.db_path)
            return b""
        except OSError as exc:
            logger.error("event=state_db_read_failed path=%s error=%s", self.db_path, exc)
            return b""
