"""
Service State
=============

Key-value state that must survive restarts, most importantly the scan
checkpoint (last fully processed block) per storage namespace.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from ..errors import StorageError

logger = logging.getLogger(__name__)


class StateDB:

    def __init__(self, db_path: Union[str, Path], prefix: str = "wallet:"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self._init_schema()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        try:
            with self._get_connection() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS service_state (
                        key TEXT PRIMARY KEY,
                        value TEXT,
                        updated_at TEXT
                    )
                """)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialize state database: {e}")

    def set_state(self, key: str, value: str):
        """
        Set a service state value.

        Raises:
            StorageError: If the database cannot be written
        """
        now = datetime.now(timezone.utc).isoformat()

        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO service_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                """, (f"{self.prefix}{key}", value, now))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot save state {key!r}: {e}")

    def get_state(self, key: str, default: str = None) -> Optional[str]:
        """
        Get a service state value.

        Raises:
            StorageError: If the database cannot be read
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT value FROM service_state WHERE key = ?", (f"{self.prefix}{key}",)
                )
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read state {key!r}: {e}")
        return row["value"] if row else default

    # -------------------------------------------------------------------------
    # Scan checkpoint
    # -------------------------------------------------------------------------

    def load_checkpoint(self) -> Optional[int]:
        """Last fully processed block, or None if never saved."""
        value = self.get_state("last_processed_block")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring corrupt checkpoint value {value!r}")
            return None

    def save_checkpoint(self, block_number: int):
        self.set_state("last_processed_block", str(block_number))
