"""
Single-slot snapshot storage on SQLite.

The host calls save() whenever it wants to persist; the previous snapshot is
replaced in the same transaction, so at most one row ever exists.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional, Union

from persistence import Record, from_json, to_json

logger = logging.getLogger(__name__)


class SnapshotStore:
    def __init__(self, db_path: Union[str, Path] = "collapse_sim.db"):
        self.db_path = str(db_path)
        self.init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def init_db(self) -> None:
        """Create the snapshot table if it does not exist."""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    schema_version INTEGER,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def save(self, record: Record) -> None:
        """Replace whatever is stored with `record`."""
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM snapshots")
                conn.execute(
                    "INSERT INTO snapshots (schema_version, payload) VALUES (?, ?)",
                    (record.get("schema_version"), to_json(record)),
                )
        finally:
            conn.close()
        logger.debug("Snapshot saved to %s", self.db_path)

    def load(self) -> Optional[Record]:
        """
        The stored snapshot as a dict, or None when nothing is saved.

        Raises:
            CorruptSnapshotError: the stored payload is not a JSON object
        """
        conn = self._connect()
        try:
            row = conn.execute("SELECT payload FROM snapshots ORDER BY id DESC LIMIT 1").fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return from_json(row[0])

    def discard(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM snapshots")
        finally:
            conn.close()
        logger.info("Discarded stored snapshot")

    def count(self) -> int:
        conn = self._connect()
        try:
            return conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0]
        finally:
            conn.close()

    def save_raw(self, payload: str, schema_version: Optional[int] = None) -> None:
        """Store an already-encoded payload (used to import legacy exports)."""
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM snapshots")
                conn.execute(
                    "INSERT INTO snapshots (schema_version, payload) VALUES (?, ?)",
                    (schema_version, payload),
                )
        finally:
            conn.close()
