"""SQLite-backed implementation of the DirectoryStore interface.

Inputs:
  - db_path: SQLite database file; parent directories are created. ':memory:'
    is accepted for tests and throwaway runs.

Outputs:
  - Store holding one ``servers`` row per (address, port).
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from typing import List

from ..errors import StoreUnavailable
from ..models import ServerRecord
from .base import DirectoryStore, store_aliases

logger = logging.getLogger(__name__)

_COLUMNS = (
    "address",
    "port",
    "hostname",
    "players",
    "max_players",
    "mode",
    "language",
    "version",
    "lagcomp",
    "website",
    "map",
    "worldtime",
    "weather",
)


@store_aliases("sqlite", "sqlite3")
class SqliteDirectoryStore(DirectoryStore):
    """SQLite persistent directory store.

    Writes are serialized by an RLock so the connection may be shared across
    threads; rows keep their first insertion position across upserts, which
    makes load_all() return first-seen order.
    """

    def __init__(self, db_path: str = "./config/var/directory.db", **_: object) -> None:
        """Open the database and ensure the schema exists.

        Inputs:
            db_path: Path to SQLite database file.

        Outputs:
            None.

        Raises:
            StoreUnavailable: when the file cannot be opened or initialized.
        """

        self.db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = self._init_connection()
        except (OSError, sqlite3.Error) as exc:
            raise StoreUnavailable(f"cannot open {self.db_path}: {exc}") from exc

    def _init_connection(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            dir_path = os.path.dirname(self.db_path)
            if dir_path:
                os.makedirs(dir_path, exist_ok=True)

        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error:  # pragma: no cover - environment specific
            pass

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS servers (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                address     TEXT NOT NULL,
                port        INTEGER NOT NULL,
                hostname    TEXT,
                players     INTEGER NOT NULL DEFAULT 0,
                max_players INTEGER NOT NULL DEFAULT 0,
                mode        TEXT,
                language    TEXT,
                version     TEXT,
                lagcomp     TEXT,
                website     TEXT,
                map         TEXT,
                worldtime   TEXT,
                weather     INTEGER NOT NULL DEFAULT 0,
                UNIQUE (address, port)
            )
            """
        )
        conn.commit()
        return conn

    def upsert_record(self, record: ServerRecord) -> None:
        cols = ", ".join(_COLUMNS)
        marks = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS[2:])
        sql = (
            f"INSERT INTO servers ({cols}) VALUES ({marks}) "
            f"ON CONFLICT(address, port) DO UPDATE SET {updates}"
        )
        params = tuple(getattr(record, c) for c in _COLUMNS)
        try:
            with self._lock, self._conn:
                self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"upsert of {record.address}:{record.port} failed: {exc}") from exc

    def clear_all(self) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM servers")
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"clear failed: {exc}") from exc

    def load_all(self) -> List[ServerRecord]:
        sql = f"SELECT {', '.join(_COLUMNS)} FROM servers ORDER BY id"
        try:
            with self._lock:
                rows = self._conn.execute(sql).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"reload failed: {exc}") from exc
        return [ServerRecord(**dict(zip(_COLUMNS, row))) for row in rows]

    def health_check(self) -> bool:
        """Return True when the underlying SQLite store is usable."""

        try:
            with self._lock:
                self._conn.execute("SELECT 1").fetchone()
            return True
        except Exception:
            return False

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error as exc:  # pragma: no cover
                logger.warning("SqliteDirectoryStore close error: %s", exc)
