from __future__ import annotations

import threading
from typing import Dict, List, Tuple

from ..models import ServerRecord
from .base import DirectoryStore, store_aliases


@store_aliases("memory", "in_memory")
class InMemoryDirectoryStore(DirectoryStore):
    """Process-local store; contents are lost on exit.

    Brief:
      Useful for one-shot runs and tests. Upserting an existing key replaces
      the record in place so load_all() keeps first-seen order.
    """

    def __init__(self, **_: object) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[Tuple[str, int], ServerRecord] = {}

    def upsert_record(self, record: ServerRecord) -> None:
        with self._lock:
            self._rows[record.key] = record

    def clear_all(self) -> None:
        with self._lock:
            self._rows.clear()

    def load_all(self) -> List[ServerRecord]:
        with self._lock:
            return list(self._rows.values())
