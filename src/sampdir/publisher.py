from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from .models import DirectorySnapshot, ServerRecord

logger = logging.getLogger(__name__)


class DirectoryPublisher:
    """
    Holder of the one current DirectorySnapshot.

    Inputs (constructor):
        initial: Optional snapshot to start from; defaults to an empty
            snapshot with generation 0.

    Outputs:
        DirectoryPublisher instance.

    current() is a plain attribute read and never blocks. publish() and
    publish_records() swap the reference under a lock so concurrent
    publishers cannot move the generation backwards. Snapshots are
    immutable, so a reader holding the previous reference keeps a complete
    view.
    """

    def __init__(self, initial: Optional[DirectorySnapshot] = None) -> None:
        self._lock = threading.Lock()
        self._current: DirectorySnapshot = initial or DirectorySnapshot()

    def current(self) -> DirectorySnapshot:
        return self._current

    def publish_records(self, records: Iterable[ServerRecord]) -> DirectorySnapshot:
        """Brief: Build and publish the next snapshot from records.

        Inputs:
          - records: ServerRecord iterable in store order.

        Outputs:
          - DirectorySnapshot that is now current.

        The generation is assigned under the publish lock, so concurrent
        callers each get their own number and neither is rejected.
        """

        with self._lock:
            snapshot = DirectorySnapshot.build(records, self._current.generation + 1)
            self._current = snapshot
        logger.info(
            "Published directory generation %d with %d servers",
            snapshot.generation,
            len(snapshot),
        )
        return snapshot

    def publish(self, snapshot: DirectorySnapshot) -> None:
        """Brief: Atomically replace the current snapshot.

        Inputs:
          - snapshot: fully built DirectorySnapshot.

        Outputs:
          - None.

        Raises:
          - ValueError: when snapshot.generation is not newer than the current
            one.
        """

        with self._lock:
            if snapshot.generation <= self._current.generation:
                raise ValueError(
                    f"snapshot generation {snapshot.generation} is not newer "
                    f"than current {self._current.generation}"
                )
            self._current = snapshot
        logger.info(
            "Published directory generation %d with %d servers",
            snapshot.generation,
            len(snapshot),
        )
