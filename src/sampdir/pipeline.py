"""
Refresh pipeline: fetch masterlists, query every server, persist, reload and
publish.

Brief:
  One cycle runs IDLE -> FETCHING -> QUERYING -> PERSISTING -> RELOADING ->
  PUBLISHING -> IDLE. A cycle that cannot fetch any masterlist, or whose
  store fails, ends in FAILED (then IDLE) and leaves the published snapshot
  untouched. A non-blocking lock admits at most one cycle at a time; a
  trigger that finds it held is a no-op.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .errors import LineMalformed, SourceUnavailable, StoreUnavailable
from .masterlist import MasterlistFetcher
from .models import (
    FailureReason,
    QueryFailure,
    QueryOutcome,
    RawEntry,
    ServerRecord,
)
from .publisher import DirectoryPublisher
from .query import ServerQueryClient, describe
from .stats import CycleReport, format_report_json
from .store.base import DirectoryStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RefreshState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    QUERYING = "querying"
    PERSISTING = "persisting"
    RELOADING = "reloading"
    PUBLISHING = "publishing"
    FAILED = "failed"


class _CycleAborted(Exception):
    """Raised inside a cycle when no masterlist could be fetched."""


class RefreshPipeline:
    """
    Orchestrates refresh cycles over a set of masterlist sources.

    Inputs (constructor):
        sources: masterlist URLs, fetched in order
        fetcher: MasterlistFetcher
        query_client: ServerQueryClient
        store: DirectoryStore written and reloaded by each cycle
        publisher: DirectoryPublisher receiving each new snapshot
        workers: number of hosts queried concurrently (1 = sequential)

    Outputs:
        RefreshPipeline instance

    Example:
        >>> pipeline = RefreshPipeline(urls, MasterlistFetcher(), ServerQueryClient(),
        ...                            store, DirectoryPublisher())  # doctest: +SKIP
        >>> pipeline.trigger_refresh()  # doctest: +SKIP
        True
    """

    def __init__(
        self,
        sources: Sequence[str],
        fetcher: MasterlistFetcher,
        query_client: ServerQueryClient,
        store: DirectoryStore,
        publisher: DirectoryPublisher,
        workers: int = 1,
    ) -> None:
        self.sources: List[str] = list(sources)
        self._fetcher = fetcher
        self._query_client = query_client
        self._store = store
        self._publisher = publisher
        self.workers = max(1, int(workers))

        self._guard = threading.Lock()
        self._state = RefreshState.IDLE
        self._last_report: Optional[CycleReport] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    def _set_state(self, state: RefreshState) -> None:
        logger.debug("Refresh state %s -> %s", self._state.value, state.value)
        self._state = state

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def run_cycle(self) -> Optional[CycleReport]:
        """Brief: Run one cycle in the calling thread.

        Inputs:
          - None.

        Outputs:
          - CycleReport, or None when another cycle already holds the guard.
        """

        if not self._guard.acquire(blocking=False):
            logger.info("Refresh already in progress; ignoring trigger")
            return None
        try:
            return self._run_locked()
        finally:
            self._guard.release()

    def run_exclusive(self, fn: Callable[[], T]) -> Tuple[bool, Optional[T]]:
        """Brief: Call fn while holding the refresh guard, unless a cycle runs.

        Inputs:
          - fn: zero-argument callable that reads or publishes store contents.

        Outputs:
          - (True, fn()) when the guard was free, (False, None) when a cycle
            held it and fn was skipped.
        """

        if not self._guard.acquire(blocking=False):
            return False, None
        try:
            return True, fn()
        finally:
            self._guard.release()

    def trigger_refresh(self) -> bool:
        """Brief: Start a cycle on a background thread (fire-and-forget).

        Inputs:
          - None.

        Outputs:
          - bool: True when a cycle was started, False when one is already
            running (the trigger is dropped, not queued).
        """

        if not self._guard.acquire(blocking=False):
            logger.info("Refresh already in progress; ignoring trigger")
            return False

        def _worker() -> None:
            try:
                self._run_locked()
            except Exception as exc:  # pragma: no cover
                logger.error("Refresh cycle crashed: %s", exc, exc_info=True)
            finally:
                self._guard.release()

        t = threading.Thread(target=_worker, name="sampdir-refresh", daemon=True)
        try:
            t.start()
        except RuntimeError:  # pragma: no cover - interpreter shutting down
            self._guard.release()
            raise
        self._thread = t
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the last triggered cycle; True when no cycle thread is alive."""

        t = self._thread
        if t is None:
            return True
        t.join(timeout)
        return not t.is_alive()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def _run_locked(self) -> CycleReport:
        report = CycleReport(started_at=time.time())
        logger.info("Refresh cycle started for %d masterlists", len(self.sources))
        try:
            entries = self._fetch_all(report)
            records = self._query_all(entries, report)
            self._persist(records, report)
            reloaded = self._reload()

            self._set_state(RefreshState.PUBLISHING)
            snapshot = self._publisher.publish_records(reloaded)
            report.published_records = len(snapshot)
            report.generation = snapshot.generation
            report.outcome = "published"
        except (_CycleAborted, StoreUnavailable) as exc:
            self._set_state(RefreshState.FAILED)
            report.outcome = "failed"
            report.error = str(exc)
            logger.error("Refresh cycle aborted, keeping previous snapshot: %s", exc)
        finally:
            if report.outcome == "running":
                report.outcome = "failed"
            report.finished_at = time.time()
            self._last_report = report
            self._set_state(RefreshState.IDLE)
            logger.info("Refresh cycle finished: %s", format_report_json(report))
        return report

    def _fetch_all(self, report: CycleReport) -> List[RawEntry]:
        """Union of all sources, unique by (address, port), first-seen order."""

        self._set_state(RefreshState.FETCHING)
        report.sources_total = len(self.sources)

        def _on_malformed(_: LineMalformed) -> None:
            report.lines_malformed += 1

        unique: Dict[Tuple[str, int], RawEntry] = {}
        usable = 0
        for url in self.sources:
            try:
                fetched = list(self._fetcher.fetch(url, on_malformed=_on_malformed))
            except SourceUnavailable as exc:
                report.sources_failed.append(url)
                logger.warning("Skipping masterlist: %s", exc)
                continue
            usable += 1
            for entry in fetched:
                report.entries_seen += 1
                if entry.key in unique:
                    report.duplicates += 1
                    continue
                unique[entry.key] = entry
            logger.info("Masterlist %s listed %d servers", url, len(fetched))

        if usable == 0:
            raise _CycleAborted(
                f"none of {len(self.sources)} masterlist sources could be fetched"
            )
        return list(unique.values())

    def _safe_query(self, entry: RawEntry) -> QueryOutcome:
        try:
            return self._query_client.query(entry.address, entry.port)
        except Exception as exc:  # pragma: no cover - query() never raises
            return QueryFailure(FailureReason.MALFORMED, "client", str(exc))

    def _outcomes(
        self, entries: List[RawEntry]
    ) -> Iterable[Tuple[RawEntry, QueryOutcome]]:
        if self.workers == 1 or len(entries) <= 1:
            for entry in entries:
                yield entry, self._safe_query(entry)
            return
        with ThreadPoolExecutor(
            max_workers=min(self.workers, len(entries)),
            thread_name_prefix="sampdir-query",
        ) as executor:
            # map() yields in submission order, keeping record order stable.
            yield from zip(entries, executor.map(self._safe_query, entries))

    def _query_all(
        self, entries: List[RawEntry], report: CycleReport
    ) -> List[ServerRecord]:
        self._set_state(RefreshState.QUERYING)
        records: List[ServerRecord] = []
        for entry, outcome in self._outcomes(entries):
            report.queried += 1
            if isinstance(outcome, QueryFailure):
                report.record_failure(outcome.reason)
                logger.debug("No record for %s: %s", entry, describe(outcome))
                continue
            try:
                record = outcome.to_record(entry.address, entry.port)
            except ValueError as exc:
                report.record_failure(FailureReason.MALFORMED)
                logger.debug("No record for %s: %s", entry, exc)
                continue
            report.succeeded += 1
            records.append(record)
        return records

    def _persist(self, records: List[ServerRecord], report: CycleReport) -> None:
        """Replace the store's contents with this cycle's records."""

        self._set_state(RefreshState.PERSISTING)
        self._store.clear_all()
        for record in records:
            self._store.upsert_record(record)
            report.persisted += 1

    def _reload(self) -> List[ServerRecord]:
        self._set_state(RefreshState.RELOADING)
        return self._store.load_all()
