"""
Directory service: wires store, fetcher, query client, publisher, pipeline and
scheduler together from a DirectoryConfig.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config.config_parser import DirectoryConfig
from .errors import StoreUnavailable
from .masterlist import MasterlistFetcher
from .models import DirectorySnapshot
from .pipeline import RefreshPipeline
from .publisher import DirectoryPublisher
from .query import ServerQueryClient
from .scheduler import DailyRefreshScheduler
from .stats import CycleReport
from .store import load_store
from .store.base import DirectoryStore

logger = logging.getLogger(__name__)


class DirectoryService:
    """
    Long-running owner of the published directory.

    Inputs (constructor):
        pipeline: RefreshPipeline used for every refresh
        store: DirectoryStore the pipeline writes (read at start-up)
        publisher: DirectoryPublisher holding the current snapshot
        schedule_at: 'HH:MM' daily refresh time, or None to disable
        refresh_on_start: trigger a refresh as part of start()

    Outputs:
        DirectoryService instance

    Example:
        >>> service = DirectoryService.from_config(DirectoryConfig())  # doctest: +SKIP
        >>> service.start()  # doctest: +SKIP
        >>> len(service.current())  # doctest: +SKIP
        0
    """

    def __init__(
        self,
        pipeline: RefreshPipeline,
        store: DirectoryStore,
        publisher: DirectoryPublisher,
        schedule_at: Optional[str] = None,
        refresh_on_start: bool = False,
    ) -> None:
        self.pipeline = pipeline
        self.store = store
        self.publisher = publisher
        self.schedule_at = schedule_at
        self.refresh_on_start = refresh_on_start
        self._scheduler: Optional[DailyRefreshScheduler] = None

    @classmethod
    def from_config(cls, cfg: DirectoryConfig) -> "DirectoryService":
        """Brief: Build every component described by cfg.

        Inputs:
          - cfg: DirectoryConfig.

        Outputs:
          - DirectoryService (not yet started).
        """

        store = load_store(cfg.store)
        publisher = DirectoryPublisher()
        pipeline = RefreshPipeline(
            sources=cfg.masterlists,
            fetcher=MasterlistFetcher(
                user_agent=cfg.fetch.user_agent,
                timeout_seconds=cfg.fetch.timeout_seconds,
            ),
            query_client=ServerQueryClient(
                timeout_seconds=cfg.query.timeout_seconds,
                encoding=cfg.query.encoding,
            ),
            store=store,
            publisher=publisher,
            workers=cfg.query.workers,
        )
        return cls(
            pipeline,
            store,
            publisher,
            schedule_at=cfg.schedule.daily_at if cfg.schedule.enabled else None,
            refresh_on_start=cfg.schedule.refresh_on_start,
        )

    def load_persisted(self) -> bool:
        """Brief: Publish the store's current contents as a new snapshot.

        Inputs:
          - None.

        Outputs:
          - bool: True when a snapshot was published, False when a refresh
            cycle was running or the store could not be read (the current
            snapshot is kept either way).

        Notes:
          - Runs under the pipeline's refresh guard so it never reads a store
            that a cycle has cleared but not yet refilled.
        """

        ran, published = self.pipeline.run_exclusive(self._publish_store_contents)
        if not ran:
            logger.info("Refresh in progress; skipping load of persisted directory")
            return False
        return bool(published)

    def _publish_store_contents(self) -> bool:
        try:
            records = self.store.load_all()
        except StoreUnavailable as exc:
            logger.error("Could not load persisted directory: %s", exc)
            return False
        snapshot = self.publisher.publish_records(records)
        logger.info("Loaded %d persisted servers", len(snapshot))
        return True

    def start(self, refresh_now: bool = False) -> None:
        """Brief: Publish persisted contents, then start refreshes.

        Inputs:
          - refresh_now: trigger a refresh even when refresh_on_start is off.

        Outputs:
          - None.
        """

        self.load_persisted()
        if refresh_now or self.refresh_on_start:
            self.trigger_refresh()
        if self.schedule_at and self._scheduler is None:
            self._scheduler = DailyRefreshScheduler(
                self.trigger_refresh, at=self.schedule_at
            )
            self._scheduler.start()
            logger.info("Daily refresh scheduled at %s", self.schedule_at)

    def current(self) -> DirectorySnapshot:
        return self.publisher.current()

    def trigger_refresh(self) -> bool:
        """Start a background refresh; False when one is already running."""

        return self.pipeline.trigger_refresh()

    def run_once(self) -> Optional[CycleReport]:
        """Run one refresh cycle in the calling thread."""

        return self.pipeline.run_cycle()

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the scheduler, wait briefly for a running cycle and close the store.

        Inputs:
            timeout: seconds to wait for each of the scheduler and the cycle

        Outputs:
            None
        """
        if self._scheduler is not None:
            self._scheduler.stop(timeout=timeout)
            self._scheduler = None
        if not self.pipeline.wait(timeout):
            logger.warning("Refresh cycle still running at shutdown")
        self.store.close()
