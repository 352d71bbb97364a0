from __future__ import annotations

import logging
import threading
from datetime import datetime, time as dtime, timedelta
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def parse_daily_at(value: str) -> dtime:
    """
    Brief: Parse a 'HH:MM' wall-clock time.

    Inputs:
      - value (str): 24-hour time such as '23:59'.

    Outputs:
      - datetime.time

    Raises:
      - ValueError: when the value is not a valid HH:MM time.

    Example usage:
        >>> parse_daily_at('23:59')
        datetime.time(23, 59)
    """

    try:
        hh, mm = str(value).strip().split(":")
        return dtime(hour=int(hh), minute=int(mm))
    except (TypeError, ValueError):
        raise ValueError(f"daily time {value!r} must be HH:MM (00:00-23:59)")


def seconds_until_next(at: dtime, now: datetime) -> float:
    """
    Brief: Seconds from now until the next occurrence of the time at.

    Inputs:
      - at: target local wall-clock time.
      - now: current local datetime.

    Outputs:
      - float in (0, 86400]; an exact match schedules the following day.

    Example usage:
        >>> seconds_until_next(dtime(0, 0), datetime(2024, 1, 1, 23, 59))
        60.0
    """

    target = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class DailyRefreshScheduler(threading.Thread):
    """
    Background daemon thread that fires a refresh trigger once a day.

    Inputs (constructor):
        trigger: Callable started at each occurrence (normally
            RefreshPipeline.trigger_refresh; overlap is handled by its guard)
        at: 'HH:MM' local time (default '23:59')
        clock: Callable returning the current local datetime

    Outputs:
        DailyRefreshScheduler thread instance (call start() to begin)

    Example:
        >>> scheduler = DailyRefreshScheduler(pipeline.trigger_refresh, at="04:30")  # doctest: +SKIP
        >>> scheduler.start()  # doctest: +SKIP
    """

    def __init__(
        self,
        trigger: Callable[[], object],
        at: str = "23:59",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(daemon=True, name="DailyRefreshScheduler")
        self.trigger = trigger
        self.at = parse_daily_at(at)
        self._clock = clock or datetime.now
        self._stop_event = threading.Event()

    def next_delay(self) -> float:
        return seconds_until_next(self.at, self._clock())

    def run(self) -> None:
        """
        Scheduler main loop (called by start()).

        Waits until the next occurrence, calls the trigger and repeats until
        stop() is called. Trigger errors are logged and do not end the loop.
        """
        while True:
            delay = self.next_delay()
            logger.debug("Next scheduled refresh in %.0f seconds", delay)
            if self._stop_event.wait(delay):
                return
            try:
                started = self.trigger()
                logger.info("Scheduled refresh fired (started=%s)", started)
            except Exception as e:  # pragma: no cover
                logger.error("Scheduled refresh error: %s", e, exc_info=True)

    def stop(self, timeout: float = 5.0) -> None:
        """
        Signal the scheduler to stop and wait for the thread to exit.

        Inputs:
            timeout: Maximum seconds to wait for thread join (default 5.0)

        Outputs:
            None
        """
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)
