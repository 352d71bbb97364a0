"""
Per-cycle counters for the refresh pipeline.

A CycleReport is filled in by the one thread running a cycle and handed out
only after the cycle ends, so it needs no locking of its own.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .models import FailureReason


@dataclass
class CycleReport:
    """
    Outcome and counters of one refresh cycle.

    Inputs (constructor):
        started_at: epoch seconds when the cycle began; other fields are
        filled in as the cycle progresses.

    Outputs:
        Report instance; ``outcome`` is 'published' or 'failed' once finished.
    """

    started_at: float
    finished_at: Optional[float] = None
    outcome: str = "running"
    error: Optional[str] = None
    sources_total: int = 0
    sources_failed: List[str] = field(default_factory=list)
    lines_malformed: int = 0
    entries_seen: int = 0
    duplicates: int = 0
    queried: int = 0
    succeeded: int = 0
    failures: Dict[str, int] = field(
        default_factory=lambda: {r.value: 0 for r in FailureReason}
    )
    persisted: int = 0
    published_records: int = 0
    generation: Optional[int] = None

    @property
    def failed(self) -> int:
        return sum(self.failures.values())

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return max(0.0, self.finished_at - self.started_at)

    def record_failure(self, reason: FailureReason) -> None:
        self.failures[reason.value] = self.failures.get(reason.value, 0) + 1


def format_report_json(report: CycleReport) -> str:
    """
    Format a CycleReport as a single compact JSON line for logging.

    Inputs:
        report: CycleReport to format

    Outputs:
        JSON string

    Example:
        >>> r = CycleReport(started_at=0.0, finished_at=2.5, outcome="published")
        >>> '"outcome":"published"' in format_report_json(r)
        True
    """
    output: Dict[str, Any] = asdict(report)
    output["duration"] = report.duration
    output["failed"] = report.failed
    return json.dumps(output, separators=(",", ":"), sort_keys=True)
