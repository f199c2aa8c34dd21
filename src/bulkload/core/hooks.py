# hooks.py
# SPDX-License-Identifier: MIT
"""Built-in progress hooks used by the analyze and load pipelines."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from .interfaces import ProgressListener
from .log import get_logger
from .results import BulkDataAnalysis, BulkLoadResult

__all__ = ["ProgressReporter", "LoggingProgressListener"]

log = get_logger(__name__)

Snapshot = BulkDataAnalysis | BulkLoadResult


class ProgressReporter:
    """Emit snapshots to a listener once per elapsed period.

    :meth:`tick` is cheap and safe to call from any worker after each
    record; at most one thread wins each period and builds the snapshot.

    Attributes:
        listener (ProgressListener): Destination for snapshots.
        period_s (float): Minimum seconds between events.
        next_event_id (int): Id the next event will carry.
    """

    def __init__(
        self,
        listener: ProgressListener,
        snapshot: Callable[[], Snapshot],
        *,
        period_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.listener = listener
        self.period_s = max(0, int(period_ms)) / 1000.0
        self.next_event_id = 0
        self._snapshot = snapshot
        self._clock = clock
        self._lock = threading.Lock()
        self._last = clock()

    def tick(self) -> bool:
        """Emit a snapshot if the period has elapsed; return whether one was sent."""
        now = self._clock()
        with self._lock:
            if now - self._last < self.period_s:
                return False
            self._last = now
            event_id = self.next_event_id
            self.next_event_id += 1
        snap = self._snapshot()
        try:
            self.listener.on_progress(snap, event_id)
        except Exception as exc:  # noqa: BLE001
            log.warning("Progress listener %s failed: %s", type(self.listener).__name__, exc)
        return True


class LoggingProgressListener:
    """Log each progress snapshot at INFO on the package logger."""

    def __init__(self, logger=None) -> None:
        self.log = logger or log

    def on_progress(self, snapshot: Snapshot, event_id: int) -> None:
        if isinstance(snapshot, BulkLoadResult):
            self.log.info(
                "Load progress #%d: attempted=%d loaded=%d failed=%d incomplete=%d",
                event_id,
                snapshot.record_count,
                snapshot.loaded_record_count,
                snapshot.failed_record_count,
                snapshot.incomplete_record_count,
            )
        else:
            self.log.info(
                "Analysis progress #%d: records=%d with_data_source=%d with_entity_type=%d",
                event_id,
                snapshot.record_count,
                snapshot.records_with_data_source,
                snapshot.records_with_entity_type,
            )
