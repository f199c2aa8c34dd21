# loader.py
# SPDX-License-Identifier: MIT
"""Concurrent record loader with a shared failure budget.

The loader resolves each record's effective codes on the producer
thread, in input order, and hands complete records to a bounded pool of
worker threads that call the engine. Failures are counted against a
shared budget; once it is used up, every worker stops before starting
another record. A worker already writing a record finishes it first,
so with ``concurrency`` workers the final failure count can exceed the
budget by up to ``concurrency - 1``. A load whose failures exceed the
budget always ends ABORTED, even when no record was left unprocessed.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from itertools import chain, islice

from .concurrency import Executor, resolve_load_executor_config
from .config import LoadConfig
from .hooks import ProgressReporter
from .interfaces import EngineUnavailableError, RecordEngine, WriteError
from .log import get_logger
from .mapping import MappingTables, ResolvedRecord, augment_fields, resolve_mapping
from .records import RawRecord
from .results import BulkDataStatus
from .stats import LoadTracker

__all__ = ["FailureBudget", "RecordLoader", "load_records", "MALFORMED_RECORD_CODE"]

log = get_logger(__name__)

MALFORMED_RECORD_CODE = "MALFORMED_RECORD"


class FailureBudget:
    """Failure counter and stop flags shared by all workers of one load.

    Attributes:
        max_failures (int | None): Budget, or None for unlimited.
    """

    def __init__(self, max_failures: int | None) -> None:
        self.max_failures = max_failures
        self._lock = threading.Lock()
        self._failures = 0
        self._aborted = threading.Event()
        self._halted = threading.Event()

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    @property
    def halted(self) -> bool:
        return self._halted.is_set()

    def record_failure(self) -> int:
        with self._lock:
            self._failures += 1
            return self._failures

    def exhausted(self) -> bool:
        if self.max_failures is None:
            return False
        with self._lock:
            return self._failures >= self.max_failures

    def should_stop(self) -> bool:
        """Return True when no further record may be started."""
        return self._halted.is_set() or self._aborted.is_set() or self.exhausted()

    def abort(self) -> None:
        """Mark the load ABORTED.

        Called when a record is left unprocessed because the budget is
        used up, or when in-flight records push failures past the budget.
        """
        if self._halted.is_set():
            return
        with self._lock:
            if self._aborted.is_set():
                return
            self._aborted.set()
            failures = self._failures
        log.warning(
            "Aborting load: %d failures reached max_failures=%s",
            failures,
            self.max_failures,
        )

    def halt(self) -> None:
        """Stop all workers after a fatal error."""
        self._halted.set()


class RecordLoader:
    """Loads raw records into a :class:`RecordEngine`.

    Inputs with at most ``config.single_worker_threshold`` records, or a
    concurrency of 1, are processed on the calling thread. Larger inputs
    are dispatched to ``config.concurrency`` worker threads.

    Attributes:
        engine (RecordEngine): Destination engine.
        tables (MappingTables): Mapping tables for effective codes.
        config (LoadConfig): Loader settings.
        tracker (LoadTracker): Shared outcome counters.
        load_id (str | None): Value stamped as SOURCE_ID.
        progress (ProgressReporter | None): Optional progress reporter.
        budget (FailureBudget): Shared failure budget for this load.
    """

    def __init__(
        self,
        engine: RecordEngine,
        tables: MappingTables,
        *,
        config: LoadConfig,
        tracker: LoadTracker,
        load_id: str | None = None,
        progress: ProgressReporter | None = None,
    ) -> None:
        self.engine = engine
        self.tables = tables
        self.config = config
        self.tracker = tracker
        self.load_id = load_id
        self.progress = progress
        self.budget = FailureBudget(config.failure_budget())
        self._stamp = load_id if config.stamp_source_id else None

    def run(self, records: Iterable[RawRecord]) -> BulkDataStatus:
        """Load ``records`` and return COMPLETED or ABORTED.

        Raises:
            EngineUnavailableError: The engine reported it cannot accept
                writes; the remaining records are not attempted.
        """
        iterator = iter(records)
        threshold = self.config.single_worker_threshold
        head = list(islice(iterator, threshold + 1))
        stream = chain(head, iterator)
        if len(head) > threshold and self.config.concurrency > 1:
            log.debug(
                "Loading with %d workers (more than %d records)",
                self.config.concurrency,
                threshold,
            )
            self._process_parallel(stream)
        else:
            self._process_serial(stream)

        status = BulkDataStatus.ABORTED if self.budget.aborted else BulkDataStatus.COMPLETED
        self.tracker.finish(status)
        return status

    def _resolved(self, records: Iterable[RawRecord]) -> Iterator[ResolvedRecord]:
        """Resolve and register records in input order until the budget stops us."""
        try:
            for raw in records:
                if self.budget.should_stop():
                    self.budget.abort()
                    return
                resolved = resolve_mapping(raw, self.tables)
                self.tracker.register(resolved)
                yield resolved
        except Exception:
            # Reading the input failed; queued records must not run.
            self.budget.halt()
            raise

    def _process_serial(self, records: Iterable[RawRecord]) -> None:
        for resolved in self._resolved(records):
            self._process_record(resolved)

    def _process_parallel(self, records: Iterable[RawRecord]) -> None:
        executor = Executor(resolve_load_executor_config(self.config))

        def _work(resolved: ResolvedRecord) -> None:
            if self.budget.should_stop():
                self.budget.abort()
                return
            self._process_record(resolved)

        def _on_worker_error(exc: BaseException) -> None:
            self.budget.halt()

        executor.map_unordered(
            self._resolved(records),
            _work,
            lambda _result: None,
            fail_fast=True,
            on_error=_on_worker_error,
        )

    def _process_record(self, resolved: ResolvedRecord) -> None:
        """Handle one record: count it as incomplete, failed, or loaded."""
        raw = resolved.raw
        try:
            if raw.error is not None:
                self._fail(resolved, MALFORMED_RECORD_CODE, raw.error.reason)
                return
            if not resolved.is_complete:
                self.tracker.track_incomplete(resolved)
                return
            fields = augment_fields(resolved, load_id=self._stamp)
            try:
                self.engine.write(resolved.data_source, resolved.entity_type, raw.record_id, fields)
            except EngineUnavailableError:
                self.budget.halt()
                raise
            except WriteError as exc:
                self._fail(resolved, exc.code, str(exc))
            except Exception as exc:  # noqa: BLE001
                self._fail(resolved, type(exc).__name__, str(exc))
            else:
                self.tracker.track_loaded(resolved)
        finally:
            if self.progress is not None and not self.budget.halted:
                self.progress.tick()

    def _fail(self, resolved: ResolvedRecord, code: str | None, message: str) -> None:
        log.debug(
            "Record %s (line %s) failed: %s",
            resolved.raw.record_id,
            resolved.raw.line_number,
            message,
        )
        failures = self.budget.record_failure()
        self.tracker.track_failed(resolved, code=code, message=message)
        if self.budget.max_failures is not None and failures > self.budget.max_failures:
            # Records already in flight pushed failures past the budget.
            self.budget.abort()


def load_records(
    records: Iterable[RawRecord],
    engine: RecordEngine,
    tables: MappingTables,
    *,
    config: LoadConfig | None = None,
    tracker: LoadTracker | None = None,
    load_id: str | None = None,
    progress: ProgressReporter | None = None,
) -> BulkDataStatus:
    """Load raw records into ``engine``; see :class:`RecordLoader`."""
    cfg = config or LoadConfig()
    loader = RecordLoader(
        engine,
        tables,
        config=cfg,
        tracker=tracker or LoadTracker(top_error_limit=cfg.top_error_limit),
        load_id=load_id,
        progress=progress,
    )
    return loader.run(records)
