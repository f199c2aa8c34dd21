from __future__ import annotations

import logging
import threading
import time

import pytest

from bulkload.core.config import LoadConfig
from bulkload.core.hooks import ProgressReporter
from bulkload.core.interfaces import EngineUnavailableError, WriteError
from bulkload.core.loader import MALFORMED_RECORD_CODE, FailureBudget, load_records
from bulkload.core.mapping import MappingTables
from bulkload.core.records import build_raw_record, malformed_record
from bulkload.core.results import BulkDataStatus
from bulkload.core.stats import LoadTracker


class _FakeEngine:
    """Records writes; rejects records flagged INVALID."""

    def __init__(self, *, delay: float = 0.0, unavailable_after: int | None = None) -> None:
        self.delay = delay
        self.unavailable_after = unavailable_after
        self.writes: list[tuple[str, str, str | None, dict]] = []
        self.threads: set[str] = set()
        self._lock = threading.Lock()

    def write(self, data_source, entity_type, record_id, fields):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.threads.add(threading.current_thread().name)
            if self.unavailable_after is not None and len(self.writes) >= self.unavailable_after:
                raise EngineUnavailableError("connection lost")
            if fields.get("INVALID"):
                raise WriteError(f"Bad record {record_id}", code="BAD_RECORD")
            self.writes.append((data_source, entity_type, record_id, dict(fields)))


def _records(valid: int, invalid: int, *, source=lambda i: "TEST"):
    """Yield ``valid`` good records with ``invalid`` bad ones spread among them."""
    total = valid + invalid
    step = total // invalid if invalid else 0
    bad_positions = {step * k + step // 2 for k in range(invalid)} if invalid else set()
    for i in range(total):
        fields = {"RECORD_ID": str(i), "DATA_SOURCE": source(i), "ENTITY_TYPE": "GENERIC"}
        if i in bad_positions:
            fields["INVALID"] = "yes"
        yield build_raw_record(fields, line_number=i + 1)


def _load(records, engine, tables=None, **config):
    tracker = LoadTracker()
    status = load_records(
        records,
        engine,
        tables or MappingTables(),
        config=LoadConfig(**config),
        tracker=tracker,
        load_id="LOAD-1",
    )
    result = tracker.snapshot()
    assert result.status is status
    return result


# ---------------------------------------------------------------------------
# Failure budget
# ---------------------------------------------------------------------------

def test_failure_budget_unlimited():
    budget = FailureBudget(None)
    for _ in range(100):
        budget.record_failure()
    assert budget.exhausted() is False
    assert budget.should_stop() is False


def test_failure_budget_stops_at_limit_and_abort_warns_once(caplog):
    budget = FailureBudget(2)
    budget.record_failure()
    assert not budget.should_stop()
    budget.record_failure()
    assert budget.should_stop()
    assert not budget.aborted

    with caplog.at_level(logging.WARNING, logger="bulkload.core.loader"):
        budget.abort()
        budget.abort()

    assert budget.aborted
    assert sum("Aborting load" in r.getMessage() for r in caplog.records) == 1


def test_halted_budget_is_not_reported_as_aborted():
    budget = FailureBudget(1)
    budget.halt()
    budget.abort()
    assert budget.should_stop()
    assert budget.aborted is False


# ---------------------------------------------------------------------------
# Single worker
# ---------------------------------------------------------------------------

def test_single_worker_without_budget_completes():
    engine = _FakeEngine()
    result = _load(_records(1000, 12), engine, concurrency=1)

    assert result.status is BulkDataStatus.COMPLETED
    assert result.failed_record_count == 12
    assert result.loaded_record_count == 1000
    assert result.incomplete_record_count == 0
    assert result.top_errors[0].code == "BAD_RECORD"


def test_single_worker_budget_cuts_off_exactly():
    engine = _FakeEngine()
    result = _load(_records(1000, 12), engine, concurrency=1, max_failures=5)

    assert result.status is BulkDataStatus.ABORTED
    assert result.failed_record_count == 5


def test_negative_budget_is_unlimited():
    result = _load(_records(100, 12), _FakeEngine(), concurrency=1, max_failures=-1)
    assert result.status is BulkDataStatus.COMPLETED
    assert result.failed_record_count == 12


def test_failures_within_budget_complete():
    result = _load(_records(200, 4), _FakeEngine(), concurrency=1, max_failures=5)
    assert result.status is BulkDataStatus.COMPLETED
    assert result.failed_record_count == 4
    assert result.loaded_record_count == 200


def test_budget_reached_on_last_record_completes():
    records = list(_records(10, 0))
    records.append(build_raw_record({"RECORD_ID": "x", "DATA_SOURCE": "T", "ENTITY_TYPE": "G", "INVALID": "1"}))
    result = _load(records, _FakeEngine(), concurrency=1, max_failures=1)

    assert result.status is BulkDataStatus.COMPLETED
    assert result.failed_record_count == 1


def test_abort_leaves_unattempted_records_uncounted():
    result = _load(_records(1000, 12), _FakeEngine(), concurrency=1, max_failures=5)
    assert result.record_count < 1012
    assert result.record_count == sum(s.record_count for s in result.results_by_source.values())


def test_incomplete_records_are_not_written_or_failed():
    records = [
        build_raw_record({"RECORD_ID": "1", "DATA_SOURCE": "CRM", "ENTITY_TYPE": "PERSON"}),
        build_raw_record({"RECORD_ID": "2", "DATA_SOURCE": "CRM"}),
        build_raw_record({"RECORD_ID": "3"}),
    ]
    engine = _FakeEngine()
    result = _load(records, engine, concurrency=1, max_failures=1)

    assert [w[2] for w in engine.writes] == ["1"]
    assert result.status is BulkDataStatus.COMPLETED
    assert result.incomplete_record_count == 2
    assert result.failed_record_count == 0
    assert result.missing_entity_type_count == 2
    assert result.missing_data_source_count == 1
    assert result.missing_both_count == 1


def test_mapping_and_source_id_reach_the_engine():
    records = [build_raw_record({"RECORD_ID": "1", "DATA_SOURCE": "crm", "NAME": "Ann"})]
    tables = MappingTables.build(data_source_overrides={"CRM": "CUSTOMERS"}, default_entity_type="PERSON")
    engine = _FakeEngine()

    result = _load(records, engine, tables, concurrency=1)

    ((source, etype, record_id, fields),) = engine.writes
    assert (source, etype, record_id) == ("CUSTOMERS", "PERSON", "1")
    assert fields["SOURCE_ID"] == "LOAD-1"
    assert list(result.results_by_source) == ["CUSTOMERS"]
    assert list(result.results_by_type) == ["PERSON"]


def test_source_id_stamping_can_be_disabled():
    records = [build_raw_record({"DATA_SOURCE": "A", "ENTITY_TYPE": "B"})]
    engine = _FakeEngine()
    _load(records, engine, concurrency=1, stamp_source_id=False)
    assert "SOURCE_ID" not in engine.writes[0][3]


def test_malformed_records_count_as_failures():
    records = [
        build_raw_record({"DATA_SOURCE": "A", "ENTITY_TYPE": "B"}),
        malformed_record("Invalid JSON: Expecting value", line_number=2),
        malformed_record("Invalid JSON: Expecting value", line_number=3),
    ]
    result = _load(records, _FakeEngine(), concurrency=1)

    assert result.failed_record_count == 2
    assert result.loaded_record_count == 1
    assert result.top_errors[0].code == MALFORMED_RECORD_CODE
    assert result.top_errors[0].count == 2
    assert list(result.results_by_source) == ["A", None]


def test_unexpected_engine_exception_is_a_record_failure():
    class Flaky:
        def write(self, data_source, entity_type, record_id, fields):
            raise KeyError("missing feature")

    result = _load([build_raw_record({"DATA_SOURCE": "A", "ENTITY_TYPE": "B"})], Flaky(), concurrency=1)
    assert result.failed_record_count == 1
    assert result.top_errors[0].code == "KeyError"


def test_engine_unavailable_is_fatal_single_worker():
    engine = _FakeEngine(unavailable_after=3)
    with pytest.raises(EngineUnavailableError):
        _load(_records(50, 0), engine, concurrency=1)
    assert len(engine.writes) == 3


def test_progress_ticks_after_each_record():
    events = []

    class Listener:
        def on_progress(self, snapshot, event_id):
            events.append((event_id, snapshot.record_count))

    tracker = LoadTracker()
    reporter = ProgressReporter(Listener(), tracker.snapshot, period_ms=0)
    load_records(_records(5, 0), _FakeEngine(), MappingTables(), config=LoadConfig(concurrency=1),
                 tracker=tracker, progress=reporter)

    assert events == [(i, i + 1) for i in range(5)]


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------

def test_threshold_keeps_small_inputs_on_calling_thread():
    engine = _FakeEngine()
    result = _load(_records(1000, 0), engine, concurrency=4)
    assert result.loaded_record_count == 1000
    assert engine.threads == {threading.current_thread().name}


def test_inputs_above_threshold_use_workers():
    engine = _FakeEngine()
    result = _load(_records(1001, 0), engine, concurrency=4)
    assert result.loaded_record_count == 1001
    assert all(name.startswith("bulkload-worker") for name in engine.threads)


def test_parallel_counts_are_exact_and_key_order_follows_input():
    sources = [f"S{i}" for i in range(7)]
    engine = _FakeEngine()
    result = _load(
        _records(2000, 30, source=lambda i: sources[i % 7]),
        engine,
        concurrency=8,
    )

    assert result.status is BulkDataStatus.COMPLETED
    assert result.loaded_record_count == 2000
    assert result.failed_record_count == 30
    assert list(result.results_by_source) == sources
    assert len(engine.writes) == 2000


@pytest.mark.parametrize("concurrency", [2, 4, 8])
def test_parallel_budget_overshoot_is_bounded(concurrency):
    max_failures = 5
    engine = _FakeEngine(delay=0.0005)
    result = _load(
        _records(400, 40),
        engine,
        concurrency=concurrency,
        max_failures=max_failures,
        single_worker_threshold=10,
    )

    assert result.status is BulkDataStatus.ABORTED
    assert max_failures <= result.failed_record_count <= max_failures + concurrency - 1
    assert result.record_count < 440


def test_overshoot_on_final_records_is_aborted():
    # All four writes are in flight together, so every record starts
    # before the first failure is counted and none is left unprocessed.
    barrier = threading.Barrier(4, timeout=10)

    class AllFail:
        def write(self, data_source, entity_type, record_id, fields):
            barrier.wait()
            raise WriteError(f"Bad record {record_id}", code="BAD_RECORD")

    records = [
        build_raw_record({"RECORD_ID": str(i), "DATA_SOURCE": "T", "ENTITY_TYPE": "G"})
        for i in range(4)
    ]
    result = _load(records, AllFail(), concurrency=4, max_failures=2, single_worker_threshold=0)

    assert result.failed_record_count == 4
    assert result.record_count == 4
    assert result.status is BulkDataStatus.ABORTED


def test_engine_unavailable_is_fatal_with_workers():
    engine = _FakeEngine(unavailable_after=20)
    with pytest.raises(EngineUnavailableError):
        _load(_records(500, 0), engine, concurrency=4, single_worker_threshold=10)
    assert len(engine.writes) == 20
