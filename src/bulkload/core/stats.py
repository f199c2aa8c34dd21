# stats.py
# SPDX-License-Identifier: MIT
"""Thread-safe statistics aggregation for ANALYZE and LOAD runs.

Trackers keep per-code counters in insertion-ordered dicts. Every
"check whether the key exists, insert it if not" happens under the
tracker's lock, so key order is the order in which codes were first
registered even when loader workers update counters concurrently.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .mapping import ResolvedRecord
from .records import RawRecord
from .results import (
    BulkDataAnalysis,
    BulkDataStatus,
    BulkLoadError,
    BulkLoadResult,
    SourceLoadStats,
    SourceStats,
    TypeLoadStats,
    TypeStats,
)

__all__ = ["ErrorTracker", "AnalysisTracker", "LoadTracker"]

DEFAULT_TOP_ERRORS = 10


class ErrorTracker:
    """Count distinct (code, message) errors and report the most frequent.

    Distinct errors beyond ``max_distinct`` are counted in ``total`` but
    not retained, which keeps memory bounded for inputs where every
    failure message differs.

    Not thread-safe on its own; trackers call it under their lock.
    """

    def __init__(self, *, limit: int = DEFAULT_TOP_ERRORS, max_distinct: int | None = None) -> None:
        self.limit = max(0, int(limit))
        self.max_distinct = max_distinct if max_distinct is not None else max(100, self.limit * 10)
        self.total = 0
        self._counts: dict[tuple[str | None, str], int] = {}

    def track(self, code: str | None, message: str) -> None:
        self.total += 1
        key = (code, message)
        if key in self._counts:
            self._counts[key] += 1
        elif len(self._counts) < self.max_distinct:
            self._counts[key] = 1

    def top(self, k: int | None = None) -> tuple[BulkLoadError, ...]:
        """Return up to ``k`` errors by descending count, first-seen order on ties."""
        k = self.limit if k is None else k
        ranked = sorted(
            enumerate(self._counts.items()),
            key=lambda item: (-item[1][1], item[0]),
        )
        return tuple(
            BulkLoadError(code=code, message=message, count=count)
            for _, ((code, message), count) in ranked[:k]
        )


# ---------------------------------------------------------------------------
# ANALYZE
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class _KeyCounts:
    records: int = 0
    with_record_id: int = 0
    with_other: int = 0


class AnalysisTracker:
    """Accumulates analysis counts keyed by original (unmapped) codes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.status = BulkDataStatus.NOT_STARTED
        self.media_type: str | None = None
        self.character_encoding: str | None = None
        self.record_count = 0
        self.records_with_record_id = 0
        self.records_with_data_source = 0
        self.records_with_entity_type = 0
        self.malformed_record_count = 0
        self._by_source: dict[str | None, _KeyCounts] = {}
        self._by_type: dict[str | None, _KeyCounts] = {}

    def start(self, *, media_type: str | None, character_encoding: str | None) -> None:
        with self._lock:
            self.media_type = media_type
            self.character_encoding = character_encoding
            self.status = BulkDataStatus.IN_PROGRESS

    def track(self, raw: RawRecord) -> None:
        """Count one record under its original source and type."""
        source = raw.original_data_source
        etype = raw.original_entity_type
        has_id = raw.record_id is not None
        with self._lock:
            src = self._by_source.setdefault(source, _KeyCounts())
            typ = self._by_type.setdefault(etype, _KeyCounts())
            self.record_count += 1
            src.records += 1
            typ.records += 1
            if raw.is_malformed:
                self.malformed_record_count += 1
            if has_id:
                self.records_with_record_id += 1
                src.with_record_id += 1
                typ.with_record_id += 1
            if source is not None:
                self.records_with_data_source += 1
                typ.with_other += 1
            if etype is not None:
                self.records_with_entity_type += 1
                src.with_other += 1

    def complete(self) -> None:
        with self._lock:
            self.status = BulkDataStatus.COMPLETED

    def snapshot(self) -> BulkDataAnalysis:
        """Freeze the current counts into a :class:`BulkDataAnalysis`."""
        with self._lock:
            return BulkDataAnalysis(
                status=self.status,
                media_type=self.media_type,
                character_encoding=self.character_encoding,
                record_count=self.record_count,
                records_with_record_id=self.records_with_record_id,
                records_with_data_source=self.records_with_data_source,
                records_with_entity_type=self.records_with_entity_type,
                malformed_record_count=self.malformed_record_count,
                by_source={
                    key: SourceStats(
                        data_source=key,
                        record_count=c.records,
                        records_with_record_id=c.with_record_id,
                        records_with_entity_type=c.with_other,
                    )
                    for key, c in self._by_source.items()
                },
                by_type={
                    key: TypeStats(
                        entity_type=key,
                        record_count=c.records,
                        records_with_record_id=c.with_record_id,
                        records_with_data_source=c.with_other,
                    )
                    for key, c in self._by_type.items()
                },
            )


# ---------------------------------------------------------------------------
# LOAD
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class _LoadKeyCounts:
    incomplete: int = 0
    failed: int = 0
    loaded: int = 0
    errors: ErrorTracker = field(default_factory=ErrorTracker)

    @property
    def records(self) -> int:
        return self.incomplete + self.failed + self.loaded


class LoadTracker:
    """Accumulates load outcomes keyed by effective (mapped) codes.

    Call :meth:`register` from the single producer thread in input order
    before a record is handed to a worker; outcome methods may then be
    called from any worker thread.
    """

    def __init__(self, *, top_error_limit: int = DEFAULT_TOP_ERRORS) -> None:
        self._lock = threading.Lock()
        self.top_error_limit = max(0, int(top_error_limit))
        self.status = BulkDataStatus.NOT_STARTED
        self.load_id: str | None = None
        self.media_type: str | None = None
        self.character_encoding: str | None = None
        self.incomplete = 0
        self.failed = 0
        self.loaded = 0
        self._errors = ErrorTracker(limit=self.top_error_limit)
        self._by_source: dict[str | None, _LoadKeyCounts] = {}
        self._by_type: dict[str | None, _LoadKeyCounts] = {}

    def start(self, *, load_id: str | None, media_type: str | None, character_encoding: str | None) -> None:
        with self._lock:
            self.load_id = load_id
            self.media_type = media_type
            self.character_encoding = character_encoding
            self.status = BulkDataStatus.IN_PROGRESS

    def _new_counts(self) -> _LoadKeyCounts:
        return _LoadKeyCounts(errors=ErrorTracker(limit=self.top_error_limit))

    def _entries(self, resolved: ResolvedRecord) -> tuple[_LoadKeyCounts, _LoadKeyCounts]:
        src = self._by_source.get(resolved.data_source)
        if src is None:
            src = self._by_source[resolved.data_source] = self._new_counts()
        typ = self._by_type.get(resolved.entity_type)
        if typ is None:
            typ = self._by_type[resolved.entity_type] = self._new_counts()
        return src, typ

    def register(self, resolved: ResolvedRecord) -> None:
        """Insert the record's keys if this is their first occurrence."""
        with self._lock:
            self._entries(resolved)

    def track_incomplete(self, resolved: ResolvedRecord) -> None:
        with self._lock:
            src, typ = self._entries(resolved)
            self.incomplete += 1
            src.incomplete += 1
            typ.incomplete += 1

    def track_loaded(self, resolved: ResolvedRecord) -> None:
        with self._lock:
            src, typ = self._entries(resolved)
            self.loaded += 1
            src.loaded += 1
            typ.loaded += 1

    def track_failed(self, resolved: ResolvedRecord, *, code: str | None, message: str) -> None:
        with self._lock:
            src, typ = self._entries(resolved)
            self.failed += 1
            src.failed += 1
            typ.failed += 1
            self._errors.track(code, message)
            src.errors.track(code, message)
            typ.errors.track(code, message)

    def finish(self, status: BulkDataStatus) -> None:
        with self._lock:
            self.status = status

    @property
    def record_count(self) -> int:
        with self._lock:
            return self.incomplete + self.failed + self.loaded

    def snapshot(self) -> BulkLoadResult:
        """Freeze the current counts into a :class:`BulkLoadResult`.

        Keys registered for records that were never attempted (skipped by
        an abort) have no counts and are left out.
        """
        with self._lock:
            return BulkLoadResult(
                status=self.status,
                load_id=self.load_id,
                media_type=self.media_type,
                character_encoding=self.character_encoding,
                incomplete_record_count=self.incomplete,
                failed_record_count=self.failed,
                loaded_record_count=self.loaded,
                top_errors=self._errors.top(),
                results_by_source={
                    key: SourceLoadStats(
                        data_source=key,
                        incomplete_record_count=c.incomplete,
                        failed_record_count=c.failed,
                        loaded_record_count=c.loaded,
                        top_errors=c.errors.top(),
                    )
                    for key, c in self._by_source.items()
                    if c.records
                },
                results_by_type={
                    key: TypeLoadStats(
                        entity_type=key,
                        incomplete_record_count=c.incomplete,
                        failed_record_count=c.failed,
                        loaded_record_count=c.loaded,
                        top_errors=c.errors.top(),
                    )
                    for key, c in self._by_type.items()
                    if c.records
                },
            )
