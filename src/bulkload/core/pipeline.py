# pipeline.py
# SPDX-License-Identifier: MIT
"""Bulk analyze and load pipelines.

Both entry points run detection once, synchronously, then stream the
records in a single pass: ANALYZE into an :class:`AnalysisTracker`, LOAD
through the mapping resolver and a :class:`RecordLoader` into a
:class:`LoadTracker`. The returned results are frozen.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, BinaryIO

from .config import BulkLoadConfig, ProgressConfig
from .detect import DetectedInput, detect_format
from .extract import iter_detected_records
from .hooks import ProgressReporter, Snapshot
from .interfaces import EngineUnavailableError, ProgressListener, RecordEngine
from .loader import RecordLoader
from .log import get_logger
from .mapping import MappingTables
from .results import BulkDataAnalysis, BulkDataStatus, BulkLoadResult
from .stats import AnalysisTracker, LoadTracker

__all__ = [
    "analyze_bulk_records",
    "load_bulk_records",
    "format_load_id",
    "mapping_tables_from_config",
]

log = get_logger(__name__)

_LOAD_ID_HEAD_BYTES = 1024
_LOAD_ID_TIME_FORMAT = "%Y%m%d_%H%M%SZ"


def format_load_id(
    head: bytes,
    *,
    file_name: str | None = None,
    file_date: datetime | None = None,
    now: datetime | None = None,
) -> str:
    """Build the default load id ``<file key>_<file date>_<now>``.

    The file key is ``file_name`` when given, otherwise the base64 MD5 of
    the first 1024 bytes of input. Timestamps are UTC; an unknown file
    date is written as ``?``.
    """
    if file_name:
        key = file_name
    else:
        digest = hashlib.md5(head[:_LOAD_ID_HEAD_BYTES], usedforsecurity=False).digest()
        key = base64.b64encode(digest).decode("ascii")
    current = now or datetime.now(timezone.utc)
    file_text = _format_utc(file_date) if file_date is not None else "?"
    return f"{key}_{file_text}_{_format_utc(current)}"


def _format_utc(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(_LOAD_ID_TIME_FORMAT)


def mapping_tables_from_config(cfg: BulkLoadConfig) -> MappingTables:
    """Build mapping tables from the ``load`` section of a config."""
    load = cfg.load
    return MappingTables.build(
        default_data_source=load.default_data_source,
        default_entity_type=load.default_entity_type,
        data_source_overrides=load.data_source_overrides,
        entity_type_overrides=load.entity_type_overrides,
    )


def _make_reporter(
    listener: ProgressListener | None,
    cfg: ProgressConfig,
    snapshot: Callable[[], Snapshot],
) -> ProgressReporter | None:
    if listener is None or cfg.period_ms is None:
        return None
    return ProgressReporter(listener, snapshot, period_ms=cfg.period_ms)


def _detect(stream: BinaryIO, media_type: str | None, cfg: BulkLoadConfig) -> DetectedInput:
    detected = detect_format(stream, media_type, config=cfg.detect)
    log.info(
        "Reading %s input (encoding=%s)",
        detected.format.media_type,
        detected.encoding,
    )
    return detected


def analyze_bulk_records(
    stream: BinaryIO,
    media_type: str | None = None,
    *,
    config: BulkLoadConfig | None = None,
    progress: ProgressListener | None = None,
) -> BulkDataAnalysis:
    """Scan a bulk input and report statistics without writing anything.

    Counts are keyed by the records' original codes. Malformed entries are
    counted like any other record and never stop the scan.

    Args:
        stream (BinaryIO): Readable byte stream of the input.
        media_type (str | None): Declared media type, if any.
        config (BulkLoadConfig | None): Run configuration.
        progress (ProgressListener | None): Receives periodic snapshots
            when ``config.progress.period_ms`` is set.

    Returns:
        BulkDataAnalysis: Frozen statistics with status COMPLETED.

    Raises:
        UnsupportedFormatError: If the input format cannot be determined.
    """
    cfg = config or BulkLoadConfig()
    cfg.validate()
    detected = _detect(stream, media_type, cfg)

    tracker = AnalysisTracker()
    tracker.start(media_type=detected.format.media_type, character_encoding=detected.encoding)
    reporter = _make_reporter(progress, cfg.progress, tracker.snapshot)
    for raw in iter_detected_records(detected, config=cfg.extract):
        tracker.track(raw)
        if reporter is not None:
            reporter.tick()
    tracker.complete()

    analysis = tracker.snapshot()
    log.info(
        "Bulk analysis summary: records=%d with_record_id=%d with_data_source=%d "
        "with_entity_type=%d malformed=%d",
        analysis.record_count,
        analysis.records_with_record_id,
        analysis.records_with_data_source,
        analysis.records_with_entity_type,
        analysis.malformed_record_count,
    )
    return analysis


def load_bulk_records(
    stream: BinaryIO,
    engine: RecordEngine,
    media_type: str | None = None,
    *,
    config: BulkLoadConfig | None = None,
    load_id: str | None = None,
    file_name: str | None = None,
    file_date: datetime | None = None,
    progress: ProgressListener | None = None,
    **load_overrides: Any,
) -> BulkLoadResult:
    """Load a bulk input into ``engine``.

    Keyword overrides replace fields of ``config.load`` for this call,
    e.g. ``concurrency=4, max_failures=10, default_entity_type="PERSON"``.

    Args:
        stream (BinaryIO): Readable byte stream of the input.
        engine (RecordEngine): Destination engine; must be thread-safe.
        media_type (str | None): Declared media type, if any.
        config (BulkLoadConfig | None): Run configuration.
        load_id (str | None): Explicit load id; generated when omitted.
        file_name (str | None): Original file name, used for the
            generated load id.
        file_date (datetime | None): Original file modification time, used
            for the generated load id.
        progress (ProgressListener | None): Receives periodic snapshots
            when ``config.progress.period_ms`` is set.
        **load_overrides: Per-call :class:`LoadConfig` field overrides.

    Returns:
        BulkLoadResult: Frozen outcome with status COMPLETED or ABORTED.

    Raises:
        UnsupportedFormatError: If the input format cannot be determined.
        EngineUnavailableError: If the engine stopped accepting writes.
        TypeError: If an override names an unknown LoadConfig field.
    """
    cfg = config or BulkLoadConfig()
    if load_overrides:
        cfg = replace(cfg, load=replace(cfg.load, **load_overrides))
    cfg.validate()
    detected = _detect(stream, media_type, cfg)
    effective_load_id = load_id or format_load_id(detected.head, file_name=file_name, file_date=file_date)

    tracker = LoadTracker(top_error_limit=cfg.load.top_error_limit)
    tracker.start(
        load_id=effective_load_id,
        media_type=detected.format.media_type,
        character_encoding=detected.encoding,
    )
    loader = RecordLoader(
        engine,
        mapping_tables_from_config(cfg),
        config=cfg.load,
        tracker=tracker,
        load_id=effective_load_id,
        progress=_make_reporter(progress, cfg.progress, tracker.snapshot),
    )
    try:
        loader.run(iter_detected_records(detected, config=cfg.extract))
    except EngineUnavailableError as exc:
        log.error("Bulk load %s stopped: engine unavailable: %s", effective_load_id, exc)
        raise

    result = tracker.snapshot()
    _log_load_summary(result)
    return result


def _log_load_summary(result: BulkLoadResult) -> None:
    """Emit aggregated load counters at the end of a run."""
    has_errors = result.failed_record_count > 0 or result.status is BulkDataStatus.ABORTED
    level = log.warning if has_errors else log.info
    level(
        "Bulk load summary: load_id=%s status=%s attempted=%d loaded=%d failed=%d "
        "incomplete=%d missing_data_source=%d missing_entity_type=%d",
        result.load_id,
        result.status.value,
        result.record_count,
        result.loaded_record_count,
        result.failed_record_count,
        result.incomplete_record_count,
        result.missing_data_source_count,
        result.missing_entity_type_count,
    )
    for err in result.top_errors[:3]:
        log.debug("Top error x%d [%s]: %s", err.count, err.code, err.message)
