# extract.py
# SPDX-License-Identifier: MIT
"""Record extraction dispatch from detected format to source.

Formats form a closed set; each maps to one source class through
``_SOURCE_FACTORIES`` rather than through subclassing.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import TextIO

from ..sources.csv_source import CSVRecordSource
from ..sources.json_array_source import JSONArrayRecordSource
from ..sources.jsonl_source import JSONLRecordSource
from .config import ExtractConfig
from .detect import DetectedInput, RecordFormat
from .interfaces import RecordSource
from .records import RawRecord

__all__ = ["make_record_source", "iter_raw_records", "iter_detected_records"]

SourceFactory = Callable[[TextIO, ExtractConfig, str, str], RecordSource]

_SOURCE_FACTORIES: dict[RecordFormat, SourceFactory] = {
    RecordFormat.CSV: lambda fp, cfg, label, delim: CSVRecordSource(
        fp, delimiter=delim, config=cfg, label=label
    ),
    RecordFormat.JSON_ARRAY: lambda fp, cfg, label, _delim: JSONArrayRecordSource(
        fp, config=cfg, label=label
    ),
    RecordFormat.JSON_LINES: lambda fp, cfg, label, _delim: JSONLRecordSource(
        fp, config=cfg, label=label
    ),
}


def make_record_source(
    fp: TextIO,
    fmt: RecordFormat,
    *,
    config: ExtractConfig | None = None,
    delimiter: str = ",",
    label: str | None = None,
) -> RecordSource:
    """Return the source that reads ``fmt`` from ``fp``."""
    factory = _SOURCE_FACTORIES[fmt]
    return factory(fp, config or ExtractConfig(), label or f"<{fmt.name.lower()}>", delimiter)


def iter_raw_records(
    fp: TextIO,
    fmt: RecordFormat,
    *,
    config: ExtractConfig | None = None,
    delimiter: str = ",",
    label: str | None = None,
) -> Iterator[RawRecord]:
    """Yield the raw records of a text stream in the given format.

    The iterator is forward-only; re-reading requires reopening the input.
    """
    source = make_record_source(fp, fmt, config=config, delimiter=delimiter, label=label)
    return source.iter_records()


def iter_detected_records(
    detected: DetectedInput,
    *,
    config: ExtractConfig | None = None,
    label: str | None = None,
) -> Iterator[RawRecord]:
    """Yield raw records from a :class:`DetectedInput`, closing its text wrapper at the end."""
    fp = detected.open_text()
    try:
        yield from iter_raw_records(
            fp,
            detected.format,
            config=config,
            delimiter=detected.csv_delimiter,
            label=label,
        )
    finally:
        fp.detach()
