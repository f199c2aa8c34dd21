# csv_source.py
# SPDX-License-Identifier: MIT

"""CSV/TSV source that emits one raw record per data row."""

from __future__ import annotations

import csv
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, TextIO

from ..core.config import ExtractConfig
from ..core.log import CappedWarning, get_logger
from ..core.records import RawRecord, build_raw_record, malformed_record

__all__ = ["CSVRecordSource"]

log = get_logger(__name__)


@dataclass
class CSVRecordSource:
    """Stream records from delimited text with a header row.

    The first non-empty row is the header; each later row maps header to
    cell by position. A row whose cell count differs from the header is
    yielded as a malformed record and iteration continues.

    Attributes:
        fp (TextIO): Text stream opened with ``newline=""``.
        delimiter (str): Cell delimiter.
        config (ExtractConfig): Trimming and warning limits.
        label (str): Name used in log messages.
    """
    fp: TextIO
    delimiter: str = ","
    config: ExtractConfig = field(default_factory=ExtractConfig)
    label: str = "<csv>"

    def iter_records(self) -> Iterator[RawRecord]:
        """Yield raw records; single-pass over ``fp``."""
        cfg = self.config
        warn = CappedWarning(log, limit=cfg.max_malformed_warnings, label=f"malformed CSV row in {self.label}")
        reader = csv.reader(self.fp, delimiter=self.delimiter)
        header: list[str] | None = None
        emitted = 0
        while True:
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as exc:
                warn("Malformed CSV row at %s:#%d: %s", self.label, reader.line_num, exc)
                yield malformed_record(f"Unparseable CSV row: {exc}", line_number=reader.line_num)
                continue
            if _is_blank(row):
                continue
            if header is None:
                header = [h.strip() for h in row]
                continue
            lineno = reader.line_num
            if len(row) != len(header):
                warn(
                    "Malformed CSV row at %s:#%d: expected %d cells, got %d",
                    self.label,
                    lineno,
                    len(header),
                    len(row),
                )
                yield malformed_record(
                    f"Expected {len(header)} cells but found {len(row)}",
                    line_number=lineno,
                    fields=self._row_fields(header, row),
                )
                continue
            emitted += 1
            yield build_raw_record(self._row_fields(header, row), line_number=lineno)

        if warn.count:
            log.info("Finished %s: emitted=%d malformed=%d", self.label, emitted, warn.count)
        else:
            log.debug("Finished %s: emitted=%d", self.label, emitted)

    def _row_fields(self, header: Sequence[str], row: Sequence[str]) -> dict[str, Any]:
        """Map header to cell by position, trimming and dropping blanks per config."""
        fields: dict[str, Any] = {}
        for name, value in zip(header, row):
            if self.config.csv_trim:
                value = value.strip()
            if self.config.drop_empty_csv_values and not value.strip():
                continue
            fields[name] = value
        return fields


def _is_blank(row: Sequence[str]) -> bool:
    """Return True for rows produced by empty or whitespace-only lines."""
    return not row or (len(row) == 1 and not row[0].strip())
