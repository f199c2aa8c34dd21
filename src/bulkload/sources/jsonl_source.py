# jsonl_source.py
# SPDX-License-Identifier: MIT

"""JSON Lines source that emits one raw record per object line."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TextIO

from ..core.config import ExtractConfig
from ..core.log import CappedWarning, get_logger
from ..core.records import RawRecord, build_raw_record, malformed_record

log = get_logger(__name__)

__all__ = ["JSONLRecordSource"]


@dataclass
class JSONLRecordSource:
    """Treats each non-blank line as an independent JSON object.

    Blank lines and lines starting with ``#`` are skipped. A line that is
    not valid JSON, or is valid JSON but not an object, becomes a
    malformed record; the lines after it are still read.

    Attributes:
        fp (TextIO): Text stream to read lines from.
        config (ExtractConfig): Warning limits.
        label (str): Name used in log messages.
    """

    fp: TextIO
    config: ExtractConfig = field(default_factory=ExtractConfig)
    label: str = "<jsonl>"

    def iter_records(self) -> Iterator[RawRecord]:
        """Yield raw records; single-pass over ``fp``."""
        warn = CappedWarning(
            log,
            limit=self.config.max_malformed_warnings,
            label=f"invalid JSON line in {self.label}",
        )
        emitted = 0
        comments = 0
        for lineno, raw_line in enumerate(self.fp, start=1):
            line = raw_line.strip()
            if not line:
                continue
            if line.startswith("#"):
                comments += 1
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                warn("Invalid JSON at %s:#%d: %s", self.label, lineno, exc)
                yield malformed_record(f"Invalid JSON: {exc.msg}", line_number=lineno)
                continue
            if not isinstance(obj, dict):
                warn("Non-object JSON at %s:#%d: %s", self.label, lineno, type(obj).__name__)
                yield malformed_record(
                    f"Expected a JSON object but found {type(obj).__name__}",
                    line_number=lineno,
                )
                continue
            emitted += 1
            yield build_raw_record(obj, line_number=lineno)

        if warn.count:
            log.info(
                "Finished %s: emitted=%d malformed=%d comments=%d",
                self.label,
                emitted,
                warn.count,
                comments,
            )
        else:
            log.debug("Finished %s: emitted=%d comments=%d", self.label, emitted, comments)
