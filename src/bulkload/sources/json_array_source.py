# json_array_source.py
# SPDX-License-Identifier: MIT

"""JSON array source that emits one raw record per array element.

The array is parsed incrementally with :meth:`json.JSONDecoder.raw_decode`
so only the element currently being decoded is held in memory.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TextIO

from ..core.config import ExtractConfig
from ..core.log import CappedWarning, get_logger
from ..core.records import RawRecord, build_raw_record, malformed_record

__all__ = ["JSONArrayRecordSource"]

log = get_logger(__name__)

_READ_CHARS = 64 * 1024
_WHITESPACE = " \t\r\n"
# Longest token prefix the decoder can reject before the window edge
# ("-Infinit", a partial \uXXXX escape, "1e+").
_EDGE_SLACK = 16


def _may_be_truncated(exc: json.JSONDecodeError, buf: _Buffer) -> bool:
    """Return True when ``exc`` may only be caused by the window ending early.

    An error well inside the window is a real syntax error; more input
    cannot fix it.
    """
    if exc.msg.startswith("Unterminated string"):
        return True
    return len(buf.text) - exc.pos <= _EDGE_SLACK


class _Buffer:
    """Sliding text window over a stream."""

    def __init__(self, fp: TextIO, chunk_chars: int) -> None:
        self.fp = fp
        self.chunk_chars = chunk_chars
        self.text = ""
        self.pos = 0
        self.eof = False

    def fill(self) -> bool:
        """Read another chunk; return False once the stream is exhausted."""
        if self.eof:
            return False
        chunk = self.fp.read(self.chunk_chars)
        if not chunk:
            self.eof = True
            return False
        self.text = self.text[self.pos:] + chunk
        self.pos = 0
        return True

    def skip_ws(self) -> str | None:
        """Advance past whitespace and return the next char, or None at EOF."""
        while True:
            while self.pos < len(self.text) and self.text[self.pos] in _WHITESPACE:
                self.pos += 1
            if self.pos < len(self.text):
                return self.text[self.pos]
            if not self.fill():
                return None


@dataclass
class JSONArrayRecordSource:
    """Stream the elements of a top-level JSON array as raw records.

    Each element must be a JSON object. A non-object element becomes a
    malformed record and the scan continues. A syntax error also yields a
    malformed record, but ends the sequence since the array structure can
    no longer be followed.

    Attributes:
        fp (TextIO): Text stream holding the array.
        config (ExtractConfig): Warning limits.
        label (str): Name used in log messages.
        chunk_chars (int): Characters read per refill.
    """
    fp: TextIO
    config: ExtractConfig = field(default_factory=ExtractConfig)
    label: str = "<json>"
    chunk_chars: int = _READ_CHARS

    def iter_records(self) -> Iterator[RawRecord]:
        """Yield raw records; single-pass over ``fp``."""
        warn = CappedWarning(
            log,
            limit=self.config.max_malformed_warnings,
            label=f"malformed array element in {self.label}",
        )
        decoder = json.JSONDecoder()
        buf = _Buffer(self.fp, self.chunk_chars)
        emitted = 0
        index = 0

        if buf.skip_ws() != "[":
            warn("Expected a JSON array in %s", self.label)
            yield malformed_record("Input does not start with a JSON array", line_number=None)
            return
        buf.pos += 1
        expect_comma = False

        while True:
            ch = buf.skip_ws()
            if ch is None:
                warn("Unterminated JSON array in %s", self.label)
                yield malformed_record("Unterminated JSON array", line_number=index + 1)
                break
            if ch == "]":
                break
            if expect_comma:
                if ch != ",":
                    warn("Expected ',' between array elements in %s after element %d", self.label, index)
                    yield malformed_record("Expected ',' between array elements", line_number=index + 1)
                    break
                buf.pos += 1
                expect_comma = False
                continue

            index += 1
            try:
                value, end = self._decode_next(decoder, buf)
            except json.JSONDecodeError as exc:
                warn("Invalid JSON in %s at element %d: %s", self.label, index, exc.msg)
                yield malformed_record(f"Invalid JSON: {exc.msg}", line_number=index)
                break
            buf.pos = end
            expect_comma = True
            if not isinstance(value, dict):
                warn("Non-object element %d in %s: %s", index, self.label, type(value).__name__)
                yield malformed_record(
                    f"Expected a JSON object but found {type(value).__name__}",
                    line_number=index,
                )
                continue
            emitted += 1
            yield build_raw_record(value, line_number=index)

        if warn.count:
            log.info("Finished %s: emitted=%d malformed=%d", self.label, emitted, warn.count)
        else:
            log.debug("Finished %s: emitted=%d", self.label, emitted)

    @staticmethod
    def _decode_next(decoder: json.JSONDecoder, buf: _Buffer) -> tuple[object, int]:
        """Decode the value at ``buf.pos``, refilling until it is complete.

        A value ending exactly at the window edge is re-decoded after a
        refill, since a number or literal may continue in the next chunk.
        """
        while True:
            try:
                value, end = decoder.raw_decode(buf.text, buf.pos)
            except json.JSONDecodeError as exc:
                if _may_be_truncated(exc, buf) and buf.fill():
                    continue
                raise
            if end >= len(buf.text) and buf.fill():
                continue
            return value, end
