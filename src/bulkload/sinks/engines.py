# engines.py
# SPDX-License-Identifier: MIT
"""Reference record engines for loading into memory or a JSONL file."""
from __future__ import annotations

import json
import os
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Self, TextIO

from ..core.interfaces import EngineUnavailableError, WriteError

__all__ = ["StoredRecord", "InMemoryRecordEngine", "JSONLRecordEngine"]


@dataclass(slots=True, frozen=True)
class StoredRecord:
    """One accepted write."""

    data_source: str
    entity_type: str
    record_id: str | None
    fields: dict[str, Any]


class InMemoryRecordEngine:
    """Thread-safe engine that keeps accepted records in a list.

    Attributes:
        records (list[StoredRecord]): Accepted writes in completion order.
        reject (Callable | None): Optional predicate over
            ``(data_source, entity_type, record_id, fields)``; a truthy
            return value (used as the message when it is a string) makes
            the write fail with :class:`WriteError`.
    """

    def __init__(
        self,
        *,
        reject: Callable[[str, str, str | None, Mapping[str, Any]], Any] | None = None,
    ) -> None:
        self.records: list[StoredRecord] = []
        self.reject = reject
        self._lock = threading.Lock()

    def write(
        self,
        data_source: str,
        entity_type: str,
        record_id: str | None,
        fields: Mapping[str, Any],
    ) -> StoredRecord:
        if self.reject is not None:
            verdict = self.reject(data_source, entity_type, record_id, fields)
            if verdict:
                message = verdict if isinstance(verdict, str) else "Record rejected"
                raise WriteError(message, code="REJECTED")
        stored = StoredRecord(data_source, entity_type, record_id, dict(fields))
        with self._lock:
            self.records.append(stored)
        return stored

    def __len__(self) -> int:
        with self._lock:
            return len(self.records)


class JSONLRecordEngine:
    """Engine that appends each accepted record as a compact JSON line.

    Lines go to ``<path>.tmp`` and the file is moved into place on
    :meth:`close`. When used as a context manager and the block raises,
    the temp file is removed and the target is left untouched.
    Writes before :meth:`open` or after :meth:`close` raise
    :class:`EngineUnavailableError`.
    """

    def __init__(self, out_path: str | os.PathLike[str]) -> None:
        self._path = Path(out_path)
        self._fp: TextIO | None = None
        self._tmp_path: Path | None = None
        self._lock = threading.Lock()
        self.written = 0

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        """Create the temp file for writing."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._tmp_path = self._path.parent / f"{self._path.name}.tmp"
        self._fp = open(self._tmp_path, "w", encoding="utf-8", newline="")

    def write(
        self,
        data_source: str,
        entity_type: str,
        record_id: str | None,
        fields: Mapping[str, Any],
    ) -> None:
        """Write a single record as a compact JSON line."""
        try:
            line = json.dumps(dict(fields), ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise WriteError(f"Record is not JSON serializable: {exc}", code="NOT_SERIALIZABLE") from exc
        with self._lock:
            if self._fp is None:
                raise EngineUnavailableError(f"JSONL engine for {self._path} is not open")
            self._fp.write(line + "\n")
            self.written += 1

    def close(self) -> None:
        """Close the handle and move the temp file into place."""
        with self._lock:
            fp, self._fp = self._fp, None
        if fp is None:
            return
        fp.close()
        if self._tmp_path:
            os.replace(self._tmp_path, self._path)
            self._tmp_path = None

    def discard(self) -> None:
        """Close the handle and delete the temp file, leaving the target untouched."""
        with self._lock:
            fp, self._fp = self._fp, None
        if fp is not None:
            fp.close()
        if self._tmp_path:
            self._tmp_path.unlink(missing_ok=True)
            self._tmp_path = None

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """Move the output into place, or discard it if the block raised."""
        if exc_type is not None:
            self.discard()
        else:
            self.close()
