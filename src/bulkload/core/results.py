# results.py
# SPDX-License-Identifier: MIT
"""Immutable result values returned by ANALYZE and LOAD runs.

By-source and by-type maps are read-only mappings whose key order is the
order in which each code was first seen. ``None`` is a legitimate key and
stands for records without a code.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

__all__ = [
    "BulkDataStatus",
    "BulkLoadError",
    "SourceStats",
    "TypeStats",
    "BulkDataAnalysis",
    "SourceLoadStats",
    "TypeLoadStats",
    "BulkLoadResult",
]


class BulkDataStatus(Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


def _frozen_map(data: Mapping[Any, Any] | None) -> Mapping[Any, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(slots=True, frozen=True)
class BulkLoadError:
    """One distinct error with the number of records that hit it."""

    code: str | None
    message: str
    count: int = 1

    def as_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "count": int(self.count)}


# ---------------------------------------------------------------------------
# ANALYZE
# ---------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class SourceStats:
    """Analysis counts for one original data source."""

    data_source: str | None
    record_count: int = 0
    records_with_record_id: int = 0
    records_with_entity_type: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "data_source": self.data_source,
            "record_count": self.record_count,
            "records_with_record_id": self.records_with_record_id,
            "records_with_entity_type": self.records_with_entity_type,
        }


@dataclass(slots=True, frozen=True)
class TypeStats:
    """Analysis counts for one original entity type."""

    entity_type: str | None
    record_count: int = 0
    records_with_record_id: int = 0
    records_with_data_source: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "record_count": self.record_count,
            "records_with_record_id": self.records_with_record_id,
            "records_with_data_source": self.records_with_data_source,
        }


@dataclass(slots=True, frozen=True)
class BulkDataAnalysis:
    """Read-only statistics about a bulk input, keyed by original codes.

    Attributes:
        status (BulkDataStatus): IN_PROGRESS for progress snapshots,
            COMPLETED once the whole input was scanned.
        media_type (str | None): Media type of the detected format.
        character_encoding (str | None): Codec the input was read with.
        record_count (int): Records seen, malformed ones included.
        records_with_record_id (int): Records carrying a RECORD_ID.
        records_with_data_source (int): Records carrying a DATA_SOURCE.
        records_with_entity_type (int): Records carrying an ENTITY_TYPE.
        malformed_record_count (int): Entries that could not be parsed.
        by_source (Mapping[str | None, SourceStats]): Per original source.
        by_type (Mapping[str | None, TypeStats]): Per original entity type.
    """

    status: BulkDataStatus = BulkDataStatus.NOT_STARTED
    media_type: str | None = None
    character_encoding: str | None = None
    record_count: int = 0
    records_with_record_id: int = 0
    records_with_data_source: int = 0
    records_with_entity_type: int = 0
    malformed_record_count: int = 0
    by_source: Mapping[str | None, SourceStats] = field(default_factory=dict)
    by_type: Mapping[str | None, TypeStats] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "by_source", _frozen_map(self.by_source))
        object.__setattr__(self, "by_type", _frozen_map(self.by_type))

    @property
    def records_without_record_id(self) -> int:
        return self.record_count - self.records_with_record_id

    @property
    def records_without_data_source(self) -> int:
        return self.record_count - self.records_with_data_source

    @property
    def records_without_entity_type(self) -> int:
        return self.record_count - self.records_with_entity_type

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly dict; per-key stats are lists in key order."""
        return {
            "status": self.status.value,
            "media_type": self.media_type,
            "character_encoding": self.character_encoding,
            "record_count": self.record_count,
            "records_with_record_id": self.records_with_record_id,
            "records_with_data_source": self.records_with_data_source,
            "records_with_entity_type": self.records_with_entity_type,
            "malformed_record_count": self.malformed_record_count,
            "by_source": [s.as_dict() for s in self.by_source.values()],
            "by_type": [t.as_dict() for t in self.by_type.values()],
        }


# ---------------------------------------------------------------------------
# LOAD
# ---------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class _LoadCounts:
    incomplete_record_count: int = 0
    failed_record_count: int = 0
    loaded_record_count: int = 0
    top_errors: tuple[BulkLoadError, ...] = ()

    @property
    def record_count(self) -> int:
        return self.incomplete_record_count + self.failed_record_count + self.loaded_record_count

    def _counts_dict(self) -> dict[str, Any]:
        return {
            "record_count": self.record_count,
            "incomplete_record_count": self.incomplete_record_count,
            "failed_record_count": self.failed_record_count,
            "loaded_record_count": self.loaded_record_count,
            "top_errors": [e.as_dict() for e in self.top_errors],
        }


@dataclass(slots=True, frozen=True)
class SourceLoadStats(_LoadCounts):
    """Load outcome counts for one effective data source."""

    data_source: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"data_source": self.data_source, **self._counts_dict()}


@dataclass(slots=True, frozen=True)
class TypeLoadStats(_LoadCounts):
    """Load outcome counts for one effective entity type."""

    entity_type: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"entity_type": self.entity_type, **self._counts_dict()}


@dataclass(slots=True, frozen=True)
class BulkLoadResult(_LoadCounts):
    """Outcome of a LOAD run, keyed by effective codes.

    ``record_count`` (inherited) counts every record the loader attempted.
    Records never attempted because of an abort are not counted anywhere.

    Attributes:
        status (BulkDataStatus): COMPLETED, or ABORTED once the failure
            budget stopped the run; IN_PROGRESS for progress snapshots.
        load_id (str | None): Identifier stamped on written records.
        media_type (str | None): Media type of the detected format.
        character_encoding (str | None): Codec the input was read with.
        results_by_source (Mapping[str | None, SourceLoadStats]): Per
            effective data source.
        results_by_type (Mapping[str | None, TypeLoadStats]): Per effective
            entity type.
    """

    status: BulkDataStatus = BulkDataStatus.NOT_STARTED
    load_id: str | None = None
    media_type: str | None = None
    character_encoding: str | None = None
    results_by_source: Mapping[str | None, SourceLoadStats] = field(default_factory=dict)
    results_by_type: Mapping[str | None, TypeLoadStats] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "results_by_source", _frozen_map(self.results_by_source))
        object.__setattr__(self, "results_by_type", _frozen_map(self.results_by_type))

    @property
    def missing_data_source_count(self) -> int:
        entry = self.results_by_source.get(None)
        return entry.record_count if entry else 0

    @property
    def missing_entity_type_count(self) -> int:
        entry = self.results_by_type.get(None)
        return entry.record_count if entry else 0

    @property
    def missing_both_count(self) -> int:
        """Incomplete records lacking both codes, by inclusion-exclusion."""
        src = self.results_by_source.get(None)
        typ = self.results_by_type.get(None)
        missing_src = src.incomplete_record_count if src else 0
        missing_typ = typ.incomplete_record_count if typ else 0
        return max(0, missing_src + missing_typ - self.incomplete_record_count)

    @property
    def aborted(self) -> bool:
        return self.status is BulkDataStatus.ABORTED

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly dict; per-key stats are lists in key order."""
        data: dict[str, Any] = {
            "status": self.status.value,
            "load_id": self.load_id,
            "media_type": self.media_type,
            "character_encoding": self.character_encoding,
            **self._counts_dict(),
            "missing_data_source_count": self.missing_data_source_count,
            "missing_entity_type_count": self.missing_entity_type_count,
            "missing_both_count": self.missing_both_count,
            "results_by_source": [s.as_dict() for s in self.results_by_source.values()],
            "results_by_type": [t.as_dict() for t in self.results_by_type.values()],
        }
        return data
