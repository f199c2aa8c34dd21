# records.py
# SPDX-License-Identifier: MIT
"""Raw record model produced by the extractors.

A :class:`RawRecord` is one logical record from the input stream. It is
created once by an extractor, consumed once by the analysis tracker or the
loader, and then dropped; nothing retains it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "DATA_SOURCE_FIELD",
    "ENTITY_TYPE_FIELD",
    "RECORD_ID_FIELD",
    "SOURCE_ID_FIELD",
    "MalformedRecordError",
    "RawRecord",
    "normalize_code",
    "code_key",
    "build_raw_record",
    "malformed_record",
]

DATA_SOURCE_FIELD = "DATA_SOURCE"
ENTITY_TYPE_FIELD = "ENTITY_TYPE"
RECORD_ID_FIELD = "RECORD_ID"
SOURCE_ID_FIELD = "SOURCE_ID"


class MalformedRecordError(ValueError):
    """A single row or line of the input could not be parsed into a record.

    Extractors never raise this; they attach it to the yielded
    :class:`RawRecord` so the sequence continues past the bad entry.
    """

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        self.line_number = line_number
        where = f" (line {line_number})" if line_number is not None else ""
        super().__init__(f"{message}{where}")
        self.reason = message


@dataclass(slots=True, frozen=True)
class RawRecord:
    """One record as read from the input, before any mapping.

    Attributes:
        original_data_source (str | None): Trimmed DATA_SOURCE value, or
            None when absent or blank.
        original_entity_type (str | None): Trimmed ENTITY_TYPE value, or
            None when absent or blank.
        record_id (str | None): Trimmed RECORD_ID value, or None.
        fields (dict[str, Any]): Field map in input order.
        line_number (int | None): 1-based line (or array element index for
            JSON arrays) the record started on.
        error (MalformedRecordError | None): Set when the entry could not
            be parsed; ``fields`` then holds whatever was recoverable.
    """

    original_data_source: str | None
    original_entity_type: str | None
    record_id: str | None
    fields: dict[str, Any] = field(default_factory=dict)
    line_number: int | None = None
    error: MalformedRecordError | None = None

    @property
    def is_malformed(self) -> bool:
        return self.error is not None


def normalize_code(value: Any) -> str | None:
    """Return a trimmed string code, or None for absent/blank/non-scalar values."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def code_key(value: str | None) -> str | None:
    """Return the case-insensitive lookup key for a code."""
    code = normalize_code(value)
    return code.upper() if code is not None else None


def _lookup(fields: Mapping[str, Any], name: str) -> Any:
    if name in fields:
        return fields[name]
    for key, value in fields.items():
        if isinstance(key, str) and key.strip().upper() == name:
            return value
    return None


def build_raw_record(fields: Mapping[str, Any], *, line_number: int | None = None) -> RawRecord:
    """Build a RawRecord, reading the well-known fields if present.

    Field names are matched exactly first, then case-insensitively.
    """
    data = dict(fields)
    return RawRecord(
        original_data_source=normalize_code(_lookup(data, DATA_SOURCE_FIELD)),
        original_entity_type=normalize_code(_lookup(data, ENTITY_TYPE_FIELD)),
        record_id=normalize_code(_lookup(data, RECORD_ID_FIELD)),
        fields=data,
        line_number=line_number,
    )


def malformed_record(
    message: str,
    *,
    line_number: int | None = None,
    fields: Mapping[str, Any] | None = None,
) -> RawRecord:
    """Build a RawRecord standing in for an unparseable entry.

    Well-known fields are still read from ``fields`` when the broken entry
    yielded any (e.g. a ragged CSV row with a parseable DATA_SOURCE).
    """
    base = build_raw_record(fields or {}, line_number=line_number)
    return RawRecord(
        original_data_source=base.original_data_source,
        original_entity_type=base.original_entity_type,
        record_id=base.record_id,
        fields=base.fields,
        line_number=line_number,
        error=MalformedRecordError(message, line_number=line_number),
    )
