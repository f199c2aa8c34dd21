# mapping.py
# SPDX-License-Identifier: MIT
"""Resolution of effective data source and entity type codes.

Each field has its own override table. ``None`` is the key for records
that carry no value; an invocation-level default is folded into that key
unless an explicit ``None`` override already exists. Lookups by original
code are case-insensitive.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .records import (
    DATA_SOURCE_FIELD,
    ENTITY_TYPE_FIELD,
    SOURCE_ID_FIELD,
    RawRecord,
    code_key,
    normalize_code,
)

__all__ = [
    "MappingTables",
    "ResolvedRecord",
    "resolve_mapping",
    "resolve_code",
    "augment_fields",
]


def _build_table(
    overrides: Mapping[str | None, str | None] | None,
    default: str | None,
) -> dict[str | None, str]:
    table: dict[str | None, str] = {}
    for key, value in (overrides or {}).items():
        target = normalize_code(value)
        if target is None:
            continue
        table[code_key(key)] = target
    default_code = normalize_code(default)
    if default_code is not None and None not in table:
        table[None] = default_code
    return table


@dataclass(slots=True, frozen=True)
class MappingTables:
    """Override tables for data source and entity type.

    Attributes:
        data_sources (dict[str | None, str]): Upper-cased original code (or
            None for "no value") to replacement data source.
        entity_types (dict[str | None, str]): Same for entity types.
    """

    data_sources: dict[str | None, str] = field(default_factory=dict)
    entity_types: dict[str | None, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        *,
        default_data_source: str | None = None,
        default_entity_type: str | None = None,
        data_source_overrides: Mapping[str | None, str | None] | None = None,
        entity_type_overrides: Mapping[str | None, str | None] | None = None,
    ) -> MappingTables:
        """Normalize overrides and merge the defaults into the ``None`` key.

        Override keys that are None or blank address records without a
        value. Overrides whose replacement is blank are ignored.
        """
        return cls(
            data_sources=_build_table(data_source_overrides, default_data_source),
            entity_types=_build_table(entity_type_overrides, default_entity_type),
        )


@dataclass(slots=True, frozen=True)
class ResolvedRecord:
    """A raw record together with its effective codes."""

    raw: RawRecord
    data_source: str | None
    entity_type: str | None

    @property
    def is_complete(self) -> bool:
        return self.data_source is not None and self.entity_type is not None


def resolve_code(original: str | None, table: Mapping[str | None, str]) -> str | None:
    """Apply one override table to one original code.

    Precedence: override keyed by the original code, then (only when the
    original is absent) the ``None`` entry, then the original unchanged.
    """
    key = code_key(original)
    if key is not None:
        return table.get(key, original)
    return table.get(None)


def resolve_mapping(raw: RawRecord, tables: MappingTables) -> ResolvedRecord:
    """Return the effective data source and entity type for ``raw``."""
    return ResolvedRecord(
        raw=raw,
        data_source=resolve_code(raw.original_data_source, tables.data_sources),
        entity_type=resolve_code(raw.original_entity_type, tables.entity_types),
    )


def augment_fields(resolved: ResolvedRecord, *, load_id: str | None = None) -> dict[str, Any]:
    """Return the field map handed to the engine.

    The effective codes replace any DATA_SOURCE/ENTITY_TYPE keys (in any
    letter case) and SOURCE_ID is set to ``load_id`` when given.
    """
    replaced = {DATA_SOURCE_FIELD, ENTITY_TYPE_FIELD}
    if load_id is not None:
        replaced.add(SOURCE_ID_FIELD)
    fields = {
        k: v
        for k, v in resolved.raw.fields.items()
        if not (isinstance(k, str) and k.strip().upper() in replaced)
    }
    fields[DATA_SOURCE_FIELD] = resolved.data_source
    fields[ENTITY_TYPE_FIELD] = resolved.entity_type
    if load_id is not None:
        fields[SOURCE_ID_FIELD] = load_id
    return fields
