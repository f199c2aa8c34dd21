# interfaces.py
# SPDX-License-Identifier: MIT
"""Interfaces and protocols shared across sources, engines, and progress hooks."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .records import RawRecord
    from .results import BulkDataAnalysis, BulkLoadResult


# -----------------------------------------------------------------------------
# Engine errors
# -----------------------------------------------------------------------------

class WriteError(RuntimeError):
    """The engine rejected or failed a single record.

    The loader counts it as a failure for that record and keeps going.

    Attributes:
        code (str | None): Engine-specific error code, if any.
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class EngineUnavailableError(RuntimeError):
    """The engine cannot accept any writes (connection lost, shut down).

    Fatal for the whole LOAD invocation; distinct from a budget abort.
    """


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------

@runtime_checkable
class RecordSource(Protocol):
    """A forward-only producer of raw records for one input."""

    def iter_records(self) -> Iterator[RawRecord]:  # pragma: no cover - interface
        """Yield raw records in input order. Not restartable."""
        ...


@runtime_checkable
class RecordEngine(Protocol):
    """
    The external resolution engine that persists records.

    ``write`` is called concurrently from loader worker threads, so
    implementations must be thread-safe.
    """

    def write(
        self,
        data_source: str,
        entity_type: str,
        record_id: str | None,
        fields: Mapping[str, Any],
    ) -> Any:
        """
        Persist one complete record.

        Args:
            data_source (str): Effective data source code.
            entity_type (str): Effective entity type code.
            record_id (str | None): Record identifier, if the record has one.
            fields (Mapping[str, Any]): Record fields, including the
                effective DATA_SOURCE/ENTITY_TYPE and SOURCE_ID when stamped.

        Returns:
            Any: Engine acknowledgement; ignored by the loader.

        Raises:
            WriteError: The record was rejected.
            EngineUnavailableError: The engine cannot accept writes at all.
        """
        ...


@runtime_checkable
class ProgressListener(Protocol):
    """Receives periodic snapshots while a run is in progress."""

    def on_progress(
        self,
        snapshot: BulkDataAnalysis | BulkLoadResult,
        event_id: int,
    ) -> None:  # pragma: no cover - interface
        """
        Called from the thread that observed the elapsed period.

        Args:
            snapshot (BulkDataAnalysis | BulkLoadResult): Frozen view with
                status IN_PROGRESS.
            event_id (int): Monotonic event counter starting at 0.
        """
