# __init__.py
# SPDX-License-Identifier: MIT
"""
Top-level package exports for :mod:`bulkload`.

Public surface and stability
----------------------------
The symbols listed in :data:`PRIMARY_API` are the supported public surface
and are exported via :data:`__all__`. Most callers:

- Build a configuration via :class:`BulkLoadConfig` or load one from
  TOML/JSON with :func:`load_config_from_path`.
- Call :func:`analyze_bulk_records` to inspect a file without writing, or
  :func:`load_bulk_records` to push it into a :class:`RecordEngine`.
- Read the frozen :class:`BulkDataAnalysis` / :class:`BulkLoadResult`.

Engines
-------
An engine is any object with a thread-safe
``write(data_source, entity_type, record_id, fields)`` method. Raise
:class:`WriteError` to fail one record, or :class:`EngineUnavailableError`
to stop the whole load. :class:`InMemoryRecordEngine` and
:class:`JSONLRecordEngine` are provided as references.

Advanced / expert surface
-------------------------
Lower-level building blocks (format detection, record sources, mapping
resolution, :class:`RecordLoader`) live under :mod:`bulkload.core` and
:mod:`bulkload.sources` and may change between releases.

Examples:
    Analyze, then load::

        >>> from bulkload import analyze_bulk_records, load_bulk_records
        >>> from bulkload import InMemoryRecordEngine
        >>> with open("people.csv", "rb") as fh:
        ...     analysis = analyze_bulk_records(fh, "text/csv")
        >>> engine = InMemoryRecordEngine()
        >>> with open("people.csv", "rb") as fh:
        ...     result = load_bulk_records(fh, engine, default_data_source="CUSTOMERS")
"""


from __future__ import annotations

# ---------------------------------------------------------------------------
# Package version
# ---------------------------------------------------------------------------
try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("bulkload")
except Exception:  # PackageNotFoundError when running from a source tree
    __version__ = "0.0.0+unknown"


# ---------------------------------------------------------------------------
# Primary public API (stable; exported via __all__)
# ---------------------------------------------------------------------------
from .core.config import (
    BulkLoadConfig,
    DetectConfig,
    ExtractConfig,
    LoadConfig,
    LoggingConfig,
    ProgressConfig,
    load_config_from_path,
)
from .core.detect import RecordFormat, UnsupportedFormatError
from .core.hooks import LoggingProgressListener
from .core.interfaces import (
    EngineUnavailableError,
    ProgressListener,
    RecordEngine,
    WriteError,
)
from .core.log import configure_logging, get_logger
from .core.pipeline import analyze_bulk_records, format_load_id, load_bulk_records
from .core.results import (
    BulkDataAnalysis,
    BulkDataStatus,
    BulkLoadError,
    BulkLoadResult,
    SourceLoadStats,
    SourceStats,
    TypeLoadStats,
    TypeStats,
)
from .sinks.engines import InMemoryRecordEngine, JSONLRecordEngine

# ---------------------------------------------------------------------------
# Advanced / expert API (imported for convenience; not exported via __all__)
# ---------------------------------------------------------------------------
from .core.extract import iter_detected_records, iter_raw_records
from .core.detect import detect_format
from .core.loader import FailureBudget, RecordLoader, load_records
from .core.mapping import MappingTables, resolve_mapping
from .core.records import RawRecord

PRIMARY_API = [
    "__version__",
    "BulkLoadConfig",
    "DetectConfig",
    "ExtractConfig",
    "LoadConfig",
    "LoggingConfig",
    "ProgressConfig",
    "load_config_from_path",
    "analyze_bulk_records",
    "load_bulk_records",
    "format_load_id",
    "RecordFormat",
    "UnsupportedFormatError",
    "RecordEngine",
    "ProgressListener",
    "WriteError",
    "EngineUnavailableError",
    "LoggingProgressListener",
    "BulkDataStatus",
    "BulkDataAnalysis",
    "SourceStats",
    "TypeStats",
    "BulkLoadResult",
    "BulkLoadError",
    "SourceLoadStats",
    "TypeLoadStats",
    "InMemoryRecordEngine",
    "JSONLRecordEngine",
    "configure_logging",
    "get_logger",
]

# Export the stable surface area only.
__all__ = list(PRIMARY_API)
