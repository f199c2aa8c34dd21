# config.py
# SPDX-License-Identifier: MIT
"""Configuration models and helpers for bulk analyze and load runs.

This module defines declarative dataclasses for format detection, record
extraction, loading, progress reporting, and logging, along with helpers
for serializing and loading configurations from JSON and TOML.
"""
from __future__ import annotations

import json
import os
import tomllib
import types
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, TypeVar, Union, get_args, get_origin, get_type_hints

from .log import DEFAULT_LOG_FORMAT, PACKAGE_LOGGER_NAME, configure_logging

__all__ = [
    "BulkLoadConfig",
    "DetectConfig",
    "ExtractConfig",
    "LoadConfig",
    "LoggingConfig",
    "ProgressConfig",
    "DEFAULT_SINGLE_WORKER_THRESHOLD",
    "load_config_from_path",
]

DEFAULT_PEEK_BYTES = 64 * 1024
DEFAULT_SINGLE_WORKER_THRESHOLD = 1000
DEFAULT_TOP_ERROR_LIMIT = 10


def _default_concurrency() -> int:
    return max(1, os.cpu_count() or 1)


# ---------------------------------------------------------------------------
# Section configs
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class DetectConfig:
    """Format and encoding detection knobs.

    Attributes:
        peek_bytes (int): Size of the bounded lookahead read from the
            input before any record is extracted. The peeked bytes are
            re-fed to the extractor.
        default_encoding (str): Encoding assumed when the peek is empty.
        csv_delimiters (tuple[str, ...]): Delimiters that qualify a header
            line as CSV while sniffing, in preference order.
    """
    peek_bytes: int = DEFAULT_PEEK_BYTES
    default_encoding: str = "utf-8"
    csv_delimiters: tuple[str, ...] = (",", "\t", "|", ";")


@dataclass(slots=True)
class ExtractConfig:
    """Record extraction behaviour shared by all formats.

    Attributes:
        max_malformed_warnings (int): Number of malformed-record warnings
            logged per input before further warnings are suppressed.
        csv_trim (bool): Strip surrounding whitespace from CSV cells.
        drop_empty_csv_values (bool): Omit blank CSV cells from the
            record's field map.
    """
    max_malformed_warnings: int = 5
    csv_trim: bool = True
    drop_empty_csv_values: bool = True


@dataclass(slots=True)
class LoadConfig:
    """Loader settings for LOAD runs.

    Attributes:
        concurrency (int): Number of worker threads dispatching writes.
        max_failures (int | None): Failure budget. None, zero, or a
            negative value means unlimited.
        single_worker_threshold (int): Inputs with at most this many
            records are loaded by a single worker.
        submit_window (int | None): Maximum records in flight in the
            worker pool; defaults to ``concurrency * 4``.
        top_error_limit (int): Size of the retained error samples.
        default_data_source (str | None): Data source for records that
            carry none.
        default_entity_type (str | None): Entity type for records that
            carry none.
        data_source_overrides (dict[str, str]): Original code to
            replacement code. The key ``""`` stands for records without a
            data source.
        entity_type_overrides (dict[str, str]): Same as above for entity
            types.
        stamp_source_id (bool): Whether to set SOURCE_ID on each written
            record to the load id.
    """
    concurrency: int = field(default_factory=_default_concurrency)
    max_failures: int | None = None
    single_worker_threshold: int = DEFAULT_SINGLE_WORKER_THRESHOLD
    submit_window: int | None = None
    top_error_limit: int = DEFAULT_TOP_ERROR_LIMIT
    default_data_source: str | None = None
    default_entity_type: str | None = None
    data_source_overrides: dict[str, str] = field(default_factory=dict)
    entity_type_overrides: dict[str, str] = field(default_factory=dict)
    stamp_source_id: bool = True

    def failure_budget(self) -> int | None:
        """Return the effective failure budget, or None when unlimited."""
        if self.max_failures is None or self.max_failures <= 0:
            return None
        return int(self.max_failures)


@dataclass(slots=True)
class ProgressConfig:
    """Periodic progress reporting.

    ``period_ms`` of None disables progress events; 0 emits one after
    every record.
    """
    period_ms: int | None = None


@dataclass(slots=True)
class LoggingConfig:
    """Controls the package logger; set propagate=True/logger_name to
    integrate with host apps.
    """
    level: int | str = "INFO"
    propagate: bool = False
    fmt: str | None = DEFAULT_LOG_FORMAT
    logger_name: str = PACKAGE_LOGGER_NAME

    def apply(self) -> None:
        """Apply this logging configuration to the package logger."""
        configure_logging(
            level=self.level,
            propagate=self.propagate,
            fmt=self.fmt,
            logger_name=self.logger_name or PACKAGE_LOGGER_NAME,
        )


# ---------------------------------------------------------------------------
# Master config
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass(slots=True)
class BulkLoadConfig:
    """Declarative settings for an ANALYZE or LOAD invocation.

    Holds only serializable knobs; engines, streams and listeners are
    passed to the pipeline functions directly.
    """
    detect: DetectConfig = field(default_factory=DetectConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    load: LoadConfig = field(default_factory=LoadConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Validate the configuration for internal consistency.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.detect.peek_bytes < 64:
            raise ValueError("detect.peek_bytes must be at least 64.")
        for delim in self.detect.csv_delimiters:
            if not isinstance(delim, str) or len(delim) != 1:
                raise ValueError(f"detect.csv_delimiters entries must be single characters; got {delim!r}.")
        if self.extract.max_malformed_warnings < 0:
            raise ValueError("extract.max_malformed_warnings must be >= 0.")
        load = self.load
        if load.concurrency < 1:
            raise ValueError(f"load.concurrency must be >= 1; got {load.concurrency!r}.")
        if load.single_worker_threshold < 0:
            raise ValueError("load.single_worker_threshold must be >= 0.")
        if load.submit_window is not None and load.submit_window < 1:
            raise ValueError("load.submit_window must be >= 1 when set.")
        if load.top_error_limit < 0:
            raise ValueError("load.top_error_limit must be >= 0.")
        period = self.progress.period_ms
        if period is not None and period < 0:
            raise ValueError("progress.period_ms must be >= 0 when set.")

    # -------------------------
    # Serialization helpers
    # -------------------------
    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation of this configuration."""
        return _dataclass_to_dict(self)

    def to_json(self, path: Path | str, *, indent: int = 2) -> str:
        """Serialize the configuration to JSON and write it to disk.

        Args:
            path (Path | str): Target file path.
            indent (int): Indentation level passed to ``json.dumps``.

        Returns:
            str: String path to the written file.
        """
        target = Path(path)
        target.write_text(json.dumps(self.to_dict(), indent=indent, sort_keys=True), encoding="utf-8")
        return str(target)

    @classmethod
    def from_dict(cls: type[T], data: Mapping[str, Any]) -> T:
        """Instantiate a BulkLoadConfig from a mapping produced by
        :meth:`to_dict` or loaded from JSON/TOML."""
        return _dataclass_from_dict(cls, data)

    @classmethod
    def from_json(cls: type[T], path: Path | str) -> T:
        """Load a configuration from a JSON file."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(payload)

    @classmethod
    def from_toml(cls: type[T], path: Path | str) -> T:
        """
        Load a BulkLoadConfig from a TOML file.

        The TOML layout mirrors this dataclass: top-level tables [detect],
        [extract], [load], [progress] and [logging]. Override tables go
        under [load.data_source_overrides] / [load.entity_type_overrides].
        """
        data = tomllib.loads(Path(path).read_bytes().decode("utf-8"))
        return cls.from_dict(data)


def load_config_from_path(path: str | Path) -> BulkLoadConfig:
    """Load a BulkLoadConfig from a JSON or TOML file.

    Args:
        path (Path | str): Path to a ``.toml`` or ``.json`` config file.

    Returns:
        BulkLoadConfig: Parsed and validated configuration.

    Raises:
        ValueError: If the file extension is not ``.toml`` or ``.json`` or
            the configuration fails validation.
    """
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".toml":
        cfg = BulkLoadConfig.from_toml(p)
    elif suffix == ".json":
        cfg = BulkLoadConfig.from_json(p)
    else:
        raise ValueError(f"Unsupported config extension {p.suffix!r}; expected .toml or .json.")
    cfg.validate()
    return cfg


def _dataclass_to_dict(obj: Any) -> dict[str, Any]:
    """Serialize dataclasses to JSON-friendly dicts, skipping None fields."""
    result: dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        result[f.name] = _serialize_value(value)
    return result


def _serialize_value(value: Any) -> Any:
    if is_dataclass(value):
        return _dataclass_to_dict(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_serialize_value(v) for v in value]
    if isinstance(value, dict):
        # A None override key is written as "", the "no value" key in files.
        return {"" if k is None else str(k): _serialize_value(v) for k, v in value.items()}
    return value


def _dataclass_from_dict(cls: type[T], data: Mapping[str, Any] | None) -> T:
    """Instantiate dataclass ``cls`` from a mapping, rejecting unknown keys."""
    if data is None:
        return cls()  # type: ignore[call-arg]
    if not isinstance(data, Mapping):
        raise TypeError(f"Expected a mapping for {cls.__name__}; got {type(data).__name__}.")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} option(s): {', '.join(unknown)}")
    type_hints = get_type_hints(cls)
    kwargs = {name: _coerce_value(type_hints[name], value) for name, value in data.items()}
    return cls(**kwargs)  # type: ignore[arg-type]


def _coerce_value(expected_type: Any, value: Any) -> Any:
    """Coerce ``value`` into the shape implied by ``expected_type``."""
    base_type = _strip_optional(expected_type)
    if value is None:
        return None
    if isinstance(base_type, type) and is_dataclass(base_type):
        return _dataclass_from_dict(base_type, value)
    origin = get_origin(base_type)
    if origin in (list, tuple, Sequence):
        args = get_args(base_type)
        inner = args[0] if args else Any
        items = [_coerce_value(inner, v) for v in value]
        return tuple(items) if origin is tuple else items
    if origin is dict:
        key_type, val_type = get_args(base_type) or (Any, Any)
        return {_coerce_value(key_type, k): _coerce_value(val_type, v) for k, v in value.items()}
    if base_type in {str, int, float, bool}:
        return base_type(value)
    return value


def _strip_optional(typ: Any) -> Any:
    """Return the single non-None member of an Optional annotation."""
    if get_origin(typ) in (Union, types.UnionType):
        args = [arg for arg in get_args(typ) if arg is not type(None)]
        if len(args) == 1:
            return _strip_optional(args[0])
    return typ
