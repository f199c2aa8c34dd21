# detect.py
# SPDX-License-Identifier: MIT
"""Format and encoding detection for bulk record inputs.

Detection takes a bounded peek at the byte stream, decides the record
format and character encoding, and hands back a stream that replays the
peeked bytes so the extractor sees the input from the first byte.
"""

from __future__ import annotations

import io
import json
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

from .config import DetectConfig
from .decode import decode_sample, detect_encoding, normalize_encoding
from .log import get_logger

__all__ = [
    "RecordFormat",
    "UnsupportedFormatError",
    "DetectedInput",
    "parse_media_type",
    "format_for_media_type",
    "sniff_format",
    "sniff_csv_delimiter",
    "detect_format",
]

log = get_logger(__name__)


class UnsupportedFormatError(ValueError):
    """The input format could not be determined; nothing was read."""


class RecordFormat(Enum):
    """Closed set of supported record formats, valued by media type."""

    CSV = "text/csv"
    JSON_ARRAY = "application/json"
    JSON_LINES = "application/x-jsonlines"

    @property
    def media_type(self) -> str:
        return self.value


_MEDIA_TYPES: dict[str, RecordFormat] = {
    "text/csv": RecordFormat.CSV,
    "application/csv": RecordFormat.CSV,
    "application/json": RecordFormat.JSON_ARRAY,
    "application/x-jsonlines": RecordFormat.JSON_LINES,
    "application/jsonlines": RecordFormat.JSON_LINES,
    "application/jsonl": RecordFormat.JSON_LINES,
    "application/x-ndjson": RecordFormat.JSON_LINES,
    "application/ndjson": RecordFormat.JSON_LINES,
}

# Declared types that say nothing about the record layout.
_GENERIC_MEDIA_TYPES = frozenset(
    {"text/plain", "application/octet-stream", "multipart/form-data", "*/*"}
)

# Multipart bodies declare the charset of the envelope, not of the file.
_CHARSET_IGNORED = frozenset({"multipart/form-data"})


def parse_media_type(media_type: str | None) -> tuple[str | None, dict[str, str]]:
    """Split ``type/subtype; key=value`` into a lower-cased type and params."""
    if not media_type or not media_type.strip():
        return None, {}
    head, *raw_params = media_type.split(";")
    params: dict[str, str] = {}
    for raw in raw_params:
        key, sep, value = raw.partition("=")
        if not sep:
            continue
        params[key.strip().lower()] = value.strip().strip('"')
    return head.strip().lower() or None, params


def format_for_media_type(media_type: str | None) -> RecordFormat | None:
    """Return the format a media type names, or None if generic/unknown."""
    base, _ = parse_media_type(media_type)
    if base is None:
        return None
    return _MEDIA_TYPES.get(base)


@dataclass(slots=True, frozen=True)
class DetectedInput:
    """Outcome of format detection.

    Attributes:
        format (RecordFormat): Detected record format.
        encoding (str): Codec used to decode the input.
        media_type (str | None): Media type as declared by the caller.
        head (bytes): The peeked bytes (at most ``peek_bytes``).
        stream (BinaryIO): Byte stream replaying ``head`` before the rest
            of the original input.
        csv_delimiter (str): Delimiter for CSV inputs.
        declared (bool): Whether the format came from the media type
            rather than sniffing.
    """

    format: RecordFormat
    encoding: str
    media_type: str | None
    head: bytes
    stream: BinaryIO
    csv_delimiter: str = ","
    declared: bool = False

    def open_text(self) -> io.TextIOWrapper:
        """Wrap the replay stream for text reading; undecodable bytes become U+FFFD."""
        return io.TextIOWrapper(self.stream, encoding=self.encoding, errors="replace", newline="")


class _ReplayRaw(io.RawIOBase):
    """Raw stream that yields a prefix and then the wrapped stream."""

    def __init__(self, prefix: bytes, rest: BinaryIO) -> None:
        self._prefix = memoryview(prefix)
        self._rest = rest

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._prefix:
            n = min(len(b), len(self._prefix))
            b[:n] = self._prefix[:n]
            self._prefix = self._prefix[n:]
            return n
        chunk = self._rest.read(len(b))
        if not chunk:
            return 0
        n = len(chunk)
        b[:n] = chunk
        return n


def _peek(stream: BinaryIO, limit: int) -> tuple[bytes, bool]:
    """Read up to ``limit`` bytes; report whether EOF was reached."""
    parts: list[bytes] = []
    size = 0
    while size < limit:
        chunk = stream.read(limit - size)
        if not chunk:
            return b"".join(parts), True
        parts.append(chunk)
        size += len(chunk)
    return b"".join(parts), False


def sniff_csv_delimiter(header: str, delimiters: tuple[str, ...]) -> str | None:
    """Return the most frequent candidate delimiter in ``header``, if any."""
    best: str | None = None
    best_count = 0
    for delim in delimiters:
        count = header.count(delim)
        if count > best_count:
            best, best_count = delim, count
    return best


def _significant_lines(text: str, *, complete: bool) -> list[str]:
    lines = text.splitlines(keepends=True)
    if lines and not complete and not lines[-1].endswith(("\n", "\r")):
        # The last line was cut by the peek boundary.
        lines = lines[:-1]
    return [ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#")]


def _is_json_object(line: str) -> bool:
    try:
        return isinstance(json.loads(line), dict)
    except ValueError:
        return False


def _looks_like_json_lines(text: str, *, complete: bool) -> bool:
    lines = _significant_lines(text, complete=complete)
    if not lines:
        # A single object line longer than the peek.
        stripped = text.lstrip()
        return stripped.startswith("{") and not complete
    if not _is_json_object(lines[0]):
        return False
    return len(lines) == 1 or _is_json_object(lines[1])


def sniff_format(
    text: str,
    *,
    complete: bool,
    delimiters: tuple[str, ...] = (",", "\t", "|", ";"),
) -> tuple[RecordFormat, str]:
    """Classify decoded lookahead text.

    Args:
        text (str): Decoded peek of the input.
        complete (bool): Whether ``text`` covers the whole input.
        delimiters (tuple[str, ...]): CSV delimiter candidates.

    Returns:
        tuple[RecordFormat, str]: Format and CSV delimiter (``","`` for
        non-CSV formats).

    Raises:
        UnsupportedFormatError: If no format matches.
    """
    stripped = text.lstrip("\ufeff \t\r\n")
    if not stripped:
        raise UnsupportedFormatError("Cannot determine the format of an empty input.")
    if stripped[0] == "[":
        return RecordFormat.JSON_ARRAY, ","
    if stripped[0] in "{#" and _looks_like_json_lines(stripped, complete=complete):
        return RecordFormat.JSON_LINES, ","
    header = next((ln for ln in stripped.splitlines() if ln.strip()), "")
    delim = sniff_csv_delimiter(header, delimiters)
    if delim is not None and not stripped.startswith("{"):
        return RecordFormat.CSV, delim
    raise UnsupportedFormatError(
        "Input is not a JSON array, JSON lines, or delimited text with a header line."
    )


def _resolve_encoding(declared_charset: str | None, head: bytes, *, complete: bool, cfg: DetectConfig) -> str:
    if declared_charset:
        try:
            encoding = normalize_encoding(declared_charset)
        except LookupError as exc:
            raise UnsupportedFormatError(f"Unknown character encoding {declared_charset!r}") from exc
        if encoding == "utf-8" and head.startswith(b"\xef\xbb\xbf"):
            return "utf-8-sig"
        return encoding
    return detect_encoding(head, complete=complete, default=cfg.default_encoding)


def detect_format(
    stream: BinaryIO,
    media_type: str | None = None,
    *,
    config: DetectConfig | None = None,
) -> DetectedInput:
    """Determine the record format and encoding of a byte stream.

    A recognized media type wins. A generic, unknown, or absent media
    type triggers sniffing of the bounded lookahead.

    Args:
        stream (BinaryIO): Readable byte stream positioned at the start of
            the input. Only ``config.peek_bytes`` bytes are consumed here.
        media_type (str | None): Declared media type, optionally with a
            ``charset`` parameter.
        config (DetectConfig | None): Detection settings.

    Returns:
        DetectedInput: Format, encoding, and a replaying stream.

    Raises:
        UnsupportedFormatError: If the format or declared charset cannot
            be determined.
    """
    cfg = config or DetectConfig()
    base, params = parse_media_type(media_type)
    charset = None if base in _CHARSET_IGNORED else params.get("charset")

    head, complete = _peek(stream, cfg.peek_bytes)
    encoding = _resolve_encoding(charset, head, complete=complete, cfg=cfg)
    text = decode_sample(head, encoding)

    fmt = _MEDIA_TYPES.get(base) if base else None
    declared = fmt is not None
    if fmt is None:
        if base and base not in _GENERIC_MEDIA_TYPES:
            log.debug("Unrecognized media type %r; sniffing content", base)
        fmt, delimiter = sniff_format(text, complete=complete, delimiters=cfg.csv_delimiters)
    elif fmt is RecordFormat.CSV:
        header = next((ln for ln in text.splitlines() if ln.strip()), "")
        delimiter = sniff_csv_delimiter(header, cfg.csv_delimiters) or ","
    else:
        delimiter = ","

    log.debug(
        "Detected %s input (encoding=%s, declared=%s, peek=%d bytes)",
        fmt.name,
        encoding,
        declared,
        len(head),
    )
    replay = io.BufferedReader(_ReplayRaw(head, stream))
    return DetectedInput(
        format=fmt,
        encoding=encoding,
        media_type=media_type,
        head=head,
        stream=replay,
        csv_delimiter=delimiter,
        declared=declared,
    )
