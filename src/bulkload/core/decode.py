# decode.py
# SPDX-License-Identifier: MIT
"""Character encoding detection for bulk record inputs.

Detection runs on the bounded lookahead taken by the format detector, so
every helper here tolerates a sample that ends in the middle of a
multi-byte sequence.
"""

from __future__ import annotations

import codecs

from .log import get_logger

__all__ = [
    "detect_encoding",
    "decode_sample",
    "normalize_encoding",
]

log = get_logger(__name__)

# -----------------------------------------
# Encoding helpers: BOM + UTF-16 heuristics
# -----------------------------------------

# UTF-32 signatures come first: the UTF-32-LE BOM starts with the UTF-16-LE one.
_BOMS: tuple[tuple[bytes, str], ...] = (
    (b"\x00\x00\xFE\xFF", "utf-32"),
    (b"\xFF\xFE\x00\x00", "utf-32"),
    (b"\xEF\xBB\xBF", "utf-8-sig"),
    (b"\xFE\xFF", "utf-16"),
    (b"\xFF\xFE", "utf-16"),
)


def _detect_bom(data: bytes) -> str | None:
    """Return the BOM-consuming codec implied by a leading BOM, if any."""
    for sig, enc in _BOMS:
        if data.startswith(sig):
            return enc
    return None


def _guess_utf16_endian_from_nuls(sample: bytes) -> str | None:
    """Infer UTF-16 endianness from NUL distribution in a byte sample.

    In ASCII-heavy UTF-16 text one byte of each 2-byte unit is NUL. Count
    NULs at even versus odd offsets and pick the side with clearly more.

    Returns:
        str | None: "utf-16-le" or "utf-16-be" when confident, otherwise None.
    """
    if not sample:
        return None
    even_nuls = sample[0::2].count(0)
    odd_nuls = sample[1::2].count(0)
    if even_nuls + odd_nuls < max(4, len(sample) // 64):
        return None
    if even_nuls > odd_nuls * 2:
        return "utf-16-be"
    if odd_nuls > even_nuls * 2:
        return "utf-16-le"
    return None


def _decodes_cleanly(sample: bytes, encoding: str, *, final: bool) -> bool:
    decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
    try:
        decoder.decode(sample, final=final)
    except UnicodeDecodeError:
        return False
    return True


def normalize_encoding(name: str) -> str:
    """Return Python's canonical codec name for ``name``.

    Raises:
        LookupError: If the codec is unknown.
    """
    return codecs.lookup(name.strip().strip('"').strip("'")).name


def detect_encoding(sample: bytes, *, complete: bool = False, default: str = "utf-8") -> str:
    """Guess the character encoding of ``sample``.

    Strategy:
      1) Honor BOMs for UTF-8/16/32.
      2) Guess UTF-16 endianness from NUL placement; NUL-heavy text is
         never treated as UTF-8 even though it decodes.
      3) Try UTF-8 strictly (a truncated trailing sequence is allowed
         unless ``complete`` is set).
      4) Fall back to cp1252, then latin-1 which never fails.

    Args:
        sample (bytes): Leading bytes of the input.
        complete (bool): Whether ``sample`` holds the entire input.
        default (str): Encoding reported for an empty sample.

    Returns:
        str: Codec name usable with :func:`open` / ``io.TextIOWrapper``.
    """
    if not sample:
        return default

    enc = _detect_bom(sample)
    if enc:
        return enc
    guess = _guess_utf16_endian_from_nuls(sample[:4096])
    if guess and _decodes_cleanly(sample, guess, final=complete):
        return guess
    if _decodes_cleanly(sample, "utf-8", final=complete):
        return "utf-8"
    if _decodes_cleanly(sample, "cp1252", final=True):
        log.debug("Input is not valid UTF-8; falling back to cp1252")
        return "cp1252"
    log.debug("Input is not valid UTF-8 or cp1252; falling back to latin-1")
    return "latin-1"


def decode_sample(sample: bytes, encoding: str) -> str:
    """Decode a possibly truncated sample, replacing undecodable bytes."""
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    return decoder.decode(sample, final=False)
