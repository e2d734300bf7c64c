"""
Marker Codec
============
Zero-width marker format used to smuggle JSON metadata inside visible text.

Wire format:
    start  = U+200B followed by 1..N characters from U+FE00..U+FE0F
    end    = U+200C
    nibble = ord(char) - 0xFE00, consecutive (high, low) pairs form bytes
    bytes  → UTF-8 text → JSON value
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .errors import DecodeError

logger = logging.getLogger(__name__)

# ─── Alphabet ─────────────────────────────────────────────────────────────────

START_MARKER = "\N{ZERO WIDTH SPACE}"
END_MARKER = "\N{ZERO WIDTH NON-JOINER}"
NIBBLE_BASE = 0xFE00

# Start marker with its payload. A marker directly after a quote or an
# angle bracket is source text (attribute values, markup), not a segment.
START_MARKER_PATTERN = re.compile(
    "(?<![\"'\N{LEFT SINGLE QUOTATION MARK}\N{RIGHT SINGLE QUOTATION MARK}<])"
    "\N{ZERO WIDTH SPACE}"
    "([\N{VARIATION SELECTOR-1}-\N{VARIATION SELECTOR-16}]+)"
)

MARKER_CHARS_PATTERN = re.compile(
    "[\N{ZERO WIDTH SPACE}\N{ZERO WIDTH NON-JOINER}"
    "\N{VARIATION SELECTOR-1}-\N{VARIATION SELECTOR-16}]"
)


def decode(payload: str) -> bytes:
    """
    Decode a nibble-alphabet payload into raw bytes.

    Raises:
        DecodeError: If the payload length is odd or a character lies
            outside the 16-symbol alphabet.
    """
    if len(payload) % 2 != 0:
        raise DecodeError(
            f"Invalid marker payload length {len(payload)} (must be even)"
        )

    data = bytearray()
    for i in range(0, len(payload), 2):
        high = ord(payload[i]) - NIBBLE_BASE
        low = ord(payload[i + 1]) - NIBBLE_BASE
        if not (0 <= high <= 15 and 0 <= low <= 15):
            raise DecodeError(
                f"Invalid character in marker payload at position {i}"
            )
        data.append((high << 4) | low)
    return bytes(data)


def encode(data: bytes) -> str:
    """Inverse of :func:`decode`: two nibble characters per byte."""
    return "".join(
        chr(NIBBLE_BASE + (b >> 4)) + chr(NIBBLE_BASE + (b & 0x0F))
        for b in data
    )


def decode_metadata(payload: str) -> tuple[dict[str, Any], Optional[str]]:
    """
    Decode a payload into (metadata, error).

    Never raises. The error is None on success; on failure the metadata is
    empty and the error carries the message. A producer key named
    ``decodingError`` stays in the metadata.
    """
    try:
        text = decode(payload).decode("utf-8", errors="replace")
        if not text.strip():
            return {}, None
        value = json.loads(text)
    except (DecodeError, ValueError, RecursionError) as e:
        logger.debug(f"Marker payload failed to decode: {e}")
        return {}, str(e) or e.__class__.__name__
    return (value if isinstance(value, dict) else {"value": value}), None


def decode_to_json(payload: str) -> dict[str, Any]:
    """
    Best-effort decode of a payload into a metadata mapping.

    Never raises. An empty payload gives ``{}``; a payload that fails to
    decode or parse gives ``{"decodingError": "<message>"}``. A JSON value
    that is not an object is carried as ``{"value": <json>}``.
    """
    metadata, error = decode_metadata(payload)
    if error is not None:
        return {"decodingError": error}
    return metadata


def encode_metadata(metadata: Any) -> str:
    """Build a start marker carrying ``metadata`` as compact JSON."""
    raw = json.dumps(metadata, separators=(",", ":"), ensure_ascii=False)
    return START_MARKER + encode(raw.encode("utf-8"))


def wrap(text: str, metadata: Any) -> str:
    """Surround ``text`` with a start marker for ``metadata`` and an end marker."""
    return encode_metadata(metadata) + text + END_MARKER


def contains_markers(text: str) -> bool:
    return START_MARKER in text or END_MARKER in text


def strip_markers(text: str) -> str:
    """Remove every marker and nibble character, leaving the visible text."""
    return MARKER_CHARS_PATTERN.sub("", text)
