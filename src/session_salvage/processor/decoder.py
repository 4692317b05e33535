"""Record decoder: an ordered chain of fallback decoding strategies.

Stored values are not reliably typed. A value may be plain JSON, JSON wrapped
in base64 or hex, JSON embedded in an otherwise binary blob, or a plain
``<text>$<uuid>`` user message. Each strategy below is a pure function that
returns the recovered object or None; ``DECODE_CHAIN`` fixes their order and
the first success wins. Decoding never raises for garbage input: when every
strategy fails the caller gets an undecodable result and skips the record.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple

from session_salvage.logging import get_logger

logger = get_logger("decoder")

# Characters stripped before hex decoding
_HEX_WHITESPACE = re.compile(r"[ \t\r\n]")

# Control characters other than newline, tab and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

# Synthetic ids fall back to this many leading characters of the storage key
FALLBACK_ID_LENGTH = 8


@dataclass(frozen=True)
class TextMessage:
    """A user message stored as ``<text>$<uuid>`` instead of JSON."""

    text: str
    message_id: str
    chat_id: str = ""


@dataclass(frozen=True)
class DecodedRecord:
    """Outcome of running the decode chain over one raw value.

    Exactly one of ``data`` and ``text_message`` is set on success; both are
    None when the value could not be decoded.
    """

    key: str
    strategy: str | None = None
    data: dict | None = None
    text_message: TextMessage | None = None

    @property
    def ok(self) -> bool:
        return self.strategy is not None


def to_bytes(value: str | bytes) -> bytes:
    """Recover the stored bytes behind a value string.

    Backends decode binary values with ``surrogateescape`` so the original
    bytes survive the round trip.
    """
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8", "surrogateescape")


def load_object(raw: str | bytes) -> dict | None:
    """Parse JSON and return it only if it is an object."""
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def decode_base64(value: str) -> bytes | None:
    """Decode standard or URL-safe base64, with or without padding."""
    if not value:
        return None
    candidates = [value]
    if len(value) % 4:
        candidates.append(value + "=" * (-len(value) % 4))
    for candidate in candidates:
        for altchars in (None, b"-_"):
            try:
                return base64.b64decode(candidate, altchars=altchars, validate=True)
            except (binascii.Error, ValueError):
                continue
    return None


def decode_hex(value: str) -> bytes | None:
    """Decode hex, ignoring interleaved spaces, tabs and newlines."""
    cleaned = _HEX_WHITESPACE.sub("", value)
    if not cleaned:
        return None
    try:
        return bytes.fromhex(cleaned)
    except ValueError:
        return None


def extract_json_object(data: bytes, start: int = 0) -> bytes | None:
    """Find the first brace-balanced ``{...}`` span at or after ``start``.

    Walks forward from the first ``{`` tracking brace depth. Braces inside
    string literals do not count, and a backslash escapes the next byte, so
    ``{"a": "}"}`` is returned whole.

    Args:
        data: Raw bytes to scan
        start: Offset to begin searching from

    Returns:
        The bytes of the balanced object, or None if there is none
    """
    begin = data.find(b"{", start)
    if begin == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i in range(begin, len(data)):
        byte = data[i]
        if escape_next:
            escape_next = False
            continue
        if byte == 0x5C:  # backslash
            escape_next = True
            continue
        if byte == 0x22:  # double quote
            in_string = not in_string
            continue
        if in_string:
            continue
        if byte == 0x7B:  # {
            depth += 1
        elif byte == 0x7D:  # }
            depth -= 1
            if depth == 0:
                return data[begin : i + 1]

    return None


def decode_json(value: str) -> dict | None:
    """Strategy 1: the value is JSON."""
    return load_object(value)


def decode_base64_json(value: str) -> dict | None:
    """Strategy 2: the value is base64-wrapped JSON."""
    decoded = decode_base64(value)
    return load_object(decoded) if decoded is not None else None


def decode_hex_json(value: str) -> dict | None:
    """Strategy 3: the value is hex-wrapped JSON."""
    decoded = decode_hex(value)
    return load_object(decoded) if decoded is not None else None


def decode_embedded_json(value: str | bytes) -> dict | None:
    """Strategy 4: a JSON object is embedded somewhere in binary data."""
    data = to_bytes(value)
    offset = 0
    while True:
        candidate = extract_json_object(data, offset)
        if candidate is None:
            return None
        parsed = load_object(candidate)
        if parsed is not None:
            return parsed
        offset = data.find(b"{", offset) + 1


def strip_control_chars(text: str) -> str:
    """Remove control characters, keeping newline, tab and carriage return."""
    return _CONTROL_CHARS.sub("", text)


def decode_text_message(value: str, key: str = "", session_id: str = "") -> TextMessage | None:
    """Strategy 5: a plain ``<text>$<uuid>`` user message.

    The ``$`` must be present and must not be the first character. When no
    id follows the ``$``, a synthetic one is taken from the storage key.
    """
    cleaned = strip_control_chars(value).strip()
    dollar = cleaned.find("$")
    if dollar <= 0:
        return None

    text = cleaned[:dollar].strip()
    if not text:
        return None

    message_id = strip_control_chars(cleaned[dollar + 1 :]).strip()
    if not message_id:
        message_id = key[:FALLBACK_ID_LENGTH]

    return TextMessage(text=text, message_id=message_id, chat_id=session_id)


class Strategy(NamedTuple):
    """A named decode strategy returning a JSON object or None."""

    name: str
    decode: Callable[[str], dict | None]


DECODE_CHAIN: tuple[Strategy, ...] = (
    Strategy("json", decode_json),
    Strategy("base64", decode_base64_json),
    Strategy("hex", decode_hex_json),
    Strategy("embedded_json", decode_embedded_json),
)

TEXT_MESSAGE_STRATEGY = "text_message"


def decode_record(
    value: str,
    key: str = "",
    session_id: str = "",
    log: logging.Logger | None = None,
) -> DecodedRecord:
    """Run the decode chain over one raw value.

    Args:
        value: The stored value string
        key: The storage key (used for a synthetic fallback id)
        session_id: Owning session/chat id for text messages
        log: Logger handle (defaults to the module logger)

    Returns:
        DecodedRecord; ``ok`` is False if every strategy failed
    """
    log = log or logger

    for strategy in DECODE_CHAIN:
        data = strategy.decode(value)
        if data is not None:
            if strategy.name != "json":
                log.debug("Decoded record: key=%s strategy=%s", key, strategy.name)
            return DecodedRecord(key=key, strategy=strategy.name, data=data)

    message = decode_text_message(value, key, session_id)
    if message is not None:
        log.debug("Decoded record: key=%s strategy=%s", key, TEXT_MESSAGE_STRATEGY)
        return DecodedRecord(key=key, strategy=TEXT_MESSAGE_STRATEGY, text_message=message)

    log.debug("Undecodable record: key=%s preview=%r", key, preview(value))
    return DecodedRecord(key=key)


def preview(value: Any, limit: int = 100) -> str:
    """Shorten a value for log output."""
    text = value if isinstance(value, str) else str(value)
    return text if len(text) <= limit else text[:limit] + "..."
