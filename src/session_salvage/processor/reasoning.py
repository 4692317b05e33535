"""Decoding of redacted-reasoning payloads.

Reasoning blocks arrive as base64url-encoded protobuf-style data that may
or may not be encrypted. The decoder recovers readable text where it can
and otherwise reports the payload size and its Shannon entropy, which is
enough to tell an encrypted payload from one that is merely unknown.
"""

import base64
import binascii
import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Any

from session_salvage.logging import get_logger
from session_salvage.processor.decoder import extract_json_object, load_object
from session_salvage.processor.readable import is_readable_text
from session_salvage.processor.wire_format import scan_length_delimited, try_walk_fields

logger = get_logger("reasoning")

# Entropy in bits/byte at or above which a payload is treated as encrypted
ENCRYPTED_ENTROPY_THRESHOLD = 6.0

# Only strings longer than this count as recovered reasoning text
MIN_TEXT_LENGTH = 10

ENCRYPTED_TEMPLATE = (
    "[Encrypted: {size} bytes, entropy={entropy:.2f} bits/byte - "
    "content is encrypted and cannot be decoded without the key]"
)
ENCODED_TEMPLATE = "[Encoded: {size} bytes, entropy={entropy:.2f} bits/byte - could not decode]"


@dataclass(frozen=True)
class ReasoningResult:
    """Decoded reasoning text, or a descriptive placeholder."""

    text: str
    decoded: bool


def decode_base64url(encoded: str) -> bytes | None:
    """Decode URL-safe base64 (padding optional), falling back to standard."""
    padded = encoded + "=" * (-len(encoded) % 4)
    for altchars in (b"-_", None):
        try:
            return base64.b64decode(padded, altchars=altchars, validate=True)
        except (binascii.Error, ValueError):
            continue
    return None


def shannon_entropy(data: bytes) -> float:
    """Shannon entropy of ``data`` in bits per byte (0.0 for empty input)."""
    if not data:
        return 0.0
    total = len(data)
    return sum(
        (count / total) * math.log2(total / count) for count in Counter(data).values()
    )


def _is_reasoning_text(value: str) -> bool:
    return len(value) > MIN_TEXT_LENGTH and is_readable_text(value)


def _collect_strings(value: Any, found: list[str]) -> None:
    """Gather reasoning-like strings from one walked field value."""
    if isinstance(value, str):
        embedded = extract_json_object(value.encode("utf-8"))
        if embedded is not None:
            parsed = load_object(embedded)
            if parsed is not None:
                for item in parsed.values():
                    if isinstance(item, str) and _is_reasoning_text(item):
                        found.append(item)
        if _is_reasoning_text(value):
            found.append(value)
    elif isinstance(value, dict):
        for item in value.values():
            _collect_strings(item, found)


def decode_reasoning(encoded: str, log: logging.Logger | None = None) -> ReasoningResult:
    """Try to recover readable text from an encoded reasoning payload.

    Args:
        encoded: The base64url payload as stored
        log: Logger handle (defaults to the module logger)

    Returns:
        ReasoningResult with ``decoded`` True when text was recovered. If the
        payload is not base64 at all it is returned unchanged.
    """
    log = log or logger

    data = decode_base64url(encoded)
    if data is None:
        log.debug("Reasoning payload is not base64: length=%d", len(encoded))
        return ReasoningResult(text=encoded, decoded=False)

    found: list[str] = []
    fields = try_walk_fields(data)
    if fields:
        for value in fields.values():
            _collect_strings(value, found)
        if found:
            return ReasoningResult(text="\n\n".join(found), decoded=True)

    for value in scan_length_delimited(data):
        _collect_strings(value, found)
    if found:
        return ReasoningResult(text="\n\n".join(found), decoded=True)

    entropy = shannon_entropy(data)
    log.debug("Reasoning payload undecoded: size=%d entropy=%.2f", len(data), entropy)
    if entropy >= ENCRYPTED_ENTROPY_THRESHOLD:
        return ReasoningResult(
            text=ENCRYPTED_TEMPLATE.format(size=len(data), entropy=entropy), decoded=False
        )
    return ReasoningResult(
        text=ENCODED_TEMPLATE.format(size=len(data), entropy=entropy), decoded=False
    )
