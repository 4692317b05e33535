"""Per-bubble text extraction.

A bubble's text may live in its plain ``text`` field, its rich-text tree,
its code blocks, or (for damaged records) only in the raw JSON. Sources are
combined in that order; the raw-JSON scans only run when nothing else
produced text.
"""

import json
import logging
import re

from session_salvage.logging import get_logger
from session_salvage.models import Bubble
from session_salvage.processor.rich_text import (
    RichTextError,
    extract_rich_text,
    format_code_block,
    format_redacted_reasoning,
)

logger = get_logger("text_extractor")

NO_TEXT_PLACEHOLDER = "[Message with no extractable text content]"

# Fallback scans only keep values longer than this
MIN_FALLBACK_LENGTH = 10

# Older records inline reasoning as "[Redacted Reasoning: <payload>]"
_LEGACY_REASONING = re.compile(r"\[Redacted Reasoning:\s*([^\]]+)\]")

_QUOTED = r'[ :]*"((?:[^"\\]|\\.)*)"'
_TEXT_FIELD = re.compile(r'"text"' + _QUOTED)

FALLBACK_FIELDS = ("content", "value", "message", "text", "thinking", "tool", "name", "description")
_FALLBACK_PATTERNS = [(name, re.compile(f'"{name}"' + _QUOTED)) for name in FALLBACK_FIELDS]

_BASIC_ESCAPES = {"\\n": "\n", "\\t": "\t", '\\"': '"', "\\\\": "\\"}


def unescape_json_string(value: str) -> str:
    """Undo JSON string escaping, falling back to the common escapes."""
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        for escaped, plain in _BASIC_ESCAPES.items():
            value = value.replace(escaped, plain)
        return value


def reformat_legacy_reasoning(text: str, log: logging.Logger | None = None) -> str:
    """Rewrite inline ``[Redacted Reasoning: ...]`` markers as reasoning blocks."""
    if "[Redacted Reasoning:" not in text:
        return text

    def replace(match: re.Match) -> str:
        return format_redacted_reasoning(match.group(1).strip(), log).strip("\n")

    return _LEGACY_REASONING.sub(replace, text)


def scan_text_fields(raw: str) -> str:
    """Collect every quoted ``"text"`` value found in raw JSON."""
    values = [unescape_json_string(m.group(1)) for m in _TEXT_FIELD.finditer(raw)]
    return " ".join(value for value in values if value.strip())


def scan_labeled_fields(raw: str) -> str:
    """Collect the first long value of each common text-bearing field."""
    found = []
    for _, pattern in _FALLBACK_PATTERNS:
        match = pattern.search(raw)
        if match is None:
            continue
        value = unescape_json_string(match.group(1))
        if len(value) > MIN_FALLBACK_LENGTH:
            found.append(value)
    return "\n".join(found)


def _raw_rich_text(rich_text) -> str:
    if isinstance(rich_text, str):
        return rich_text
    try:
        return json.dumps(rich_text)
    except (TypeError, ValueError):
        return ""


def extract_bubble_text(bubble: Bubble, log: logging.Logger | None = None) -> str:
    """Combine every text source of a bubble into one string.

    Args:
        bubble: The message record
        log: Logger handle (defaults to the module logger)

    Returns:
        The combined text, or ``NO_TEXT_PLACEHOLDER`` when nothing was found
    """
    log = log or logger
    parts: list[str] = []

    text = bubble.text.strip()
    if text:
        parts.append(reformat_legacy_reasoning(text, log))

    if bubble.rich_text:
        try:
            rich = extract_rich_text(bubble.rich_text, log)
        except RichTextError as e:
            log.debug("richText unparsed: bubble=%s error=%s", bubble.bubble_id, e)
            raw = _raw_rich_text(bubble.rich_text)
            rich = scan_text_fields(raw) or scan_labeled_fields(raw)
        if rich and rich not in text:
            parts.append(rich)

    for block in bubble.code_blocks:
        if block.content:
            parts.append(format_code_block(block.content, block.language))

    if not parts:
        return NO_TEXT_PLACEHOLDER
    return "\n\n".join(parts)


def has_text(text: str) -> bool:
    """Whether extracted text is worth keeping as a message."""
    return bool(text.strip()) and text != NO_TEXT_PLACEHOLDER
