"""Readability classifier shared by the decoders."""

# Inputs shorter than this must be entirely printable
SHORT_TEXT_LENGTH = 5

# Minimum printable share for longer inputs
PRINTABLE_RATIO = 0.7


def _is_printable(ch: str) -> bool:
    return ch.isprintable() or ch.isspace()


def is_readable_text(value: str | bytes) -> bool:
    """Check whether a value is valid UTF-8 and mostly printable.

    Short inputs (under 5 characters) must be 100% printable or whitespace;
    longer inputs need at least 70% printable or whitespace characters.
    Empty input is not readable.

    Args:
        value: Text, or raw bytes that must decode as UTF-8

    Returns:
        True if the value reads as text
    """
    if isinstance(value, bytes):
        try:
            text = value.decode("utf-8")
        except UnicodeDecodeError:
            return False
    else:
        text = value
        try:
            # Lone surrogates mean the source bytes were not valid UTF-8
            text.encode("utf-8")
        except UnicodeEncodeError:
            return False

    if not text:
        return False

    printable = sum(1 for ch in text if _is_printable(ch))
    if len(text) < SHORT_TEXT_LENGTH:
        return printable == len(text)
    return printable / len(text) >= PRINTABLE_RATIO
