"""Storage backend interface and key parsing."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Self

from session_salvage.errors import ParseError
from session_salvage.models import Bubble, Composer, MessageContext

BUBBLE_PREFIX = "bubbleId:"
COMPOSER_PREFIX = "composerData:"
CONTEXT_PREFIX = "messageRequestContext:"
CODE_BLOCK_DIFF_PREFIX = "codeBlockDiff:"


def split_key(key: str, prefix: str, min_parts: int, max_parts: int | None = None) -> list[str]:
    """Split a namespaced key into its id parts.

    Args:
        key: Full key, e.g. ``bubbleId:<chatId>:<bubbleId>``
        prefix: Expected namespace prefix including the colon
        min_parts: Minimum number of id parts after the prefix
        max_parts: Maximum number of id parts (None for unbounded)

    Returns:
        The id parts

    Raises:
        ParseError: If the key has the wrong prefix or part count
    """
    if not key.startswith(prefix):
        raise ParseError(prefix.rstrip(":"), key, "unexpected key prefix")
    parts = key[len(prefix) :].split(":")
    if len(parts) < min_parts or (max_parts is not None and len(parts) > max_parts):
        raise ParseError(prefix.rstrip(":"), key, f"expected {min_parts} id parts, got {len(parts)}")
    return parts


def parse_bubble_key(key: str) -> tuple[str, str]:
    """``bubbleId:<chatId>:<bubbleId>`` -> (chat id, bubble id)."""
    chat_id, bubble_id = split_key(key, BUBBLE_PREFIX, 2, 2)
    return chat_id, bubble_id


def parse_composer_key(key: str) -> str:
    """``composerData:<composerId>`` -> composer id."""
    (composer_id,) = split_key(key, COMPOSER_PREFIX, 1, 1)
    return composer_id


def parse_context_key(key: str) -> tuple[str, str]:
    """``messageRequestContext:<composerId>:<contextId>`` -> (composer id, context id)."""
    parts = split_key(key, CONTEXT_PREFIX, 2)
    return parts[0], parts[1]


def parse_code_block_diff_key(key: str) -> tuple[str, str]:
    """``codeBlockDiff:<chatId>:<diffId>`` -> (chat id, diff id)."""
    parts = split_key(key, CODE_BLOCK_DIFF_PREFIX, 2)
    return parts[0], parts[1]


class StorageBackend(ABC):
    """Read-only access to one storage form.

    Subclasses must set the `source_name` class attribute (the Session
    source tag) and implement the three loaders. Loaders skip records they
    cannot decode and raise StorageError only when the underlying storage
    cannot be read at all.
    """

    source_name: str

    @property
    @abstractmethod
    def location(self) -> Path:
        """Path whose modification time fingerprints this storage."""

    @abstractmethod
    def load_bubbles(self) -> dict[str, Bubble]:
        """Load every message record, keyed by bubble id."""

    @abstractmethod
    def load_composers(self) -> list[Composer]:
        """Load every conversation metadata record."""

    @abstractmethod
    def load_message_contexts(self) -> dict[str, list[MessageContext]]:
        """Load context records, grouped by composer id."""

    def load_code_block_diffs(self) -> dict[str, list[Any]]:
        """Load code-block diffs grouped by chat id (empty if unsupported)."""
        return {}

    def close(self) -> None:
        """Release any open handles."""

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing the backend."""
        self.close()
