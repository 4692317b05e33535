"""Single-table backend over the IDE's global state database."""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from session_salvage.errors import ParseError
from session_salvage.logging import child_logger
from session_salvage.models import ACTOR_USER, Bubble, Composer, MessageContext, RawRecord
from session_salvage.processor.decoder import decode_record
from session_salvage.storage.base import (
    BUBBLE_PREFIX,
    CODE_BLOCK_DIFF_PREFIX,
    COMPOSER_PREFIX,
    CONTEXT_PREFIX,
    StorageBackend,
    parse_bubble_key,
    parse_code_block_diff_key,
    parse_composer_key,
    parse_context_key,
)
from session_salvage.storage.database import open_readonly, read_table

TABLE = "cursorDiskKV"
COLUMNS = ("key", "value")


class GlobalStorageBackend(StorageBackend):
    """Reads the namespaced ``cursorDiskKV`` table of ``state.vscdb``.

    Records are selected by key prefix and every value goes through the
    decode chain; undecodable records and malformed keys are logged and
    skipped.
    """

    source_name = "globalStorage"

    def __init__(self, db_path: Path, logger: logging.Logger | None = None) -> None:
        """Open the database read-only.

        Raises:
            StorageError: If the database cannot be opened
        """
        self._db_path = db_path
        self._logger = child_logger(logger, "global_storage")
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = open_readonly(db_path)

    @property
    def location(self) -> Path:
        return self._db_path

    def _records(self, prefix: str) -> list[RawRecord]:
        # Producers share one connection
        with self._lock:
            return read_table(
                self._connection(), TABLE, COLUMNS, key_prefix=prefix, db_path=self._db_path
            )

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = open_readonly(self._db_path)
        return self._conn

    def load_bubbles(self) -> dict[str, Bubble]:
        bubbles: dict[str, Bubble] = {}
        skipped = 0
        for record in self._records(BUBBLE_PREFIX):
            try:
                chat_id, bubble_id = parse_bubble_key(record.key)
            except ParseError as e:
                self._logger.debug("Skipping record: %s", e)
                skipped += 1
                continue

            decoded = decode_record(record.value, record.key, chat_id, self._logger)
            if decoded.data is not None:
                bubble = Bubble.from_dict(decoded.data, bubble_id=bubble_id, chat_id=chat_id)
            elif decoded.text_message is not None:
                bubble = Bubble(
                    bubble_id=bubble_id,
                    chat_id=chat_id,
                    text=decoded.text_message.text,
                    type=ACTOR_USER,
                )
            else:
                skipped += 1
                continue
            bubbles[bubble.bubble_id] = bubble

        self._logger.debug("Loaded bubbles: count=%d skipped=%d", len(bubbles), skipped)
        return bubbles

    def load_composers(self) -> list[Composer]:
        composers: list[Composer] = []
        skipped = 0
        for record in self._records(COMPOSER_PREFIX):
            try:
                composer_id = parse_composer_key(record.key)
            except ParseError as e:
                self._logger.debug("Skipping record: %s", e)
                skipped += 1
                continue

            decoded = decode_record(record.value, record.key, composer_id, self._logger)
            if decoded.data is None:
                skipped += 1
                continue
            composers.append(Composer.from_dict(decoded.data, composer_id=composer_id))

        self._logger.debug("Loaded composers: count=%d skipped=%d", len(composers), skipped)
        return composers

    def load_message_contexts(self) -> dict[str, list[MessageContext]]:
        contexts: dict[str, list[MessageContext]] = {}
        skipped = 0
        for record in self._records(CONTEXT_PREFIX):
            try:
                composer_id, context_id = parse_context_key(record.key)
            except ParseError as e:
                self._logger.debug("Skipping record: %s", e)
                skipped += 1
                continue

            decoded = decode_record(record.value, record.key, composer_id, self._logger)
            if decoded.data is None:
                skipped += 1
                continue
            context = MessageContext.from_dict(
                decoded.data, composer_id=composer_id, context_id=context_id
            )
            contexts.setdefault(composer_id, []).append(context)

        self._logger.debug(
            "Loaded message contexts: composers=%d skipped=%d", len(contexts), skipped
        )
        return contexts

    def load_code_block_diffs(self) -> dict[str, list[Any]]:
        diffs: dict[str, list[Any]] = {}
        for record in self._records(CODE_BLOCK_DIFF_PREFIX):
            try:
                chat_id, _ = parse_code_block_diff_key(record.key)
            except ParseError as e:
                self._logger.debug("Skipping record: %s", e)
                continue
            decoded = decode_record(record.value, record.key, chat_id, self._logger)
            if decoded.data is not None:
                diffs.setdefault(chat_id, []).append(decoded.data)
        return diffs

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
