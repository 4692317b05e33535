"""Multi-file backend over the CLI agent's per-session ``store.db`` files.

Layout: ``<agent dir>/<workspace hash>/<session id>/store.db``. Each file has
a ``blobs`` table holding message and conversation records and a ``meta``
table holding context records. Neither table has a fixed column shape, so
the key/value columns are discovered per file.
"""

import logging
import sqlite3
import threading
from pathlib import Path

from session_salvage.errors import StorageError
from session_salvage.logging import child_logger
from session_salvage.models import (
    ACTOR_ASSISTANT,
    ACTOR_USER,
    Bubble,
    Composer,
    MessageContext,
    RawRecord,
    get_int,
    get_list,
    get_str,
)
from session_salvage.processor.decoder import decode_record
from session_salvage.storage.base import StorageBackend
from session_salvage.storage.database import (
    discover_key_value_columns,
    open_readonly,
    read_table,
    table_exists,
)

STORE_DB_NAME = "store.db"
BLOBS_TABLE = "blobs"
META_TABLE = "meta"


def find_store_dbs(agent_dir: Path) -> list[Path]:
    """Discover every ``store.db`` below the agent storage directory."""
    if not agent_dir.is_dir():
        return []
    return sorted(agent_dir.rglob(STORE_DB_NAME))


def message_to_bubble(data: dict, session_id: str) -> Bubble:
    """Convert a role/content message record into a Bubble.

    Role ``user`` maps to actor 1 and any other role to actor 2. Text comes
    from each content item's ``text``, or its ``data`` unless the item is
    redacted reasoning.
    """
    parts = []
    for item in get_list(data, "content"):
        if not isinstance(item, dict):
            continue
        text = get_str(item, "text")
        if text:
            parts.append(text)
            continue
        payload = get_str(item, "data")
        if payload and get_str(item, "type") != "redacted-reasoning":
            parts.append(payload)

    return Bubble(
        bubble_id=get_str(data, "id"),
        chat_id=session_id,
        text="\n\n".join(parts),
        timestamp=get_int(data, "timestamp"),
        type=ACTOR_USER if get_str(data, "role") == "user" else ACTOR_ASSISTANT,
    )


class StoreContents:
    """Records recovered from one or more store files."""

    def __init__(self) -> None:
        self.bubbles: dict[str, Bubble] = {}
        self.composers: list[Composer] = []
        self.contexts: dict[str, list[MessageContext]] = {}

    def merge(self, other: "StoreContents") -> None:
        # Bubble ids collide across files: last write wins
        self.bubbles.update(other.bubbles)
        self.composers.extend(other.composers)
        for composer_id, contexts in other.contexts.items():
            self.contexts.setdefault(composer_id, []).extend(contexts)


def load_store_db(db_path: Path, logger: logging.Logger) -> StoreContents:
    """Load and classify every record of one store file.

    Raises:
        StorageError: If the file cannot be opened or queried
    """
    # <agent dir>/<hash>/<session id>/store.db
    session_id = db_path.parent.name
    contents = StoreContents()

    conn = open_readonly(db_path)
    try:
        blobs = _read_discovered(conn, BLOBS_TABLE, db_path, logger)
        meta = _read_discovered(conn, META_TABLE, db_path, logger)
    finally:
        conn.close()

    skipped = 0
    for record in blobs:
        decoded = decode_record(record.value, record.key, session_id, logger)
        if decoded.text_message is not None:
            message = decoded.text_message
            contents.bubbles[message.message_id] = Bubble(
                bubble_id=message.message_id,
                chat_id=message.chat_id,
                text=message.text,
                type=ACTOR_USER,
            )
            continue
        if decoded.data is None:
            skipped += 1
            continue

        data = decoded.data
        if get_str(data, "bubbleId"):
            bubble = Bubble.from_dict(data)
            bubble.chat_id = bubble.chat_id or session_id
            contents.bubbles[bubble.bubble_id] = bubble
        elif get_str(data, "id") and get_str(data, "role"):
            bubble = message_to_bubble(data, session_id)
            contents.bubbles[bubble.bubble_id] = bubble

        if get_str(data, "composerId"):
            contents.composers.append(Composer.from_dict(data))

    for record in meta:
        decoded = decode_record(record.value, record.key, session_id, logger)
        if decoded.data is None or not get_str(decoded.data, "contextId"):
            continue
        context = MessageContext.from_dict(decoded.data)
        contents.contexts.setdefault(context.composer_id, []).append(context)

    logger.debug(
        "Loaded store: path=%s bubbles=%d composers=%d contexts=%d skipped=%d",
        db_path,
        len(contents.bubbles),
        len(contents.composers),
        sum(len(c) for c in contents.contexts.values()),
        skipped,
    )
    return contents


def _read_discovered(
    conn: sqlite3.Connection, table: str, db_path: Path, logger: logging.Logger
) -> list[RawRecord]:
    if not table_exists(conn, table):
        logger.debug("Table missing: path=%s table=%s", db_path, table)
        return []
    columns = discover_key_value_columns(conn, table)
    if columns is None:
        logger.debug("No key/value columns: path=%s table=%s", db_path, table)
        return []
    return read_table(conn, table, columns, db_path=db_path)


class AgentStorageBackend(StorageBackend):
    """Aggregates every store file under an agent storage directory.

    All files are read once, on first use, and the merged result serves all
    three loaders. A file that cannot be read is logged and skipped.
    """

    source_name = "agentStorage"

    def __init__(
        self,
        agent_dir: Path,
        store_dbs: list[Path] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._agent_dir = agent_dir
        self._store_dbs = store_dbs if store_dbs is not None else find_store_dbs(agent_dir)
        self._logger = child_logger(logger, "agent_storage")
        self._lock = threading.Lock()
        self._contents: StoreContents | None = None

    @property
    def location(self) -> Path:
        return self._agent_dir

    @property
    def store_dbs(self) -> list[Path]:
        return list(self._store_dbs)

    def _load(self) -> StoreContents:
        with self._lock:
            if self._contents is None:
                merged = StoreContents()
                for db_path in self._store_dbs:
                    try:
                        merged.merge(load_store_db(db_path, self._logger))
                    except StorageError as e:
                        self._logger.warning("Skipping store file: path=%s error=%s", db_path, e)
                self._logger.info(
                    "Loaded agent storage: files=%d bubbles=%d composers=%d",
                    len(self._store_dbs),
                    len(merged.bubbles),
                    len(merged.composers),
                )
                self._contents = merged
            return self._contents

    def load_bubbles(self) -> dict[str, Bubble]:
        return dict(self._load().bubbles)

    def load_composers(self) -> list[Composer]:
        return list(self._load().composers)

    def load_message_contexts(self) -> dict[str, list[MessageContext]]:
        return {k: list(v) for k, v in self._load().contexts.items()}
