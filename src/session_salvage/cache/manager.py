"""On-disk session cache.

Layout of the cache directory:

    sessions.yaml           index: session summaries + source fingerprint
    session_<id>.json       one canonical Session per file

The fingerprint is the source database path and its exact modification time
(in nanoseconds). Reads never raise: a missing or malformed index or payload
is a cache miss and the caller falls back to full reconstruction.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml

from session_salvage.logging import get_logger
from session_salvage.models import Session, get_int, get_str

CACHE_VERSION = "1.0"
INDEX_FILENAME = "sessions.yaml"

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class CacheIndexEntry:
    """Summary projection of one cached session."""

    id: str
    composer_id: str
    name: str = ""
    created_at: str = ""
    updated_at: str = ""
    message_count: int = 0
    workspace: str = ""

    @classmethod
    def from_session(cls, session: Session) -> "CacheIndexEntry":
        return cls(
            id=session.id,
            composer_id=session.metadata.composer_id,
            name=session.metadata.name,
            created_at=session.metadata.created_at,
            updated_at=session.metadata.updated_at,
            message_count=len(session.messages),
            workspace=session.workspace,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "composer_id": self.composer_id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "message_count": self.message_count,
            "workspace": self.workspace,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheIndexEntry":
        return cls(
            id=get_str(data, "id"),
            composer_id=get_str(data, "composer_id"),
            name=get_str(data, "name"),
            created_at=get_str(data, "created_at"),
            updated_at=get_str(data, "updated_at"),
            message_count=get_int(data, "message_count"),
            workspace=get_str(data, "workspace"),
        )


@dataclass
class CacheIndex:
    """Session summaries plus the fingerprint of the source they came from."""

    database_path: str
    database_mod_time: int  # st_mtime_ns
    sessions: list[CacheIndexEntry] = field(default_factory=list)
    cache_version: str = CACHE_VERSION
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "sessions": [entry.to_dict() for entry in self.sessions],
            "metadata": {
                "database_path": self.database_path,
                "database_mod_time": self.database_mod_time,
                "cache_version": self.cache_version,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheIndex":
        """Parse an index document.

        Raises:
            ValueError: If the document is not an index
        """
        metadata = data.get("metadata")
        sessions = data.get("sessions") or []
        if not isinstance(metadata, dict) or not isinstance(sessions, list):
            raise ValueError("not a session index")
        return cls(
            database_path=get_str(metadata, "database_path"),
            database_mod_time=get_int(metadata, "database_mod_time"),
            sessions=[CacheIndexEntry.from_dict(s) for s in sessions if isinstance(s, dict)],
            cache_version=get_str(metadata, "cache_version", CACHE_VERSION),
            created_at=get_str(metadata, "created_at"),
            updated_at=get_str(metadata, "updated_at"),
        )


def _write_atomic(path: Path, text: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    os.replace(tmp_path, path)


class CacheManager:
    """Reads and writes the session cache in one directory.

    Concurrent writers are not coordinated; each file is replaced atomically
    so a reader sees either the old or the new version.
    """

    def __init__(self, cache_dir: Path, logger: logging.Logger | None = None) -> None:
        self.cache_dir = cache_dir
        self._logger = logger if logger is not None else get_logger("cache")

    @property
    def index_path(self) -> Path:
        return self.cache_dir / INDEX_FILENAME

    def session_path(self, session_id: str) -> Path:
        return self.cache_dir / f"session_{_UNSAFE_ID_CHARS.sub('_', session_id)}.json"

    def ensure_cache_dir(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def load_index(self) -> CacheIndex | None:
        """Load the index, or None if it is missing or malformed."""
        try:
            with open(self.index_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if not isinstance(data, dict):
                raise ValueError("index is not a mapping")
            return CacheIndex.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError, ValueError) as e:
            self._logger.debug("Unreadable cache index: path=%s error=%s", self.index_path, e)
            return None

    def save_index(self, index: CacheIndex) -> None:
        self.ensure_cache_dir()
        _write_atomic(
            self.index_path,
            yaml.safe_dump(index.to_dict(), sort_keys=False, allow_unicode=True),
        )

    def is_cache_valid(self, db_path: Path) -> bool:
        """True only if the index fingerprint matches ``db_path`` exactly.

        Both the recorded path and the recorded modification time must be
        equal to the current ones; a newer or older mtime invalidates.
        """
        index = self.load_index()
        if index is None:
            return False
        if index.database_path != str(db_path):
            return False
        try:
            mod_time = db_path.stat().st_mtime_ns
        except OSError:
            return False
        return index.database_mod_time == mod_time

    def save_session(self, session: Session) -> None:
        self.ensure_cache_dir()
        _write_atomic(
            self.session_path(session.id),
            json.dumps(session.to_dict(), indent=2, ensure_ascii=False),
        )

    def load_session(self, session_id: str) -> Session | None:
        """Load one cached session, or None if absent or malformed."""
        path = self.session_path(session_id)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self._logger.debug("Unreadable cached session: path=%s error=%s", path, e)
            return None
        if not isinstance(data, dict):
            return None
        return Session.from_dict(data)

    def load_all_sessions(self) -> list[Session] | None:
        """Load every session listed in the index.

        Returns:
            Sessions in index order (unreadable payloads are skipped), or
            None when there is no usable index
        """
        index = self.load_index()
        if index is None:
            return None
        sessions = []
        for entry in index.sessions:
            session = self.load_session(entry.id)
            if session is not None:
                sessions.append(session)
        return sessions

    def save_sessions(self, sessions: list[Session], db_path: Path) -> None:
        """Rebuild the whole cache from a fresh session list.

        Raises:
            OSError: If the database cannot be stat'ed or the index written
        """
        mod_time = db_path.stat().st_mtime_ns
        index = CacheIndex(database_path=str(db_path), database_mod_time=mod_time)
        for session in sessions:
            try:
                self.save_session(session)
            except OSError as e:
                self._logger.warning("Failed to cache session: id=%s error=%s", session.id, e)
                continue
            index.sessions.append(CacheIndexEntry.from_session(session))
        self.save_index(index)
        self._logger.debug("Saved cache: sessions=%d dir=%s", len(index.sessions), self.cache_dir)

    def save_session_and_update_index(self, session: Session, db_path: Path) -> None:
        """Upsert one session into the index.

        The existing index is reused only when it was built for ``db_path``;
        otherwise a fresh index is started. Entries match on composer id.

        Raises:
            OSError: If the database cannot be stat'ed or a file written
        """
        mod_time = db_path.stat().st_mtime_ns
        index = self.load_index()
        if index is not None and index.database_path == str(db_path):
            index.database_mod_time = mod_time
            index.updated_at = _now()
        else:
            index = CacheIndex(database_path=str(db_path), database_mod_time=mod_time)

        self.save_session(session)

        entry = CacheIndexEntry.from_session(session)
        for i, existing in enumerate(index.sessions):
            if existing.composer_id == entry.composer_id:
                index.sessions[i] = entry
                break
        else:
            index.sessions.append(entry)

        self.save_index(index)

    def clear_cache(self) -> None:
        """Remove every cached payload listed in the index, then the index."""
        index = self.load_index()
        if index is not None:
            for entry in index.sessions:
                self.session_path(entry.id).unlink(missing_ok=True)
        self.index_path.unlink(missing_ok=True)
        self._logger.info("Cleared cache: dir=%s", self.cache_dir)
