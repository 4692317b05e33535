"""Shared fixtures that build real SQLite storage files."""

import json
import sqlite3
from collections.abc import Callable
from pathlib import Path

import pytest


def _encode(value: object) -> object:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


@pytest.fixture
def make_global_db(tmp_path: Path) -> Callable[..., Path]:
    """Factory for a ``state.vscdb`` with a ``cursorDiskKV`` table."""

    def _make(rows: dict[str, object], path: Path | None = None) -> Path:
        db_path = path or tmp_path / "User" / "globalStorage" / "state.vscdb"
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path)
        conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
        conn.execute("CREATE TABLE ItemTable (key TEXT, value BLOB)")
        for key, value in rows.items():
            conn.execute(
                "INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)", (key, _encode(value))
            )
        conn.commit()
        conn.close()
        return db_path

    return _make


@pytest.fixture
def make_store_db(tmp_path: Path) -> Callable[..., Path]:
    """Factory for an agent ``store.db`` under ``<agent>/<hash>/<session>/``."""

    def _make(
        session_id: str,
        blobs: dict[str, object],
        meta: dict[str, object] | None = None,
        columns: tuple[str, str] = ("key", "value"),
        workspace_hash: str = "hash1",
    ) -> Path:
        db_path = tmp_path / "chats" / workspace_hash / session_id / "store.db"
        db_path.parent.mkdir(parents=True, exist_ok=True)
        key_col, value_col = columns
        conn = sqlite3.connect(db_path)
        conn.execute(f"CREATE TABLE blobs ({key_col} TEXT, {value_col} BLOB)")
        conn.execute(f"CREATE TABLE meta ({key_col} TEXT, {value_col} BLOB)")
        for key, value in blobs.items():
            conn.execute("INSERT INTO blobs VALUES (?, ?)", (key, _encode(value)))
        for key, value in (meta or {}).items():
            conn.execute("INSERT INTO meta VALUES (?, ?)", (key, _encode(value)))
        conn.commit()
        conn.close()
        return db_path

    return _make


@pytest.fixture
def simple_rows() -> dict[str, object]:
    """One composer with two messages and a context record."""
    return {
        "bubbleId:c1:b1": {"bubbleId": "b1", "text": "hi", "timestamp": 1000, "type": 1},
        "bubbleId:c1:b2": {"bubbleId": "b2", "text": "hello there", "timestamp": 2000, "type": 2},
        "composerData:c1": {
            "composerId": "c1",
            "name": "Greeting",
            "createdAt": 1000,
            "lastUpdatedAt": 2000,
            "fullConversationHeadersOnly": [
                {"bubbleId": "b1", "type": 1},
                {"bubbleId": "b2", "type": 2},
            ],
        },
        "messageRequestContext:c1:ctx1": {
            "bubbleId": "b1",
            "gitStatusRaw": "M file.py",
            "projectLayouts": ["/home/dev/project"],
        },
    }
