"""Tests for storage discovery, backend selection and snapshots."""

import sqlite3
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from session_salvage.errors import StorageError, StorageNotFoundError
from session_salvage.storage import (
    AgentStorageBackend,
    GlobalStorageBackend,
    StoragePaths,
    resolve_storage_path,
    select_backend,
    snapshot_storage,
)
from session_salvage.storage.sources import (
    CI_ENV_VARS,
    copy_database_with_wal,
    default_storage_paths,
    is_ci_environment,
)


@pytest.fixture
def no_ci(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear every CI marker from the environment."""
    for name in CI_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestResolveStoragePath:
    """Tests for resolve_storage_path."""

    def test_state_db_file(self, make_global_db: Callable[..., Path], tmp_path: Path) -> None:
        """A state.vscdb file should select global storage."""
        db_path = make_global_db({})
        paths = resolve_storage_path(db_path)
        assert paths.global_storage_db == db_path
        assert paths.workspace_storage_dir == tmp_path / "User" / "workspaceStorage"
        assert paths.agent_storage_dir is None

    def test_global_storage_directory(self, make_global_db: Callable[..., Path]) -> None:
        """A directory holding state.vscdb should select global storage."""
        db_path = make_global_db({})
        assert resolve_storage_path(db_path.parent).global_storage_db == db_path

    def test_store_db_file(self, make_store_db: Callable[..., Path], tmp_path: Path) -> None:
        """A store.db file should select its agent storage root."""
        db_path = make_store_db("s1", {})
        with patch.object(Path, "home", return_value=tmp_path / "home"):
            paths = resolve_storage_path(db_path)
        assert paths.agent_storage_dir == tmp_path / "chats"

    def test_agent_directory(self, make_store_db: Callable[..., Path], tmp_path: Path) -> None:
        """A directory with store.db files below it should select agent storage."""
        make_store_db("s1", {})
        with patch.object(Path, "home", return_value=tmp_path / "home"):
            paths = resolve_storage_path(tmp_path / "chats")
        assert paths.agent_storage_dir == tmp_path / "chats"
        assert not paths.global_storage_exists()

    def test_missing_path(self, tmp_path: Path) -> None:
        """A path that does not exist should raise StorageNotFoundError."""
        with pytest.raises(StorageNotFoundError, match="does not exist"):
            resolve_storage_path(tmp_path / "missing")

    def test_unsupported_file(self, tmp_path: Path) -> None:
        """Any other file name should be rejected."""
        other = tmp_path / "other.db"
        other.write_bytes(b"")
        with pytest.raises(StorageNotFoundError, match="unsupported database file"):
            resolve_storage_path(other)

    def test_unrelated_directory(self, tmp_path: Path) -> None:
        """A directory with no storage should be rejected."""
        with pytest.raises(StorageNotFoundError, match="valid storage location"):
            resolve_storage_path(tmp_path)


class TestSelectBackend:
    """Tests for select_backend."""

    def test_prefers_global_storage(
        self,
        make_global_db: Callable[..., Path],
        make_store_db: Callable[..., Path],
        tmp_path: Path,
    ) -> None:
        """The global database should win when both forms exist."""
        make_store_db("s1", {})
        paths = StoragePaths(global_storage_db=make_global_db({}), agent_storage_dir=tmp_path / "chats")
        with select_backend(paths) as backend:
            assert isinstance(backend, GlobalStorageBackend)

    def test_falls_back_to_agent_storage(
        self, make_store_db: Callable[..., Path], tmp_path: Path
    ) -> None:
        """Agent storage should be used when the global database is absent."""
        make_store_db("s1", {})
        paths = StoragePaths(
            global_storage_db=tmp_path / "missing" / "state.vscdb",
            agent_storage_dir=tmp_path / "chats",
        )
        with select_backend(paths) as backend:
            assert isinstance(backend, AgentStorageBackend)
            assert len(backend.store_dbs) == 1

    def test_nothing_found(self, tmp_path: Path, no_ci: None) -> None:
        """Neither form present should raise a descriptive error."""
        paths = StoragePaths(
            global_storage_db=tmp_path / "state.vscdb",
            agent_storage_dir=tmp_path / "chats",
        )
        with pytest.raises(StorageNotFoundError) as exc_info:
            select_backend(paths)

        message = str(exc_info.value)
        assert "Checked storage locations" in message
        assert "(directory not found)" in message
        assert "To use this tool" in message
        assert exc_info.value.checked == [str(tmp_path / "state.vscdb"), str(tmp_path / "chats")]

    def test_empty_agent_directory(self, tmp_path: Path, no_ci: None) -> None:
        """An agent directory without store files should be reported as such."""
        (tmp_path / "chats").mkdir()
        paths = StoragePaths(
            global_storage_db=tmp_path / "state.vscdb",
            agent_storage_dir=tmp_path / "chats",
        )
        with pytest.raises(StorageNotFoundError, match="no store.db files found"):
            select_backend(paths)

    def test_ci_hint(
        self, tmp_path: Path, no_ci: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """CI environments should get CI-specific guidance."""
        monkeypatch.setenv("GITHUB_ACTIONS", "true")
        paths = StoragePaths(global_storage_db=tmp_path / "state.vscdb")
        with pytest.raises(StorageNotFoundError, match="CI/CD environment detected"):
            select_backend(paths)

    def test_not_found_is_storage_error(self, tmp_path: Path) -> None:
        """StorageNotFoundError should be catchable as StorageError."""
        with pytest.raises(StorageError):
            select_backend(StoragePaths(global_storage_db=tmp_path / "state.vscdb"))


class TestIsCiEnvironment:
    """Tests for is_ci_environment."""

    def test_clean_environment(self, no_ci: None) -> None:
        assert is_ci_environment() is False

    def test_marker_set(self, no_ci: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CI", "1")
        assert is_ci_environment() is True


class TestSnapshots:
    """Tests for database copying."""

    def test_copy_includes_wal(self, tmp_path: Path) -> None:
        """Rows still in the write-ahead log should be present in the copy."""
        source = tmp_path / "src" / "state.vscdb"
        source.parent.mkdir()
        writer = sqlite3.connect(source)
        try:
            writer.execute("PRAGMA journal_mode=WAL")
            writer.execute("CREATE TABLE cursorDiskKV (key TEXT, value BLOB)")
            writer.execute("INSERT INTO cursorDiskKV VALUES ('k', 'v')")
            writer.commit()

            dest = tmp_path / "dest" / "state.vscdb"
            copy_database_with_wal(source, dest)
        finally:
            writer.close()

        conn = sqlite3.connect(dest)
        try:
            assert conn.execute("SELECT value FROM cursorDiskKV").fetchall() == [("v",)]
        finally:
            conn.close()

    def test_copy_missing_source(self, tmp_path: Path) -> None:
        """A failed copy should raise StorageError."""
        with pytest.raises(StorageError) as exc_info:
            copy_database_with_wal(tmp_path / "missing.vscdb", tmp_path / "out" / "state.vscdb")
        assert exc_info.value.op == "copy"

    def test_snapshot_global_storage(
        self, make_global_db: Callable[..., Path], simple_rows: dict[str, object]
    ) -> None:
        """The snapshot should point at a temporary copy that is removed on exit."""
        db_path = make_global_db(simple_rows)
        paths = StoragePaths(global_storage_db=db_path)

        with snapshot_storage(paths) as snapshot:
            copied = snapshot.global_storage_db
            assert copied != db_path
            with GlobalStorageBackend(copied) as backend:
                assert set(backend.load_bubbles()) == {"b1", "b2"}

        assert not copied.exists()
        assert db_path.exists()

    def test_snapshot_agent_storage(
        self, make_store_db: Callable[..., Path], tmp_path: Path
    ) -> None:
        """Agent store files should be copied with their relative layout."""
        make_store_db("s1", {"k": {"bubbleId": "b1", "text": "hi"}})
        paths = StoragePaths(
            global_storage_db=tmp_path / "missing.vscdb",
            agent_storage_dir=tmp_path / "chats",
        )

        with snapshot_storage(paths) as snapshot:
            assert snapshot.agent_storage_dir != paths.agent_storage_dir
            assert (snapshot.agent_storage_dir / "hash1" / "s1" / "store.db").is_file()


class TestDefaultStoragePaths:
    """Tests for platform default locations."""

    def test_under_home(self, tmp_path: Path) -> None:
        """Defaults should live under the home directory."""
        with patch.object(Path, "home", return_value=tmp_path):
            with patch("platform.system", return_value="Linux"):
                paths = default_storage_paths()
        assert paths.global_storage_db == (
            tmp_path / ".config" / "Cursor" / "User" / "globalStorage" / "state.vscdb"
        )
        assert paths.agent_storage_dir == tmp_path / ".cursor" / "chats"
        assert paths.workspace_storage_dir == tmp_path / ".config" / "Cursor" / "User" / "workspaceStorage"
