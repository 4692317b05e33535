"""Storage location discovery, backend selection and snapshot copying."""

import logging
import os
import shutil
import sqlite3
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from session_salvage.config import (
    StorageConfig,
    default_agent_storage_dir,
    default_global_storage_db,
)
from session_salvage.errors import StorageError, StorageNotFoundError
from session_salvage.logging import child_logger
from session_salvage.storage.agent_storage import (
    STORE_DB_NAME,
    AgentStorageBackend,
    find_store_dbs,
)
from session_salvage.storage.base import StorageBackend
from session_salvage.storage.global_storage import GlobalStorageBackend

GLOBAL_DB_NAME = "state.vscdb"

CI_ENV_VARS = (
    "CI",
    "GITHUB_ACTIONS",
    "GITLAB_CI",
    "JENKINS_URL",
    "CIRCLECI",
    "TRAVIS",
    "BUILDKITE",
    "TEAMCITY_VERSION",
    "TF_BUILD",
    "bamboo_buildKey",
)


@dataclass(frozen=True)
class StoragePaths:
    """Where each storage form is expected to live."""

    global_storage_db: Path
    agent_storage_dir: Path | None = None
    workspace_storage_dir: Path | None = None

    @classmethod
    def from_config(cls, config: StorageConfig) -> "StoragePaths":
        return cls(
            global_storage_db=config.global_storage_db,
            agent_storage_dir=config.agent_storage_dir,
            workspace_storage_dir=config.workspace_storage_dir,
        )

    def global_storage_exists(self) -> bool:
        return self.global_storage_db.is_file()

    def has_agent_storage(self) -> bool:
        return self.agent_storage_dir is not None and self.agent_storage_dir.is_dir()

    def find_agent_store_dbs(self) -> list[Path]:
        if self.agent_storage_dir is None:
            return []
        return find_store_dbs(self.agent_storage_dir)


def resolve_storage_path(custom_path: Path) -> StoragePaths:
    """Interpret an explicitly given storage location.

    Accepts a ``state.vscdb`` file, a ``store.db`` file, a globalStorage
    directory (containing ``state.vscdb``), or an agent storage directory
    (containing ``store.db`` files somewhere below it).

    Raises:
        StorageNotFoundError: If the path does not exist or is not storage
    """
    checked = [str(custom_path)]
    if not custom_path.exists():
        raise StorageNotFoundError(checked, f"custom storage path does not exist: {custom_path}")

    default_db = default_global_storage_db()
    if custom_path.is_file():
        if custom_path.name == GLOBAL_DB_NAME:
            return StoragePaths(
                global_storage_db=custom_path,
                workspace_storage_dir=custom_path.parent.parent / "workspaceStorage",
            )
        if custom_path.name == STORE_DB_NAME:
            # <agent dir>/<hash>/<session id>/store.db
            agent_dir = custom_path.parent.parent.parent
            return StoragePaths(
                global_storage_db=default_db,
                agent_storage_dir=agent_dir,
                workspace_storage_dir=default_db.parent.parent / "workspaceStorage",
            )
        raise StorageNotFoundError(
            checked,
            f"unsupported database file: {custom_path.name} "
            f"(expected {GLOBAL_DB_NAME} or {STORE_DB_NAME})",
        )

    global_db = custom_path / GLOBAL_DB_NAME
    if global_db.is_file():
        return StoragePaths(
            global_storage_db=global_db,
            workspace_storage_dir=custom_path.parent / "workspaceStorage",
        )

    if find_store_dbs(custom_path):
        return StoragePaths(
            global_storage_db=default_db,
            agent_storage_dir=custom_path,
            workspace_storage_dir=default_db.parent.parent / "workspaceStorage",
        )

    raise StorageNotFoundError(
        checked,
        "directory does not appear to be a valid storage location (expected a "
        f"globalStorage directory with {GLOBAL_DB_NAME}, or an agent storage "
        f"directory with {STORE_DB_NAME} files)",
    )


def is_ci_environment() -> bool:
    """Check common CI/CD environment variables."""
    return any(os.environ.get(name) for name in CI_ENV_VARS)


def _not_found_message(paths: StoragePaths, agent_checked: bool) -> str:
    lines = [
        "no Cursor storage found",
        "",
        "Checked storage locations:",
        f"  - Desktop app: {paths.global_storage_db} (not found)",
    ]
    agent_dir = paths.agent_storage_dir
    if agent_dir is None:
        lines.append("  - Agent CLI: not available on this platform")
    elif agent_checked:
        lines.append(f"  - Agent CLI: {agent_dir} (directory exists but no store.db files found)")
        lines.append(f"    Expected pattern: {agent_dir}/<hash>/<session-id>/store.db")
        lines.append("    Sessions are created when the agent CLI runs with chat interactions")
    else:
        lines.append(f"  - Agent CLI: {agent_dir} (directory not found)")
        lines.append("    This directory is created when the agent CLI is first used")

    lines.append("")
    if is_ci_environment():
        lines.extend([
            "CI/CD environment detected:",
            "  - This is expected if the agent CLI has not created sessions yet.",
            "  - Sessions are created automatically when the agent CLI runs.",
            "  - Try running: ls -la ~/.cursor/chats/ to verify session directories exist.",
            "  - Each session directory should contain a store.db file.",
        ])
    else:
        lines.extend([
            "To use this tool, you need either:",
            "  - the Cursor desktop app with chat history, or",
            "  - the agent CLI with sessions in ~/.cursor/chats/",
            "Use --storage to point at a state.vscdb file or a storage directory.",
        ])
    return "\n".join(lines)


def select_backend(paths: StoragePaths, logger: logging.Logger | None = None) -> StorageBackend:
    """Pick the storage backend for the given locations.

    The single-table database wins when it exists; otherwise every store
    file under the agent directory is aggregated.

    Raises:
        StorageError: If the chosen database cannot be opened
        StorageNotFoundError: If neither storage form is present
    """
    log = child_logger(logger, "sources")

    if paths.global_storage_exists():
        log.info("Using global storage: path=%s", paths.global_storage_db)
        return GlobalStorageBackend(paths.global_storage_db, logger=logger)

    agent_checked = False
    if paths.has_agent_storage():
        agent_checked = True
        store_dbs = paths.find_agent_store_dbs()
        if store_dbs:
            log.info("Using agent storage: path=%s files=%d", paths.agent_storage_dir, len(store_dbs))
            return AgentStorageBackend(paths.agent_storage_dir, store_dbs, logger=logger)
        log.info("Agent storage has no store files: path=%s", paths.agent_storage_dir)

    checked = [str(paths.global_storage_db)]
    if paths.agent_storage_dir is not None:
        checked.append(str(paths.agent_storage_dir))
    raise StorageNotFoundError(checked, _not_found_message(paths, agent_checked))


def checkpoint_wal(db_path: Path) -> None:
    """Fold a copied database's write-ahead log into the main file."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    finally:
        conn.close()


def copy_database_with_wal(source_db: Path, dest_db: Path) -> None:
    """Copy a database plus its ``-wal``/``-shm`` files, then checkpoint.

    Raises:
        StorageError: If the copy or checkpoint fails
    """
    dest_db.parent.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copy2(source_db, dest_db)
        for suffix in ("-wal", "-shm"):
            sidecar = source_db.with_name(source_db.name + suffix)
            if sidecar.exists():
                shutil.copy2(sidecar, dest_db.with_name(dest_db.name + suffix))
        checkpoint_wal(dest_db)
    except (OSError, sqlite3.Error) as e:
        raise StorageError(str(source_db), "copy", e) from e


@contextmanager
def snapshot_storage(
    paths: StoragePaths, logger: logging.Logger | None = None
) -> Iterator[StoragePaths]:
    """Copy the storage databases to a temporary directory.

    Yields paths pointing at the copies; the agent storage tree keeps its
    relative layout. The temporary directory is removed on exit.
    """
    log = child_logger(logger, "sources")
    with tempfile.TemporaryDirectory(prefix="session-salvage-") as tmp:
        tmp_dir = Path(tmp)
        snapshot = paths

        if paths.global_storage_exists():
            dest = tmp_dir / GLOBAL_DB_NAME
            copy_database_with_wal(paths.global_storage_db, dest)
            log.info("Copied global storage: source=%s dest=%s", paths.global_storage_db, dest)
            snapshot = replace(snapshot, global_storage_db=dest)

        if paths.has_agent_storage():
            store_dbs = paths.find_agent_store_dbs()
            if store_dbs:
                agent_tmp = tmp_dir / "agent-storage"
                for source_db in store_dbs:
                    relative = source_db.relative_to(paths.agent_storage_dir)
                    copy_database_with_wal(source_db, agent_tmp / relative)
                log.info("Copied agent storage: files=%d dest=%s", len(store_dbs), agent_tmp)
                snapshot = replace(snapshot, agent_storage_dir=agent_tmp)

        yield snapshot


def default_storage_paths() -> StoragePaths:
    """Platform default locations."""
    return StoragePaths.from_config(
        StorageConfig(
            global_storage_db=default_global_storage_db(),
            agent_storage_dir=default_agent_storage_dir(),
        )
    )
