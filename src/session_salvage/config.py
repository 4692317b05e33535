"""Configuration loading and management."""

import logging
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path

import yaml


def default_global_storage_db() -> Path:
    """Fixed per-platform location of the single-table database."""
    if platform.system() == "Darwin":
        base = Path.home() / "Library" / "Application Support" / "Cursor" / "User"
    else:
        base = Path.home() / ".config" / "Cursor" / "User"
    return base / "globalStorage" / "state.vscdb"


def default_agent_storage_dir() -> Path:
    """Directory holding the per-session store databases.

    The newer ~/.config/cursor/chats location wins when it exists.
    """
    config_chats = Path.home() / ".config" / "cursor" / "chats"
    if config_chats.is_dir():
        return config_chats
    return Path.home() / ".cursor" / "chats"


@dataclass
class StorageConfig:
    global_storage_db: Path = field(default_factory=default_global_storage_db)
    agent_storage_dir: Path | None = field(default_factory=default_agent_storage_dir)
    workspace_storage_dir: Path | None = None
    copy_databases: bool = False

    def __post_init__(self) -> None:
        if self.workspace_storage_dir is None:
            # globalStorage/state.vscdb -> User/workspaceStorage
            self.workspace_storage_dir = self.global_storage_db.parent.parent / "workspaceStorage"


@dataclass
class CacheConfig:
    enabled: bool = True
    cache_dir: Path = field(default_factory=lambda: Path.home() / ".session-salvage-cache")


@dataclass
class PipelineConfig:
    timeout_seconds: float = 300.0
    queue_size: int = 100


@dataclass
class LoggingConfig:
    log_dir: Path = field(default_factory=lambda: Path.home() / ".session-salvage" / "logs")
    level: str = "INFO"

    @property
    def level_number(self) -> int:
        level = logging.getLevelName(self.level.upper())
        return level if isinstance(level, int) else logging.INFO


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "session-salvage" / "config.yaml",
            Path("/etc/session-salvage/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    # Parse storage config
    storage_data = data.get("storage", {}) or {}
    global_db = storage_data.get("global_storage_db")
    agent_dir = storage_data.get("agent_storage_dir")
    workspace_dir = storage_data.get("workspace_storage_dir")
    storage = StorageConfig(
        global_storage_db=expand_path(global_db) if global_db else default_global_storage_db(),
        agent_storage_dir=expand_path(agent_dir) if agent_dir else default_agent_storage_dir(),
        workspace_storage_dir=expand_path(workspace_dir) if workspace_dir else None,
        copy_databases=bool(storage_data.get("copy_databases", False)),
    )

    # Parse cache config
    cache_data = data.get("cache", {}) or {}
    cache = CacheConfig(
        enabled=bool(cache_data.get("enabled", True)),
        cache_dir=expand_path(cache_data.get("cache_dir", "~/.session-salvage-cache")),
    )

    # Parse pipeline config
    pipeline_data = data.get("pipeline", {}) or {}
    pipeline = PipelineConfig(
        timeout_seconds=float(pipeline_data.get("timeout_seconds", 300.0)),
        queue_size=int(pipeline_data.get("queue_size", 100)),
    )

    # Parse logging config
    logging_data = data.get("logging", {}) or {}
    logging_config = LoggingConfig(
        log_dir=expand_path(logging_data.get("log_dir", "~/.session-salvage/logs")),
        level=expand_env_var(str(logging_data.get("level", "INFO"))),
    )

    return Config(
        storage=storage,
        cache=cache,
        pipeline=pipeline,
        logging=logging_config,
    )
