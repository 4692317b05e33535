"""Storage backends for the IDE's chat history databases."""

from .agent_storage import AgentStorageBackend
from .base import StorageBackend
from .global_storage import GlobalStorageBackend
from .sources import StoragePaths, resolve_storage_path, select_backend, snapshot_storage

__all__ = [
    "AgentStorageBackend",
    "GlobalStorageBackend",
    "StorageBackend",
    "StoragePaths",
    "resolve_storage_path",
    "select_backend",
    "snapshot_storage",
]
