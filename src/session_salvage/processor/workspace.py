"""Association of composers with IDE workspaces."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from session_salvage.logging import get_logger
from session_salvage.models import MessageContext

logger = get_logger("workspace")


@dataclass(frozen=True)
class WorkspaceInfo:
    """One entry of ``workspaceStorage``."""

    hash: str
    folder: str  # folder path with any file:// prefix removed
    raw_folder: str = ""


def _strip_file_uri(folder: str) -> str:
    # folder is typically "file:///path/to/workspace"
    if folder.startswith("file://"):
        return folder[7:]
    return folder


def detect_workspaces(
    workspace_storage_dir: Path | None, log: logging.Logger | None = None
) -> dict[str, WorkspaceInfo]:
    """Read ``<workspaceStorage>/<hash>/workspace.json`` files.

    Returns:
        Mapping of workspace hash to WorkspaceInfo; unreadable entries and
        workspaces without a folder are skipped
    """
    log = log or logger
    if workspace_storage_dir is None or not workspace_storage_dir.is_dir():
        return {}

    workspaces: dict[str, WorkspaceInfo] = {}
    for workspace_json in sorted(workspace_storage_dir.glob("*/workspace.json")):
        try:
            with open(workspace_json, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            log.debug("Skipping workspace: path=%s error=%s", workspace_json, e)
            continue

        folder = data.get("folder") if isinstance(data, dict) else None
        if not isinstance(folder, str) or not folder:
            continue
        hash_ = workspace_json.parent.name
        workspaces[hash_] = WorkspaceInfo(hash=hash_, folder=_strip_file_uri(folder), raw_folder=folder)

    log.debug("Detected workspaces: count=%d", len(workspaces))
    return workspaces


def associate_workspace(
    composer_id: str,
    contexts: dict[str, list[MessageContext]],
    workspaces: dict[str, WorkspaceInfo],
) -> str:
    """Find the workspace whose folder matches a context's project layout.

    Returns:
        The workspace hash, or "" when nothing matches
    """
    for context in contexts.get(composer_id, []):
        for layout in context.project_layouts:
            for workspace in workspaces.values():
                if layout in (workspace.folder, workspace.raw_folder):
                    return workspace.hash
    return ""
