"""Tests for workspace detection and association."""

import json
from pathlib import Path

from session_salvage.models import MessageContext
from session_salvage.processor.workspace import (
    WorkspaceInfo,
    associate_workspace,
    detect_workspaces,
)


def write_workspace(root: Path, hash_: str, content: str) -> None:
    workspace_dir = root / hash_
    workspace_dir.mkdir(parents=True)
    (workspace_dir / "workspace.json").write_text(content)


class TestDetectWorkspaces:
    """Tests for detect_workspaces."""

    def test_reads_folders(self, tmp_path: Path) -> None:
        """Folder URIs should be read with the file:// prefix removed."""
        write_workspace(tmp_path, "abc123", json.dumps({"folder": "file:///home/user/project"}))
        workspaces = detect_workspaces(tmp_path)
        assert workspaces == {
            "abc123": WorkspaceInfo(
                hash="abc123", folder="/home/user/project", raw_folder="file:///home/user/project"
            )
        }

    def test_skips_bad_entries(self, tmp_path: Path) -> None:
        """Unreadable files and entries without a folder should be skipped."""
        write_workspace(tmp_path, "broken", "{not json")
        write_workspace(tmp_path, "empty", json.dumps({"workspace": "multi-root.code-workspace"}))
        write_workspace(tmp_path, "good", json.dumps({"folder": "/plain/path"}))
        assert set(detect_workspaces(tmp_path)) == {"good"}

    def test_missing_directory(self, tmp_path: Path) -> None:
        """A missing or unset directory should yield nothing."""
        assert detect_workspaces(tmp_path / "missing") == {}
        assert detect_workspaces(None) == {}


class TestAssociateWorkspace:
    """Tests for associate_workspace."""

    def test_matches_project_layout(self) -> None:
        """A context whose layout matches a folder should select that workspace."""
        workspaces = {
            "w1": WorkspaceInfo(hash="w1", folder="/one"),
            "w2": WorkspaceInfo(hash="w2", folder="/two", raw_folder="file:///two"),
        }
        contexts = {"c1": [MessageContext(composer_id="c1", project_layouts=["/elsewhere", "/two"])]}
        assert associate_workspace("c1", contexts, workspaces) == "w2"

    def test_no_match(self) -> None:
        """No matching context should give an empty identifier."""
        workspaces = {"w1": WorkspaceInfo(hash="w1", folder="/one")}
        contexts = {"c1": [MessageContext(composer_id="c1", project_layouts=["/other"])]}
        assert associate_workspace("c1", contexts, workspaces) == ""
        assert associate_workspace("c2", contexts, workspaces) == ""
