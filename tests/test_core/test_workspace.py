from __future__ import annotations

import pytest
from pathlib import Path

from depsync.core.workspace import (
    Workspace,
    discover_project,
    find_workspace_root,
    relative_member_path,
)
from depsync.exceptions import WorkspaceError


def _manifest(directory: Path, body: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "pyproject.toml").write_text(body, encoding="utf-8")
    return directory


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """A workspace with two members and one excluded project."""
    root = _manifest(
        tmp_path / "ws",
        '[project]\nname = "root-app"\nrequires-python = ">=3.10"\n\n'
        '[tool.depsync.workspace]\nmembers = ["packages/*"]\nexclude = ["packages/scratch"]\n',
    )
    _manifest(root / "packages" / "core", '[project]\nname = "core"\n')
    _manifest(root / "packages" / "Utils", '[project]\nname = "My_Utils"\n')
    _manifest(root / "packages" / "scratch", '[project]\nname = "scratch"\n')
    (root / "packages" / "docs").mkdir()
    return root


@pytest.mark.unit
class TestWorkspace:
    """Tests for loading a workspace root."""

    def test_members(self, workspace_root: Path) -> None:
        workspace = Workspace.from_root(workspace_root)

        assert sorted(workspace.members) == ["core", "my-utils", "root-app"]
        assert workspace.is_member("MY.UTILS")
        assert not workspace.is_member("scratch")
        assert workspace.requires_python == ">=3.10"

    def test_member_lookup(self, workspace_root: Path) -> None:
        workspace = Workspace.from_root(workspace_root)

        assert workspace.member("core").root == (workspace_root / "packages" / "core").resolve()
        with pytest.raises(WorkspaceError, match="not found in workspace"):
            workspace.member("missing")

    def test_includes_and_excludes(self, workspace_root: Path) -> None:
        workspace = Workspace.from_root(workspace_root)

        assert workspace.includes(workspace_root / "packages" / "new")
        assert workspace.includes(workspace_root)
        assert workspace.excludes(workspace_root / "packages" / "scratch")
        assert not workspace.includes(workspace_root / "tools" / "cli")
        assert not workspace.includes(workspace_root.parent / "elsewhere")

    def test_duplicate_names(self, tmp_path: Path) -> None:
        root = _manifest(tmp_path / "ws", '[tool.depsync.workspace]\nmembers = ["*"]\n')
        _manifest(root / "a", '[project]\nname = "same"\n')
        _manifest(root / "b", '[project]\nname = "Same"\n')

        with pytest.raises(WorkspaceError, match="both named"):
            Workspace.from_root(root)

    def test_member_without_name(self, tmp_path: Path) -> None:
        root = _manifest(tmp_path / "ws", '[tool.depsync.workspace]\nmembers = ["*"]\n')
        _manifest(root / "a", "[project]\n")

        with pytest.raises(WorkspaceError, match="missing a `project.name`"):
            Workspace.from_root(root)

    def test_invalid_manifest(self, tmp_path: Path) -> None:
        root = _manifest(tmp_path / "ws", "[tool.depsync.workspace\n")
        with pytest.raises(WorkspaceError, match="Failed to parse"):
            Workspace.from_root(root)


@pytest.mark.unit
class TestDiscovery:
    """Tests for locating the current project."""

    def test_find_workspace_root_from_member(self, workspace_root: Path) -> None:
        workspace = find_workspace_root(workspace_root / "packages" / "core")
        assert workspace is not None
        assert workspace.root == workspace_root.resolve()

    def test_find_workspace_root_ignores_directory(self, workspace_root: Path) -> None:
        assert find_workspace_root(workspace_root, ignore=workspace_root) is None

    def test_discover_member(self, workspace_root: Path) -> None:
        nested = workspace_root / "packages" / "core" / "src"
        nested.mkdir()

        project = discover_project(nested)

        assert project.name == "core"
        assert project.workspace.root == workspace_root.resolve()

    def test_discover_with_package(self, workspace_root: Path) -> None:
        project = discover_project(workspace_root, package="my-utils")
        assert project.name == "My_Utils"

    def test_excluded_project_is_standalone(self, workspace_root: Path) -> None:
        project = discover_project(workspace_root / "packages" / "scratch")

        assert project.name == "scratch"
        assert project.workspace.root == (workspace_root / "packages" / "scratch").resolve()
        assert list(project.workspace.members) == ["scratch"]

    def test_standalone_project(self, tmp_path: Path) -> None:
        root = _manifest(tmp_path / "app", '[project]\nname = "app"\nrequires-python = ">=3.12"\n')

        project = discover_project(root)

        assert project.workspace.requires_python == ">=3.12"
        assert project.manifest_path == root.resolve() / "pyproject.toml"

    def test_no_manifest(self, tmp_path: Path) -> None:
        with pytest.raises(WorkspaceError, match="No `pyproject.toml` found"):
            discover_project(tmp_path)

    def test_virtual_root_requires_package(self, tmp_path: Path) -> None:
        root = _manifest(tmp_path / "ws", '[tool.depsync.workspace]\nmembers = ["libs/*"]\n')
        _manifest(root / "libs" / "a", '[project]\nname = "a"\n')

        with pytest.raises(WorkspaceError, match="use `--package`"):
            discover_project(root)

    def test_relative_member_path(self, workspace_root: Path) -> None:
        workspace = Workspace.from_root(workspace_root)
        path = workspace_root / "packages" / "new"
        assert relative_member_path(path, workspace) == "packages/new"
