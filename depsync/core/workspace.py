"""
Project and workspace discovery.

A *workspace* is a directory whose ``pyproject.toml`` declares
``[tool.depsync.workspace]`` with ``members`` (and optionally ``exclude``)
glob patterns. Every directory matched by ``members`` that contains a
``pyproject.toml`` with a ``[project]`` table is a member; the root itself
is a member when it declares ``[project]``.

A project outside any workspace is treated as a workspace of one.
"""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

import tomli as tomllib
from packaging.utils import canonicalize_name

from depsync.constants import MANIFEST_FILE, TOOL_NAME
from depsync.utils.logger import get_logger
from depsync.utils.filesystem import safe_read_file
from depsync.exceptions import WorkspaceError

logger = get_logger("workspace")


@dataclass
class ProjectMember:
    name: str
    root: Path

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE


def _load(manifest: Path) -> Dict[str, Any]:
    try:
        return tomllib.loads(safe_read_file(manifest))
    except tomllib.TOMLDecodeError as exc:
        raise WorkspaceError(f"Failed to parse {manifest}: {exc}") from exc


def _workspace_table(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    table = data.get("tool", {}).get(TOOL_NAME, {}).get("workspace")
    if table is None:
        return None
    if not isinstance(table, dict):
        raise WorkspaceError("`tool.depsync.workspace` must be a table")
    return table


def _relative(path: Path, root: Path) -> Optional[str]:
    try:
        return path.resolve().relative_to(root).as_posix()
    except ValueError:
        return None


@dataclass
class Workspace:
    """A workspace root and its members.

    Attributes:
        root: Directory holding the workspace ``pyproject.toml``.
        members: Member projects keyed by canonical name.
        member_globs: ``members`` patterns, relative to ``root``.
        exclude_globs: ``exclude`` patterns, relative to ``root``.
        requires_python: ``project.requires-python`` of the root manifest.
    """

    root: Path
    members: Dict[str, ProjectMember] = field(default_factory=dict)
    member_globs: List[str] = field(default_factory=list)
    exclude_globs: List[str] = field(default_factory=list)
    requires_python: Optional[str] = None

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    @property
    def packages(self) -> Dict[str, ProjectMember]:
        return self.members

    def is_member(self, name: str) -> bool:
        return canonicalize_name(name) in self.members

    def member(self, name: str) -> ProjectMember:
        try:
            return self.members[canonicalize_name(name)]
        except KeyError:
            raise WorkspaceError(
                f"Package `{name}` not found in workspace `{self.root}`"
            ) from None

    def excludes(self, path: Path) -> bool:
        """Whether ``path`` matches an ``exclude`` pattern."""
        relative = _relative(path, self.root)
        if relative is None:
            return False
        return any(fnmatch.fnmatch(relative, pattern) for pattern in self.exclude_globs)

    def includes(self, path: Path) -> bool:
        """Whether ``path`` is the root or matches a ``members`` pattern."""
        relative = _relative(path, self.root)
        if relative is None:
            return False
        if relative == ".":
            return True
        return any(fnmatch.fnmatch(relative, pattern) for pattern in self.member_globs)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_root(cls, root: Path, data: Optional[Dict[str, Any]] = None) -> "Workspace":
        """Load the workspace whose ``pyproject.toml`` lives in ``root``."""
        root = root.resolve()
        if data is None:
            data = _load(root / MANIFEST_FILE)
        table = _workspace_table(data) or {}

        workspace = cls(
            root=root,
            member_globs=[str(pattern).rstrip("/") for pattern in table.get("members", [])],
            exclude_globs=[str(pattern).rstrip("/") for pattern in table.get("exclude", [])],
            requires_python=data.get("project", {}).get("requires-python"),
        )

        project = data.get("project")
        if project and project.get("name"):
            workspace._add_member(str(project["name"]), root)

        for member_root in workspace._expand_members():
            member_data = _load(member_root / MANIFEST_FILE)
            name = member_data.get("project", {}).get("name")
            if not name:
                raise WorkspaceError(
                    f"Workspace member `{member_root}` is missing a `project.name`"
                )
            workspace._add_member(str(name), member_root)

        return workspace

    def _add_member(self, name: str, root: Path) -> None:
        key = canonicalize_name(name)
        existing = self.members.get(key)
        if existing is not None and existing.root != root:
            raise WorkspaceError(
                f"Two workspace members are both named `{name}`: "
                f"`{existing.root}` and `{root}`"
            )
        self.members[key] = ProjectMember(name=name, root=root)

    def _expand_members(self) -> Iterator[Path]:
        seen = set()
        for pattern in self.member_globs:
            for candidate in sorted(self.root.glob(pattern)):
                candidate = candidate.resolve()
                if candidate in seen or candidate == self.root:
                    continue
                if not candidate.joinpath(MANIFEST_FILE).is_file():
                    continue
                if self.excludes(candidate):
                    logger.debug("Excluding %s from workspace", candidate)
                    continue
                seen.add(candidate)
                yield candidate


def find_workspace_root(start: Path, *, ignore: Optional[Path] = None) -> Optional[Workspace]:
    """Walk up from ``start`` to the nearest directory declaring a workspace.

    Args:
        start: Directory to begin the search in (inclusive).
        ignore: A directory whose manifest is skipped, e.g. a project being
            initialized.

    Returns:
        The workspace, or ``None`` if no ancestor declares one.
    """
    ignored = ignore.resolve() if ignore is not None else None
    for directory in [start.resolve(), *start.resolve().parents]:
        if directory == ignored:
            continue
        manifest = directory / MANIFEST_FILE
        if not manifest.is_file():
            continue
        data = _load(manifest)
        if _workspace_table(data) is not None:
            logger.debug("Found workspace root at %s", directory)
            return Workspace.from_root(directory, data)
    return None


@dataclass
class Project:
    """A project inside its (possibly implicit) workspace."""

    root: Path
    name: str
    workspace: Workspace

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE


def discover_project(start: Path, *, package: Optional[str] = None) -> Project:
    """Find the project containing ``start``.

    Args:
        start: Directory to search from.
        package: Select this workspace member instead of the project
            containing ``start``.

    Raises:
        WorkspaceError: If no ``pyproject.toml`` is found, the project has
            no name, or ``package`` is not a workspace member.
    """
    start = start.resolve()
    project_root: Optional[Path] = None
    for directory in [start, *start.parents]:
        if directory.joinpath(MANIFEST_FILE).is_file():
            project_root = directory
            break
    if project_root is None:
        raise WorkspaceError(f"No `{MANIFEST_FILE}` found in `{start}` or any parent directory")

    data = _load(project_root / MANIFEST_FILE)
    workspace: Optional[Workspace] = None
    if _workspace_table(data) is not None:
        workspace = Workspace.from_root(project_root, data)
    else:
        parent = find_workspace_root(project_root.parent)
        if (
            parent is not None
            and parent.includes(project_root)
            and not parent.excludes(project_root)
        ):
            workspace = parent

    if workspace is None:
        name = data.get("project", {}).get("name")
        if not name:
            raise WorkspaceError(f"`{project_root / MANIFEST_FILE}` is missing a `project.name`")
        workspace = Workspace(
            root=project_root,
            requires_python=data.get("project", {}).get("requires-python"),
        )
        workspace._add_member(str(name), project_root)

    if package is not None:
        member = workspace.member(package)
        return Project(root=member.root, name=member.name, workspace=workspace)

    for member in workspace.members.values():
        if member.root == project_root:
            return Project(root=member.root, name=member.name, workspace=workspace)

    raise WorkspaceError(
        f"`{project_root}` is a workspace root without a `[project]` table; "
        "use `--package` to select a member"
    )


def relative_member_path(path: Path, workspace: Workspace) -> str:
    """Return ``path`` relative to the workspace root, POSIX style."""
    return Path(os.path.relpath(path.resolve(), workspace.root)).as_posix()
