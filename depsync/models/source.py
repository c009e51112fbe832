"""
Dependency source model.

A :data:`Source` records *where* a named dependency comes from when that is
not the package index. Sources are written to the
``[tool.depsync.sources]`` table of the manifest, keyed by requirement
name, so the PEP 508 string in the dependency array can stay a plain
``name[extras]specifier`` entry.

The union is closed: every function that branches over it ends with
:func:`typing_extensions.assert_never`, so a new variant fails type
checking until each branch handles it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from typing_extensions import assert_never


@dataclass(frozen=True)
class RegistrySource:
    """The dependency is fetched from the configured package index."""


@dataclass(frozen=True)
class GitSource:
    """A Git repository pinned to exactly one of ``rev``, ``tag``, or ``branch``."""

    url: str
    subdirectory: Optional[str] = None
    rev: Optional[str] = None
    tag: Optional[str] = None
    branch: Optional[str] = None

    def __post_init__(self) -> None:
        pinned = [ref for ref in (self.rev, self.tag, self.branch) if ref is not None]
        if len(pinned) > 1:
            raise ValueError("A Git source accepts only one of rev, tag, or branch")

    @property
    def reference(self) -> Optional[str]:
        return self.rev or self.tag or self.branch


@dataclass(frozen=True)
class PathSource:
    """A local directory or archive, stored relative to the project root."""

    path: str
    editable: Optional[bool] = None


@dataclass(frozen=True)
class WorkspaceSource:
    """Another member of the current workspace."""

    member: str


@dataclass(frozen=True)
class UrlSource:
    """A direct archive URL."""

    url: str
    subdirectory: Optional[str] = None


Source = Union[RegistrySource, GitSource, PathSource, WorkspaceSource, UrlSource]


def source_to_table(source: Source) -> Optional[Dict[str, Any]]:
    """Return the ``[tool.depsync.sources]`` entry for ``source``.

    Registry sources have no entry and return ``None``.
    """
    if isinstance(source, RegistrySource):
        return None
    if isinstance(source, GitSource):
        table: Dict[str, Any] = {"git": source.url}
        if source.subdirectory:
            table["subdirectory"] = source.subdirectory
        if source.rev is not None:
            table["rev"] = source.rev
        if source.tag is not None:
            table["tag"] = source.tag
        if source.branch is not None:
            table["branch"] = source.branch
        return table
    if isinstance(source, PathSource):
        table = {"path": source.path}
        if source.editable is not None:
            table["editable"] = source.editable
        return table
    if isinstance(source, WorkspaceSource):
        return {"workspace": True}
    if isinstance(source, UrlSource):
        table = {"url": source.url}
        if source.subdirectory:
            table["subdirectory"] = source.subdirectory
        return table
    assert_never(source)


def source_kind(source: Source) -> str:
    """Short label used in console summaries."""
    if isinstance(source, RegistrySource):
        return "registry"
    if isinstance(source, GitSource):
        return "git"
    if isinstance(source, PathSource):
        return "editable" if source.editable else "path"
    if isinstance(source, WorkspaceSource):
        return "workspace"
    if isinstance(source, UrlSource):
        return "url"
    assert_never(source)


def source_from_table(name: str, table: Dict[str, Any]) -> Source:
    """Parse a ``[tool.depsync.sources]`` entry back into a :data:`Source`.

    Raises:
        ValueError: If the entry is not a recognised source table.
    """
    if "git" in table:
        return GitSource(
            url=str(table["git"]),
            subdirectory=table.get("subdirectory"),
            rev=table.get("rev"),
            tag=table.get("tag"),
            branch=table.get("branch"),
        )
    if "path" in table:
        editable = table.get("editable")
        return PathSource(path=str(table["path"]), editable=editable)
    if table.get("workspace") is True:
        return WorkspaceSource(member=name)
    if "url" in table:
        return UrlSource(url=str(table["url"]), subdirectory=table.get("subdirectory"))
    raise ValueError(f"Unrecognised source entry: {table!r}")


def source_to_url(source: Source, root: Path) -> Optional[str]:
    """Return the URL form of ``source`` for a PEP 508 ``name @ url`` string.

    Paths are resolved against ``root``, the directory of the manifest that
    declares them. Registry and workspace sources have no URL form here and
    return ``None``.
    """
    if isinstance(source, (RegistrySource, WorkspaceSource)):
        return None
    if isinstance(source, GitSource):
        url = f"git+{source.url}"
        if source.reference:
            url += f"@{source.reference}"
        if source.subdirectory:
            url += f"#subdirectory={source.subdirectory}"
        return url
    if isinstance(source, PathSource):
        return (root / source.path).resolve().as_uri()
    if isinstance(source, UrlSource):
        if source.subdirectory:
            return f"{source.url}#subdirectory={source.subdirectory}"
        return source.url
    assert_never(source)
