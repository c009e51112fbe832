"""
Source classification.

Maps a named requirement plus the user's ``--rev``/``--tag``/``--branch``/
``--editable`` flags to the :data:`~depsync.models.source.Source` recorded
in ``[tool.depsync.sources]``.
"""

from __future__ import annotations

import os
from pathlib import Path
from dataclasses import replace
from typing import Optional

from depsync.utils.logger import get_logger
from depsync.exceptions import SourceError, UnresolvedReferenceError
from depsync.core.locator import LocatorKind, parse_locator
from depsync.models.source import (
    GitSource,
    PathSource,
    RegistrySource,
    Source,
    UrlSource,
    WorkspaceSource,
)

logger = get_logger("classifier")


def _relative_path(path: Path, project_root: Path) -> str:
    """Return ``path`` relative to the project root where possible, POSIX style."""
    try:
        relative = os.path.relpath(path, project_root.resolve())
    except ValueError:
        # Different drive on Windows.
        return path.as_posix()
    return Path(relative).as_posix()


def relocate_source(source: Source, project_root: Path) -> Source:
    """Express an absolute path source relative to ``project_root``.

    Other sources are returned unchanged.
    """
    if isinstance(source, PathSource):
        return replace(source, path=_relative_path(Path(source.path), project_root))
    return source


def classify_source(
    name: str,
    url: Optional[str],
    *,
    is_workspace_member: bool = False,
    editable: Optional[bool] = None,
    rev: Optional[str] = None,
    tag: Optional[str] = None,
    branch: Optional[str] = None,
    project_root: Path,
) -> Source:
    """Decide where ``name`` comes from.

    Args:
        name: Requirement name.
        url: Declared URL or path, or ``None`` for an index requirement.
        is_workspace_member: Whether ``name`` is a member of the current
            workspace.
        editable: Explicit ``--editable``/``--no-editable`` choice.
        rev: ``--rev`` flag.
        tag: ``--tag`` flag.
        branch: ``--branch`` flag.
        project_root: Root of the project whose manifest is edited.

    Returns:
        The source to record for the requirement.

    Raises:
        SourceError: If more than one reference flag is given for a Git
            source, or the URL is malformed.
        UnresolvedReferenceError: If a Git source has no reference at all.
    """
    if is_workspace_member:
        return WorkspaceSource(member=name)

    flags = [value for value in (rev, tag, branch) if value is not None]

    if url is None:
        if flags:
            logger.debug("Ignoring Git reference flags for index requirement %s", name)
        return RegistrySource()

    locator = parse_locator(url, project_root)

    if locator.kind is LocatorKind.VCS:
        if len(flags) > 1:
            raise SourceError(
                "Only one of `--rev`, `--tag`, or `--branch` may be given for a Git source",
                requirement=name,
            )
        if not flags and locator.reference is None:
            raise UnresolvedReferenceError(str(locator), name)
        if not flags:
            rev = locator.reference
        return GitSource(
            url=locator.value,
            subdirectory=locator.subdirectory,
            rev=rev,
            tag=tag,
            branch=branch,
        )

    if flags:
        logger.warning(
            "`--rev`, `--tag`, and `--branch` only apply to Git sources; ignoring them for %s",
            name,
        )

    if locator.kind is LocatorKind.DIRECTORY:
        if locator.subdirectory:
            path = locator.path / locator.subdirectory
        else:
            path = locator.path
        return PathSource(
            path=_relative_path(path, project_root),
            editable=True if editable is None else editable,
        )

    if locator.kind is LocatorKind.ARCHIVE:
        if editable:
            raise SourceError(
                "Archives cannot be installed in editable mode",
                requirement=name,
            )
        return PathSource(path=_relative_path(locator.path, project_root), editable=None)

    return UrlSource(url=locator.value, subdirectory=locator.subdirectory)
