"""
Format-preserving ``pyproject.toml`` editing.

:class:`PyProjectManifest` wraps a :mod:`tomlkit` document so that edits
keep comments, ordering, and whitespace of everything they do not touch.
Rendering a manifest with no edits reproduces the loaded text exactly,
which is what lets callers skip writing, locking, and syncing when an
operation turns out to be a no-op::

    manifest = PyProjectManifest.from_path(path)
    manifest.add_dependency(requirement, source, DependencyType.production())
    if manifest.is_modified():
        safe_write_file(path, manifest.render())
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

import tomlkit
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import Array
from tomlkit.toml_document import TOMLDocument
from packaging.requirements import InvalidRequirement, Requirement as PackagingRequirement
from packaging.utils import canonicalize_name

from depsync.constants import TOOL_NAME
from depsync.utils.logger import get_logger
from depsync.utils.filesystem import safe_read_file
from depsync.exceptions import ManifestError
from depsync.models.requirement import Requirement
from depsync.models.source import RegistrySource, Source, source_to_table
from depsync.models.dependency import (
    ArrayEdit,
    DependencyEdit,
    DependencyType,
    EditAction,
)

logger = get_logger("manifest")

#: Documents, tables, inline tables, and out-of-order table proxies.
Container = MutableMapping[str, Any]

#: Table holding each kind of dependency, keyed by ``DependencyType.table_key[0]``.
#: Optional dependencies append the group name.
_TABLE_PATHS: Dict[str, Tuple[str, ...]] = {
    "production": ("project", "dependencies"),
    "dev": ("dependency-groups", "dev"),
    "optional": ("project", "optional-dependencies"),
}

_SOURCES_PATH: Tuple[str, ...] = ("tool", TOOL_NAME, "sources")
_WORKSPACE_PATH: Tuple[str, ...] = ("tool", TOOL_NAME, "workspace")


def dependency_path(dependency_type: DependencyType) -> Tuple[str, ...]:
    """Return the key path of the array holding ``dependency_type``."""
    kind, *group = dependency_type.table_key
    return _TABLE_PATHS[kind] + tuple(group)


def _entry_name(item: Any) -> Optional[str]:
    try:
        return canonicalize_name(PackagingRequirement(str(item)).name)
    except InvalidRequirement:
        logger.debug("Skipping unparsable dependency entry %r", str(item))
        return None


class PyProjectManifest:
    """An editable ``pyproject.toml``.

    Args:
        text: Manifest text.
        path: Where the text was read from, for error messages.

    Raises:
        ManifestError: If ``text`` is not valid TOML.
    """

    def __init__(self, text: str, *, path: Optional[Path] = None) -> None:
        self.path = path
        self._original = text
        try:
            self._doc: TOMLDocument = tomlkit.parse(text)
        except TOMLKitError as exc:
            raise ManifestError(
                f"Failed to parse pyproject.toml: {exc}",
                file_path=str(path) if path else None,
            ) from exc

    @classmethod
    def from_path(cls, path: Path) -> "PyProjectManifest":
        return cls(safe_read_file(path), path=path)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def original(self) -> str:
        return self._original

    @property
    def project_name(self) -> Optional[str]:
        project = self._doc.get("project")
        if project is None:
            return None
        name = project.get("name")
        return str(name) if name is not None else None

    @property
    def requires_python(self) -> Optional[str]:
        project = self._doc.get("project")
        if project is None:
            return None
        value = project.get("requires-python")
        return str(value) if value is not None else None

    def dependencies(self, dependency_type: DependencyType) -> List[str]:
        """Return the current entries of the array for ``dependency_type``."""
        item: Any = self._doc
        for key in dependency_path(dependency_type):
            if not hasattr(item, "get"):
                return []
            item = item.get(key)
            if item is None:
                return []
        return [str(entry) for entry in item]

    def source(self, name: str) -> Optional[Dict[str, Any]]:
        """Return the ``[tool.depsync.sources]`` entry for ``name``."""
        sources = self._lookup(_SOURCES_PATH)
        if sources is None:
            return None
        for key, value in sources.items():
            if canonicalize_name(key) == canonicalize_name(name):
                return value.unwrap()
        return None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def add_dependency(
        self,
        requirement: Requirement,
        source: Optional[Source],
        dependency_type: DependencyType,
    ) -> DependencyEdit:
        """Insert or replace ``requirement`` in the array for ``dependency_type``.

        An entry with the same canonical name is replaced in place, or left
        untouched when the rendered string is identical. A non-registry
        ``source`` is written to ``[tool.depsync.sources]``; otherwise any
        existing source entry for the name is removed.
        """
        if requirement.name is None:
            raise ManifestError("Cannot add an unnamed requirement to the manifest")

        path = dependency_path(dependency_type)
        array = self._ensure_array(path)
        rendered = requirement.to_pep508()
        wanted = canonicalize_name(requirement.name)

        edit: Optional[ArrayEdit] = None
        for index, item in enumerate(array):
            if _entry_name(item) != wanted:
                continue
            if str(item) == rendered:
                edit = ArrayEdit(EditAction.UNCHANGED, ".".join(path), index)
            else:
                array[index] = rendered
                edit = ArrayEdit(EditAction.UPDATED, ".".join(path), index)
            break

        if edit is None:
            array.append(rendered)
            edit = ArrayEdit(EditAction.ADDED, ".".join(path), len(array) - 1)

        self._set_source(requirement.name, source)
        logger.debug("%s %s in %s", edit.action.value, rendered, edit.table)
        return DependencyEdit(dependency_type, requirement, source, edit)

    def add_workspace_member(self, relative_path: str) -> bool:
        """Append ``relative_path`` to the workspace members; False if present."""
        workspace = self._ensure_table(_WORKSPACE_PATH)
        members = workspace.get("members")
        if members is None:
            members = self._new_array()
            workspace["members"] = members
            members = workspace["members"]
        if not isinstance(members, Array):
            raise ManifestError("`tool.depsync.workspace.members` must be an array")
        if relative_path in [str(member) for member in members]:
            return False
        members.append(relative_path)
        return True

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def render(self) -> str:
        return tomlkit.dumps(self._doc)

    def is_modified(self) -> bool:
        """Whether :meth:`render` differs from the loaded text."""
        return self.render() != self._original

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_source(self, name: str, source: Optional[Source]) -> None:
        table = source_to_table(source) if source is not None else None

        if table is None or isinstance(source, RegistrySource):
            sources = self._lookup(_SOURCES_PATH)
            if sources is not None:
                for key in list(sources.keys()):
                    if canonicalize_name(key) == canonicalize_name(name):
                        del sources[key]
            return

        sources = self._ensure_table(_SOURCES_PATH)
        for key in list(sources.keys()):
            if canonicalize_name(key) != canonicalize_name(name):
                continue
            if sources[key].unwrap() == table:
                return
            del sources[key]

        inline = tomlkit.inline_table()
        inline.update(table)
        sources[name] = inline

    def _lookup(self, path: Tuple[str, ...]) -> Optional[Container]:
        item: Any = self._doc
        for key in path:
            item = item.get(key)
            if item is None:
                return None
            if not isinstance(item, MutableMapping):
                raise ManifestError(f"`{key}` in pyproject.toml must be a table")
        return item

    def _ensure_table(self, path: Tuple[str, ...]) -> Container:
        container: Container = self._doc
        for depth, key in enumerate(path):
            item = container.get(key)
            if item is None:
                # Intermediate tables such as ``tool`` stay implicit headers.
                container[key] = tomlkit.table(is_super_table=depth < len(path) - 1)
                item = container[key]
            if not isinstance(item, MutableMapping):
                raise ManifestError(
                    f"`{'.'.join(path[: depth + 1])}` in pyproject.toml must be a table"
                )
            container = item
        return container

    def _ensure_array(self, path: Tuple[str, ...]) -> Array:
        table = self._ensure_table(path[:-1])
        key = path[-1]
        item = table.get(key)
        if item is None:
            table[key] = self._new_array()
            item = table[key]
        if not isinstance(item, Array):
            raise ManifestError(f"`{'.'.join(path)}` in pyproject.toml must be an array")
        return item

    @staticmethod
    def _new_array() -> Array:
        array = tomlkit.array()
        array.multiline(True)
        return array
