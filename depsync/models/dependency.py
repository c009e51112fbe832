"""
Dependency placement and edit records.

:class:`DependencyType` says which manifest array a requirement belongs to;
:class:`DependencyEdit` records what the manifest editor did with it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Tuple

from packaging.utils import canonicalize_name

from depsync.models.requirement import Requirement
from depsync.models.source import Source


class DependencyKind(str, enum.Enum):
    PRODUCTION = "production"
    DEV = "dev"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class DependencyType:
    """Where a dependency is declared.

    Use the :meth:`production`, :meth:`dev`, and :meth:`optional`
    constructors; ``group`` is only meaningful for optional dependencies.
    """

    kind: DependencyKind
    group: Optional[str] = None

    @classmethod
    def production(cls) -> "DependencyType":
        return cls(DependencyKind.PRODUCTION)

    @classmethod
    def dev(cls) -> "DependencyType":
        return cls(DependencyKind.DEV)

    @classmethod
    def optional(cls, group: str) -> "DependencyType":
        if not group:
            raise ValueError("Optional dependencies require a group name")
        return cls(DependencyKind.OPTIONAL, canonicalize_name(group))

    @property
    def table_key(self) -> Tuple[str, ...]:
        """Lookup key for the table that holds this dependency type."""
        if self.group is None:
            return (self.kind.value,)
        return (self.kind.value, self.group)

    def __str__(self) -> str:
        if self.kind is DependencyKind.OPTIONAL:
            return f"optional ({self.group})"
        return self.kind.value


class EditAction(str, enum.Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ArrayEdit:
    """Handle to the array entry an edit touched.

    Attributes:
        action: What happened to the entry.
        table: Dotted path of the array (e.g. ``project.dependencies``).
        index: Position of the entry within the array.
    """

    action: EditAction
    table: str
    index: int


@dataclass(frozen=True)
class DependencyEdit:
    """One requirement merged into the manifest."""

    dependency_type: DependencyType
    requirement: Requirement
    source: Optional[Source]
    edit: ArrayEdit

    @property
    def changed(self) -> bool:
        return self.edit.action is not EditAction.UNCHANGED
