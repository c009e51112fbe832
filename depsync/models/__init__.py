"""
Unified data model exports for depsync.

Example:
    >>> from depsync.models import Requirement, GitSource, DependencyType
"""

from __future__ import annotations

from depsync.models.requirement import Requirement, is_valid_name, normalize_extras
from depsync.models.source import (
    GitSource,
    PathSource,
    RegistrySource,
    Source,
    UrlSource,
    WorkspaceSource,
    source_from_table,
    source_kind,
    source_to_table,
    source_to_url,
)
from depsync.models.dependency import (
    ArrayEdit,
    DependencyEdit,
    DependencyKind,
    DependencyType,
    EditAction,
)

__all__ = [
    "Requirement",
    "is_valid_name",
    "normalize_extras",
    "Source",
    "RegistrySource",
    "GitSource",
    "PathSource",
    "WorkspaceSource",
    "UrlSource",
    "source_to_table",
    "source_to_url",
    "source_from_table",
    "source_kind",
    "DependencyKind",
    "DependencyType",
    "EditAction",
    "ArrayEdit",
    "DependencyEdit",
]
