"""
Core functionality exports for depsync.

Importing from here keeps user-facing imports clean and stable:

    from depsync.core import RequirementsParser, add, init_project
"""

from __future__ import annotations

from depsync.core.parser import RequirementsParser
from depsync.core.classifier import classify_source
from depsync.core.credentials import CredentialStore, Credentials
from depsync.core.index import InFlight, InMemoryIndex, SharedState
from depsync.core.locator import Locator, LocatorKind, parse_locator
from depsync.core.manifest import PyProjectManifest
from depsync.core.metadata import DistributionDatabase, DistributionMetadata
from depsync.core.resolver import NamedRequirementsResolver, SourceTreeResolver
from depsync.core.tool import ToolRequest, parse_tool_request
from depsync.core.project import (
    Collaborators,
    ProjectKind,
    add,
    import_requirements,
    init_project,
)

__all__ = [
    "RequirementsParser",
    "classify_source",
    "CredentialStore",
    "Credentials",
    "InFlight",
    "InMemoryIndex",
    "SharedState",
    "Locator",
    "LocatorKind",
    "parse_locator",
    "PyProjectManifest",
    "DistributionDatabase",
    "DistributionMetadata",
    "NamedRequirementsResolver",
    "SourceTreeResolver",
    "ToolRequest",
    "parse_tool_request",
    "Collaborators",
    "ProjectKind",
    "add",
    "import_requirements",
    "init_project",
]
