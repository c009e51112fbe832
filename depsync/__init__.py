"""
depsync: requirement resolution and environment synchronization.

depsync turns user-supplied requirements (names, version specifiers, local
paths, VCS references, whole source trees, or requirements files) into fully
named, sourced dependency records, merges them into a ``pyproject.toml``
manifest, and drives the manifest to a locked, installed state.

Features include:
    • ``depsync add`` for registry, Git, path, URL, and workspace dependencies
    • ``depsync init`` for new applications and libraries, optionally joining
      a parent workspace or importing another project's dependencies
    • Credential redaction so secrets never reach the manifest
    • Format-preserving manifest edits that skip no-op writes
"""

from __future__ import annotations

from depsync.__version__ import __version__

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "depsync Contributors"
__license__ = "Apache-2.0"
__description__ = "Resolve requirements into pyproject.toml and keep environments in sync."

__all__ = [
    "__version__",
]
