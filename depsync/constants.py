"""
Centralized constants for depsync.

This module defines immutable configuration values used across depsync,
including network settings, manifest layout, requirement directives, and
logging formats. All values are intended to be treated as read-only.
"""

import os
from typing import Final, Sequence, Tuple

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: Name used for the ``[tool.<name>]`` manifest table and the config file.
TOOL_NAME: Final[str] = "depsync"

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = "depsync/{version}"

# ---------------------------------------------------------------------------
# Package indexes
# ---------------------------------------------------------------------------

#: Default package index (PEP 503 simple API).
DEFAULT_INDEX_URL: Final[str] = "https://pypi.org/simple"

# ---------------------------------------------------------------------------
# HTTP and concurrency configuration
# ---------------------------------------------------------------------------

#: Default network timeout in seconds.
DEFAULT_TIMEOUT: Final[int] = 30

#: Maximum number of retries for failed HTTP requests.
DEFAULT_MAX_RETRIES: Final[int] = 3

#: Maximum number of concurrent downloads.
DEFAULT_CONCURRENT_DOWNLOADS: Final[int] = 50

#: Maximum number of concurrent metadata builds.
DEFAULT_CONCURRENT_BUILDS: Final[int] = os.cpu_count() or 4

# ---------------------------------------------------------------------------
# Project layout
# ---------------------------------------------------------------------------

#: Project manifest file name.
MANIFEST_FILE: Final[str] = "pyproject.toml"

#: Interpreter pin file written by ``depsync init``.
PYTHON_VERSION_FILE: Final[str] = ".python-version"

#: Virtual environment directory created next to the project.
VENV_DIR: Final[str] = ".venv"

#: Files whose contents identify the state of a source tree.
SOURCE_TREE_FILES: Final[Tuple[str, ...]] = (
    "pyproject.toml",
    "setup.cfg",
    "setup.py",
    "PKG-INFO",
)

#: Archive suffixes treated as distributions rather than source trees.
ARCHIVE_SUFFIXES: Final[Tuple[str, ...]] = (
    ".whl",
    ".tar.gz",
    ".tgz",
    ".tar.bz2",
    ".tar.xz",
    ".zip",
)

#: Build system written for packaged projects.
DEFAULT_BUILD_BACKEND: Final[str] = "hatchling.build"

#: Requirements of :data:`DEFAULT_BUILD_BACKEND`.
DEFAULT_BUILD_REQUIRES: Final[Sequence[str]] = ("hatchling",)

# ---------------------------------------------------------------------------
# Requirement directives
# ---------------------------------------------------------------------------

#: Short include directive for requirement files.
INCLUDE_DIRECTIVE: Final[str] = "-r"

#: Long include directive for requirement files.
INCLUDE_DIRECTIVE_LONG: Final[str] = "--requirement"

#: Short editable-install directive.
EDITABLE_DIRECTIVE: Final[str] = "-e"

#: Long editable-install directive.
EDITABLE_DIRECTIVE_LONG: Final[str] = "--editable"

#: Hash-checking directive.
HASH_DIRECTIVE: Final[str] = "--hash"

#: Schemes recognized as direct URLs.
URL_SCHEMES: Final[Tuple[str, ...]] = ("http://", "https://", "file://")

#: Supported version-control URL prefixes.
VCS_PREFIXES: Final[Tuple[str, ...]] = ("git+",)

#: Version-control prefixes that are recognized but not supported.
UNSUPPORTED_VCS_PREFIXES: Final[Tuple[str, ...]] = ("hg+", "svn+", "bzr+")

# ---------------------------------------------------------------------------
# Security constraints
# ---------------------------------------------------------------------------

#: Maximum allowed file size (in bytes) when reading manifests and requirement files.
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024  # 10 MB

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
