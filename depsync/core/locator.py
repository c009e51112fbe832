"""
Locators: parsed forms of a declared URL or local path.

A requirement such as ``./libs/core``, ``https://host/pkg-1.0.tar.gz`` or
``git+https://github.com/org/repo@v1.2#subdirectory=pkg`` points at a
distribution without naming it. :func:`parse_locator` classifies the
declaration; :meth:`Locator.fingerprint` produces the key under which
metadata for it is built and cached, so two declarations of the same
artifact share one build.
"""

from __future__ import annotations

import enum
from pathlib import Path
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import unquote, urlsplit, urlunsplit
from urllib.request import url2pathname

from depsync.exceptions import SourceError
from depsync.utils.filesystem import digest_files
from depsync.core.credentials import normalize_repository_url, redact_credentials
from depsync.constants import (
    ARCHIVE_SUFFIXES,
    SOURCE_TREE_FILES,
    UNSUPPORTED_VCS_PREFIXES,
    VCS_PREFIXES,
)


class LocatorKind(str, enum.Enum):
    DIRECTORY = "directory"
    ARCHIVE = "archive"
    URL = "url"
    VCS = "vcs"


@dataclass(frozen=True)
class Locator:
    """A classified URL or path.

    Attributes:
        kind: What the declaration points at.
        value: Absolute path for directories and archives, the URL (without
            fragment) for direct URLs, or the repository URL (without the
            ``git+`` prefix and ``@ref`` suffix) for VCS locators.
        declared: The text as the user wrote it.
        reference: The ``@ref`` pinned in a VCS URL, if any.
        subdirectory: The ``#subdirectory=`` fragment, if any.
    """

    kind: LocatorKind
    value: str
    declared: str
    reference: Optional[str] = None
    subdirectory: Optional[str] = None

    @property
    def path(self) -> Path:
        return Path(self.value)

    @property
    def is_local(self) -> bool:
        return self.kind in (LocatorKind.DIRECTORY, LocatorKind.ARCHIVE)

    def fingerprint(self) -> str:
        """Return the cache key for this locator.

        Local fingerprints hash file contents, so an edited source tree
        gets a new key. This reads the filesystem.
        """
        suffix = f"#{self.subdirectory}" if self.subdirectory else ""
        if self.kind is LocatorKind.DIRECTORY:
            root = self.path / self.subdirectory if self.subdirectory else self.path
            files = [root / name for name in SOURCE_TREE_FILES]
            return f"dir:{self.value}{suffix}:{digest_files(files)}"
        if self.kind is LocatorKind.ARCHIVE:
            return f"file:{self.value}:{digest_files([self.path])}"
        if self.kind is LocatorKind.URL:
            return f"url:{_normalize_url(self.value)}{suffix}"
        return f"git:{normalize_repository_url(self.value)}@{self.reference or 'HEAD'}{suffix}"

    def __str__(self) -> str:
        return redact_credentials(self.declared)


def is_archive(name: str) -> bool:
    return name.lower().endswith(ARCHIVE_SUFFIXES)


def _normalize_url(url: str) -> str:
    parts = urlsplit(redact_credentials(url))
    return urlunsplit(parts._replace(scheme=parts.scheme.lower(), netloc=parts.netloc.lower()))


def _parse_fragment(fragment: str) -> Optional[str]:
    """Return the ``subdirectory`` value of a URL fragment."""
    for item in fragment.split("&"):
        key, _, value = item.partition("=")
        if key == "subdirectory" and value:
            return unquote(value)
    return None


def split_vcs_url(url: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split a ``git+`` URL into ``(repository, reference, subdirectory)``.

    Example::

        >>> split_vcs_url("git+https://github.com/org/repo@v1#subdirectory=pkg")
        ('https://github.com/org/repo', 'v1', 'pkg')
    """
    for prefix in VCS_PREFIXES:
        if url.lower().startswith(prefix):
            url = url[len(prefix):]
            break

    url, _, fragment = url.partition("#")
    subdirectory = _parse_fragment(fragment) if fragment else None

    # The reference is an ``@`` after the last path separator, which keeps
    # ``ssh://git@host/...`` userinfo intact.
    last_slash = url.rfind("/")
    at = url.rfind("@")
    reference: Optional[str] = None
    if at > last_slash >= 0 and at > url.find("://") + 2:
        url, reference = url[:at], url[at + 1:] or None

    return url, reference, subdirectory


def is_vcs_url(value: str) -> bool:
    """Return True for ``git+`` URLs and HTTP(S) URLs of a ``.git`` repository."""
    lowered = value.lower()
    if lowered.startswith(VCS_PREFIXES):
        return True
    if not lowered.startswith(("http://", "https://")):
        return False
    repository, _, _ = split_vcs_url(value)
    return urlsplit(repository).path.rstrip("/").endswith(".git")


def parse_locator(declared: str, base_dir: Path) -> Locator:
    """Classify a declared URL or path.

    Args:
        declared: URL or path as written by the user.
        base_dir: Directory relative paths are resolved against.

    Raises:
        SourceError: If the declaration is empty or uses an unsupported
            scheme.
    """
    text = declared.strip()
    if not text:
        raise SourceError("Empty path or URL")

    lowered = text.lower()
    if lowered.startswith(UNSUPPORTED_VCS_PREFIXES):
        scheme = lowered.split("+", 1)[0]
        raise SourceError(
            f"Unsupported version control system `{scheme}` in `{redact_credentials(text)}`"
        )

    if is_vcs_url(text):
        repository, reference, subdirectory = split_vcs_url(text)
        if not repository:
            raise SourceError(f"Missing repository in `{redact_credentials(text)}`")
        return Locator(LocatorKind.VCS, repository, text, reference, subdirectory)

    if lowered.startswith("file://"):
        url, _, fragment = text.partition("#")
        path = Path(url2pathname(urlsplit(url).path))
        subdirectory = _parse_fragment(fragment) if fragment else None
        return _local_locator(path, text, base_dir, subdirectory)

    if lowered.startswith(("http://", "https://")):
        url, _, fragment = text.partition("#")
        subdirectory = _parse_fragment(fragment) if fragment else None
        return Locator(LocatorKind.URL, url, text, subdirectory=subdirectory)

    if "://" in text:
        scheme = text.split("://", 1)[0]
        raise SourceError(f"Unsupported URL scheme `{scheme}` in `{redact_credentials(text)}`")

    return _local_locator(Path(text).expanduser(), text, base_dir, None)


def _local_locator(
    path: Path,
    declared: str,
    base_dir: Path,
    subdirectory: Optional[str],
) -> Locator:
    if not path.is_absolute():
        path = base_dir / path
    path = path.resolve()
    kind = LocatorKind.ARCHIVE if is_archive(path.name) else LocatorKind.DIRECTORY
    return Locator(kind, str(path), declared, subdirectory=subdirectory)
