"""
Distribution metadata for unnamed requirements.

An unnamed requirement (``./libs/core``, ``https://host/pkg.whl``,
``git+https://...``) only gets a name once its metadata has been read.
:class:`DistributionDatabase` obtains that metadata, preferring static
sources and falling back to the project's build backend:

1. ``[project]`` in ``pyproject.toml`` when name, version, and
   dependencies are all declared statically;
2. ``PKG-INFO`` of an unpacked sdist, or ``METADATA`` of a wheel;
3. the PEP 517 ``prepare_metadata_for_build_wheel`` hook, invoked through
   :func:`build.util.project_wheel_metadata`.
"""

from __future__ import annotations

import asyncio
import hashlib
import tarfile
import zipfile
import tempfile
from pathlib import Path
from dataclasses import dataclass
from email.parser import HeaderParser
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple
from urllib.parse import unquote, urlsplit

import build
import build.util
import tomli as tomllib
from packaging.requirements import InvalidRequirement, Requirement as PackagingRequirement

from depsync.utils.http import HTTPClient
from depsync.utils.logger import get_logger
from depsync.core.git import GitFetcher
from depsync.core.locator import Locator, LocatorKind, is_archive
from depsync.exceptions import ResolutionError

logger = get_logger("metadata")

_STATIC_FIELDS = ("version", "dependencies", "optional-dependencies")


@dataclass(frozen=True)
class DistributionMetadata:
    """The subset of core metadata the resolvers need."""

    name: str
    version: str
    requires_dist: Tuple[str, ...] = ()
    provides_extras: Tuple[str, ...] = ()
    requires_python: Optional[str] = None

    @classmethod
    def from_message(cls, message: Any) -> "DistributionMetadata":
        """Build from an ``email.message.Message``-like core metadata object."""
        name = message.get("Name")
        version = message.get("Version")
        if not name or not version:
            raise ValueError("Core metadata is missing Name or Version")
        return cls(
            name=str(name),
            version=str(version),
            requires_dist=tuple(message.get_all("Requires-Dist") or ()),
            provides_extras=tuple(message.get_all("Provides-Extra") or ()),
            requires_python=message.get("Requires-Python"),
        )

    @classmethod
    def parse_core_metadata(cls, text: str) -> "DistributionMetadata":
        """Parse the text of a ``METADATA`` or ``PKG-INFO`` file."""
        return cls.from_message(HeaderParser().parsestr(text))

    @classmethod
    def from_pyproject(cls, project: Mapping[str, Any]) -> Optional["DistributionMetadata"]:
        """Read static metadata from a ``[project]`` table.

        Returns ``None`` when any field the resolvers need is dynamic.
        """
        dynamic = set(project.get("dynamic", ()))
        name = project.get("name")
        if not name or dynamic.intersection(_STATIC_FIELDS) or "version" not in project:
            return None

        requires_dist: List[str] = list(project.get("dependencies", ()))
        optional: Dict[str, List[str]] = dict(project.get("optional-dependencies", {}))
        for group, requirements in optional.items():
            for text in requirements:
                requires_dist.append(_with_extra_marker(text, group))

        return cls(
            name=str(name),
            version=str(project["version"]),
            requires_dist=tuple(requires_dist),
            provides_extras=tuple(optional),
            requires_python=project.get("requires-python"),
        )


def _with_extra_marker(text: str, group: str) -> str:
    """Attach ``extra == "<group>"`` to a requirement string."""
    try:
        requirement = PackagingRequirement(text)
    except InvalidRequirement as exc:
        raise ValueError(f"Invalid requirement {text!r}: {exc}") from exc

    extra = f'extra == "{group}"'
    original = requirement.marker
    requirement.marker = None
    marker = f"({original}) and {extra}" if original is not None else extra
    separator = " ; " if requirement.url else "; "
    return f"{requirement}{separator}{marker}"


class MetadataProvider(Protocol):
    """Anything that can produce metadata for a locator."""

    async def get_metadata(self, locator: Locator) -> DistributionMetadata: ...


def read_pyproject(path: Path) -> Optional[Dict[str, Any]]:
    """Parse ``path/pyproject.toml``; return ``None`` if it does not exist."""
    manifest = path / "pyproject.toml"
    if not manifest.is_file():
        return None
    try:
        with manifest.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ResolutionError(
            f"Invalid pyproject.toml: {exc}",
            locator=str(manifest),
        ) from exc


def _wheel_metadata(path: Path) -> DistributionMetadata:
    with zipfile.ZipFile(path) as archive:
        for member in archive.namelist():
            parts = member.split("/")
            if len(parts) == 2 and parts[0].endswith(".dist-info") and parts[1] == "METADATA":
                text = archive.read(member).decode("utf-8")
                return DistributionMetadata.parse_core_metadata(text)
    raise ValueError("Wheel has no .dist-info/METADATA")


def _sdist_pkg_info(path: Path) -> Optional[str]:
    """Return the top-level ``PKG-INFO`` of an sdist archive, if present."""
    if path.name.lower().endswith(".zip"):
        with zipfile.ZipFile(path) as archive:
            for member in archive.namelist():
                if member.count("/") == 1 and member.endswith("/PKG-INFO"):
                    return archive.read(member).decode("utf-8")
        return None

    with tarfile.open(path) as archive:
        for member in archive.getmembers():
            if member.name.count("/") == 1 and member.name.endswith("/PKG-INFO"):
                handle = archive.extractfile(member)
                if handle is not None:
                    return handle.read().decode("utf-8")
    return None


def _unpack_sdist(path: Path, destination: Path) -> Path:
    """Unpack an sdist and return its single top-level directory."""
    if path.name.lower().endswith(".zip"):
        with zipfile.ZipFile(path) as archive:
            archive.extractall(destination)
    else:
        with tarfile.open(path) as archive:
            if hasattr(tarfile, "data_filter"):
                archive.extractall(destination, filter="data")
            else:
                archive.extractall(destination)
    children = [child for child in destination.iterdir() if child.is_dir()]
    if len(children) != 1:
        raise ValueError("Source distribution must contain a single top-level directory")
    return children[0]


class DistributionDatabase:
    """Default :class:`MetadataProvider`.

    Args:
        http_client: Client used to download direct URL artifacts.
        git: Fetcher used for VCS locators.
        cache_dir: Directory for downloads and unpacked archives.
        build_isolation: Build dynamic metadata in an isolated environment.
    """

    def __init__(
        self,
        http_client: HTTPClient,
        git: GitFetcher,
        cache_dir: Path,
        *,
        build_isolation: bool = True,
    ) -> None:
        self.http_client = http_client
        self.git = git
        self.cache_dir = cache_dir
        self.build_isolation = build_isolation

    async def get_metadata(self, locator: Locator) -> DistributionMetadata:
        if locator.kind is LocatorKind.DIRECTORY:
            root = locator.path / locator.subdirectory if locator.subdirectory else locator.path
            return await self.source_tree_metadata(root, str(locator))

        if locator.kind is LocatorKind.ARCHIVE:
            return await self.archive_metadata(locator.path, str(locator))

        if locator.kind is LocatorKind.URL:
            return await self._url_metadata(locator)

        checkout = await self.git.fetch(locator.value, locator.reference)
        root = checkout / locator.subdirectory if locator.subdirectory else checkout
        return await self.source_tree_metadata(root, str(locator))

    async def source_tree_metadata(self, root: Path, label: str) -> DistributionMetadata:
        """Metadata for a source tree, building it only when not static."""
        if not root.is_dir():
            raise ResolutionError(f"Source tree does not exist: {root}", locator=label)

        pyproject = await asyncio.to_thread(read_pyproject, root)
        if pyproject is not None:
            metadata = DistributionMetadata.from_pyproject(pyproject.get("project", {}))
            if metadata is not None:
                logger.debug("Read static metadata for %s from pyproject.toml", metadata.name)
                return metadata

        pkg_info = root / "PKG-INFO"
        if pkg_info.is_file():
            text = await asyncio.to_thread(pkg_info.read_text, "utf-8")
            try:
                metadata = DistributionMetadata.parse_core_metadata(text)
            except ValueError as exc:
                raise ResolutionError(f"Invalid PKG-INFO: {exc}", locator=label) from exc
            if "Requires-Dist" not in _dynamic_fields(text):
                return metadata

        if pyproject is None and not (root / "setup.py").is_file():
            raise ResolutionError(
                f"Not a Python project (no pyproject.toml or setup.py): {root}",
                locator=label,
            )

        return await self._build_metadata(root, label)

    async def _build_metadata(self, root: Path, label: str) -> DistributionMetadata:
        logger.info("Building metadata for %s", label)
        try:
            message = await asyncio.to_thread(
                build.util.project_wheel_metadata,
                root,
                self.build_isolation,
            )
        except (
            build.BuildException,
            build.BuildBackendException,
            build.FailedProcessError,
        ) as exc:
            raise ResolutionError(f"Failed to build metadata: {exc}", locator=label) from exc
        try:
            return DistributionMetadata.from_message(message)
        except ValueError as exc:
            raise ResolutionError(str(exc), locator=label) from exc

    async def archive_metadata(self, path: Path, label: str) -> DistributionMetadata:
        if not path.is_file():
            raise ResolutionError(f"Archive does not exist: {path}", locator=label)

        try:
            if path.name.lower().endswith(".whl"):
                return await asyncio.to_thread(_wheel_metadata, path)

            text = await asyncio.to_thread(_sdist_pkg_info, path)
            if text is not None and "Requires-Dist" not in _dynamic_fields(text):
                return DistributionMetadata.parse_core_metadata(text)

            unpack_root = self.cache_dir / "sdists"
            unpack_root.mkdir(parents=True, exist_ok=True)
        except (OSError, ValueError, zipfile.BadZipFile, tarfile.TarError) as exc:
            raise ResolutionError(f"Unreadable archive: {exc}", locator=label) from exc

        # The unpacked tree only lives as long as the metadata build.
        with tempfile.TemporaryDirectory(dir=unpack_root) as scratch:
            try:
                tree = await asyncio.to_thread(_unpack_sdist, path, Path(scratch))
            except (OSError, ValueError, tarfile.TarError, zipfile.BadZipFile) as exc:
                raise ResolutionError(f"Unreadable archive: {exc}", locator=label) from exc
            return await self.source_tree_metadata(tree, label)

    async def _url_metadata(self, locator: Locator) -> DistributionMetadata:
        filename = unquote(Path(urlsplit(locator.value).path).name)
        if not is_archive(filename):
            raise ResolutionError(
                "Direct URLs must point at a wheel or source distribution",
                locator=str(locator),
            )

        digest = hashlib.sha256(locator.fingerprint().encode("utf-8")).hexdigest()[:16]
        directory = self.cache_dir / "downloads" / digest
        directory.mkdir(parents=True, exist_ok=True)
        path = await self.http_client.download(locator.value, directory / filename)
        return await self.archive_metadata(path, str(locator))


def _dynamic_fields(text: str) -> List[str]:
    return HeaderParser().parsestr(text).get_all("Dynamic") or []
