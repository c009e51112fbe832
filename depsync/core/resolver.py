"""
Resolution of unnamed requirements and source trees.

Both resolvers share one mechanism, :meth:`_MetadataResolver._get_or_build`:

1. compute the locator's fingerprint;
2. return metadata already in the :class:`~depsync.core.index.InMemoryIndex`;
3. re-raise a failure already recorded for the fingerprint;
4. otherwise claim the fingerprint in :class:`~depsync.core.index.InFlight`.
   The first caller builds (bounded by a semaphore); every concurrent
   caller awaits the same future.

Results are gathered into input-order slots. The first failure cancels the
rest of the batch and propagates; nothing is retried.

Typical usage::

    state = SharedState()
    resolver = NamedRequirementsResolver(
        requirements, database, state, base_dir=Path.cwd()
    )
    named = await resolver.resolve()
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar

from packaging.requirements import InvalidRequirement
from packaging.utils import canonicalize_name

from depsync.utils.logger import get_logger
from depsync.constants import DEFAULT_CONCURRENT_BUILDS, TOOL_NAME
from depsync.core.index import SharedState
from depsync.core.locator import Locator, LocatorKind, parse_locator
from depsync.core.metadata import DistributionMetadata, MetadataProvider, read_pyproject
from depsync.exceptions import DepsyncError, ResolutionError
from depsync.models.marker import strip_extras
from depsync.models.requirement import Requirement
from depsync.models.source import PathSource, Source, source_from_table, source_to_url

logger = get_logger("resolver")

T = TypeVar("T")

__all__ = [
    "ImportedRequirement",
    "NamedRequirementsResolver",
    "SourceTreeResolution",
    "SourceTreeResolver",
]


@dataclass
class ImportedRequirement:
    """A requirement declared by an imported project.

    Attributes:
        requirement: The requirement with ``extra`` atoms removed from its
            marker.
        groups: Optional-dependency groups it was declared under; empty for
            a production dependency.
        source: The entry declared for it in the tree's
            ``[tool.depsync.sources]``, with a path made absolute. ``None``
            when the tree declares no Git, path or URL source for it.
    """

    requirement: Requirement
    groups: List[str] = field(default_factory=list)
    source: Optional[Source] = None


@dataclass
class SourceTreeResolution:
    """The declared dependencies of one source tree."""

    project: str
    version: str
    requirements: List[ImportedRequirement] = field(default_factory=list)
    extras: List[str] = field(default_factory=list)


async def _gather_ordered(awaitables: Sequence[Awaitable[T]]) -> List[T]:
    """Await all of ``awaitables``; on the first failure cancel the rest."""
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _as_resolution_error(exc: Exception, fingerprint: str, locator: Locator) -> ResolutionError:
    if isinstance(exc, ResolutionError):
        if exc.fingerprint is None:
            exc.fingerprint = fingerprint
            exc.details["fingerprint"] = fingerprint
        return exc
    message = exc.message if isinstance(exc, DepsyncError) else str(exc)
    error = ResolutionError(
        f"Failed to resolve `{locator}`: {message}",
        fingerprint=fingerprint,
        locator=str(locator),
    )
    error.__cause__ = exc
    return error


class _MetadataResolver:
    """Fingerprint-keyed, deduplicated access to a metadata provider."""

    def __init__(
        self,
        database: MetadataProvider,
        state: SharedState,
        *,
        concurrency: int = DEFAULT_CONCURRENT_BUILDS,
    ) -> None:
        self.database = database
        self.state = state
        self._semaphore = asyncio.Semaphore(concurrency)

    async def _fingerprint(self, locator: Locator) -> str:
        if locator.is_local:
            return await asyncio.to_thread(locator.fingerprint)
        return locator.fingerprint()

    async def _get_or_build(self, locator: Locator) -> DistributionMetadata:
        fingerprint = await self._fingerprint(locator)

        # No suspension point between the lookups and ``register``.
        cached = self.state.index.get(fingerprint)
        if cached is not None:
            return cached

        failure = self.state.in_flight.failure(fingerprint)
        if failure is not None:
            raise failure

        future, owner = self.state.in_flight.register(fingerprint)
        if not owner:
            logger.debug("Waiting for in-flight build of %s", locator)
            return await asyncio.shield(future)

        try:
            async with self._semaphore:
                logger.debug("Fetching metadata for %s", locator)
                metadata = await self.database.get_metadata(locator)
        except asyncio.CancelledError as exc:
            self.state.in_flight.fail(fingerprint, exc)
            raise
        except Exception as exc:
            error = _as_resolution_error(exc, fingerprint, locator)
            self.state.in_flight.fail(fingerprint, error)
            if error is exc:
                raise
            raise error from exc

        stored = self.state.index.insert(fingerprint, metadata)
        self.state.in_flight.complete(fingerprint, stored)
        return stored


class NamedRequirementsResolver(_MetadataResolver):
    """Turn possibly-unnamed requirements into named ones.

    Args:
        requirements: Requirements in the order the user gave them.
        database: Metadata provider.
        state: Per-invocation shared state.
        base_dir: Directory relative paths are resolved against.
        concurrency: Maximum number of simultaneous metadata builds.
    """

    def __init__(
        self,
        requirements: Sequence[Requirement],
        database: MetadataProvider,
        state: SharedState,
        *,
        base_dir: Path,
        concurrency: int = DEFAULT_CONCURRENT_BUILDS,
    ) -> None:
        super().__init__(database, state, concurrency=concurrency)
        self.requirements = list(requirements)
        self.base_dir = base_dir

    async def resolve(self) -> List[Requirement]:
        """Return one named requirement per input, in input order."""
        return await _gather_ordered([self._resolve_one(req) for req in self.requirements])

    async def _resolve_one(self, requirement: Requirement) -> Requirement:
        if requirement.url is None:
            if requirement.name is None:
                raise ResolutionError("Requirement has neither a name nor a URL")
            return requirement

        locator = parse_locator(requirement.url, self.base_dir)
        metadata = await self._get_or_build(locator)

        if requirement.name is not None and canonicalize_name(requirement.name) != canonicalize_name(
            metadata.name
        ):
            raise ResolutionError(
                f"Requirement `{requirement.name}` does not match the distribution "
                f"name `{metadata.name}` found at `{locator}`",
                locator=str(locator),
            )

        return requirement.with_name(requirement.name or metadata.name, metadata.version)


class SourceTreeResolver(_MetadataResolver):
    """Read the declared dependencies of source trees.

    ``[tool.depsync.sources]`` entries of each tree are applied to its
    requirements, so a path or Git dependency of the imported project stays
    a path or Git dependency after import.
    """

    def __init__(
        self,
        source_trees: Sequence[Path],
        database: MetadataProvider,
        state: SharedState,
        *,
        concurrency: int = DEFAULT_CONCURRENT_BUILDS,
    ) -> None:
        super().__init__(database, state, concurrency=concurrency)
        self.source_trees = list(source_trees)

    async def resolve(self) -> List[SourceTreeResolution]:
        return await _gather_ordered([self._resolve_tree(tree) for tree in self.source_trees])

    async def _resolve_tree(self, tree: Path) -> SourceTreeResolution:
        root = tree.resolve()
        locator = Locator(LocatorKind.DIRECTORY, str(root), str(tree))
        metadata = await self._get_or_build(locator)
        sources = await asyncio.to_thread(_declared_sources, root)

        requirements: List[ImportedRequirement] = []
        for text in metadata.requires_dist:
            try:
                requirement = Requirement.parse(text)
            except InvalidRequirement as exc:
                raise ResolutionError(
                    f"Invalid requirement `{text}` in {metadata.name}: {exc}",
                    locator=str(locator),
                ) from exc

            groups, marker = strip_extras(requirement.marker)
            requirement = requirement.with_marker(marker)

            lowered, declared = _lower_source(requirement, sources, root)
            requirements.append(ImportedRequirement(lowered, groups, declared))

        return SourceTreeResolution(
            project=metadata.name,
            version=metadata.version,
            requirements=requirements,
            extras=list(metadata.provides_extras),
        )


def _declared_sources(root: Path) -> Dict[str, Dict[str, Any]]:
    pyproject = read_pyproject(root) or {}
    tool = pyproject.get("tool", {}).get(TOOL_NAME, {})
    sources = tool.get("sources", {})
    return {canonicalize_name(name): dict(table) for name, table in sources.items()}


def _lower_source(
    requirement: Requirement,
    sources: Dict[str, Dict[str, Any]],
    root: Path,
) -> Tuple[Requirement, Optional[Source]]:
    """Apply a declared source to a requirement.

    Returns the requirement in its URL form together with the parsed
    source, or the requirement unchanged and ``None`` when nothing applies.
    """
    if requirement.url is not None or requirement.name is None:
        return requirement, None

    table = sources.get(canonicalize_name(requirement.name))
    if table is None:
        return requirement, None

    try:
        source = source_from_table(requirement.name, table)
        url = source_to_url(source, root)
    except ValueError as exc:
        raise ResolutionError(str(exc), locator=str(root)) from exc

    if url is None:
        return requirement, None
    if isinstance(source, PathSource):
        source = replace(source, path=str((root / source.path).resolve()))
    return requirement.with_url(url), source
