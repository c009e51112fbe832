"""
Project operations: ``add`` and ``init``.

Both flows run the same pipeline::

    discover -> interpreter/environment -> resolve requirements
      -> classify sources -> accumulate edits -> write (if changed)
      -> lock -> sync (unless --no-sync or unchanged)

A failure at any stage aborts the remaining ones. Earlier side effects
(a written manifest, cached credentials) are kept: the manifest records
what the user asked for even when locking it fails.

The interpreter, environment, lock, and sync steps are injected through
:class:`Collaborators` so they can be replaced, e.g. by in-memory fakes in
tests.
"""

from __future__ import annotations

import re
import enum
import asyncio
from pathlib import Path
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from packaging.specifiers import InvalidSpecifier, SpecifierSet

from depsync.config import DepsyncConfig
from depsync.utils.logger import get_logger
from depsync.utils.http import HTTPClient
from depsync.utils.filesystem import safe_read_file, safe_write_file
from depsync.constants import (
    DEFAULT_BUILD_BACKEND,
    DEFAULT_BUILD_REQUIRES,
    MANIFEST_FILE,
    PYTHON_VERSION_FILE,
)
from depsync.exceptions import ProjectError, WorkspaceError
from depsync.core.classifier import classify_source, relocate_source
from depsync.core.credentials import CredentialStore
from depsync.core.git import GitFetcher
from depsync.core.index import SharedState
from depsync.core.manifest import PyProjectManifest
from depsync.core.metadata import DistributionDatabase, MetadataProvider
from depsync.core.resolver import NamedRequirementsResolver, SourceTreeResolver
from depsync.core.workspace import (
    Project,
    Workspace,
    discover_project,
    find_workspace_root,
    relative_member_path,
)
from depsync.core.environment import (
    ExtrasSpecification,
    Interpreter,
    Lock,
    Modifications,
    PythonEnvironment,
    do_lock,
    do_sync,
    find_or_fetch_interpreter,
    get_or_init_environment,
)
from depsync.models.requirement import Requirement, is_valid_name
from depsync.models.dependency import DependencyEdit, DependencyType
from depsync.models.source import GitSource, Source, UrlSource

logger = get_logger("project")

_MAJOR_MINOR = re.compile(r"^\d+\.\d+$")
_MAJOR_MINOR_PATCH = re.compile(r"^\d+\.\d+\.\d+$")


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass
class Collaborators:
    """The external steps a project operation drives.

    Attributes:
        find_interpreter: ``(request, preference) -> Interpreter``.
        init_environment: ``(project_root, interpreter) -> PythonEnvironment``.
        lock: ``async (workspace, interpreter, settings, state) -> Lock``.
        sync: ``async (project, environment, lock, extras, dev,
            modifications, settings, state) -> None``.
        metadata: Metadata provider for unnamed requirements and source
            trees. ``None`` builds a :class:`DistributionDatabase` for the
            duration of the operation.
    """

    find_interpreter: Callable[[Optional[str], str], Interpreter] = find_or_fetch_interpreter
    init_environment: Callable[[Path, Interpreter], PythonEnvironment] = get_or_init_environment
    lock: Callable[..., Awaitable[Lock]] = do_lock
    sync: Callable[..., Awaitable[None]] = do_sync
    metadata: Optional[MetadataProvider] = None
    python_preference: str = "system"


async def _metadata_provider(
    collaborators: Collaborators,
    settings: DepsyncConfig,
    state: SharedState,
    stack: AsyncExitStack,
) -> MetadataProvider:
    if collaborators.metadata is not None:
        return collaborators.metadata

    cache_dir = settings.resolved_cache_dir
    http_client = await stack.enter_async_context(
        HTTPClient(
            verify_ssl=settings.verify_ssl,
            max_concurrency=settings.concurrent_downloads,
            credentials=state.credentials,
        )
    )
    git = GitFetcher(cache_dir, state.credentials)
    return DistributionDatabase(http_client, git, cache_dir)


def _new_state(settings: DepsyncConfig) -> SharedState:
    state = SharedState()
    # Later network calls look credentials up by URL, never from the manifest.
    for url in settings.index_urls():
        state.credentials.store_from_index_url(url)
    return state


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ProjectChanges:
    """What an operation did to a project."""

    project: Project
    edits: List[DependencyEdit] = field(default_factory=list)
    modified: bool = False
    lock: Optional[Lock] = None

    @property
    def synced(self) -> bool:
        return self.lock is not None


class WorkspaceMembership(str, enum.Enum):
    """How a newly initialized project relates to a parent workspace."""

    NONE = "none"
    EXCLUDED = "excluded"
    ALREADY_MEMBER = "already-member"
    ADDED = "added"


@dataclass
class InitResult:
    name: str
    path: Path
    workspace: Optional[Workspace] = None
    membership: WorkspaceMembership = WorkspaceMembership.NONE
    changes: Optional[ProjectChanges] = None


# ---------------------------------------------------------------------------
# Shared steps
# ---------------------------------------------------------------------------


def _redact_source(source: Source, credentials: CredentialStore) -> Source:
    """Move credentials embedded in a Git or URL source into the store."""
    if isinstance(source, (GitSource, UrlSource)):
        redacted = credentials.extract_and_cache(source.url)
        if redacted != source.url:
            logger.debug("Caching credentials for %s", redacted)
            return replace(source, url=redacted)
    return source


def resolve_requirement(
    requirement: Requirement,
    *,
    is_workspace_member: bool,
    project_root: Path,
    credentials: CredentialStore,
    editable: Optional[bool] = None,
    rev: Optional[str] = None,
    tag: Optional[str] = None,
    branch: Optional[str] = None,
    raw_sources: bool = False,
    declared: Optional[Source] = None,
) -> Tuple[Requirement, Optional[Source]]:
    """Decide what to write for ``requirement``.

    In raw-sources mode the inline URL is kept (without credentials) and no
    source is returned. A ``declared`` source from an imported project is
    recorded as written there, with its path re-based onto ``project_root``.
    Otherwise the requirement is classified, and the URL moves out of the
    PEP 508 string into the returned source.

    Raises:
        SourceError: If classification fails.
    """
    assert requirement.name is not None

    if raw_sources:
        if requirement.url is None:
            return requirement, None
        return requirement.with_url(credentials.extract_and_cache(requirement.url)), None

    if declared is not None and not is_workspace_member:
        source = relocate_source(declared, project_root)
        return requirement.without_url(), _redact_source(source, credentials)

    if editable is None and requirement.editable:
        editable = True

    source = classify_source(
        requirement.name,
        requirement.url,
        is_workspace_member=is_workspace_member,
        editable=editable,
        rev=rev,
        tag=tag,
        branch=branch,
        project_root=project_root,
    )
    return requirement.without_url(), _redact_source(source, credentials)


def _python_request(explicit: Optional[str], project: Project) -> Optional[str]:
    """``--python``, then ``.python-version``, then ``requires-python``."""
    if explicit:
        return explicit
    for directory in (project.root, project.workspace.root):
        pin = directory / PYTHON_VERSION_FILE
        if pin.is_file():
            for line in safe_read_file(pin).splitlines():
                line = line.strip()
                if line and not line.startswith("#"):
                    return line
    return project.workspace.requires_python


async def _environment(
    project: Project,
    python: Optional[str],
    collaborators: Collaborators,
) -> Tuple[Interpreter, PythonEnvironment]:
    request = _python_request(python, project)
    interpreter = await asyncio.to_thread(
        collaborators.find_interpreter, request, collaborators.python_preference
    )
    environment = await asyncio.to_thread(
        collaborators.init_environment, project.workspace.root, interpreter
    )
    return interpreter, environment


async def _write_if_modified(manifest: PyProjectManifest, path: Path) -> bool:
    if not manifest.is_modified():
        logger.debug("No changes to dependencies; skipping update")
        return False
    await asyncio.to_thread(safe_write_file, path, manifest.render())
    logger.info("Updated %s", path)
    return True


async def process_project_and_sync(
    project: Project,
    interpreter: Interpreter,
    environment: PythonEnvironment,
    settings: DepsyncConfig,
    state: SharedState,
    collaborators: Collaborators,
    *,
    modified: bool,
    no_sync: bool,
    force: bool = False,
    extras: Optional[ExtrasSpecification] = None,
    dev: bool = True,
) -> Optional[Lock]:
    """Lock the workspace and sync the environment after a manifest change.

    Returns:
        The lock, or ``None`` when both steps were skipped.
    """
    if no_sync:
        logger.debug("Skipping lock and sync due to `--no-sync`")
        return None
    if not modified and not force:
        logger.debug("Manifest unchanged; skipping lock and sync")
        return None

    lock = await collaborators.lock(project.workspace, interpreter, settings, state)
    # Which packages an edit affects is not tracked, so install everything.
    await collaborators.sync(
        project,
        environment,
        lock,
        extras or ExtrasSpecification.all_extras(),
        dev,
        Modifications.SUFFICIENT,
        settings,
        state,
    )
    return lock


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------


async def add(
    requirements: Sequence[Requirement],
    *,
    settings: DepsyncConfig,
    dependency_type: Optional[DependencyType] = None,
    editable: Optional[bool] = None,
    raw_sources: bool = False,
    rev: Optional[str] = None,
    tag: Optional[str] = None,
    branch: Optional[str] = None,
    extras: Sequence[str] = (),
    package: Optional[str] = None,
    python: Optional[str] = None,
    no_sync: bool = False,
    force_sync: bool = False,
    directory: Optional[Path] = None,
    collaborators: Optional[Collaborators] = None,
) -> ProjectChanges:
    """Add ``requirements`` to the project containing ``directory``.

    Args:
        requirements: Parsed requirements, possibly unnamed.
        settings: Loaded configuration.
        dependency_type: Table to add to; production by default.
        editable: ``--editable``/``--no-editable`` for path sources.
        raw_sources: Keep URLs inline instead of writing sources.
        rev: Git commit for Git sources.
        tag: Git tag for Git sources.
        branch: Git branch for Git sources.
        extras: Extras merged into every requirement.
        package: Workspace member to add to instead of the current project.
        python: Interpreter request.
        no_sync: Skip locking and syncing.
        force_sync: Lock and sync even if the manifest did not change.
        directory: Where to start project discovery; the current directory
            by default.
        collaborators: Replacement external steps.

    Raises:
        DepsyncError: Any failure; see :mod:`depsync.exceptions`.
    """
    collaborators = collaborators or Collaborators()
    dependency_type = dependency_type or DependencyType.production()
    start = (directory or Path.cwd()).resolve()

    # ── Step 1: Discover the project ─────────────────────────────────
    project = await asyncio.to_thread(discover_project, start, package=package)
    manifest = await asyncio.to_thread(PyProjectManifest.from_path, project.manifest_path)
    logger.debug("Adding to %s (%s)", project.name, project.manifest_path)

    # ── Step 2: Interpreter and environment ──────────────────────────
    interpreter, environment = await _environment(project, python, collaborators)

    # ── Step 3: Name every requirement ───────────────────────────────
    state = _new_state(settings)
    async with AsyncExitStack() as stack:
        provider = await _metadata_provider(collaborators, settings, state, stack)
        named = await NamedRequirementsResolver(
            requirements,
            provider,
            state,
            base_dir=start,
            concurrency=settings.concurrent_builds,
        ).resolve()

    # ── Step 4: Classify and accumulate edits ────────────────────────
    edits: List[DependencyEdit] = []
    for requirement in named:
        requirement = requirement.with_extras(extras)
        assert requirement.name is not None
        requirement, source = resolve_requirement(
            requirement,
            is_workspace_member=project.workspace.is_member(requirement.name),
            project_root=project.root,
            credentials=state.credentials,
            editable=editable,
            rev=rev,
            tag=tag,
            branch=branch,
            raw_sources=raw_sources,
        )
        edits.append(manifest.add_dependency(requirement, source, dependency_type))

    # ── Step 5: Persist, lock, and sync ──────────────────────────────
    modified = await _write_if_modified(manifest, project.manifest_path)
    lock = await process_project_and_sync(
        project,
        interpreter,
        environment,
        settings,
        state,
        collaborators,
        modified=modified,
        no_sync=no_sync,
        force=force_sync,
    )
    return ProjectChanges(project=project, edits=edits, modified=modified, lock=lock)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


class ProjectKind(str, enum.Enum):
    """What ``init`` scaffolds."""

    APPLICATION = "app"
    LIBRARY = "lib"

    @property
    def packaged_by_default(self) -> bool:
        return self is ProjectKind.LIBRARY


def _module_name(name: str) -> str:
    return re.sub(r"[-.]+", "_", name).lower()


def _pyproject_project(name: str, requires_python: str, no_readme: bool) -> str:
    readme = "" if no_readme else 'readme = "README.md"\n'
    return (
        "[project]\n"
        f'name = "{name}"\n'
        'version = "0.1.0"\n'
        'description = "Add your description here"\n'
        f"{readme}"
        f'requires-python = "{requires_python}"\n'
        "dependencies = []\n"
    )


def _pyproject_build_system() -> str:
    requires = ", ".join(f'"{item}"' for item in DEFAULT_BUILD_REQUIRES)
    return (
        "[build-system]\n"
        f"requires = [{requires}]\n"
        f'build-backend = "{DEFAULT_BUILD_BACKEND}"\n'
    )


def _pyproject_scripts(name: str, executable: str, target: str) -> str:
    return f'[project.scripts]\n{executable} = "{_module_name(name)}:{target}"\n'


def _write_new(path: Path, content: str) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    safe_write_file(path, content)


def scaffold_project(
    kind: ProjectKind,
    name: str,
    path: Path,
    requires_python: str,
    python_pin: Optional[str],
    *,
    no_readme: bool,
    package: bool,
) -> None:
    """Create ``pyproject.toml`` and starter sources for a new project.

    Existing source files and ``.python-version`` are left alone.

    Raises:
        ProjectError: If a library is requested without packaging.
    """
    if kind is ProjectKind.LIBRARY and not package:
        raise ProjectError("Library projects must be packaged")

    pyproject = _pyproject_project(name, requires_python, no_readme)
    path.mkdir(parents=True, exist_ok=True)
    module_dir = path / "src" / _module_name(name)

    if kind is ProjectKind.LIBRARY:
        pyproject += "\n" + _pyproject_build_system()
        _write_new(
            module_dir / "__init__.py",
            f'def hello() -> str:\n    return "Hello from {name}!"\n',
        )
    elif package:
        pyproject += "\n" + _pyproject_scripts(name, "hello", "hello")
        pyproject += "\n" + _pyproject_build_system()
        _write_new(
            module_dir / "__init__.py",
            f'def hello():\n    print("Hello from {name}!")\n',
        )
    else:
        _write_new(
            path / "hello.py",
            "def main():\n"
            f'    print("Hello from {name}!")\n'
            "\n\n"
            'if __name__ == "__main__":\n'
            "    main()\n",
        )

    safe_write_file(path / MANIFEST_FILE, pyproject)

    if python_pin is not None:
        _write_new(path / PYTHON_VERSION_FILE, f"{python_pin}\n")


def _discover_parent_workspace(path: Path, no_workspace: bool) -> Optional[Workspace]:
    try:
        workspace = find_workspace_root(path.parent, ignore=path)
    except WorkspaceError as exc:
        if no_workspace:
            logger.warning("Ignoring workspace discovery error due to `--no-workspace`: %s", exc)
            return None
        raise WorkspaceError(
            f"Failed to discover parent workspace; use `depsync init --no-workspace` "
            f"to ignore: {exc.message}"
        ) from exc

    if workspace is None:
        if no_workspace:
            logger.warning("`--no-workspace` was provided, but no workspace was found")
        return None
    if no_workspace:
        logger.debug("Ignoring discovered workspace due to `--no-workspace`")
        return None
    return workspace


async def _choose_python(
    python: Optional[str],
    workspace: Optional[Workspace],
    no_pin_python: bool,
    collaborators: Collaborators,
) -> Tuple[str, Optional[str]]:
    """Return ``(requires_python, python_pin)`` for a new project."""

    async def find(request: Optional[str]) -> Interpreter:
        return await asyncio.to_thread(
            collaborators.find_interpreter, request, collaborators.python_preference
        )

    if python is not None:
        # (1) Explicit request
        request = python.strip()
        if _MAJOR_MINOR.match(request) or _MAJOR_MINOR_PATCH.match(request):
            return f">={request}", None if no_pin_python else request
        if request[:1] in "<>=!~":
            try:
                specifiers = SpecifierSet(request)
            except InvalidSpecifier as exc:
                raise ProjectError(f"Invalid Python request `{request}`: {exc}") from exc
            if no_pin_python:
                return str(specifiers), None
            return str(specifiers), (await find(request)).python_minor
        interpreter = await find(request)
        return f">={interpreter.python_minor}", None if no_pin_python else interpreter.python_minor

    if workspace is not None and workspace.requires_python:
        # (2) The workspace's requires-python
        if no_pin_python:
            return workspace.requires_python, None
        interpreter = await find(workspace.requires_python)
        return workspace.requires_python, interpreter.python_minor

    # (3) The default interpreter
    interpreter = await find(None)
    return f">={interpreter.python_minor}", None if no_pin_python else interpreter.python_minor


def _join_workspace(workspace: Workspace, path: Path, name: str) -> WorkspaceMembership:
    if workspace.excludes(path):
        logger.info("Project %s is excluded by workspace %s", name, workspace.root)
        return WorkspaceMembership.EXCLUDED
    if workspace.includes(path):
        logger.info("Project %s is already a member of workspace %s", name, workspace.root)
        return WorkspaceMembership.ALREADY_MEMBER

    manifest = PyProjectManifest.from_path(workspace.manifest_path)
    manifest.add_workspace_member(relative_member_path(path, workspace))
    safe_write_file(workspace.manifest_path, manifest.render())
    logger.info("Added %s as a member of workspace %s", name, workspace.root)
    return WorkspaceMembership.ADDED


async def init_project(
    path: Optional[Path] = None,
    *,
    settings: DepsyncConfig,
    name: Optional[str] = None,
    kind: ProjectKind = ProjectKind.APPLICATION,
    package: Optional[bool] = None,
    no_readme: bool = False,
    no_pin_python: bool = False,
    python: Optional[str] = None,
    from_project: Optional[Path] = None,
    no_workspace: bool = False,
    no_sync: bool = False,
    raw_sources: bool = False,
    collaborators: Optional[Collaborators] = None,
) -> InitResult:
    """Create a new project at ``path``.

    Args:
        path: Project directory; the current directory by default.
        settings: Loaded configuration.
        name: Project name; the directory name by default.
        kind: Application or library scaffolding.
        package: Whether the project is packaged; libraries always are.
        no_readme: Do not create ``README.md``.
        no_pin_python: Do not write ``.python-version``.
        python: Interpreter request used for ``requires-python``.
        from_project: Source tree whose dependencies are imported.
        no_workspace: Do not join a parent workspace.
        no_sync: Skip locking and syncing after an import.
        raw_sources: Keep imported URLs inline.
        collaborators: Replacement external steps.

    Raises:
        ProjectError: If the directory already holds a project or the name
            is invalid.
        WorkspaceError: If the parent workspace cannot be read.
    """
    collaborators = collaborators or Collaborators()
    path = (path or Path.cwd()).resolve()

    if (path / MANIFEST_FILE).exists():
        raise ProjectError(f"Project is already initialized in `{path}`")

    name = name or path.name
    if not name or not is_valid_name(name):
        raise ProjectError(f"Invalid project name `{name}`")
    if package is None:
        package = kind.packaged_by_default

    workspace = await asyncio.to_thread(_discover_parent_workspace, path, no_workspace)
    requires_python, python_pin = await _choose_python(
        python, workspace, no_pin_python, collaborators
    )

    await asyncio.to_thread(
        scaffold_project,
        kind,
        name,
        path,
        requires_python,
        python_pin,
        no_readme=no_readme,
        package=package,
    )
    if not no_readme:
        await asyncio.to_thread(_write_new, path / "README.md", "")

    result = InitResult(name=name, path=path, workspace=workspace)
    if workspace is not None:
        result.membership = await asyncio.to_thread(_join_workspace, workspace, path, name)

    if from_project is not None:
        project = await asyncio.to_thread(discover_project, path)
        result.changes = await import_requirements(
            project,
            from_project,
            settings=settings,
            python=python,
            no_sync=no_sync,
            raw_sources=raw_sources,
            collaborators=collaborators,
        )

    return result


async def import_requirements(
    project: Project,
    source_tree: Path,
    *,
    settings: DepsyncConfig,
    python: Optional[str] = None,
    no_sync: bool = False,
    raw_sources: bool = False,
    collaborators: Optional[Collaborators] = None,
) -> ProjectChanges:
    """Copy the declared dependencies of ``source_tree`` into ``project``.

    Requirements guarded by ``extra == 'X'`` are placed in optional
    group ``X`` with the rest of their marker kept. Running the import
    again without changes leaves the manifest untouched and skips lock and
    sync.
    """
    collaborators = collaborators or Collaborators()
    manifest = await asyncio.to_thread(PyProjectManifest.from_path, project.manifest_path)
    interpreter, environment = await _environment(project, python, collaborators)

    state = _new_state(settings)
    async with AsyncExitStack() as stack:
        provider = await _metadata_provider(collaborators, settings, state, stack)
        resolutions = await SourceTreeResolver(
            [source_tree],
            provider,
            state,
            concurrency=settings.concurrent_builds,
        ).resolve()

    changes = ProjectChanges(project=project)
    if not resolutions:
        return changes

    for imported in resolutions[0].requirements:
        assert imported.requirement.name is not None
        requirement, source = resolve_requirement(
            imported.requirement,
            is_workspace_member=project.workspace.is_member(imported.requirement.name),
            project_root=project.root,
            credentials=state.credentials,
            raw_sources=raw_sources,
            declared=imported.source,
        )
        targets = (
            [DependencyType.optional(group) for group in imported.groups]
            if imported.groups
            else [DependencyType.production()]
        )
        for dependency_type in targets:
            changes.edits.append(manifest.add_dependency(requirement, source, dependency_type))

    changes.modified = await _write_if_modified(manifest, project.manifest_path)
    changes.lock = await process_project_and_sync(
        project,
        interpreter,
        environment,
        settings,
        state,
        collaborators,
        modified=changes.modified,
        no_sync=no_sync,
        dev=False,
    )
    return changes


__all__ = [
    "Collaborators",
    "InitResult",
    "ProjectChanges",
    "ProjectKind",
    "WorkspaceMembership",
    "add",
    "import_requirements",
    "init_project",
    "process_project_and_sync",
    "resolve_requirement",
    "scaffold_project",
]
