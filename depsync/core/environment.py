"""
Interpreter discovery, virtual environments, locking, and syncing.

These are the collaborators the orchestrator drives after the manifest has
been edited. The implementations here delegate to the tools every Python
installation already has:

- interpreters are found on ``PATH`` (nothing is downloaded);
- environments are created with ``python -m venv``;
- locking runs ``pip install --dry-run --report`` over every requirement
  the workspace declares;
- syncing runs ``pip install`` of the selected requirements, constrained to
  the locked versions.

The orchestrator only depends on the call signatures, so any of them can
be replaced (see :class:`depsync.core.project.Collaborators`).
"""

from __future__ import annotations

import os
import sys
import json
import enum
import shutil
import asyncio
import tempfile
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

import tomli as tomllib
from packaging.requirements import InvalidRequirement
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.utils import canonicalize_name
from packaging.version import Version

from depsync.config import DepsyncConfig
from depsync.constants import MANIFEST_FILE, TOOL_NAME, VENV_DIR
from depsync.core.index import SharedState
from depsync.core.workspace import Project, Workspace
from depsync.models.requirement import Requirement
from depsync.models.source import source_from_table, source_to_url
from depsync.utils.logger import get_logger
from depsync.exceptions import (
    CommandError,
    InterpreterError,
    LockError,
    SyncError,
)

logger = get_logger("environment")

_VERSION_SCRIPT = "import sys; print('.'.join(map(str, sys.version_info[:3])))"

#: Distributions an exact sync never removes.
_SEED_PACKAGES = frozenset({"pip", "setuptools", "wheel"})


# ---------------------------------------------------------------------------
# Interpreters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Interpreter:
    executable: Path
    version: Tuple[int, int, int]

    @property
    def python_version(self) -> str:
        return ".".join(str(part) for part in self.version)

    @property
    def python_minor(self) -> str:
        return f"{self.version[0]}.{self.version[1]}"

    def satisfies(self, specifier: str) -> bool:
        try:
            return Version(self.python_version) in SpecifierSet(specifier)
        except InvalidSpecifier:
            return False


def query_interpreter(executable: Path) -> Interpreter:
    """Ask ``executable`` for its version."""
    try:
        result = subprocess.run(
            [str(executable), "-c", _VERSION_SCRIPT],
            capture_output=True,
            text=True,
            timeout=30,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise InterpreterError(f"Failed to query interpreter `{executable}`: {exc}") from exc

    parts = tuple(int(part) for part in result.stdout.strip().split("."))
    if len(parts) != 3:
        raise InterpreterError(f"Unexpected version output from `{executable}`: {result.stdout!r}")
    return Interpreter(executable=Path(executable), version=parts)  # type: ignore[arg-type]


def _candidates(request: Optional[str]) -> Iterable[Path]:
    yield Path(sys.executable)
    names: List[str] = []
    if request and request[0].isdigit():
        major, _, rest = request.partition(".")
        minor = rest.split(".", 1)[0]
        if minor:
            names.append(f"python{major}.{minor}")
        names.append(f"python{major}")
    else:
        names.extend(f"python3.{minor}" for minor in range(20, 7, -1))
    names.extend(["python3", "python"])
    for name in names:
        found = shutil.which(name)
        if found:
            yield Path(found)


def _matches(interpreter: Interpreter, request: str) -> bool:
    if request[0].isdigit():
        wanted = tuple(int(part) for part in request.split("."))
        return interpreter.version[: len(wanted)] == wanted
    return interpreter.satisfies(request)


def find_or_fetch_interpreter(
    request: Optional[str],
    preference: str = "system",
) -> Interpreter:
    """Find an interpreter satisfying ``request``.

    Args:
        request: ``None`` (the running interpreter), a version such as
            ``"3.11"``, a specifier such as ``">=3.10"``, an executable
            name such as ``"pypy3"``, or a path.
        preference: Interpreter preference. Only installed interpreters
            are supported; the value is recorded in the debug log.

    Raises:
        InterpreterError: If nothing installed satisfies the request.
    """
    logger.debug("Looking for interpreter %s (preference: %s)", request or "<default>", preference)

    if request is None:
        return query_interpreter(Path(sys.executable))

    request = request.strip()
    if os.sep in request or (os.altsep and os.altsep in request) or Path(request).is_file():
        path = Path(request).expanduser()
        if not path.exists():
            raise InterpreterError(f"Interpreter `{request}` does not exist")
        return query_interpreter(path)

    if not (request[0].isdigit() or request[0] in "<>=!~"):
        found = shutil.which(request)
        if found is None:
            raise InterpreterError(f"No interpreter named `{request}` found on PATH")
        return query_interpreter(Path(found))

    seen = set()
    for candidate in _candidates(request):
        resolved = candidate.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        try:
            interpreter = query_interpreter(candidate)
        except InterpreterError as exc:
            logger.debug("Skipping %s: %s", candidate, exc)
            continue
        if _matches(interpreter, request):
            return interpreter

    raise InterpreterError(
        f"No interpreter found for Python {request}; install one or pass --python with a path"
    )


# ---------------------------------------------------------------------------
# Virtual environments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PythonEnvironment:
    root: Path
    interpreter: Interpreter


def _venv_python(root: Path) -> Path:
    if os.name == "nt":
        return root / "Scripts" / "python.exe"
    return root / "bin" / "python"


def get_or_init_environment(project_root: Path, interpreter: Interpreter) -> PythonEnvironment:
    """Return the project's ``.venv``, creating or replacing it as needed.

    An existing environment is reused when its Python minor version
    matches ``interpreter``.
    """
    root = project_root / VENV_DIR
    python = _venv_python(root)

    if python.exists():
        try:
            existing = query_interpreter(python)
        except InterpreterError as exc:
            logger.warning("Replacing broken virtual environment at %s: %s", root, exc)
        else:
            if existing.version[:2] == interpreter.version[:2]:
                return PythonEnvironment(root=root, interpreter=existing)
            logger.info(
                "Replacing virtual environment (Python %s -> %s)",
                existing.python_minor,
                interpreter.python_minor,
            )
        shutil.rmtree(root)

    logger.info("Creating virtual environment at %s", root)
    try:
        subprocess.run(
            [str(interpreter.executable), "-m", "venv", str(root)],
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as exc:
        raise InterpreterError(
            f"Failed to create virtual environment at {root}: {exc.stderr.strip()}"
        ) from exc
    except OSError as exc:
        raise InterpreterError(f"Failed to create virtual environment at {root}: {exc}") from exc

    return PythonEnvironment(root=root, interpreter=query_interpreter(python))


# ---------------------------------------------------------------------------
# Lock
# ---------------------------------------------------------------------------


class Modifications(str, enum.Enum):
    """How a sync treats packages that are installed but not locked."""

    SUFFICIENT = "sufficient"
    EXACT = "exact"


@dataclass(frozen=True)
class ExtrasSpecification:
    """Which optional-dependency groups to install."""

    all: bool = False
    names: Tuple[str, ...] = ()

    @classmethod
    def none(cls) -> "ExtrasSpecification":
        return cls()

    @classmethod
    def all_extras(cls) -> "ExtrasSpecification":
        return cls(all=True)

    @classmethod
    def some(cls, names: Iterable[str]) -> "ExtrasSpecification":
        return cls(names=tuple(canonicalize_name(name) for name in names))

    def includes(self, group: str) -> bool:
        return self.all or canonicalize_name(group) in self.names


@dataclass(frozen=True)
class LockInput:
    """A requirement the lock was computed from.

    ``kind`` is ``production``, ``optional``, or ``dev``; ``group`` names
    the extra or dependency group.
    """

    requirement: str
    kind: str = "production"
    group: Optional[str] = None


@dataclass(frozen=True)
class LockedPackage:
    name: str
    version: str
    url: Optional[str] = None
    editable: bool = False

    def install_spec(self) -> List[str]:
        if self.editable and self.url:
            return ["-e", self.url]
        if self.url:
            return [f"{self.name} @ {self.url}"]
        return [f"{self.name}=={self.version}"]


@dataclass(frozen=True)
class Lock:
    inputs: Tuple[LockInput, ...] = ()
    packages: Tuple[LockedPackage, ...] = ()

    def select(self, extras: ExtrasSpecification, dev: bool) -> List[str]:
        selected = []
        for item in self.inputs:
            if item.kind == "optional" and not (item.group and extras.includes(item.group)):
                continue
            if item.kind == "dev" and not dev:
                continue
            selected.append(item.requirement)
        return selected

    def constraints(self) -> List[str]:
        return [f"{package.name}=={package.version}" for package in self.packages if package.url is None]

    def __len__(self) -> int:
        return len(self.packages)


def _lower(text: str, sources: Dict[str, Any], root: Path, workspace: Workspace) -> str:
    """Render a manifest requirement as something pip can install."""
    try:
        requirement = Requirement.parse(text)
    except InvalidRequirement as exc:
        raise LockError(f"Invalid requirement `{text}` in {root / MANIFEST_FILE}: {exc}") from exc

    assert requirement.name is not None
    table = sources.get(canonicalize_name(requirement.name))
    url: Optional[str] = None
    if table is not None:
        url = source_to_url(source_from_table(requirement.name, table), root)
    if url is None and workspace.is_member(requirement.name):
        url = workspace.member(requirement.name).root.as_uri()
    if url is None:
        return text
    return requirement.with_url(url).to_pep508()


def _lock_inputs(workspace: Workspace) -> List[LockInput]:
    inputs: List[LockInput] = []
    for member in workspace.members.values():
        with member.manifest_path.open("rb") as handle:
            data = tomllib.load(handle)
        project = data.get("project", {})
        sources = {
            canonicalize_name(name): table
            for name, table in data.get("tool", {}).get(TOOL_NAME, {}).get("sources", {}).items()
        }

        for text in project.get("dependencies", []):
            inputs.append(LockInput(_lower(text, sources, member.root, workspace)))
        for group, entries in project.get("optional-dependencies", {}).items():
            for text in entries:
                inputs.append(
                    LockInput(_lower(text, sources, member.root, workspace), "optional", group)
                )
        for group, entries in data.get("dependency-groups", {}).items():
            for text in entries:
                if isinstance(text, str):
                    inputs.append(
                        LockInput(_lower(text, sources, member.root, workspace), "dev", group)
                    )
    return inputs


def _index_args(settings: DepsyncConfig, state: SharedState) -> List[str]:
    args: List[str] = []
    for flag, url in [("--index-url", settings.index_url)] + [
        ("--extra-index-url", url) for url in settings.extra_index_urls
    ]:
        if not url:
            continue
        clean = state.credentials.extract_and_cache(url)
        credentials = state.credentials.get(clean)
        args.extend([flag, credentials.apply_to_url(clean) if credentials else clean])
    return args


async def _run_pip(
    python: Path,
    args: Sequence[str],
    error_cls: Type[CommandError],
) -> str:
    command = [str(python), "-m", "pip", *args]
    logger.debug("Running pip %s", args[0])
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise error_cls(
            f"pip {args[0]} failed",
            command=f"pip {args[0]}",
            returncode=process.returncode,
            stderr=stderr.decode("utf-8", errors="replace"),
        )
    return stdout.decode("utf-8", errors="replace")


def _parse_report(report: Dict[str, Any]) -> Tuple[LockedPackage, ...]:
    packages = []
    for item in report.get("install", []):
        metadata = item.get("metadata", {})
        download = item.get("download_info", {})
        url = download.get("url") if item.get("is_direct") else None
        packages.append(
            LockedPackage(
                name=canonicalize_name(metadata["name"]),
                version=str(metadata["version"]),
                url=url,
                editable=bool(download.get("dir_info", {}).get("editable")),
            )
        )
    return tuple(sorted(packages, key=lambda package: package.name))


async def do_lock(
    workspace: Workspace,
    interpreter: Interpreter,
    settings: DepsyncConfig,
    state: SharedState,
) -> Lock:
    """Resolve every requirement declared in ``workspace`` to exact versions.

    Raises:
        LockError: If the requirements cannot be satisfied together.
    """
    inputs = tuple(await asyncio.to_thread(_lock_inputs, workspace))
    if not inputs:
        return Lock()

    args = [
        "install",
        "--dry-run",
        "--ignore-installed",
        "--quiet",
        "--report",
        "-",
        *_index_args(settings, state),
        *(item.requirement for item in inputs),
    ]
    output = await _run_pip(interpreter.executable, args, LockError)
    try:
        report = json.loads(output)
    except json.JSONDecodeError as exc:
        raise LockError(f"pip produced an unreadable installation report: {exc}") from exc

    lock = Lock(inputs=inputs, packages=_parse_report(report))
    logger.info("Resolved %d packages", len(lock))
    return lock


async def do_sync(
    project: Project,
    environment: PythonEnvironment,
    lock: Lock,
    extras: ExtrasSpecification,
    dev: bool,
    modifications: Modifications,
    settings: DepsyncConfig,
    state: SharedState,
) -> None:
    """Install the selected part of ``lock`` into ``environment``.

    Raises:
        SyncError: If installation fails.
    """
    python = environment.interpreter.executable
    selected = lock.select(extras, dev)

    if selected:
        with tempfile.TemporaryDirectory() as scratch:
            constraints = Path(scratch) / "constraints.txt"
            constraints.write_text("\n".join(lock.constraints()) + "\n", encoding="utf-8")
            await _run_pip(
                python,
                [
                    "install",
                    "--quiet",
                    "--constraint",
                    str(constraints),
                    *_index_args(settings, state),
                    *selected,
                ],
                SyncError,
            )

    if modifications is Modifications.EXACT:
        await _remove_extraneous(python, lock)

    logger.info("Synced %s (%d requirements)", project.name, len(selected))


async def _remove_extraneous(python: Path, lock: Lock) -> None:
    output = await _run_pip(python, ["list", "--format=json"], SyncError)
    try:
        installed = json.loads(output)
    except json.JSONDecodeError as exc:
        raise SyncError(f"pip produced an unreadable package list: {exc}") from exc
    locked = {package.name for package in lock.packages}
    extraneous = [
        item["name"]
        for item in installed
        if canonicalize_name(item["name"]) not in locked
        and canonicalize_name(item["name"]) not in _SEED_PACKAGES
    ]
    if extraneous:
        await _run_pip(python, ["uninstall", "--yes", "--quiet", *extraneous], SyncError)


__all__ = [
    "ExtrasSpecification",
    "Interpreter",
    "Lock",
    "LockInput",
    "LockedPackage",
    "Modifications",
    "PythonEnvironment",
    "do_lock",
    "do_sync",
    "find_or_fetch_interpreter",
    "get_or_init_environment",
    "query_interpreter",
]

