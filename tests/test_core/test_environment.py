from __future__ import annotations

import json
import sys
import pytest
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, patch

from depsync.config import DepsyncConfig
from depsync.core.index import SharedState
from depsync.core.workspace import Project, Workspace
from depsync.core.environment import (
    ExtrasSpecification,
    Interpreter,
    Lock,
    LockInput,
    LockedPackage,
    Modifications,
    PythonEnvironment,
    _index_args,
    _lock_inputs,
    do_lock,
    do_sync,
    find_or_fetch_interpreter,
    get_or_init_environment,
)
from depsync.exceptions import InterpreterError, LockError

PYTHON = Interpreter(Path(sys.executable), (3, 11, 4))

REPORT = {
    "install": [
        {
            "metadata": {"name": "Requests", "version": "2.32.3"},
            "download_info": {"url": "https://files.example.com/requests.whl"},
            "is_direct": False,
        },
        {
            "metadata": {"name": "core", "version": "0.1.0"},
            "download_info": {"url": "file:///ws/core", "dir_info": {"editable": True}},
            "is_direct": True,
        },
    ]
}


def _member_workspace(tmp_path: Path) -> Workspace:
    root = tmp_path / "ws"
    (root / "core").mkdir(parents=True)
    (root / "pyproject.toml").write_text(
        "\n".join(
            [
                "[project]",
                'name = "app"',
                'dependencies = ["requests>=2", "core", "lib"]',
                "[project.optional-dependencies]",
                'docs = ["sphinx"]',
                "[dependency-groups]",
                'dev = ["pytest", { include-group = "lint" }]',
                "[tool.depsync.sources]",
                'lib = { git = "https://github.com/org/lib", tag = "v1" }',
                "[tool.depsync.workspace]",
                'members = ["core"]',
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    (root / "core" / "pyproject.toml").write_text('[project]\nname = "core"\n', encoding="utf-8")
    return Workspace.from_root(root)


@pytest.mark.unit
class TestInterpreter:
    """Tests for interpreter helpers."""

    def test_versions(self) -> None:
        assert PYTHON.python_version == "3.11.4"
        assert PYTHON.python_minor == "3.11"

    def test_satisfies(self) -> None:
        assert PYTHON.satisfies(">=3.10")
        assert not PYTHON.satisfies(">=3.12")
        assert not PYTHON.satisfies("not a specifier")

    def test_default_request_uses_running_interpreter(self) -> None:
        with patch("depsync.core.environment.query_interpreter", return_value=PYTHON) as query:
            assert find_or_fetch_interpreter(None) is PYTHON
        query.assert_called_once_with(Path(sys.executable))

    def test_version_request_matches_prefix(self) -> None:
        with patch("depsync.core.environment.query_interpreter", return_value=PYTHON):
            assert find_or_fetch_interpreter("3.11") is PYTHON

    def test_unsatisfiable_request(self) -> None:
        with patch("depsync.core.environment.query_interpreter", return_value=PYTHON), patch(
            "depsync.core.environment.shutil.which", return_value=None
        ):
            with pytest.raises(InterpreterError, match="No interpreter found for Python 3.99"):
                find_or_fetch_interpreter("3.99")

    def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(InterpreterError, match="does not exist"):
            find_or_fetch_interpreter(str(tmp_path / "bin" / "python"))

    def test_missing_named_interpreter(self) -> None:
        with patch("depsync.core.environment.shutil.which", return_value=None):
            with pytest.raises(InterpreterError, match="on PATH"):
                find_or_fetch_interpreter("pypy3")


@pytest.mark.unit
class TestEnvironment:
    """Tests for ``.venv`` creation and reuse."""

    def test_creates_environment(self, tmp_path: Path) -> None:
        with patch("depsync.core.environment.subprocess.run") as run, patch(
            "depsync.core.environment.query_interpreter", return_value=PYTHON
        ):
            environment = get_or_init_environment(tmp_path, PYTHON)

        assert environment.root == tmp_path / ".venv"
        assert run.call_args[0][0][1:3] == ["-m", "venv"]

    def test_reuses_matching_environment(self, tmp_path: Path) -> None:
        python = tmp_path / ".venv" / "bin" / "python"
        python.parent.mkdir(parents=True)
        python.touch()
        existing = Interpreter(python, (3, 11, 9))

        with patch("depsync.core.environment._venv_python", return_value=python), patch(
            "depsync.core.environment.query_interpreter", return_value=existing
        ), patch("depsync.core.environment.subprocess.run") as run:
            environment = get_or_init_environment(tmp_path, PYTHON)

        assert environment.interpreter is existing
        run.assert_not_called()


@pytest.mark.unit
class TestLockModel:
    """Tests for lock selection helpers."""

    def test_select(self) -> None:
        lock = Lock(
            inputs=(
                LockInput("requests"),
                LockInput("sphinx", "optional", "docs"),
                LockInput("pytest", "dev", "dev"),
            )
        )

        assert lock.select(ExtrasSpecification.none(), dev=False) == ["requests"]
        assert lock.select(ExtrasSpecification.some(["Docs"]), dev=False) == ["requests", "sphinx"]
        assert lock.select(ExtrasSpecification.all_extras(), dev=True) == [
            "requests",
            "sphinx",
            "pytest",
        ]

    def test_constraints_skip_direct_packages(self) -> None:
        lock = Lock(
            packages=(
                LockedPackage("requests", "2.32.3"),
                LockedPackage("core", "0.1.0", url="file:///ws/core", editable=True),
            )
        )
        assert lock.constraints() == ["requests==2.32.3"]
        assert len(lock) == 2

    def test_install_spec(self) -> None:
        assert LockedPackage("a", "1").install_spec() == ["a==1"]
        assert LockedPackage("a", "1", url="file:///a", editable=True).install_spec() == [
            "-e",
            "file:///a",
        ]
        assert LockedPackage("a", "1", url="https://h/a.whl").install_spec() == [
            "a @ https://h/a.whl"
        ]


@pytest.mark.unit
class TestLock:
    """Tests for ``do_lock``."""

    def test_lock_inputs_lower_sources(self, tmp_path: Path) -> None:
        workspace = _member_workspace(tmp_path)
        inputs = _lock_inputs(workspace)
        by_requirement = {item.requirement: item for item in inputs}

        core_uri = (workspace.root / "core").as_uri()
        assert "requests>=2" in by_requirement
        assert f"core @ {core_uri}" in by_requirement
        assert "lib @ git+https://github.com/org/lib@v1" in by_requirement
        assert by_requirement["sphinx"].kind == "optional"
        assert by_requirement["sphinx"].group == "docs"
        assert by_requirement["pytest"].kind == "dev"

    def test_index_args_replay_credentials(self) -> None:
        settings = DepsyncConfig(
            index_url="https://user:pw@pypi.internal/simple",
            extra_index_urls=["https://pypi.org/simple"],
        )
        args = _index_args(settings, SharedState())

        assert args == [
            "--index-url",
            "https://user:pw@pypi.internal/simple",
            "--extra-index-url",
            "https://pypi.org/simple",
        ]

    @pytest.mark.asyncio
    async def test_do_lock_parses_report(self, tmp_path: Path) -> None:
        workspace = _member_workspace(tmp_path)
        run_pip = AsyncMock(return_value=json.dumps(REPORT))

        with patch("depsync.core.environment._run_pip", run_pip):
            lock = await do_lock(workspace, PYTHON, DepsyncConfig(), SharedState())

        args = run_pip.call_args[0][1]
        assert args[:3] == ["install", "--dry-run", "--ignore-installed"]
        assert [package.name for package in lock.packages] == ["core", "requests"]
        assert lock.packages[0].editable is True
        assert lock.packages[1].url is None

    @pytest.mark.asyncio
    async def test_do_lock_unreadable_report(self, tmp_path: Path) -> None:
        workspace = _member_workspace(tmp_path)
        with patch("depsync.core.environment._run_pip", AsyncMock(return_value="not json")):
            with pytest.raises(LockError, match="unreadable"):
                await do_lock(workspace, PYTHON, DepsyncConfig(), SharedState())


@pytest.mark.unit
class TestSync:
    """Tests for ``do_sync``."""

    @pytest.mark.asyncio
    async def test_installs_selected_with_constraints(self, tmp_path: Path) -> None:
        workspace = Workspace(root=tmp_path)
        project = Project(root=tmp_path, name="app", workspace=workspace)
        environment = PythonEnvironment(tmp_path / ".venv", PYTHON)
        lock = Lock(
            inputs=(LockInput("requests"), LockInput("pytest", "dev", "dev")),
            packages=(LockedPackage("requests", "2.32.3"),),
        )
        seen: List[str] = []

        async def fake_pip(python: Path, args: List[str], error_cls: type) -> str:
            constraint_file = Path(args[args.index("--constraint") + 1])
            seen.extend(constraint_file.read_text(encoding="utf-8").splitlines())
            seen.extend(args)
            return ""

        with patch("depsync.core.environment._run_pip", side_effect=fake_pip):
            await do_sync(
                project,
                environment,
                lock,
                ExtrasSpecification.all_extras(),
                False,
                Modifications.SUFFICIENT,
                DepsyncConfig(),
                SharedState(),
            )

        assert "requests==2.32.3" in seen
        assert "requests" in seen
        assert "pytest" not in seen

    @pytest.mark.asyncio
    async def test_exact_removes_extraneous(self, tmp_path: Path) -> None:
        project = Project(root=tmp_path, name="app", workspace=Workspace(root=tmp_path))
        environment = PythonEnvironment(tmp_path / ".venv", PYTHON)
        lock = Lock(packages=(LockedPackage("requests", "2.32.3"),))
        installed = [{"name": "requests"}, {"name": "pip"}, {"name": "Leftover"}]
        run_pip = AsyncMock(side_effect=[json.dumps(installed), ""])

        with patch("depsync.core.environment._run_pip", run_pip):
            await do_sync(
                project,
                environment,
                lock,
                ExtrasSpecification.none(),
                True,
                Modifications.EXACT,
                DepsyncConfig(),
                SharedState(),
            )

        assert run_pip.call_args_list[-1][0][1] == ["uninstall", "--yes", "--quiet", "Leftover"]
