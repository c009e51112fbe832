from __future__ import annotations

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from depsync.commands.init import init
from depsync.context import DepsyncContext
from depsync.core.project import InitResult, ProjectChanges, ProjectKind, WorkspaceMembership
from depsync.core.workspace import Project, Workspace
from depsync.exceptions import ProjectError


@pytest.mark.unit
class TestInitCommand:
    """Tests for ``depsync init``."""

    def test_defaults(self, tmp_path: Path) -> None:
        run = AsyncMock(return_value=InitResult(name="app", path=tmp_path))

        with patch("depsync.commands.init.init_project", run), patch(
            "depsync.commands.init.print_success"
        ) as print_success:
            result = CliRunner().invoke(init, [], obj=DepsyncContext())

        assert result.exit_code == 0, result.output
        assert run.await_args[0] == (None,)
        kwargs = run.await_args[1]
        assert kwargs["kind"] is ProjectKind.APPLICATION
        assert kwargs["package"] is None
        print_success.assert_called_once_with("Initialized project `app`")

    def test_library_at_path(self, tmp_path: Path) -> None:
        target = tmp_path / "lib"
        run = AsyncMock(return_value=InitResult(name="my-lib", path=target))

        with patch("depsync.commands.init.init_project", run), patch(
            "depsync.commands.init.print_success"
        ) as print_success:
            result = CliRunner().invoke(
                init,
                [str(target), "--lib", "--name", "my-lib", "--python", "3.12", "--no-readme"],
                obj=DepsyncContext(),
            )

        assert result.exit_code == 0, result.output
        kwargs = run.await_args[1]
        assert kwargs["kind"] is ProjectKind.LIBRARY
        assert kwargs["name"] == "my-lib"
        assert kwargs["python"] == "3.12"
        assert kwargs["no_readme"] is True
        print_success.assert_called_once_with(f"Initialized project `my-lib` at `{target}`")

    @pytest.mark.parametrize(
        "membership, helper, message",
        [
            (WorkspaceMembership.ADDED, "print_info", "Adding `app` as member of workspace `ws`"),
            (
                WorkspaceMembership.ALREADY_MEMBER,
                "print_info",
                "Project `app` is already a member of workspace `ws`",
            ),
            (
                WorkspaceMembership.EXCLUDED,
                "print_warning",
                "Project `app` is excluded by workspace `ws`",
            ),
        ],
    )
    def test_workspace_messages(
        self, tmp_path: Path, membership: WorkspaceMembership, helper: str, message: str
    ) -> None:
        workspace = Workspace(root=tmp_path / "ws")
        run = AsyncMock(
            return_value=InitResult(
                name="app", path=tmp_path, workspace=workspace, membership=membership
            )
        )

        with patch("depsync.commands.init.init_project", run), patch(
            f"depsync.commands.init.{helper}"
        ) as printer, patch("depsync.commands.init.print_success"):
            result = CliRunner().invoke(init, [], obj=DepsyncContext())

        assert result.exit_code == 0, result.output
        printer.assert_called_once_with(message)

    def test_import_summary(self, tmp_path: Path) -> None:
        legacy = tmp_path / "legacy"
        legacy.mkdir()
        project = Project(root=tmp_path, name="app", workspace=Workspace(root=tmp_path))
        result_value = InitResult(
            name="app", path=tmp_path, changes=ProjectChanges(project=project, modified=True)
        )
        run = AsyncMock(return_value=result_value)

        with patch("depsync.commands.init.init_project", run), patch(
            "depsync.commands.init.print_info"
        ) as print_info, patch("depsync.commands.init.print_success"):
            result = CliRunner().invoke(
                init, ["--from-project", str(legacy), "--no-sync"], obj=DepsyncContext()
            )

        assert result.exit_code == 0, result.output
        assert run.await_args[1]["from_project"] == legacy
        assert run.await_args[1]["no_sync"] is True
        print_info.assert_called_once_with("Imported 0 dependency declaration(s)")

    def test_error(self) -> None:
        run = AsyncMock(side_effect=ProjectError("Project is already initialized in `/x`"))

        with patch("depsync.commands.init.init_project", run), patch(
            "depsync.commands.init.print_error"
        ) as print_error:
            result = CliRunner().invoke(init, [], obj=DepsyncContext())

        assert result.exit_code == 1
        print_error.assert_called_once_with("Project is already initialized in `/x`")
