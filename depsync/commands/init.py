"""Init command implementation for depsync.

Creates a new project: ``pyproject.toml``, a starter module, a README, and a
``.python-version`` pin. Inside an existing workspace the new project is
added as a member unless the workspace excludes it.

Example::

    $ depsync init my-app
    $ depsync init --lib --name my-lib libs/my-lib
    $ depsync init --from-project ../legacy-service
"""

from __future__ import annotations

import sys
import asyncio
from pathlib import Path
from typing import Optional

import click

from depsync.exceptions import DepsyncError
from depsync.context import pass_context, DepsyncContext
from depsync.core import ProjectKind, init_project
from depsync.core.project import InitResult, WorkspaceMembership
from depsync.utils import get_logger, print_error, print_info, print_success, print_warning

logger = get_logger("commands.init")


@click.command()
@click.argument(
    "path",
    required=False,
    type=click.Path(file_okay=False, path_type=Path),
)
@click.option("--name", help="Project name (defaults to the directory name).")
@click.option(
    "--app/--lib",
    "is_app",
    default=True,
    help="Scaffold an application (default) or a library.",
)
@click.option(
    "--package/--no-package",
    default=None,
    help="Make the project installable (libraries always are).",
)
@click.option("--no-readme", is_flag=True, help="Do not create README.md.")
@click.option("--no-pin-python", is_flag=True, help="Do not write .python-version.")
@click.option("--python", "-p", help="Python version to require and pin.")
@click.option(
    "--from-project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Import the dependencies of an existing source tree.",
)
@click.option("--no-workspace", is_flag=True, help="Do not join a parent workspace.")
@click.option("--no-sync", is_flag=True, help="Do not lock or sync after --from-project.")
@click.option(
    "--raw-sources",
    is_flag=True,
    help="Keep imported URLs inline instead of writing [tool.depsync.sources].",
)
@pass_context
def init(
    ctx: DepsyncContext,
    path: Optional[Path],
    name: Optional[str],
    is_app: bool,
    package: Optional[bool],
    no_readme: bool,
    no_pin_python: bool,
    python: Optional[str],
    from_project: Optional[Path],
    no_workspace: bool,
    no_sync: bool,
    raw_sources: bool,
) -> None:
    """Create a new project.

    PATH defaults to the current directory and is created if missing.

    Exits:
        0 on success, 1 if an error occurred.
    """
    try:
        result = asyncio.run(
            init_project(
                path,
                settings=ctx.config,
                name=name,
                kind=ProjectKind.APPLICATION if is_app else ProjectKind.LIBRARY,
                package=package,
                no_readme=no_readme,
                no_pin_python=no_pin_python,
                python=python,
                from_project=from_project,
                no_workspace=no_workspace,
                no_sync=no_sync,
                raw_sources=raw_sources,
            )
        )
        _report(result, explicit_path=path is not None)
        sys.exit(0)

    except DepsyncError as e:
        print_error(f"{e}")
        sys.exit(1)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Error in init command")
        sys.exit(1)


def _report(result: InitResult, explicit_path: bool) -> None:
    workspace = result.workspace
    if workspace is not None:
        ws_name = workspace.root.name
        if result.membership is WorkspaceMembership.EXCLUDED:
            print_warning(f"Project `{result.name}` is excluded by workspace `{ws_name}`")
        elif result.membership is WorkspaceMembership.ALREADY_MEMBER:
            print_info(f"Project `{result.name}` is already a member of workspace `{ws_name}`")
        elif result.membership is WorkspaceMembership.ADDED:
            print_info(f"Adding `{result.name}` as member of workspace `{ws_name}`")

    if explicit_path:
        print_success(f"Initialized project `{result.name}` at `{result.path}`")
    else:
        print_success(f"Initialized project `{result.name}`")

    changes = result.changes
    if changes is not None:
        print_info(f"Imported {len(changes.edits)} dependency declaration(s)")
        if changes.synced:
            print_success(f"Locked and synced {len(changes.lock or ())} package(s)")
