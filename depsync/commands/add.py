"""Add command implementation for depsync.

Adds requirements to the ``pyproject.toml`` of the current project (or of a
named workspace member), then locks and syncs the project environment.

Requirements can be names with specifiers, direct URLs, Git URLs, local
paths, or requirements files::

    # Registry dependency
    $ depsync add "requests>=2.31"

    # Git dependency pinned to a branch
    $ depsync add git+https://github.com/org/repo.git --branch main

    # Editable local path in the dev group
    $ depsync add --dev ./libs/testing

    # Everything in a requirements file, with an extra
    $ depsync add -r requirements.txt --extra socks
"""

from __future__ import annotations

import sys
import asyncio
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.markup import escape

from depsync.exceptions import DepsyncError
from depsync.context import pass_context, DepsyncContext
from depsync.core import RequirementsParser, add as add_requirements
from depsync.core.project import ProjectChanges
from depsync.models import DependencyType, EditAction, source_kind
from depsync.models.requirement import Requirement
from depsync.utils import (
    get_logger,
    print_error,
    print_info,
    print_success,
    print_table,
    print_warning,
)

logger = get_logger("commands.add")


@click.command()
@click.argument("requirements", nargs=-1)
@click.option(
    "--requirements",
    "-r",
    "requirement_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Add all requirements listed in a file (can be repeated).",
)
@click.option("--dev", is_flag=True, help="Add to the development dependency group.")
@click.option(
    "--optional",
    "optional_group",
    metavar="GROUP",
    help="Add to the given optional-dependency group.",
)
@click.option(
    "--editable/--no-editable",
    default=None,
    help="Install local directory dependencies in editable mode (default for directories).",
)
@click.option(
    "--raw-sources",
    is_flag=True,
    help="Keep URLs inline in the requirement instead of writing [tool.depsync.sources].",
)
@click.option("--rev", help="Git commit to use for a Git dependency.")
@click.option("--tag", help="Git tag to use for a Git dependency.")
@click.option("--branch", help="Git branch to use for a Git dependency.")
@click.option(
    "--extra",
    "extras",
    multiple=True,
    help="Extras to enable for the added dependencies (can be repeated).",
)
@click.option("--package", help="Add to this workspace member instead of the current project.")
@click.option("--python", "-p", help="Python interpreter for the project environment.")
@click.option("--no-sync", is_flag=True, help="Only edit pyproject.toml; do not lock or sync.")
@click.option(
    "--force-sync",
    is_flag=True,
    help="Lock and sync even if pyproject.toml did not change.",
)
@pass_context
def add(
    ctx: DepsyncContext,
    requirements: Tuple[str, ...],
    requirement_files: Tuple[Path, ...],
    dev: bool,
    optional_group: Optional[str],
    editable: Optional[bool],
    raw_sources: bool,
    rev: Optional[str],
    tag: Optional[str],
    branch: Optional[str],
    extras: Tuple[str, ...],
    package: Optional[str],
    python: Optional[str],
    no_sync: bool,
    force_sync: bool,
) -> None:
    """Add dependencies to the project.

    Unnamed requirements (paths and URLs) are named by reading their
    metadata, building it if necessary. Non-registry sources are recorded
    in ``[tool.depsync.sources]`` and the requirement itself keeps only its
    name, extras, specifier, and marker.

    Exits:
        0 on success, 1 if an error occurred.
    """
    if dev and optional_group:
        raise click.UsageError("`--dev` and `--optional` cannot be used together")
    if not requirements and not requirement_files:
        raise click.UsageError("Provide at least one requirement or `-r FILE`")

    if dev:
        dependency_type = DependencyType.dev()
    elif optional_group:
        dependency_type = DependencyType.optional(optional_group)
    else:
        dependency_type = DependencyType.production()

    try:
        parsed = _parse_requirements(requirements, requirement_files)
        changes = asyncio.run(
            add_requirements(
                parsed,
                settings=ctx.config,
                dependency_type=dependency_type,
                editable=editable,
                raw_sources=raw_sources,
                rev=rev,
                tag=tag,
                branch=branch,
                extras=extras,
                package=package,
                python=python,
                no_sync=no_sync,
                force_sync=force_sync,
            )
        )
        _display_changes(changes, no_sync)
        sys.exit(0)

    except DepsyncError as e:
        print_error(f"{e}")
        sys.exit(1)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Error in add command")
        sys.exit(1)


def _parse_requirements(
    arguments: Tuple[str, ...],
    files: Tuple[Path, ...],
) -> List[Requirement]:
    parser = RequirementsParser()
    parsed = parser.parse_arguments(arguments)
    for path in files:
        parsed.extend(parser.parse_file(path))
    logger.debug("Parsed %d requirement(s)", len(parsed))
    return parsed


def _display_changes(changes: ProjectChanges, no_sync: bool) -> None:
    """Summarize the manifest edits as a table, then report lock/sync."""
    data = []
    for edit in changes.edits:
        data.append(
            {
                "Package": escape(edit.requirement.name or ""),
                "Requirement": escape(edit.requirement.to_pep508()),
                "Source": source_kind(edit.source) if edit.source is not None else "inline",
                "Group": str(edit.dependency_type),
                "Change": _ACTION_LABELS[edit.edit.action],
            }
        )

    column_styles = {
        "Package": {"style": "bold cyan", "no_wrap": True},
        "Requirement": {"justify": "left"},
        "Source": {"justify": "center", "style": "dim"},
        "Group": {"justify": "center"},
        "Change": {"justify": "center"},
    }
    print_table(data, title=f"Dependencies of {changes.project.name}", column_styles=column_styles)

    if not changes.modified:
        print_info("pyproject.toml is already up to date")
    else:
        print_success(f"Updated {changes.project.manifest_path}")

    if changes.synced:
        print_success(f"Locked and synced {len(changes.lock or ())} package(s)")
    elif no_sync:
        print_warning("Skipped lock and sync (--no-sync)")


_ACTION_LABELS = {
    EditAction.ADDED: "[green]added[/green]",
    EditAction.UPDATED: "[yellow]updated[/yellow]",
    EditAction.UNCHANGED: "[dim]unchanged[/dim]",
}
