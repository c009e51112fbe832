"""
Command-line interface for depsync.

This module provides the main CLI entry point and handles global options,
configuration loading, and command registration.
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Optional

import click

from depsync.config import load_config
from depsync.__version__ import __version__
from depsync.context import DepsyncContext
from depsync.exceptions import ConfigError, DepsyncError
from depsync.utils.logger import get_logger, setup_logging
from depsync.utils.console import print_error, print_warning, reconfigure_console

logger = get_logger("cli")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file.",
    envvar="DEPSYNC_CONFIG",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (can be repeated: -v, -vv).",
)
@click.option(
    "--color/--no-color",
    default=True,
    help="Enable or disable colored output.",
    envvar="DEPSYNC_COLOR",
)
@click.version_option(
    version=__version__,
    prog_name="depsync",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
) -> None:
    """depsync: resolve requirements into pyproject.toml and sync environments.

    \b
    Available commands:
      depsync add REQUIREMENT...    Add dependencies to the project
      depsync init [PATH]           Create a new project

    \b
    Examples:
      depsync init my-app
      depsync add "requests>=2.31"
      depsync add --dev -r requirements-dev.txt
      depsync -v add git+https://github.com/org/repo.git --tag v1.0

    Use ``depsync COMMAND --help`` for command-specific options.
    """
    # NO_COLOR must be settled before the console is rebuilt
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console()

    _configure_logging(verbose)

    try:
        loaded_config = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(1) from exc

    depsync_ctx = DepsyncContext()
    depsync_ctx.config_path = config or (
        loaded_config.source_path if loaded_config.source_path else None
    )
    depsync_ctx.color = color
    depsync_ctx.verbose = verbose
    depsync_ctx.config = loaded_config
    ctx.obj = depsync_ctx

    logger.debug("depsync v%s", __version__)
    logger.debug("Config path: %s", depsync_ctx.config_path)
    if loaded_config.source_path:
        logger.debug("Loaded configuration: %s", loaded_config.to_log_dict())
    logger.debug("Verbosity: %s | Color: %s", verbose, color)


def _configure_logging(verbose: int) -> None:
    """Configure logging level based on verbosity flags."""
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    setup_logging(level=level)
    logger.debug("Logging initialized at %s level", logging.getLevelName(level))


# Register CLI subcommands
try:
    from depsync.commands.add import add
    from depsync.commands.init import init

    cli.add_command(add)
    cli.add_command(init)

except ImportError as exc:
    sys.stderr.write(f"FATAL: Failed to import CLI commands: {exc}\n")
    sys.exit(1)


def main() -> int:
    """Main entry point for the depsync CLI.

    Returns:
        Exit code:
            0   Success
            1   Unhandled or application error
            2   Usage error (Click)
            130 Interrupted by user (Ctrl+C)
    """
    try:
        cli(standalone_mode=False)
        return 0

    except click.ClickException as exc:
        exc.show()
        return exc.exit_code

    except DepsyncError as exc:
        print_error(str(exc))
        logger.debug(
            "DepsyncError details: %s",
            exc.details or "<none>",
            exc_info=True,
        )
        return 1

    except KeyboardInterrupt:
        print_warning("\nOperation cancelled by user")
        return 130

    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Unhandled exception in CLI")
        return 1


if __name__ == "__main__":
    sys.exit(main())
