"""
Executable module for depsync.

Running:
    python -m depsync

is equivalent to:
    depsync
"""

from __future__ import annotations

import sys


def _print_startup_error(exc: ImportError) -> None:
    """Report a CLI import failure with enough context to debug it."""
    sys.stderr.write("depsync failed to start.\n")
    sys.stderr.write(f"Python version : {sys.version}\n")
    try:
        from depsync.__version__ import __version__

        sys.stderr.write(f"depsync version: {__version__}\n")
    except ImportError:
        sys.stderr.write("depsync version: <unknown>\n")
    sys.stderr.write(f"ImportError: {exc}\n")


def main() -> int:
    """
    Main entrypoint when executing `python -m depsync`.

    Returns:
        Exit code returned by the CLI.
    """
    try:
        # Import lazily so dependencies are only loaded during CLI use
        from depsync.cli import main as cli_main
    except ImportError as exc:
        _print_startup_error(exc)
        return 1

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
