"""
Utility helpers for depsync.

This package provides reusable utilities used across depsync, including:

- Console output helpers (Rich-based)
- Logging configuration and retrieval
- Filesystem safety helpers
- Async HTTP client utilities

Only symbols listed in ``__all__`` are considered part of the public API.
"""

from __future__ import annotations

from depsync.utils.filesystem import (
    digest_files,
    safe_read_file,
    safe_write_file,
)

from depsync.utils.logger import (
    disable_logging,
    get_logger,
    is_logging_configured,
    setup_logging,
)

from depsync.utils.console import (
    get_raw_console,
    print_error,
    print_info,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)

from depsync.utils.http import HTTPClient

__all__ = [
    # Console
    "print_error",
    "print_info",
    "print_table",
    "print_success",
    "print_warning",
    "get_raw_console",
    "reconfigure_console",
    # Logging
    "get_logger",
    "setup_logging",
    "disable_logging",
    "is_logging_configured",
    # Filesystem
    "digest_files",
    "safe_read_file",
    "safe_write_file",
    # HTTP
    "HTTPClient",
]
