"""
Custom exception hierarchy for depsync.

This module defines structured exception types used across depsync.
All exceptions inherit from :class:`DepsyncError` and support optional
structured metadata via the ``details`` attribute to improve diagnostics
and logging.
"""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional


class DepsyncError(Exception):
    """Base exception for all depsync errors.

    All depsync-specific exceptions should inherit from this class.
    It supports structured metadata via ``details`` for richer error
    reporting and debugging.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class ParseError(DepsyncError):
    """Raised when a requirement or requirements file cannot be parsed.

    Args:
        message: Error description.
        line_number: Line number where parsing failed.
        line_content: Raw content of the problematic line.
        file_path: Path to the file being parsed.
    """

    __slots__ = ("line_number", "line_content", "file_path")

    def __init__(
        self,
        message: str,
        *,
        line_number: Optional[int] = None,
        line_content: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "line", line_number)
        _add_if(details, "content", line_content)
        _add_if(details, "file", file_path)

        super().__init__(message, details)

        self.line_number = line_number
        self.line_content = line_content
        self.file_path = file_path


class ConfigError(DepsyncError):
    """Raised when a configuration file is unreadable or invalid.

    Args:
        message: Error description.
        config_path: Path to the offending configuration file.
        option: Name of the option that failed validation.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


class NetworkError(DepsyncError):
    """Raised when HTTP or network operations fail.

    Args:
        message: Error description.
        url: URL being accessed.
        status_code: HTTP status code, if available.
        response_body: Raw response body, truncated for safety.
    """

    __slots__ = ("url", "status_code", "response_body")

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "url", url)
        _add_if(details, "status_code", status_code)

        if response_body is not None:
            details["response"] = _truncate(response_body)

        super().__init__(message, details)

        self.url = url
        self.status_code = status_code
        self.response_body = response_body


class NotFoundError(NetworkError):
    """Raised when a remote resource does not exist (HTTP 404)."""


class FileOperationError(DepsyncError):
    """Raised when file system operations fail.

    Args:
        message: Error description.
        file_path: Path to the file involved.
        operation: Operation being performed (read/write/delete).
        original_error: Original exception that triggered this error.
    """

    __slots__ = ("file_path", "operation", "original_error")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        _add_if(details, "operation", operation)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.file_path = file_path
        self.operation = operation
        self.original_error = original_error


class SourceError(DepsyncError):
    """Raised when a requirement cannot be mapped to a dependency source.

    Args:
        message: Error description.
        requirement: Name of the requirement being classified.
    """

    __slots__ = ("requirement",)

    def __init__(self, message: str, *, requirement: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "requirement", requirement)
        super().__init__(message, details)
        self.requirement = requirement


class UnresolvedReferenceError(SourceError):
    """Raised when a Git requirement carries no reference to pin.

    The message names the flags that resolve the ambiguity, so it can be
    shown to the user as-is.

    Args:
        locator: The Git URL as declared by the user.
        requirement: Name of the requirement.
    """

    __slots__ = ("locator",)

    def __init__(self, locator: str, requirement: str) -> None:
        message = (
            f"Cannot resolve Git reference `{locator}` for requirement "
            f"`{requirement}`. Specify the reference with one of `--tag`, "
            "`--branch`, or `--rev`, or use the `--raw-sources` flag."
        )
        DepsyncError.__init__(self, message)
        self.requirement = requirement
        self.locator = locator


class ResolutionError(DepsyncError):
    """Raised when distribution metadata cannot be obtained for a requirement.

    Args:
        message: Error description.
        fingerprint: Fingerprint of the source tree or artifact.
        locator: The URL or path that was being resolved.
    """

    __slots__ = ("fingerprint", "locator")

    def __init__(
        self,
        message: str,
        *,
        fingerprint: Optional[str] = None,
        locator: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "locator", locator)
        _add_if(details, "fingerprint", fingerprint)

        super().__init__(message, details)

        self.fingerprint = fingerprint
        self.locator = locator


class ManifestError(DepsyncError):
    """Raised when a ``pyproject.toml`` manifest cannot be read or edited.

    Args:
        message: Error description.
        file_path: Path to the manifest.
    """

    __slots__ = ("file_path",)

    def __init__(self, message: str, *, file_path: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        super().__init__(message, details)
        self.file_path = file_path


class WorkspaceError(DepsyncError):
    """Raised when project or workspace discovery fails."""


class ProjectError(DepsyncError):
    """Raised when a project operation cannot proceed (e.g. already initialized)."""


class ConflictError(DepsyncError):
    """Raised when two user-supplied requests contradict each other."""


class InterpreterError(DepsyncError):
    """Raised when no Python interpreter satisfies a request."""


class CommandError(DepsyncError):
    """Raised when an external command exits unsuccessfully.

    Args:
        message: Error description.
        command: The command that was run.
        returncode: Its exit status.
        stderr: Captured standard error, truncated for safety.
    """

    __slots__ = ("command", "returncode", "stderr")

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "command", command)
        _add_if(details, "returncode", returncode)
        if stderr:
            details["stderr"] = _truncate(stderr.strip())

        super().__init__(message, details)

        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class LockError(CommandError):
    """Raised when locking the project fails."""


class SyncError(CommandError):
    """Raised when synchronizing the environment fails."""
