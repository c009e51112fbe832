"""Parser for requirement arguments and pip-style requirements files.

Accepts everything ``depsync add`` can be given:

- Standard PEP 508 specifiers (``requests>=2.25.0``, ``pkg @ https://...``)
- Bare direct URLs (``git+https://github.com/org/repo@v1``,
  ``https://host/pkg-1.0.tar.gz``), named by an optional ``#egg=`` fragment
- Local paths (``.``, ``./libs/core``, ``/abs/pkg.whl``), resolved to
  absolute ``file://`` URLs
- Editable installs (``-e ./libs/core``)
- Include directives in files (``-r other.txt`` / ``--requirement other.txt``)
- Inline comments (everything after ``#`` unless part of a URL fragment)

URLs and paths without ``#egg=`` produce *unnamed* requirements; their
name is read from metadata by
:class:`~depsync.core.resolver.NamedRequirementsResolver`.

Typical usage::

    parser = RequirementsParser()
    requirements = parser.parse_arguments(["requests>=2", "./libs/core"])
    requirements += parser.parse_file("requirements.txt")
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from packaging.requirements import InvalidRequirement

from depsync.models.requirement import Requirement
from depsync.utils.logger import get_logger
from depsync.utils.filesystem import safe_read_file
from depsync.exceptions import ParseError, FileOperationError
from depsync.core.locator import is_vcs_url
from depsync.constants import (
    EDITABLE_DIRECTIVE,
    EDITABLE_DIRECTIVE_LONG,
    HASH_DIRECTIVE,
    INCLUDE_DIRECTIVE,
    INCLUDE_DIRECTIVE_LONG,
    UNSUPPORTED_VCS_PREFIXES,
    URL_SCHEMES,
    VCS_PREFIXES,
)

_EGG_PATTERN = re.compile(r"[#&]egg=([^&\s]+)")

#: URL fragments that are not comments.
_URL_FRAGMENTS = ("egg=", "subdirectory=", "sha1=", "sha256=")


class RequirementsParser:
    """Stateful parser for requirement arguments and files.

    Tracks the chain of ``-r`` includes to detect cycles.

    Args:
        base_dir: Directory relative paths in command-line arguments are
            resolved against. Defaults to the current directory.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.logger = get_logger("parser")
        self.base_dir = (base_dir or Path.cwd()).resolve()
        self._included_files_stack: List[Path] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse_arguments(self, arguments: Sequence[str]) -> List[Requirement]:
        """Parse requirements given on the command line."""
        requirements: List[Requirement] = []
        for argument in arguments:
            parsed = self.parse_line(argument, 0, _base_dir=self.base_dir)
            if parsed is None:
                raise ParseError("Empty requirement", line_content=argument)
            if isinstance(parsed, list):
                requirements.extend(parsed)
            else:
                requirements.append(parsed)
        return requirements

    def parse_file(
        self,
        file_path: Union[str, Path],
        _parent_directory_path: Optional[Path] = None,
    ) -> List[Requirement]:
        """Parse a requirements file from disk.

        Relative paths inside the file, including ``-r`` targets, are
        resolved against the file's directory.

        Raises:
            FileOperationError: The file does not exist or cannot be read.
            ParseError: A circular include was detected or the file contains
                invalid syntax.
        """
        resolved_path = self._resolve_file_path(Path(file_path), _parent_directory_path)
        self.logger.debug("Parsing file: %s", resolved_path)

        # Detect circular includes before reading
        if resolved_path in self._included_files_stack:
            cycle_path = " -> ".join(
                str(p) for p in self._included_files_stack + [resolved_path]
            )
            raise ParseError(
                f"Circular dependency detected: {cycle_path}",
                file_path=str(resolved_path),
            )

        file_content = safe_read_file(resolved_path)

        self._included_files_stack.append(resolved_path)
        try:
            result = self.parse_string(
                file_content,
                source_file_path=str(resolved_path),
                _current_directory_path=resolved_path.parent,
            )
            self.logger.debug("Parsed %d requirement(s) from %s", len(result), resolved_path.name)
            return result
        finally:
            self._included_files_stack.pop()

    def parse_string(
        self,
        requirements_content: str,
        source_file_path: Optional[str] = None,
        _current_directory_path: Optional[Path] = None,
    ) -> List[Requirement]:
        """Parse requirements from raw text content, flattening includes."""
        parsed_requirements: List[Requirement] = []
        base_dir = _current_directory_path or self.base_dir

        for line_number, line_text in enumerate(requirements_content.splitlines(), start=1):
            parse_result = self.parse_line(
                line_text,
                line_number,
                source_file_path,
                _base_dir=base_dir,
            )
            if parse_result is None:
                continue
            if isinstance(parse_result, list):
                parsed_requirements.extend(parse_result)
            else:
                parsed_requirements.append(parse_result)

        return parsed_requirements

    def parse_line(
        self,
        line_text: str,
        line_number: int,
        source_file_path: Optional[str] = None,
        _base_dir: Optional[Path] = None,
    ) -> Optional[Union[Requirement, List[Requirement]]]:
        """Parse a single requirement line.

        Returns:
            - ``None`` for comments, blank lines, and ignored options.
            - ``List[Requirement]`` when the line is a ``-r`` include.
            - ``Requirement`` for everything else.

        Raises:
            ParseError: The line contains invalid syntax.
        """
        base_dir = _base_dir or self.base_dir
        stripped_line = line_text.strip()

        if not stripped_line or stripped_line.startswith("#"):
            return None

        requirement_spec = self._strip_inline_comment(stripped_line)

        # ── -r / --requirement ────────────────────────────────────────
        if _has_option(requirement_spec, INCLUDE_DIRECTIVE, INCLUDE_DIRECTIVE_LONG):
            return self._handle_include_directive(
                requirement_spec, line_number, source_file_path, base_dir
            )

        requirement_spec = _remove_surrounding_quotes(requirement_spec)

        # ── -e / --editable ───────────────────────────────────────────
        is_editable = _has_option(requirement_spec, EDITABLE_DIRECTIVE, EDITABLE_DIRECTIVE_LONG)
        if is_editable:
            requirement_spec = _option_value(requirement_spec)
            if not requirement_spec:
                raise ParseError(
                    "Editable requirement is missing a path or URL",
                    line_number=line_number,
                    line_content=line_text,
                    file_path=source_file_path,
                )

        # ── --hash (not recorded in the manifest) ─────────────────────
        if HASH_DIRECTIVE in requirement_spec:
            requirement_spec = re.sub(r"\s*--hash[=\s]+\S+", "", requirement_spec).strip()

        if requirement_spec.startswith("-"):
            self.logger.warning(
                "Line %d: Ignoring unsupported option `%s`",
                line_number,
                requirement_spec.split()[0],
            )
            return None

        if self._is_direct_url(requirement_spec):
            return self._build_url_requirement(
                requirement_spec, is_editable, line_text, line_number
            )

        if _is_local_path(requirement_spec):
            return self._build_local_path_requirement(
                requirement_spec, base_dir, is_editable, line_text, line_number
            )

        return self._build_pep508_requirement(
            requirement_spec, is_editable, line_text, line_number, source_file_path, base_dir
        )

    # ------------------------------------------------------------------
    # Directive handlers (private)
    # ------------------------------------------------------------------

    def _handle_include_directive(
        self,
        directive_line: str,
        line_number: int,
        source_file_path: Optional[str],
        base_dir: Path,
    ) -> List[Requirement]:
        included_file_path = _option_value(directive_line)
        if not included_file_path:
            raise ParseError(
                "Include directive missing file path",
                line_number=line_number,
                line_content=directive_line,
                file_path=source_file_path,
            )

        try:
            return self.parse_file(included_file_path, _parent_directory_path=base_dir)
        except (FileOperationError, ParseError) as exc:
            raise ParseError(
                f"Failed to process include directive: {exc.message}",
                line_number=line_number,
                line_content=directive_line,
                file_path=source_file_path,
            ) from exc

    # ------------------------------------------------------------------
    # Requirement builders (private)
    # ------------------------------------------------------------------

    def _build_pep508_requirement(
        self,
        requirement_spec: str,
        is_editable: bool,
        original_line: str,
        line_number: int,
        source_file_path: Optional[str],
        base_dir: Path,
    ) -> Requirement:
        try:
            requirement = Requirement.parse(requirement_spec)
        except InvalidRequirement as exc:
            raise ParseError(
                f"Invalid requirement syntax: {exc}",
                line_number=line_number,
                line_content=requirement_spec,
                file_path=source_file_path,
            ) from exc

        url = requirement.url
        if url is not None and _is_local_path(url):
            url = _path_to_url(url, base_dir)

        return Requirement(
            name=requirement.name,
            specifier=requirement.specifier,
            extras=requirement.extras,
            marker=requirement.marker,
            url=url,
            editable=is_editable,
            line_number=line_number,
            raw_line=original_line,
        )

    def _build_url_requirement(
        self,
        url_string: str,
        is_editable: bool,
        original_line: str,
        line_number: int,
    ) -> Requirement:
        name, url = _split_egg(url_string)
        return Requirement(
            name=name,
            url=url,
            editable=is_editable,
            line_number=line_number,
            raw_line=original_line,
        )

    def _build_local_path_requirement(
        self,
        path_string: str,
        base_dir: Path,
        is_editable: bool,
        original_line: str,
        line_number: int,
    ) -> Requirement:
        name, path = _split_egg(path_string)
        return Requirement(
            name=name,
            url=_path_to_url(path, base_dir),
            editable=is_editable,
            line_number=line_number,
            raw_line=original_line,
        )

    # ------------------------------------------------------------------
    # Parsing helpers (private)
    # ------------------------------------------------------------------

    def _resolve_file_path(self, file_path: Path, parent_directory: Optional[Path]) -> Path:
        if not file_path.is_absolute():
            return ((parent_directory or self.base_dir) / file_path).resolve()
        return file_path.resolve()

    @staticmethod
    def _is_direct_url(text: str) -> bool:
        lowered = text.lower()
        return (
            lowered.startswith(URL_SCHEMES)
            or lowered.startswith(VCS_PREFIXES)
            or lowered.startswith(UNSUPPORTED_VCS_PREFIXES)
            or is_vcs_url(text)
        )

    @staticmethod
    def _strip_inline_comment(line: str) -> str:
        """Drop a trailing ``# comment``, keeping URL fragments."""
        for char_index, char in enumerate(line):
            if char != "#":
                continue
            text_before_hash = line[:char_index]
            text_after_hash = line[char_index + 1:]

            if text_after_hash.startswith(_URL_FRAGMENTS):
                continue

            # A '#' directly inside a URL token is a fragment
            if text_before_hash and not text_before_hash[-1].isspace():
                if "://" in text_before_hash.split()[-1]:
                    continue
            return text_before_hash.strip()
        return line


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _has_option(text: str, short: str, long: str) -> bool:
    return text == short or text == long or text.startswith((f"{short} ", f"{long} ", f"{long}="))


def _option_value(text: str) -> str:
    """Return the value of ``-x value`` / ``--long value`` / ``--long=value``."""
    if text.startswith("--") and "=" in text.split(None, 1)[0]:
        return text.split("=", 1)[1].strip()
    parts = text.split(None, 1)
    return parts[1].strip() if len(parts) == 2 else ""


def _remove_surrounding_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] in ('"', "'") and text[0] == text[-1]:
        return text[1:-1]
    return text


def _split_egg(text: str) -> Tuple[Optional[str], str]:
    """Split ``#egg=name`` off a URL or path; other fragments are kept."""
    match = _EGG_PATTERN.search(text)
    if match is None:
        return None, text
    base, _, fragment = text.partition("#")
    rest = [item for item in fragment.split("&") if item and not item.startswith("egg=")]
    cleaned = f"{base}#{'&'.join(rest)}" if rest else base
    return match.group(1), cleaned


def _is_local_path(text: str) -> bool:
    if text == "." or text == ".." or text.startswith((".#", "~")):
        return True
    if text.startswith(("./", "../", ".\\", "..\\", "/")):
        return True
    # Windows drive letter
    return len(text) >= 3 and text[1] == ":" and text[2] in ("\\", "/")


def _path_to_url(path_string: str, base_dir: Path) -> str:
    """Turn a relative or absolute path into a ``file://`` URL."""
    path_part, hash_sign, fragment = path_string.partition("#")
    path = Path(path_part).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve().as_uri() + (f"#{fragment}" if hash_sign and fragment else "")
