"""
Validation of tool install requests.

``depsync tool install PACKAGE --from REQUIREMENT`` installs ``REQUIREMENT``
under the name ``PACKAGE``. The two must agree before anything is
installed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from packaging.requirements import InvalidRequirement

from depsync.exceptions import ConflictError, ParseError
from depsync.models.requirement import Requirement


@dataclass
class ToolRequest:
    """A validated tool request: the requirement to install and its extras."""

    requirement: Requirement
    with_requirements: List[Requirement] = field(default_factory=list)

    @property
    def name(self) -> str:
        assert self.requirement.name is not None
        return self.requirement.name


def _parse(text: str) -> Requirement:
    try:
        return Requirement.parse(text)
    except InvalidRequirement as exc:
        raise ParseError(f"Invalid requirement `{text}`: {exc}", line_content=text) from exc


def parse_tool_request(
    package: str,
    from_: Optional[str] = None,
    with_: Sequence[str] = (),
) -> ToolRequest:
    """Validate ``package`` against ``--from`` and parse both.

    Without ``from_``, ``package`` itself is the requirement. With it, the
    requirement's name must be exactly ``package``.

    Raises:
        ConflictError: If ``package`` and ``from_`` disagree.
        ParseError: If either is not a valid requirement.
    """
    if from_ is None:
        requirement = _parse(package)
    else:
        requirement = _parse(from_)
        if requirement.name != package:
            package_requirement = _parse(package)
            if package_requirement.canonical_name == requirement.canonical_name:
                raise ConflictError(
                    f"Package requirement `{from_}` provided with `--from` conflicts "
                    f"with install request `{package}`"
                )
            raise ConflictError(
                f"Package name `{requirement.name}` provided with `--from` does not "
                f"match install request `{package}`"
            )

    return ToolRequest(requirement, [_parse(text) for text in with_])
