"""
Requirement data model for depsync.

A :class:`Requirement` is a single dependency request as the user (or an
imported project) declared it. Unlike :class:`packaging.requirements.Requirement`
the name is optional: ``./vendor/lib`` or ``https://host/pkg.whl`` are valid
requirements whose name is only known once their metadata has been read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional

from packaging.requirements import Requirement as PackagingRequirement
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.utils import canonicalize_name

_NAME_PATTERN = re.compile(r"^([A-Z0-9]|[A-Z0-9][A-Z0-9._-]*[A-Z0-9])$", re.IGNORECASE)


def is_valid_name(name: str) -> bool:
    """Return True if ``name`` is a valid distribution name (PEP 508)."""
    return bool(_NAME_PATTERN.match(name))


def normalize_extras(extras: Iterable[str]) -> List[str]:
    """Return extras normalized (PEP 685), sorted, and deduplicated."""
    return sorted({canonicalize_name(extra) for extra in extras if extra})


@dataclass
class Requirement:
    """
    A single requirement, possibly unnamed.

    Attributes:
        name: Distribution name as declared, or ``None`` for a bare path/URL.
        specifier: PEP 440 specifier text (e.g. ``">=2.0,<3"``).
        extras: Normalized extras.
        marker: PEP 508 environment marker text.
        url: Declared URL or local path.
        editable: Whether the requirement was declared with ``-e``.
        version: Version read from metadata when the requirement was resolved.
        line_number: Line in the requirements file it came from, if any.
        raw_line: Original unmodified text.
    """

    name: Optional[str]
    specifier: str = ""
    extras: List[str] = field(default_factory=list)
    marker: Optional[str] = None
    url: Optional[str] = None
    editable: bool = False
    version: Optional[str] = None
    line_number: int = 0
    raw_line: Optional[str] = None

    @classmethod
    def from_packaging(
        cls,
        requirement: PackagingRequirement,
        **kwargs: object,
    ) -> "Requirement":
        """Build a requirement from a parsed PEP 508 string."""
        return cls(
            name=requirement.name,
            specifier=str(requirement.specifier),
            extras=normalize_extras(requirement.extras),
            marker=str(requirement.marker) if requirement.marker else None,
            url=requirement.url,
            **kwargs,  # type: ignore[arg-type]
        )

    @classmethod
    def parse(cls, text: str) -> "Requirement":
        """Parse a PEP 508 string; raises ``packaging``'s ``InvalidRequirement``."""
        return cls.from_packaging(PackagingRequirement(text), raw_line=text)

    @property
    def canonical_name(self) -> Optional[str]:
        return canonicalize_name(self.name) if self.name else None

    @property
    def is_named(self) -> bool:
        return self.name is not None

    def with_extras(self, extras: Iterable[str]) -> "Requirement":
        """Return a copy whose extras are the union with ``extras``."""
        return replace(self, extras=normalize_extras([*self.extras, *extras]))

    def with_name(self, name: str, version: Optional[str] = None) -> "Requirement":
        return replace(self, name=name, version=version)

    def with_url(self, url: Optional[str]) -> "Requirement":
        return replace(self, url=url)

    def without_url(self) -> "Requirement":
        """Return a copy with the inline URL removed."""
        return replace(self, url=None)

    def with_marker(self, marker: Optional[str]) -> "Requirement":
        return replace(self, marker=marker or None)

    def to_pep508(self, *, include_url: bool = True) -> str:
        """
        Render the PEP 508 form used in manifest dependency arrays.

        Args:
            include_url: Render ``name @ url`` when the requirement has a URL.

        Returns:
            ``name[extras]specifier; marker`` or ``name[extras] @ url ; marker``.

        Raises:
            ValueError: If the requirement has no name.
        """
        if not self.name:
            raise ValueError(f"Cannot render unnamed requirement: {self.url}")

        result = self.name
        if self.extras:
            result += f"[{','.join(self.extras)}]"

        url = self.url if include_url else None
        if url:
            result += f" @ {url}"
        elif self.specifier:
            result += _normalize_specifier(self.specifier)

        if self.marker:
            result += f" ; {self.marker}" if url else f"; {self.marker}"

        return result

    def __str__(self) -> str:
        if self.name:
            return self.to_pep508()
        return self.url or ""


def _normalize_specifier(specifier: str) -> str:
    try:
        return str(SpecifierSet(specifier))
    except InvalidSpecifier:
        return specifier
