"""
Environment marker rewriting.

Requirements imported from another project arrive with markers such as
``sys_platform == "linux" and extra == "foo"``. The ``extra`` atoms decide
which optional group the requirement belongs to; once the requirement is
placed in that group they are redundant. This module parses a marker into a
small expression tree (via :mod:`packaging.markers`), reports the extras it
mentions, and rewrites satisfied ``extra`` atoms to ``true`` before folding
the tree back into marker text.

Example::

    >>> tree = parse_marker('sys_platform == "linux" and extra == "foo"')
    >>> extract_extras(tree)
    ['foo']
    >>> render_marker(simplify_extras(tree, ["foo"]))
    'sys_platform == "linux"'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from packaging.markers import InvalidMarker, Marker, Op, Value, Variable
from packaging.utils import canonicalize_name

from depsync.exceptions import ParseError


@dataclass(frozen=True)
class MarkerAtom:
    """A single comparison, e.g. ``python_version >= "3.8"``."""

    lhs: str
    op: str
    rhs: str
    lhs_is_variable: bool = True
    rhs_is_variable: bool = False

    def extra(self) -> Optional[str]:
        """Return the normalized extra if this is ``extra == "<name>"``."""
        if self.op != "==":
            return None
        if self.lhs_is_variable and self.lhs == "extra" and not self.rhs_is_variable:
            return canonicalize_name(self.rhs)
        if self.rhs_is_variable and self.rhs == "extra" and not self.lhs_is_variable:
            return canonicalize_name(self.lhs)
        return None

    def render(self) -> str:
        lhs = self.lhs if self.lhs_is_variable else f'"{self.lhs}"'
        rhs = self.rhs if self.rhs_is_variable else f'"{self.rhs}"'
        return f"{lhs} {self.op} {rhs}"


@dataclass(frozen=True)
class MarkerAnd:
    children: Tuple["MarkerTree", ...]


@dataclass(frozen=True)
class MarkerOr:
    children: Tuple["MarkerTree", ...]


#: ``True`` is the always-true marker (no marker at all).
MarkerTree = Union[MarkerAtom, MarkerAnd, MarkerOr, bool]


def _atom(item: Tuple[object, object, object]) -> MarkerAtom:
    lhs, op, rhs = item
    assert isinstance(op, Op)
    return MarkerAtom(
        lhs=str(getattr(lhs, "value")),
        op=op.value,
        rhs=str(getattr(rhs, "value")),
        lhs_is_variable=isinstance(lhs, Variable),
        rhs_is_variable=isinstance(rhs, Variable),
    )


def _build(items: Sequence[object]) -> MarkerTree:
    """Convert packaging's flat ``[atom, "and", atom, "or", ...]`` form.

    ``and`` binds tighter than ``or``, so the list is split on ``or`` first.
    """
    groups: List[List[MarkerTree]] = [[]]
    for item in items:
        if item == "or":
            groups.append([])
        elif item == "and":
            continue
        elif isinstance(item, list):
            groups[-1].append(_build(item))
        elif isinstance(item, tuple):
            groups[-1].append(_atom(item))
        else:
            raise ParseError(f"Unexpected marker element: {item!r}")

    conjunctions: List[MarkerTree] = [
        group[0] if len(group) == 1 else MarkerAnd(tuple(group)) for group in groups
    ]
    if len(conjunctions) == 1:
        return conjunctions[0]
    return MarkerOr(tuple(conjunctions))


def parse_marker(text: Optional[str]) -> MarkerTree:
    """Parse marker text into a tree; ``None`` or empty text is ``True``."""
    if not text or not text.strip():
        return True
    try:
        marker = Marker(text)
    except InvalidMarker as exc:
        raise ParseError(f"Invalid marker: {exc}", line_content=text) from exc
    # Private: packaging has no public parse tree. Its shape (nested lists of
    # Variable/Op/Value tuples and "and"/"or") holds from packaging 22 on.
    return _build(marker._markers)


def _atoms(tree: MarkerTree) -> Iterable[MarkerAtom]:
    if isinstance(tree, MarkerAtom):
        yield tree
    elif isinstance(tree, (MarkerAnd, MarkerOr)):
        for child in tree.children:
            yield from _atoms(child)


def extract_extras(tree: MarkerTree) -> List[str]:
    """Return the extras named by ``extra == ...`` atoms, in first-seen order."""
    seen: List[str] = []
    for atom in _atoms(tree):
        extra = atom.extra()
        if extra is not None and extra not in seen:
            seen.append(extra)
    return seen


def simplify_extras(tree: MarkerTree, extras: Iterable[str]) -> MarkerTree:
    """Rewrite ``extra == X`` atoms to ``True`` for each ``X`` in ``extras``.

    Other atoms are kept as-is; ``and``/``or`` nodes are folded so that a
    fully satisfied marker collapses to ``True``.
    """
    wanted = {canonicalize_name(extra) for extra in extras}

    def visit(node: MarkerTree) -> MarkerTree:
        if isinstance(node, MarkerAtom):
            return True if node.extra() in wanted else node
        if isinstance(node, MarkerAnd):
            children = [visit(child) for child in node.children]
            kept = [child for child in children if child is not True]
            if not kept:
                return True
            return kept[0] if len(kept) == 1 else MarkerAnd(tuple(kept))
        if isinstance(node, MarkerOr):
            children = [visit(child) for child in node.children]
            if any(child is True for child in children):
                return True
            return children[0] if len(children) == 1 else MarkerOr(tuple(children))
        return node

    return visit(tree)


def render_marker(tree: MarkerTree) -> Optional[str]:
    """Render a tree back to marker text; ``True`` renders as ``None``."""

    def render(node: MarkerTree, parent_is_and: bool) -> str:
        if isinstance(node, MarkerAtom):
            return node.render()
        if isinstance(node, MarkerAnd):
            return " and ".join(render(child, True) for child in node.children)
        if isinstance(node, MarkerOr):
            text = " or ".join(render(child, False) for child in node.children)
            return f"({text})" if parent_is_and else text
        raise ValueError("Constant markers cannot be rendered inside an expression")

    if tree is True:
        return None
    return render(tree, False)


def strip_extras(marker: Optional[str]) -> Tuple[List[str], Optional[str]]:
    """Return ``(extras, simplified marker)`` for a requirement marker."""
    tree = parse_marker(marker)
    extras = extract_extras(tree)
    if not extras:
        return [], marker
    return extras, render_marker(simplify_extras(tree, extras))
