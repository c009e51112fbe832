from __future__ import annotations

import pytest
from pathlib import Path

from depsync.models.dependency import DependencyKind, DependencyType
from depsync.models.source import (
    GitSource,
    PathSource,
    RegistrySource,
    UrlSource,
    WorkspaceSource,
    source_from_table,
    source_kind,
    source_to_table,
    source_to_url,
)


@pytest.mark.unit
class TestGitSource:
    """Tests for Git reference exclusivity."""

    def test_single_reference(self) -> None:
        source = GitSource("https://github.com/org/repo", tag="v1.0")
        assert source.reference == "v1.0"

    def test_multiple_references_rejected(self) -> None:
        with pytest.raises(ValueError, match="only one of"):
            GitSource("https://github.com/org/repo", rev="abc", branch="main")


@pytest.mark.unit
class TestSourceTables:
    """Tests for the ``[tool.depsync.sources]`` entry format."""

    def test_registry_has_no_entry(self) -> None:
        assert source_to_table(RegistrySource()) is None

    def test_git_entry(self) -> None:
        source = GitSource("https://github.com/org/repo", subdirectory="pkg", branch="main")
        assert source_to_table(source) == {
            "git": "https://github.com/org/repo",
            "subdirectory": "pkg",
            "branch": "main",
        }

    def test_path_entry_keeps_editable(self) -> None:
        assert source_to_table(PathSource("../lib", editable=True)) == {
            "path": "../lib",
            "editable": True,
        }
        assert source_to_table(PathSource("dist/pkg.whl")) == {"path": "dist/pkg.whl"}

    def test_workspace_entry(self) -> None:
        assert source_to_table(WorkspaceSource("core")) == {"workspace": True}

    def test_url_entry(self) -> None:
        assert source_to_table(UrlSource("https://example.com/pkg.tar.gz")) == {
            "url": "https://example.com/pkg.tar.gz"
        }

    @pytest.mark.parametrize(
        "source",
        [
            GitSource("https://github.com/org/repo", rev="abc123"),
            PathSource("../lib", editable=False),
            UrlSource("https://example.com/pkg.zip", subdirectory="src"),
        ],
    )
    def test_entry_parses_back(self, source: object) -> None:
        assert source_from_table("pkg", source_to_table(source)) == source

    def test_workspace_entry_uses_dependency_name(self) -> None:
        assert source_from_table("core", {"workspace": True}) == WorkspaceSource("core")

    def test_unknown_entry_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unrecognised"):
            source_from_table("pkg", {"index": "internal"})


@pytest.mark.unit
class TestSourceUrls:
    """Tests for ``source_to_url`` and ``source_kind``."""

    def test_git_url(self) -> None:
        source = GitSource("https://github.com/org/repo", subdirectory="sub", tag="v2")
        assert source_to_url(source, Path("/")) == "git+https://github.com/org/repo@v2#subdirectory=sub"

    def test_path_url_resolved_against_root(self, tmp_path: Path) -> None:
        (tmp_path / "lib").mkdir()
        url = source_to_url(PathSource("lib"), tmp_path)
        assert url == (tmp_path / "lib").resolve().as_uri()

    def test_registry_and_workspace_have_no_url(self) -> None:
        assert source_to_url(RegistrySource(), Path("/")) is None
        assert source_to_url(WorkspaceSource("core"), Path("/")) is None

    def test_kinds(self) -> None:
        assert source_kind(RegistrySource()) == "registry"
        assert source_kind(PathSource("x", editable=True)) == "editable"
        assert source_kind(PathSource("x")) == "path"
        assert source_kind(UrlSource("https://e.com/p.whl")) == "url"


@pytest.mark.unit
class TestDependencyType:
    """Tests for dependency placement."""

    def test_optional_group_is_normalized(self) -> None:
        dependency_type = DependencyType.optional("Docs_Extra")
        assert dependency_type.kind is DependencyKind.OPTIONAL
        assert dependency_type.group == "docs-extra"
        assert str(dependency_type) == "optional (docs-extra)"

    def test_optional_requires_group(self) -> None:
        with pytest.raises(ValueError):
            DependencyType.optional("")

    def test_table_keys(self) -> None:
        assert DependencyType.production().table_key == ("production",)
        assert DependencyType.dev().table_key == ("dev",)
        assert DependencyType.optional("docs").table_key == ("optional", "docs")
