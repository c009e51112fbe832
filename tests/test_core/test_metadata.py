from __future__ import annotations

import io
import pytest
import tarfile
import zipfile
from pathlib import Path
from email.message import Message
from unittest.mock import AsyncMock, MagicMock, patch

from depsync.core.git import GitFetcher
from depsync.core.locator import parse_locator
from depsync.core.credentials import CredentialStore
from depsync.core.metadata import DistributionDatabase, DistributionMetadata
from depsync.exceptions import ResolutionError

PKG_INFO = """\
Metadata-Version: 2.1
Name: legacy-lib
Version: 0.3.0
Requires-Dist: six
Requires-Dist: tomli; extra == "toml"
Provides-Extra: toml
"""


def _write_project(root: Path, body: str) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "pyproject.toml").write_text(body, encoding="utf-8")
    return root


def _make_wheel(path: Path) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("pkg/__init__.py", "")
        archive.writestr(
            "pkg-1.0.dist-info/METADATA",
            "Metadata-Version: 2.1\nName: pkg\nVersion: 1.0\nRequires-Dist: attrs\n",
        )
    return path


def _make_sdist(path: Path, pkg_info: str) -> Path:
    data = pkg_info.encode("utf-8")
    with tarfile.open(path, "w:gz") as archive:
        info = tarfile.TarInfo("legacy-lib-0.3.0/PKG-INFO")
        info.size = len(data)
        archive.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture
def database(tmp_path: Path) -> DistributionDatabase:
    store = CredentialStore()
    return DistributionDatabase(
        http_client=MagicMock(),
        git=GitFetcher(tmp_path / "cache", store),
        cache_dir=tmp_path / "cache",
    )


@pytest.mark.unit
class TestDistributionMetadata:
    """Tests for metadata parsing."""

    def test_parse_core_metadata(self) -> None:
        metadata = DistributionMetadata.parse_core_metadata(PKG_INFO)

        assert metadata.name == "legacy-lib"
        assert metadata.version == "0.3.0"
        assert metadata.requires_dist == ("six", 'tomli; extra == "toml"')
        assert metadata.provides_extras == ("toml",)

    def test_core_metadata_requires_name(self) -> None:
        with pytest.raises(ValueError, match="Name or Version"):
            DistributionMetadata.parse_core_metadata("Metadata-Version: 2.1\nVersion: 1\n")

    def test_static_pyproject(self) -> None:
        metadata = DistributionMetadata.from_pyproject(
            {
                "name": "app",
                "version": "1.0",
                "dependencies": ["httpx>=0.25"],
                "optional-dependencies": {"cli": ['click; python_version >= "3.8"']},
            }
        )

        assert metadata is not None
        assert metadata.requires_dist == (
            "httpx>=0.25",
            'click; (python_version >= "3.8") and extra == "cli"',
        )
        assert metadata.provides_extras == ("cli",)

    def test_dynamic_pyproject_is_not_static(self) -> None:
        project = {"name": "app", "version": "1.0", "dynamic": ["dependencies"]}
        assert DistributionMetadata.from_pyproject(project) is None

    def test_missing_version_is_not_static(self) -> None:
        assert DistributionMetadata.from_pyproject({"name": "app", "dynamic": ["version"]}) is None

    def test_from_message(self) -> None:
        message = Message()
        message["Name"] = "built"
        message["Version"] = "2.0"
        message["Requires-Dist"] = "idna"

        metadata = DistributionMetadata.from_message(message)
        assert metadata == DistributionMetadata("built", "2.0", ("idna",))


@pytest.mark.unit
class TestSourceTrees:
    """Tests for directory metadata."""

    @pytest.mark.asyncio
    async def test_static_metadata_skips_build(
        self, tmp_path: Path, database: DistributionDatabase
    ) -> None:
        root = _write_project(
            tmp_path / "lib",
            '[project]\nname = "lib"\nversion = "0.1.0"\ndependencies = []\n',
        )
        with patch("depsync.core.metadata.build.util.project_wheel_metadata") as build_mock:
            metadata = await database.get_metadata(parse_locator(str(root), tmp_path))

        assert metadata.name == "lib"
        build_mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_dynamic_metadata_is_built(
        self, tmp_path: Path, database: DistributionDatabase
    ) -> None:
        root = _write_project(
            tmp_path / "dyn",
            '[project]\nname = "dyn"\ndynamic = ["version"]\n',
        )
        message = Message()
        message["Name"] = "dyn"
        message["Version"] = "3.1"
        with patch(
            "depsync.core.metadata.build.util.project_wheel_metadata",
            return_value=message,
        ) as build_mock:
            metadata = await database.get_metadata(parse_locator(str(root), tmp_path))

        assert metadata.version == "3.1"
        build_mock.assert_called_once_with(root.resolve(), True)

    @pytest.mark.asyncio
    async def test_not_a_python_project(
        self, tmp_path: Path, database: DistributionDatabase
    ) -> None:
        (tmp_path / "empty").mkdir()
        with pytest.raises(ResolutionError, match="Not a Python project"):
            await database.get_metadata(parse_locator(str(tmp_path / "empty"), tmp_path))

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path: Path, database: DistributionDatabase) -> None:
        with pytest.raises(ResolutionError, match="does not exist"):
            await database.get_metadata(parse_locator(str(tmp_path / "missing"), tmp_path))

    @pytest.mark.asyncio
    async def test_invalid_pyproject(self, tmp_path: Path, database: DistributionDatabase) -> None:
        root = _write_project(tmp_path / "bad", "[project\n")
        with pytest.raises(ResolutionError, match="Invalid pyproject.toml"):
            await database.get_metadata(parse_locator(str(root), tmp_path))


@pytest.mark.unit
class TestArchives:
    """Tests for wheel and sdist metadata."""

    @pytest.mark.asyncio
    async def test_wheel(self, tmp_path: Path, database: DistributionDatabase) -> None:
        wheel = _make_wheel(tmp_path / "pkg-1.0-py3-none-any.whl")
        metadata = await database.get_metadata(parse_locator(str(wheel), tmp_path))

        assert (metadata.name, metadata.version) == ("pkg", "1.0")
        assert metadata.requires_dist == ("attrs",)

    @pytest.mark.asyncio
    async def test_sdist_pkg_info(self, tmp_path: Path, database: DistributionDatabase) -> None:
        sdist = _make_sdist(tmp_path / "legacy-lib-0.3.0.tar.gz", PKG_INFO)
        metadata = await database.get_metadata(parse_locator(str(sdist), tmp_path))

        assert metadata.name == "legacy-lib"

    @pytest.mark.asyncio
    async def test_sdist_unpack_is_removed(
        self, tmp_path: Path, database: DistributionDatabase
    ) -> None:
        sdist = tmp_path / "legacy-lib-0.3.0.tar.gz"
        files = {
            "legacy-lib-0.3.0/PKG-INFO": PKG_INFO + "Dynamic: Requires-Dist\n",
            "legacy-lib-0.3.0/pyproject.toml": (
                '[project]\nname = "legacy-lib"\nversion = "0.3.0"\ndependencies = ["six"]\n'
            ),
        }
        with tarfile.open(sdist, "w:gz") as archive:
            for name, text in files.items():
                data = text.encode("utf-8")
                info = tarfile.TarInfo(name)
                info.size = len(data)
                archive.addfile(info, io.BytesIO(data))

        metadata = await database.get_metadata(parse_locator(str(sdist), tmp_path))
        await database.get_metadata(parse_locator(str(sdist), tmp_path))

        assert metadata.requires_dist == ("six",)
        assert list((tmp_path / "cache" / "sdists").iterdir()) == []

    @pytest.mark.asyncio
    async def test_corrupt_wheel(self, tmp_path: Path, database: DistributionDatabase) -> None:
        wheel = tmp_path / "broken-1.0-py3-none-any.whl"
        wheel.write_bytes(b"not a zip")
        with pytest.raises(ResolutionError, match="Unreadable archive"):
            await database.get_metadata(parse_locator(str(wheel), tmp_path))


@pytest.mark.unit
class TestRemote:
    """Tests for direct URLs and Git repositories."""

    @pytest.mark.asyncio
    async def test_url_is_downloaded(self, tmp_path: Path, database: DistributionDatabase) -> None:
        async def fake_download(url: str, destination: Path) -> Path:
            return _make_wheel(destination)

        database.http_client.download = AsyncMock(side_effect=fake_download)
        locator = parse_locator("https://example.com/pkg-1.0-py3-none-any.whl", tmp_path)

        metadata = await database.get_metadata(locator)

        assert metadata.name == "pkg"
        database.http_client.download.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_url_must_be_archive(self, tmp_path: Path, database: DistributionDatabase) -> None:
        locator = parse_locator("https://example.com/simple/pkg/", tmp_path)
        with pytest.raises(ResolutionError, match="wheel or source distribution"):
            await database.get_metadata(locator)

    @pytest.mark.asyncio
    async def test_git_checkout_with_subdirectory(
        self, tmp_path: Path, database: DistributionDatabase
    ) -> None:
        checkout = tmp_path / "checkout"
        _write_project(
            checkout / "python",
            '[project]\nname = "sub"\nversion = "1.0"\ndependencies = []\n',
        )
        database.git.fetch = AsyncMock(return_value=checkout)
        locator = parse_locator("git+https://github.com/org/repo@v1#subdirectory=python", tmp_path)

        metadata = await database.get_metadata(locator)

        assert metadata.name == "sub"
        database.git.fetch.assert_awaited_once_with("https://github.com/org/repo", "v1")
