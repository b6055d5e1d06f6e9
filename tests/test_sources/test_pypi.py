"""Unit tests for depforge.sources.pypi module.

All HTTP traffic is mocked; no test touches the network.

Test Coverage:
- Version listings (yanked-empty releases, invalid and pre-release versions)
- Per-version requirements from ``requires_dist``
- Registry and network failures mapped to SourceNotFound / SourceUnavailable
- Client ownership on close
- parse_requires_dist() marker and extra handling
"""

from __future__ import annotations

from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from depforge.exceptions import NetworkError, RegistryError, SourceNotFound, SourceUnavailable
from depforge.models.version import Version
from depforge.sources.pypi import PyPISource, parse_requires_dist
from depforge.utils.http import HTTPClient

RELEASES: Dict[str, Any] = {
    "1.0": [{"filename": "pkg-1.0.tar.gz"}],
    "1.5": [],
    "2.0b1": [{"filename": "pkg-2.0b1.tar.gz"}],
    "not-a-version!": [{"filename": "pkg.tar.gz"}],
    "2.0": [{"filename": "pkg-2.0.tar.gz"}],
}


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_client() -> MagicMock:
    """HTTPClient double whose get_json is an AsyncMock."""
    client = MagicMock(spec=HTTPClient)
    client.get_json = AsyncMock(return_value={"releases": RELEASES})
    client.close = AsyncMock()
    return client


# ============================================================================
# Listings
# ============================================================================


@pytest.mark.unit
class TestListVersions:
    """Tests for PyPISource.list_versions()."""

    @pytest.mark.asyncio
    async def test_skips_unusable_releases(self, mock_client: MagicMock) -> None:
        """Test empty, invalid and pre-release entries are dropped."""
        source = PyPISource(mock_client)
        versions = await source.list_versions("pkg")
        assert versions == [Version("1.0"), Version("2.0")]

    @pytest.mark.asyncio
    async def test_include_prereleases(self, mock_client: MagicMock) -> None:
        """Test pre-releases are kept on request, in PyPI order."""
        source = PyPISource(mock_client, include_prereleases=True)
        versions = await source.list_versions("pkg")
        assert [str(v) for v in versions] == ["1.0", "2.0b1", "2.0"]

    @pytest.mark.asyncio
    async def test_url_uses_normalized_name(self, mock_client: MagicMock) -> None:
        """Test the project name is normalized before building the URL."""
        await PyPISource(mock_client).list_versions("Flask_Login")
        mock_client.get_json.assert_awaited_once_with(
            "https://pypi.org/pypi/flask-login/json", package="flask-login"
        )

    @pytest.mark.asyncio
    async def test_custom_index_url(self, mock_client: MagicMock) -> None:
        """Test a mirror URL template is honoured."""
        source = PyPISource(mock_client, index_url="https://mirror.test/{package}.json")
        await source.list_versions("pkg")
        mock_client.get_json.assert_awaited_once_with("https://mirror.test/pkg.json", package="pkg")

    @pytest.mark.asyncio
    async def test_missing_releases(self, mock_client: MagicMock) -> None:
        """Test a document without releases lists nothing."""
        mock_client.get_json.return_value = {"info": {}}
        assert await PyPISource(mock_client).list_versions("pkg") == []


@pytest.mark.unit
class TestRequirementsOf:
    """Tests for PyPISource.requirements_of()."""

    @pytest.mark.asyncio
    async def test_base_requirements(self, mock_client: MagicMock) -> None:
        """Test requires_dist is reduced to base requirements."""
        mock_client.get_json.return_value = {
            "info": {
                "requires_dist": [
                    "idna>=2.5",
                    "PySocks!=1.5.7,>=1.5.6; extra == 'socks'",
                ]
            }
        }
        source = PyPISource(mock_client)

        reqs = await source.requirements_of("requests", Version("2.31.0"))

        assert [str(r) for r in reqs] == ["idna>=2.5"]
        mock_client.get_json.assert_awaited_once_with(
            "https://pypi.org/pypi/requests/2.31.0/json", package="requests"
        )

    @pytest.mark.asyncio
    async def test_no_requires_dist(self, mock_client: MagicMock) -> None:
        """Test a null requires_dist means no requirements."""
        mock_client.get_json.return_value = {"info": {"requires_dist": None}}
        assert await PyPISource(mock_client).requirements_of("pkg", Version("1.0")) == []


@pytest.mark.unit
class TestFailures:
    """Tests for error translation."""

    @pytest.mark.asyncio
    async def test_404_is_not_found(self, mock_client: MagicMock) -> None:
        """Test an unknown project becomes SourceNotFound."""
        mock_client.get_json.side_effect = RegistryError("Not found", status_code=404)
        with pytest.raises(SourceNotFound) as exc_info:
            await PyPISource(mock_client).list_versions("ghost")
        assert exc_info.value.package_name == "ghost"

    @pytest.mark.asyncio
    async def test_404_for_version(self, mock_client: MagicMock) -> None:
        """Test an unknown version carries the version in the error."""
        mock_client.get_json.side_effect = RegistryError("Not found", status_code=404)
        with pytest.raises(SourceNotFound) as exc_info:
            await PyPISource(mock_client).requirements_of("pkg", Version("9.9"))
        assert exc_info.value.version == "9.9"

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, mock_client: MagicMock) -> None:
        """Test other registry failures become SourceUnavailable."""
        mock_client.get_json.side_effect = RegistryError("Server error", status_code=503)
        with pytest.raises(SourceUnavailable):
            await PyPISource(mock_client).list_versions("pkg")

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self, mock_client: MagicMock) -> None:
        """Test transport failures become SourceUnavailable."""
        mock_client.get_json.side_effect = NetworkError("Connection refused")
        with pytest.raises(SourceUnavailable) as exc_info:
            await PyPISource(mock_client).list_versions("pkg")
        assert "Connection refused" in str(exc_info.value)


@pytest.mark.unit
class TestClose:
    """Tests for client ownership."""

    @pytest.mark.asyncio
    async def test_borrowed_client_stays_open(self, mock_client: MagicMock) -> None:
        """Test a client passed in is not closed by the source."""
        await PyPISource(mock_client).aclose()
        mock_client.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self) -> None:
        """Test a client created by the source is closed with it."""
        with patch("depforge.sources.pypi.HTTPClient") as client_cls:
            client_cls.return_value.close = AsyncMock()
            source = PyPISource()
            await source.aclose()
        client_cls.return_value.close.assert_awaited_once()


# ============================================================================
# requires_dist parsing
# ============================================================================


@pytest.mark.unit
class TestParseRequiresDist:
    """Tests for parse_requires_dist()."""

    def test_plain_entries(self) -> None:
        """Test names are normalized and constraints kept."""
        reqs = parse_requires_dist(["Requests>=2.0", "urllib3<3,>=1.21.1"])
        assert [r.name for r in reqs] == ["requests", "urllib3"]
        assert reqs[1].versions.contains("2.0")
        assert not reqs[1].versions.contains("3.0")

    def test_extras_dropped(self) -> None:
        """Test entries behind an extra marker are ignored."""
        assert parse_requires_dist(["pytest; extra == 'test'"]) == []

    def test_extra_alternative_kept(self) -> None:
        """Test an entry that also applies without the extra is kept."""
        reqs = parse_requires_dist(
            [
                'x; extra == "t" or python_version >= "3"',
                "pytest; extra == 'test'",
                'y; extra == "t" and python_version >= "3"',
            ]
        )
        assert [r.name for r in reqs] == ["x"]

    def test_markers_evaluated(self) -> None:
        """Test markers are evaluated against the running interpreter."""
        reqs = parse_requires_dist(
            [
                "always; python_version >= '3'",
                "never; python_version < '3'",
            ]
        )
        assert [r.name for r in reqs] == ["always"]

    def test_unbounded_requirement(self) -> None:
        """Test a bare name accepts any version."""
        (req,) = parse_requires_dist(["six"])
        assert req.versions.is_any()

    def test_invalid_entries_skipped(self) -> None:
        """Test unparseable entries and constraints are skipped."""
        reqs = parse_requires_dist(["not a requirement !!", "odd===abc", "ok"])
        assert [r.name for r in reqs] == ["ok"]

    def test_duplicates_collapsed(self) -> None:
        """Test identical requirements are listed once."""
        reqs = parse_requires_dist(["a>=1", "a>=1; python_version >= '3'"])
        assert len(reqs) == 1
