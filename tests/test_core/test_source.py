"""Unit tests for depforge.core.source module.

Test Coverage:
- InMemorySource population and declaration order
- Not-found and injected failures
- Project-local flags
- Call log and artificial latency
"""

from __future__ import annotations

import pytest

from depforge.core.source import InMemorySource, PackageSource
from depforge.exceptions import SourceNotFound, SourceUnavailable
from depforge.models.requirement import Requirement
from depforge.models.version import Version


@pytest.mark.unit
class TestInMemorySource:
    """Tests for the dictionary-backed source."""

    @pytest.mark.asyncio
    async def test_lists_versions_in_declaration_order(self) -> None:
        """Test versions come back in the order they were declared."""
        source = InMemorySource({"a": {"2.0": [], "1.0": [], "1.5": []}})
        versions = await source.list_versions("a")
        assert [str(v) for v in versions] == ["2.0", "1.0", "1.5"]

    @pytest.mark.asyncio
    async def test_requirements_are_parsed(self) -> None:
        """Test string requirements are turned into Requirement objects."""
        source = InMemorySource({"a": {"1.0": ["b>=1.0", Requirement.parse("c")]}})
        reqs = await source.requirements_of("a", Version("1.0"))
        assert reqs == [Requirement.parse("b>=1.0"), Requirement.parse("c")]

    @pytest.mark.asyncio
    async def test_names_are_normalized(self) -> None:
        """Test lookups are PEP 503 insensitive."""
        source = InMemorySource({"My_Pkg": {"1.0": []}})
        assert source.names == ["my-pkg"]
        assert await source.list_versions("my.pkg") == [Version("1.0")]

    @pytest.mark.asyncio
    async def test_package_without_versions(self) -> None:
        """Test a declared package may have no versions at all."""
        source = InMemorySource({"ghost": {}})
        assert await source.list_versions("ghost") == []

    @pytest.mark.asyncio
    async def test_unknown_package(self) -> None:
        """Test an unknown package raises SourceNotFound."""
        source = InMemorySource()
        with pytest.raises(SourceNotFound) as exc_info:
            await source.list_versions("nope")
        assert exc_info.value.details["package"] == "nope"

    @pytest.mark.asyncio
    async def test_unknown_version(self) -> None:
        """Test an unknown version raises SourceNotFound."""
        source = InMemorySource({"a": {"1.0": []}})
        with pytest.raises(SourceNotFound) as exc_info:
            await source.requirements_of("a", Version("9.9"))
        assert exc_info.value.details["version"] == "9.9"

    @pytest.mark.asyncio
    async def test_add_extends_existing_package(self) -> None:
        """Test add() appends versions after construction."""
        source = InMemorySource({"a": {"1.0": []}})
        source.add("a", "2.0", ["b"])
        assert [str(v) for v in await source.list_versions("a")] == ["1.0", "2.0"]
        assert await source.requirements_of("a", Version("2.0")) == [Requirement.parse("b")]

    @pytest.mark.asyncio
    async def test_package_wide_failure(self) -> None:
        """Test fail() without a version affects every query of the package."""
        source = InMemorySource({"a": {"1.0": []}})
        source.fail("a", SourceUnavailable("down", package_name="a"))
        with pytest.raises(SourceUnavailable):
            await source.list_versions("a")
        with pytest.raises(SourceUnavailable):
            await source.requirements_of("a", Version("1.0"))

    @pytest.mark.asyncio
    async def test_version_specific_failure(self) -> None:
        """Test fail() with a version only affects that version."""
        source = InMemorySource({"a": {"1.0": [], "2.0": []}})
        source.fail("a", SourceUnavailable("broken"), version="2.0")
        assert len(await source.list_versions("a")) == 2
        assert await source.requirements_of("a", Version("1.0")) == []
        with pytest.raises(SourceUnavailable):
            await source.requirements_of("a", Version("2.0"))

    @pytest.mark.asyncio
    async def test_calls_are_recorded(self) -> None:
        """Test every query is logged in order."""
        source = InMemorySource({"a": {"1.0": []}})
        await source.list_versions("A")
        await source.requirements_of("a", Version("1.0"))
        assert source.calls == [("a", None), ("a", Version("1.0"))]

    @pytest.mark.asyncio
    async def test_latency(self) -> None:
        """Test a positive latency still answers correctly."""
        source = InMemorySource({"a": {"1.0": []}}, latency=0.01)
        assert await source.list_versions("a") == [Version("1.0")]

    def test_local_flags(self) -> None:
        """Test whole-package and single-version local flags."""
        source = InMemorySource(
            {"a": {"1.0": [], "2.0": []}, "b": {"1.0": []}},
            local=["b", ("a", "1.0")],
        )
        assert source.is_local("a", Version("1.0"))
        assert not source.is_local("a", Version("2.0"))
        assert source.is_local("B", Version("1.0"))

    @pytest.mark.asyncio
    async def test_base_class_defaults(self) -> None:
        """Test the default is_local and aclose of PackageSource."""

        class Minimal(PackageSource):
            async def list_versions(self, name):
                return []

            async def requirements_of(self, name, version):
                return []

        source = Minimal()
        assert source.is_local("a", Version("1.0")) is False
        assert await source.aclose() is None

    def test_abstract_interface(self) -> None:
        """Test PackageSource cannot be instantiated directly."""
        with pytest.raises(TypeError):
            PackageSource()  # type: ignore[abstract]
