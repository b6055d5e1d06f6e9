from __future__ import annotations

from pathlib import Path

import click
import pytest

from depforge.config import DepForgeConfig
from depforge.context import DepForgeContext, pass_context


@pytest.mark.unit
class TestDepForgeContext:
    """Tests for DepForgeContext class."""

    def test_default_initialization(self) -> None:
        """Test DepForgeContext initializes with correct default values."""
        ctx = DepForgeContext()

        assert ctx.config_path is None
        assert ctx.verbose == 0
        assert ctx.color is True
        assert ctx.config == DepForgeConfig()

    def test_instances_are_independent(self) -> None:
        """Test multiple DepForgeContext instances are independent."""
        ctx1 = DepForgeContext()
        ctx2 = DepForgeContext()

        ctx1.verbose = 2
        ctx1.color = False
        ctx1.config.pins["a"] = "<2"

        assert ctx2.verbose == 0
        assert ctx2.color is True
        assert ctx2.config.pins == {}
        assert ctx1 is not ctx2

    def test_all_attributes_can_be_set(self) -> None:
        """Test all context attributes can be set and retrieved."""
        ctx = DepForgeContext()
        test_path = Path("/path/to/depforge.toml")
        config = DepForgeConfig(strategy="lowest")

        ctx.config_path = test_path
        ctx.verbose = 2
        ctx.color = False
        ctx.config = config

        assert ctx.config_path == test_path
        assert ctx.verbose == 2
        assert ctx.color is False
        assert ctx.config is config

    def test_slots_prevents_arbitrary_attributes(self) -> None:
        """Test __slots__ prevents setting undefined attributes."""
        ctx = DepForgeContext()

        with pytest.raises(AttributeError):
            ctx.arbitrary_attribute = "value"  # type: ignore


@pytest.mark.unit
class TestPassContextDecorator:
    """Tests for pass_context decorator."""

    def test_pass_context_injects_existing_context(self) -> None:
        """Test pass_context decorator injects existing DepForgeContext."""

        @click.command()
        @pass_context
        def test_command(ctx: DepForgeContext) -> DepForgeContext:
            return ctx

        click_ctx = click.Context(click.Command("test"))
        depforge_ctx = DepForgeContext()
        click_ctx.obj = depforge_ctx

        result = click_ctx.invoke(test_command)

        assert result is depforge_ctx

    def test_pass_context_creates_context_when_missing(self) -> None:
        """Test pass_context creates DepForgeContext when none exists."""

        @click.command()
        @pass_context
        def test_command(ctx: DepForgeContext) -> DepForgeContext:
            return ctx

        click_ctx = click.Context(click.Command("test"))

        result = click_ctx.invoke(test_command)

        assert isinstance(result, DepForgeContext)
        assert result.verbose == 0
        assert result.config.strategy == "highest"
