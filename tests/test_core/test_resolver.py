"""Unit tests for depforge.core.resolver module.

Test Coverage:
- ResolverConfig validation and effective policy
- End-to-end scenarios: strategy choice, unsatisfiable diamond, cancellation
- Timeout-driven cancellation and cancel-before-resolve
- Source failures aborting the session
- Reporter lifecycle events
- resolve() / resolve_sync() helpers
"""

from __future__ import annotations

import asyncio

import pytest

from depforge.core.reporter import RecordingReporter
from depforge.core.resolver import (
    Resolver,
    ResolverConfig,
    ResolverState,
    resolve,
    resolve_sync,
)
from depforge.core.source import InMemorySource
from depforge.exceptions import ConfigError, SourceUnavailable
from depforge.models.version import Version


def solution(report) -> dict:
    return {label: str(version) for label, version in report.solution.items()}


# ============================================================================
# Configuration
# ============================================================================


@pytest.mark.unit
class TestResolverConfig:
    """Tests for ResolverConfig."""

    def test_defaults(self) -> None:
        """Test the default configuration is valid."""
        config = ResolverConfig()
        config.validate()
        assert config.strategy == "highest"
        assert config.conflict_policy == "backtrack"
        assert config.max_backjumps == 10_000
        assert config.prefetch is True
        assert config.prefer_local is False

    def test_cdcl_selects_learning(self) -> None:
        """Test the cdcl strategy always runs the learning policy."""
        assert ResolverConfig(strategy="cdcl").effective_policy == "learn"
        assert ResolverConfig(conflict_policy="learn").effective_policy == "learn"
        assert ResolverConfig().effective_policy == "backtrack"

    @pytest.mark.parametrize(
        "options, option",
        [
            ({"strategy": "random"}, "strategy"),
            ({"conflict_policy": "guess"}, "conflict_policy"),
            ({"max_backjumps": -1}, "max_backjumps"),
            ({"concurrent_limit": 0}, "concurrent_limit"),
            ({"timeout": 0}, "timeout"),
            ({"pins": {"a": ">=>1"}}, "pins"),
            ({"strategy": "nearest", "conflict_policy": "learn"}, "conflict_policy"),
            ({"strategy": "dedup", "conflict_policy": "learn"}, "conflict_policy"),
        ],
    )
    def test_invalid(self, options: dict, option: str) -> None:
        """Test invalid options raise ConfigError naming the option."""
        with pytest.raises(ConfigError) as exc_info:
            ResolverConfig(**options).validate()
        assert exc_info.value.details["option"] == option

    def test_unlimited_backjumps(self) -> None:
        """Test None is accepted as an unlimited budget."""
        ResolverConfig(max_backjumps=None).validate()

    def test_resolver_validates(self) -> None:
        """Test constructing a Resolver rejects an invalid configuration."""
        with pytest.raises(ConfigError):
            Resolver(InMemorySource(), ResolverConfig(strategy="nearest", conflict_policy="learn"))


# ============================================================================
# Scenarios
# ============================================================================


@pytest.mark.unit
class TestStrategyChoice:
    """Same roots, different strategies, different but valid answers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", ["backtrack", "learn"])
    async def test_highest_first(self, two_level_source: InMemorySource, policy: str) -> None:
        """Test newest acceptable versions are selected."""
        config = ResolverConfig(strategy="highest", conflict_policy=policy)
        report = await Resolver(two_level_source, config).resolve(["a>=1.0,<2.0"])
        assert report.is_solved
        assert solution(report) == {"a": "1.5", "b": "2.0"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", ["backtrack", "learn"])
    async def test_lowest_first(self, two_level_source: InMemorySource, policy: str) -> None:
        """Test oldest acceptable versions are selected."""
        config = ResolverConfig(strategy="lowest", conflict_policy=policy)
        report = await Resolver(two_level_source, config).resolve(["a>=1.0,<2.0"])
        assert report.is_solved
        assert solution(report) == {"a": "1.0", "b": "1.0"}

    @pytest.mark.asyncio
    async def test_resolver_is_reusable(self, two_level_source: InMemorySource) -> None:
        """Test independent sessions on one resolver give the same answer."""
        resolver = Resolver(two_level_source)
        first = await resolver.resolve(["a>=1.0,<2.0"])
        second = await resolver.resolve(["a>=1.0,<2.0"])
        assert first == second
        assert resolver.state is ResolverState.SOLVED


@pytest.mark.unit
class TestUnsatisfiableDiamond:
    """``a`` and ``b`` pin different exact versions of ``c``."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", ["backtrack", "learn"])
    async def test_failed_with_chain(
        self, diamond_conflict_source: InMemorySource, policy: str
    ) -> None:
        """Test failure names the three packages and both constraints on c."""
        config = ResolverConfig(conflict_policy=policy)
        resolver = Resolver(diamond_conflict_source, config)

        report = await resolver.resolve(["a", "b"])

        assert report.is_failed
        assert report.entries == []
        chain = report.conflict_chain
        assert {"a", "b", "c"} <= set(chain.packages())
        assert "==1.0" in chain.requirements_on("c")
        assert "==2.0" in chain.requirements_on("c")
        assert report.explanation
        assert resolver.state is ResolverState.FAILED

    @pytest.mark.asyncio
    async def test_summary(self, diamond_conflict_source: InMemorySource) -> None:
        """Test the one-line summary lists the packages involved."""
        report = await Resolver(diamond_conflict_source).resolve(["a", "b"])
        assert report.summary().startswith("Resolution failed: conflict involving ")
        assert "c" in report.summary()

    @pytest.mark.asyncio
    async def test_explanation_names_contested_package(
        self, diamond_conflict_source: InMemorySource
    ) -> None:
        """Test the narrative ends on c, not on the level that ran out last."""
        config = ResolverConfig(conflict_policy="backtrack")
        report = await Resolver(diamond_conflict_source, config).resolve(["a", "b"])

        assert report.explanation.splitlines()[-1] == (
            "no selection satisfies every requirement on c."
        )


@pytest.mark.unit
class TestCancellation:
    """Cooperative cancellation of a running session."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", ["backtrack", "learn"])
    async def test_cancel_during_slow_fetch(self, policy: str) -> None:
        """Test cancel() wins over a slow source that would fail later."""
        source = InMemorySource({"a": {"1.0": []}, "b": {"1.0": []}}, latency=0.5)
        source.fail("b", SourceUnavailable("registry down", package_name="b"))
        reporter = RecordingReporter()
        resolver = Resolver(source, ResolverConfig(conflict_policy=policy), reporter=reporter)

        task = asyncio.ensure_future(resolver.resolve(["a", "b"]))
        await asyncio.sleep(0.05)
        resolver.cancel()
        report = await asyncio.wait_for(task, timeout=5)

        assert report.is_cancelled
        assert report.entries == []
        assert len(report.conflict_chain) == 0
        assert report.summary() == "Resolution cancelled"
        assert resolver.state is ResolverState.CANCELLED
        assert reporter.events[-1] == ("ending", "cancelled")

    @pytest.mark.asyncio
    async def test_timeout_cancels(self) -> None:
        """Test a session exceeding its timeout reports CANCELLED."""
        source = InMemorySource({"a": {"1.0": []}}, latency=2)
        config = ResolverConfig(timeout=0.05)

        report = await asyncio.wait_for(Resolver(source, config).resolve(["a"]), timeout=5)

        assert report.is_cancelled

    @pytest.mark.asyncio
    async def test_cancel_before_resolve(self, two_level_source: InMemorySource) -> None:
        """Test a request made before resolve() cancels the next session only."""
        resolver = Resolver(two_level_source)
        resolver.cancel()

        first = await resolver.resolve(["a>=1.0,<2.0"])
        second = await resolver.resolve(["a>=1.0,<2.0"])

        assert first.is_cancelled
        assert second.is_solved

    @pytest.mark.asyncio
    async def test_state_while_running(self) -> None:
        """Test the state of a running session is visible through the resolver."""
        source = InMemorySource({"a": {"1.0": []}}, latency=0.5)
        resolver = Resolver(source)
        assert resolver.state is ResolverState.IDLE

        task = asyncio.ensure_future(resolver.resolve(["a"]))
        await asyncio.sleep(0.05)
        assert not resolver.state.is_terminal
        resolver.cancel()
        await asyncio.wait_for(task, timeout=5)

        assert resolver.state is ResolverState.CANCELLED


@pytest.mark.unit
class TestSourceFailures:
    """Source failures abort the session with an error."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", ["backtrack", "learn"])
    async def test_unavailable_propagates(self, policy: str) -> None:
        """Test SourceUnavailable reaches the caller when nobody cancelled."""
        source = InMemorySource({"a": {"1.0": []}, "b": {"1.0": []}})
        source.fail("b", SourceUnavailable("registry down", package_name="b"))

        with pytest.raises(SourceUnavailable) as exc_info:
            await Resolver(source, ResolverConfig(conflict_policy=policy)).resolve(["a", "b"])
        assert exc_info.value.details["package"] == "b"


@pytest.mark.unit
class TestReporting:
    """Reporter lifecycle."""

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, two_level_source: InMemorySource) -> None:
        """Test starting and ending frame every other event."""
        reporter = RecordingReporter()
        await Resolver(two_level_source, reporter=reporter).resolve(["a>=1.0,<2.0"])

        first, last = reporter.events[0], reporter.events[-1]
        assert first[0] == "starting"
        assert first[2:] == ("highest", "backtrack")
        assert last == ("ending", "solved")

    @pytest.mark.asyncio
    async def test_decided_events_follow_solution(self, two_level_source: InMemorySource) -> None:
        """Test every selection was announced as a decision."""
        reporter = RecordingReporter()
        report = await Resolver(two_level_source, reporter=reporter).resolve(["a>=1.0,<2.0"])

        decided = {(event[1], event[2]) for event in reporter.of_kind("decided")}
        assert {("a", "1.5"), ("b", "2.0")} <= decided
        assert report.stats.decisions >= 2

    @pytest.mark.asyncio
    async def test_state_events_end_terminal(self, two_level_source: InMemorySource) -> None:
        """Test the last state change enters a terminal state."""
        reporter = RecordingReporter()
        await Resolver(two_level_source, reporter=reporter).resolve(["a>=1.0,<2.0"])
        assert reporter.of_kind("state")[-1][2] == "solved"


@pytest.mark.unit
class TestHelpers:
    """Tests for resolve() and resolve_sync()."""

    @pytest.mark.asyncio
    async def test_resolve(self, two_level_source: InMemorySource) -> None:
        """Test the one-shot coroutine."""
        report = await resolve(two_level_source, ["a>=1.0,<2.0"], ResolverConfig(strategy="lowest"))
        assert report.version_of("a") == Version("1.0")

    def test_resolve_sync(self, two_level_source: InMemorySource) -> None:
        """Test the blocking wrapper runs its own event loop."""
        report = resolve_sync(two_level_source, ["a>=1.0,<2.0"])
        assert report.is_solved
        assert report.version_of("b") == Version("2.0")
        assert report.stats.source_calls > 0
