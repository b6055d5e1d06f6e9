"""Resolution entry point.

:class:`Resolver` ties a :class:`~depforge.core.source.PackageSource` to a
strategy and a conflict policy, and runs one session per :meth:`resolve`
call. Each session owns its metadata cache, decision trail and (with the
``learn`` policy) its learned incompatibilities; nothing is shared between
sessions.

Outcomes are always a :class:`~depforge.core.report.Report` (``SOLVED``,
``FAILED`` or ``CANCELLED``). Exceptions are reserved for the session
being unable to continue:

- :class:`~depforge.exceptions.SourceUnavailable`: the source failed;
- :class:`~depforge.exceptions.ResolutionTooDeep`: backjump budget spent;
- :class:`~depforge.exceptions.InvariantViolation`: engine defect;
- :class:`~depforge.exceptions.ConfigError`: invalid configuration.

Typical usage::

    source = InMemorySource({...})
    resolver = Resolver(source, ResolverConfig(strategy="lowest"))
    report = await resolver.resolve(["a>=1.0", "b"])
    if report.is_solved:
        print(report.solution)
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Union

from depforge.constants import (
    CONFLICT_POLICIES,
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_CONFLICT_POLICY,
    DEFAULT_MAX_BACKJUMPS,
    DEFAULT_PREFER_LOCAL,
    DEFAULT_PREFETCH,
    DEFAULT_STRATEGY,
    STRATEGY_NAMES,
)
from depforge.core.backtracking import BacktrackingEngine
from depforge.core.pubgrub import PubGrubEngine
from depforge.core.report import Report
from depforge.core.reporter import BaseReporter
from depforge.core.session import ResolutionSession, ResolverState, SessionCancelled
from depforge.core.source import PackageSource
from depforge.core.source_cache import SourceCache
from depforge.core.strategy import Strategy, get_strategy
from depforge.exceptions import ConfigError, InvalidVersionSetError
from depforge.models.requirement import Requirement
from depforge.models.version_set import VersionSet
from depforge.utils.logger import SessionLoggerAdapter, get_logger

logger = get_logger("resolver")

__all__ = ["ResolverConfig", "Resolver", "ResolverState", "resolve", "resolve_sync"]

_session_ids = itertools.count(1)


@dataclass
class ResolverConfig:
    """Options of a resolution session.

    Attributes:
        strategy: ``highest``, ``lowest``, ``nearest``, ``dedup`` or
            ``cdcl`` (``highest`` driven by the learning engine).
        conflict_policy: ``backtrack`` (backjumping search) or ``learn``
            (PubGrub-style clause learning).
        max_backjumps: Conflict resolution budget; ``None`` for unlimited.
        prefer_local: Try project-local candidates first.
        pins: Package name to constraint text it is restricted to.
        prefetch: Fetch metadata of likely next decisions speculatively.
        concurrent_limit: Source calls in flight at once.
        timeout: Seconds after which the session is cancelled.
    """

    strategy: str = DEFAULT_STRATEGY
    conflict_policy: str = DEFAULT_CONFLICT_POLICY
    max_backjumps: Optional[int] = DEFAULT_MAX_BACKJUMPS
    prefer_local: bool = DEFAULT_PREFER_LOCAL
    pins: Dict[str, str] = field(default_factory=dict)
    prefetch: bool = DEFAULT_PREFETCH
    concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT
    timeout: Optional[float] = None

    @property
    def effective_policy(self) -> str:
        return "learn" if self.strategy == "cdcl" else self.conflict_policy

    def validate(self) -> None:
        """Reject unknown names and unsupported combinations.

        Raises:
            ConfigError: On any invalid option.
        """
        if self.strategy not in STRATEGY_NAMES:
            raise ConfigError(
                f"Unknown strategy '{self.strategy}'. Valid strategies: {', '.join(STRATEGY_NAMES)}",
                option="strategy",
            )
        if self.conflict_policy not in CONFLICT_POLICIES:
            raise ConfigError(
                f"Unknown conflict policy '{self.conflict_policy}'. "
                f"Valid policies: {', '.join(CONFLICT_POLICIES)}",
                option="conflict_policy",
            )
        if self.max_backjumps is not None and self.max_backjumps < 0:
            raise ConfigError("max_backjumps must not be negative", option="max_backjumps")
        if self.concurrent_limit < 1:
            raise ConfigError("concurrent_limit must be at least 1", option="concurrent_limit")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be positive", option="timeout")
        for name, spec in self.pins.items():
            try:
                VersionSet.parse(spec)
            except InvalidVersionSetError as exc:
                raise ConfigError(f"Invalid pin for {name}: {exc}", option="pins") from exc

        strategy = self.build_strategy()
        if self.effective_policy == "learn" and not strategy.supports_learning:
            raise ConfigError(
                f"Strategy '{self.strategy}' cannot be combined with the 'learn' policy",
                option="conflict_policy",
            )

    def build_strategy(self) -> Strategy:
        return get_strategy(self.strategy, prefer_local=self.prefer_local, pins=self.pins)


class Resolver:
    """Runs resolution sessions against one package source.

    Args:
        source: Package metadata provider.
        config: Session options; defaults to :class:`ResolverConfig()`.
        reporter: Optional progress observer.

    Raises:
        ConfigError: If *config* is invalid.
    """

    def __init__(
        self,
        source: PackageSource,
        config: Optional[ResolverConfig] = None,
        *,
        reporter: Optional[BaseReporter] = None,
    ) -> None:
        self.source = source
        self.config = config or ResolverConfig()
        self.config.validate()
        self.reporter = reporter or BaseReporter()
        self._state = ResolverState.IDLE
        self._cancel_event: Optional[asyncio.Event] = None
        self._cancel_requested = False
        self._session: Optional[ResolutionSession] = None

    @property
    def state(self) -> ResolverState:
        """State of the running (or most recent) session."""
        if self._session is not None:
            return self._session.state
        return self._state

    def cancel(self) -> None:
        """Request cooperative cancellation of the running session.

        The session stops at its next await point and reports
        ``CANCELLED``; in-flight source calls are discarded. Calling this
        before :meth:`resolve` cancels the next session immediately.
        """
        self._cancel_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def resolve(self, requirements: Iterable[Union[str, Requirement]]) -> Report:
        """Resolve the root *requirements*.

        Raises:
            SourceUnavailable: The source failed to answer.
            ResolutionTooDeep: The backjump budget was exhausted.
            InvariantViolation: The engine produced an unsound result.
            InvalidVersionSetError: A root requirement cannot be parsed.
        """
        roots = [Requirement.coerce(req) for req in requirements]
        config = self.config
        policy = config.effective_policy
        strategy = config.build_strategy()

        session_id = f"s{next(_session_ids)}"
        log = SessionLoggerAdapter(logger, session_id)
        self._cancel_event = asyncio.Event()
        if self._cancel_requested:
            self._cancel_event.set()

        cache = SourceCache(self.source, concurrent_limit=config.concurrent_limit)
        session = ResolutionSession(
            cache,
            strategy,
            self._cancel_event,
            reporter=self.reporter,
            logger=log,
            max_backjumps=config.max_backjumps,
            prefetch=config.prefetch,
            policy=policy,
        )
        self._session = session

        loop = asyncio.get_running_loop()
        timer = loop.call_later(config.timeout, self.cancel) if config.timeout else None

        log.info(
            "Resolving %d root requirement(s) with strategy=%s policy=%s",
            len(roots),
            strategy.name,
            policy,
        )
        self.reporter.starting(roots, strategy.name, policy)

        engine = PubGrubEngine(session) if policy == "learn" else BacktrackingEngine(session)
        try:
            report = await engine.run(roots)
        except SessionCancelled:
            session.transition(ResolverState.CANCELLED)
            log.info("Resolution cancelled")
            report = Report.cancelled(strategy=strategy.name, policy=policy, stats=session.stats)
        finally:
            if timer is not None:
                timer.cancel()
            session.stats.source_calls = cache.fetch_count
            await cache.aclose()
            self._state = session.state
            self._session = None
            self._cancel_event = None
            self._cancel_requested = False

        log.info(report.summary())
        self.reporter.ending(report)
        return report


async def resolve(
    source: PackageSource,
    requirements: Iterable[Union[str, Requirement]],
    config: Optional[ResolverConfig] = None,
    *,
    reporter: Optional[BaseReporter] = None,
) -> Report:
    """Run a single resolution session."""
    return await Resolver(source, config, reporter=reporter).resolve(requirements)


def resolve_sync(
    source: PackageSource,
    requirements: Iterable[Union[str, Requirement]],
    config: Optional[ResolverConfig] = None,
    *,
    reporter: Optional[BaseReporter] = None,
) -> Report:
    """Blocking wrapper around :func:`resolve` for scripts and the CLI."""
    return asyncio.run(resolve(source, requirements, config, reporter=reporter))
