"""Per-resolution session state shared by the engines.

A :class:`ResolutionSession` bundles what one ``resolve()`` call owns: the
metadata cache, the strategy, the cancellation event, the work counters and
the state machine. Engines never await the source directly; they go through
:meth:`ResolutionSession.versions` / :meth:`ResolutionSession.requirements`,
which race every source call against cancellation.

State machine::

    IDLE -> PROPAGATING -> DECIDED -> PROPAGATING ... -> SOLVED
                      \\-> CONFLICTED -> BACKTRACKING -> DECIDED
                                                  \\-> FAILED
    any non-terminal state -> CANCELLED
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, List, Optional, TypeVar

from depforge.core.report import ResolutionStats
from depforge.core.reporter import BaseReporter
from depforge.core.source_cache import SourceCache
from depforge.core.strategy import Strategy
from depforge.exceptions import ResolutionTooDeep
from depforge.models.requirement import Requirement
from depforge.models.version import Version

__all__ = ["ResolverState", "SessionCancelled", "ResolutionSession"]

T = TypeVar("T")


class ResolverState(Enum):
    IDLE = "idle"
    PROPAGATING = "propagating"
    DECIDED = "decided"
    CONFLICTED = "conflicted"
    BACKTRACKING = "backtracking"
    SOLVED = "solved"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ResolverState.SOLVED, ResolverState.FAILED, ResolverState.CANCELLED)


class SessionCancelled(Exception):
    """Internal signal unwinding an engine after cancellation."""


class ResolutionSession:
    """Everything a single resolution owns.

    Args:
        cache: Session metadata cache.
        strategy: Candidate selection policy.
        cancel_event: Set to request cooperative cancellation.
        reporter: Progress observer.
        logger: Session-scoped logger (adapter carrying the session id).
        max_backjumps: Conflict resolution budget; ``None`` is unlimited.
        prefetch: Whether to fetch metadata speculatively.
    """

    def __init__(
        self,
        cache: SourceCache,
        strategy: Strategy,
        cancel_event: asyncio.Event,
        *,
        reporter: Optional[BaseReporter] = None,
        logger: Optional[logging.LoggerAdapter] = None,
        max_backjumps: Optional[int] = None,
        prefetch: bool = True,
        policy: str = "backtrack",
    ) -> None:
        self.cache = cache
        self.strategy = strategy
        self.cancel_event = cancel_event
        self.reporter = reporter or BaseReporter()
        self.logger = logger or logging.LoggerAdapter(logging.getLogger("depforge.session"), {})
        self.max_backjumps = max_backjumps
        self.prefetch = prefetch
        self.policy = policy
        self.stats = ResolutionStats()
        self.state = ResolverState.IDLE

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition(self, new: ResolverState) -> None:
        old = self.state
        if old is new:
            return
        if old.is_terminal:
            raise RuntimeError(f"Session already finished ({old.value})")
        self.state = new
        self.reporter.state_changed(old, new)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    async def checkpoint(self) -> None:
        """Yield to the event loop and unwind if cancellation was requested."""
        # Give timers (timeouts) and other tasks a chance to run
        await asyncio.sleep(0)
        if self.cancel_event.is_set():
            raise SessionCancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless cancellation wins the race.

        Cancellation takes precedence: once the event is set, any result
        or failure of the awaited call is discarded.
        """
        if self.cancel_event.is_set():
            _close(awaitable)
            raise SessionCancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if self.cancel_event.is_set():
            if task.done():
                if not task.cancelled():
                    task.exception()
            else:
                task.cancel()
            raise SessionCancelled()
        return task.result()

    # ------------------------------------------------------------------
    # Source access
    # ------------------------------------------------------------------

    async def versions(self, name: str) -> List[Version]:
        return await self.guard(self.cache.versions(name))

    async def requirements(self, name: str, version: Version) -> Optional[List[Requirement]]:
        return await self.guard(self.cache.requirements(name, version))

    async def list_all(self, names: List[str]) -> None:
        """Make sure every listing in *names* is available."""
        self.cache.prefetch(names)
        for name in names:
            await self.versions(name)

    def is_local(self, name: str, version: Version) -> bool:
        return self.cache.is_local(name, version)

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def note_backjump(self) -> None:
        """Count a conflict resolution step.

        Raises:
            ResolutionTooDeep: When the budget is exhausted.
        """
        self.stats.backjumps += 1
        if self.max_backjumps is not None and self.stats.backjumps > self.max_backjumps:
            raise ResolutionTooDeep(
                f"Gave up after {self.max_backjumps} backjumps",
                max_backjumps=self.max_backjumps,
            )


def _close(awaitable: Awaitable[Any]) -> None:
    # An un-awaited coroutine would otherwise trigger a RuntimeWarning
    close = getattr(awaitable, "close", None)
    if close is not None:
        close()
