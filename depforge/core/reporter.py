"""Observer hooks for resolution progress.

Subclass :class:`BaseReporter` and pass an instance to
:class:`~depforge.core.resolver.Resolver` to watch a session. Every hook is
a no-op by default; hooks are called synchronously from the engine and
must not raise.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

from depforge.models.conflict import ConflictLink
from depforge.models.requirement import Requirement
from depforge.models.version import Version

if TYPE_CHECKING:
    from depforge.core.report import Report
    from depforge.core.session import ResolverState

__all__ = ["BaseReporter", "RecordingReporter"]


class BaseReporter:
    """Delegate class to provide progress reporting for the resolver."""

    def starting(self, roots: Sequence[Requirement], strategy: str, policy: str) -> None:
        """Called before the first decision."""

    def state_changed(self, old: "ResolverState", new: "ResolverState") -> None:
        """Called on every state machine transition."""

    def decided(self, label: str, version: Version, level: int, reason: str) -> None:
        """Called when a version is assigned at decision *level*."""

    def conflicted(self, evidence: Sequence[ConflictLink], level: int) -> None:
        """Called when the assignment at *level* violates a requirement."""

    def backtracked(self, from_level: int, to_level: int) -> None:
        """Called when the decision trail shrinks from *from_level*."""

    def learned(self, description: str) -> None:
        """Called when the learning engine derives a new incompatibility."""

    def ending(self, report: "Report") -> None:
        """Called once with the final report (never on errors)."""


class RecordingReporter(BaseReporter):
    """Reporter that keeps every event as a tuple, in order.

    Useful for tracing a session after the fact::

        reporter = RecordingReporter()
        await Resolver(source, reporter=reporter).resolve(["a"])
        for event in reporter.events:
            print(event)
    """

    def __init__(self) -> None:
        self.events: List[tuple] = []

    def starting(self, roots: Sequence[Requirement], strategy: str, policy: str) -> None:
        self.events.append(("starting", [str(r) for r in roots], strategy, policy))

    def state_changed(self, old: "ResolverState", new: "ResolverState") -> None:
        self.events.append(("state", old.value, new.value))

    def decided(self, label: str, version: Version, level: int, reason: str) -> None:
        self.events.append(("decided", label, str(version), level, reason))

    def conflicted(self, evidence: Sequence[ConflictLink], level: int) -> None:
        self.events.append(("conflicted", level, [str(link) for link in evidence]))

    def backtracked(self, from_level: int, to_level: int) -> None:
        self.events.append(("backtracked", from_level, to_level))

    def learned(self, description: str) -> None:
        self.events.append(("learned", description))

    def ending(self, report: "Report") -> None:
        self.events.append(("ending", report.outcome.value))

    def of_kind(self, kind: str) -> List[tuple]:
        return [event for event in self.events if event[0] == kind]
