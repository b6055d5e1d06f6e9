"""Resolution outcome reported to callers.

A :class:`Report` is the only thing a resolution session hands back (apart
from aborting errors). It is one of:

- ``SOLVED``: :attr:`Report.entries` hold one :class:`LockEntry` per
  placement, in decision order;
- ``FAILED``: :attr:`Report.conflict_chain` and
  :attr:`Report.explanation` say why no assignment exists;
- ``CANCELLED``: the session was aborted; no solution, no chain.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from depforge.core.graph import DependencyGraph
from depforge.models.conflict import ConflictChain, ConflictLink
from depforge.models.requirement import normalize_name
from depforge.models.version import Version

__all__ = ["Outcome", "LockEntry", "ResolutionStats", "Report"]


class Outcome(Enum):
    SOLVED = "solved"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class LockEntry:
    """One selected placement.

    Attributes:
        name: Package name.
        version: Selected version.
        scope: Enclosing package names for nested placements, else ``()``.
        reason: ``"decided"``, ``"forced"`` or ``"pinned"``.
    """

    name: str
    version: Version
    scope: Tuple[str, ...] = ()
    reason: str = "decided"

    @property
    def label(self) -> str:
        return "/".join(self.scope + (self.name,))

    @property
    def is_nested(self) -> bool:
        return bool(self.scope)

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": str(self.version),
            "scope": list(self.scope),
            "reason": self.reason,
        }


@dataclass
class ResolutionStats:
    """Counters describing the work a session did."""

    decisions: int = 0
    backjumps: int = 0
    learned: int = 0
    source_calls: int = field(default=0, compare=False)

    def to_json(self) -> Dict[str, int]:
        return {
            "decisions": self.decisions,
            "backjumps": self.backjumps,
            "learned": self.learned,
            "source_calls": self.source_calls,
        }


@dataclass
class Report:
    """Result of one resolution session.

    Two reports compare equal when outcome, selections, conflict evidence,
    mediations and work counters match; the number of source calls and the
    attached graph are ignored.
    """

    outcome: Outcome
    strategy: str
    policy: str
    entries: List[LockEntry] = field(default_factory=list)
    conflict_chain: ConflictChain = field(default_factory=ConflictChain)
    explanation: str = ""
    mediated: List[ConflictLink] = field(default_factory=list)
    stats: ResolutionStats = field(default_factory=ResolutionStats)
    graph: Optional[DependencyGraph] = field(default=None, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def solved(
        cls,
        graph: DependencyGraph,
        *,
        strategy: str,
        policy: str,
        stats: ResolutionStats,
    ) -> "Report":
        """Build a ``SOLVED`` report from a consistent graph."""
        entries = [
            LockEntry(key.name, version, key.scope, reason.value)
            for key, version, reason in graph.assignment()
        ]
        mediated = [edge.to_link() for edge in graph.mediated_edges()]
        return cls(
            outcome=Outcome.SOLVED,
            strategy=strategy,
            policy=policy,
            entries=entries,
            mediated=mediated,
            stats=stats,
            graph=graph.copy(),
        )

    @classmethod
    def failed(
        cls,
        chain: ConflictChain,
        explanation: str,
        *,
        strategy: str,
        policy: str,
        stats: ResolutionStats,
    ) -> "Report":
        return cls(
            outcome=Outcome.FAILED,
            strategy=strategy,
            policy=policy,
            conflict_chain=chain,
            explanation=explanation,
            stats=stats,
        )

    @classmethod
    def cancelled(cls, *, strategy: str, policy: str, stats: ResolutionStats) -> "Report":
        return cls(outcome=Outcome.CANCELLED, strategy=strategy, policy=policy, stats=stats)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_solved(self) -> bool:
        return self.outcome is Outcome.SOLVED

    @property
    def is_failed(self) -> bool:
        return self.outcome is Outcome.FAILED

    @property
    def is_cancelled(self) -> bool:
        return self.outcome is Outcome.CANCELLED

    @property
    def solution(self) -> Dict[str, Version]:
        """Placement label to version, in decision order."""
        return {entry.label: entry.version for entry in self.entries}

    @property
    def decision_order(self) -> List[str]:
        return [entry.label for entry in self.entries]

    def version_of(self, name: str) -> Optional[Version]:
        """Version of the shared placement of *name*, if selected."""
        target = normalize_name(name)
        for entry in self.entries:
            if entry.name == target and not entry.scope:
                return entry.version
        return None

    def placements_of(self, name: str) -> List[LockEntry]:
        target = normalize_name(name)
        return [entry for entry in self.entries if entry.name == target]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_lock_dict(self) -> Dict[str, Any]:
        """Lock-file shaped mapping of the selections."""
        return {
            "strategy": self.strategy,
            "policy": self.policy,
            "packages": [entry.to_json() for entry in self.entries],
        }

    def to_json(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "strategy": self.strategy,
            "policy": self.policy,
            "solution": {label: str(version) for label, version in self.solution.items()},
            "decision_order": self.decision_order,
            "conflict_chain": self.conflict_chain.to_json(),
            "explanation": self.explanation,
            "mediated": [link.to_json() for link in self.mediated],
            "stats": self.stats.to_json(),
        }

    def dumps(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_json(), indent=indent)

    def summary(self) -> str:
        """One-line human readable outcome."""
        if self.is_solved:
            nested = sum(1 for entry in self.entries if entry.is_nested)
            text = f"Resolved {len(self.entries)} package(s) with '{self.strategy}'"
            if nested:
                text += f" ({nested} nested)"
            if self.mediated:
                text += f", {len(self.mediated)} requirement(s) mediated"
            return text
        if self.is_failed:
            packages = ", ".join(self.conflict_chain.packages()) or "unknown"
            return f"Resolution failed: conflict involving {packages}"
        return "Resolution cancelled"
