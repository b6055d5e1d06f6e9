"""Chronological search with conflict-directed backjumping.

The engine walks the dependency graph one decision level at a time:

1. **Propagate**: every undecided node is forward-checked against its
   listing. A node with no acceptable candidate is a conflict; a node with
   exactly one is decided immediately (*forced*), when the strategy allows
   out-of-turn decisions.
2. **Decide**: the strategy picks the next node and its first candidate.
   The candidate's requirements are registered as edges at the new level;
   an edge that excludes an already decided target is a conflict.
3. **Backjump**: every conflict carries the set of decision levels that
   produced it. The engine jumps to the deepest of those levels, skipping
   every level in between, and tries the next candidate there. A level
   that runs out of candidates passes its accumulated conflict set (plus
   the levels of the edges that made it necessary) further down.
   Reaching level 0 proves the roots unsatisfiable.

Nothing is remembered across jumps beyond the conflict sets of the levels
still on the trail; see :mod:`depforge.core.pubgrub` for the learning
engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Set

from depforge.constants import PIN_LABEL
from depforge.core.graph import ROOT, Decision, DecisionReason, DependencyGraph, PackageNode
from depforge.core.report import Report
from depforge.core.session import ResolutionSession, ResolverState
from depforge.models.conflict import ConflictChain, ConflictLink
from depforge.models.requirement import Requirement
from depforge.models.version import Version

__all__ = ["ConstraintConflict", "BacktrackingEngine", "explain_chain"]


@dataclass
class ConstraintConflict:
    """A violated requirement, with the decision levels responsible.

    Attributes:
        package: Package the conflict was detected on.
        levels: Decision levels whose choices together cause it.
        evidence: Requirement links explaining it.
        level: Decision level at which it was detected.
        origin: Package whose requirements first contradicted each other.
            Defaults to *package*; kept unchanged while the conflict is
            passed down through exhausted levels.
    """

    package: str
    levels: Set[int]
    evidence: List[ConflictLink] = field(default_factory=list)
    level: int = 0
    origin: str = ""

    def __post_init__(self) -> None:
        if not self.origin:
            self.origin = self.package

    @property
    def target_level(self) -> int:
        return max(self.levels, default=0)


class _Unsatisfiable(Exception):
    def __init__(self, conflict: ConstraintConflict) -> None:
        super().__init__(conflict.package)
        self.conflict = conflict


class BacktrackingEngine:
    """Resolution engine for the ``backtrack`` conflict policy."""

    policy = "backtrack"

    def __init__(self, session: ResolutionSession) -> None:
        self.session = session
        self.strategy = session.strategy
        self.graph = DependencyGraph()
        self.log = session.logger

    async def run(self, roots: List[Requirement]) -> Report:
        """Resolve *roots* to a ``SOLVED`` or ``FAILED`` report.

        Raises:
            SessionCancelled: Cancellation was requested.
            SourceUnavailable: The package source could not answer.
            ResolutionTooDeep: The backjump budget ran out.
            InvariantViolation: The final assignment is unsound.
        """
        session = self.session
        session.transition(ResolverState.PROPAGATING)
        await self._add_roots(roots)

        conflict: Optional[ConstraintConflict] = None
        try:
            while True:
                await session.checkpoint()
                if conflict is None:
                    conflict = await self._propagate()
                if conflict is not None:
                    conflict = await self._backjump(conflict)
                    continue
                node = self.strategy.pick_next(self.graph)
                if node is None:
                    break
                conflict = await self._open(node, DecisionReason.DECIDED)
        except _Unsatisfiable as exc:
            session.transition(ResolverState.FAILED)
            return self._failure(exc.conflict)

        self.graph.assert_consistent()
        session.transition(ResolverState.SOLVED)
        self.log.info("Solved %d placement(s) at level %d", len(self.graph), self.graph.level)
        return Report.solved(
            self.graph,
            strategy=self.strategy.name,
            policy=self.policy,
            stats=session.stats,
        )

    # ------------------------------------------------------------------
    # Building the graph
    # ------------------------------------------------------------------

    async def _add_roots(self, roots: List[Requirement]) -> None:
        await self.session.list_all(_unique_names(roots))
        for requirement in roots:
            listing = await self.session.versions(requirement.name)
            target = self.strategy.placement(requirement, ROOT, self.graph, listing)
            self.graph.add_edge(ROOT, None, target, requirement)
        self._speculate()

    async def _candidates(self, node: PackageNode) -> List[Version]:
        listing = await self.session.versions(node.name)
        return self.strategy.candidates(node, listing, self.graph, self.session.is_local)

    def _speculate(self) -> None:
        # Warm the cache with the requirements of each likely next choice
        if not self.session.prefetch:
            return
        cache = self.session.cache
        pairs = []
        for node in self.graph.unassigned_required():
            listing = cache.cached_versions(node.name)
            if not listing:
                continue
            candidates = self.strategy.candidates(node, listing, self.graph, cache.is_local)
            if candidates:
                pairs.append((node.name, candidates[0]))
        cache.prefetch_requirements(pairs)

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    async def _propagate(self) -> Optional[ConstraintConflict]:
        self.session.transition(ResolverState.PROPAGATING)
        while True:
            forced: Optional[PackageNode] = None
            for node in self.graph.unassigned_required():
                candidates = await self._candidates(node)
                if not candidates:
                    return self._no_candidates(node)
                if forced is None and len(candidates) == 1 and self.strategy.forces:
                    forced = node
            if forced is None:
                return None
            conflict = await self._open(forced, DecisionReason.FORCED)
            if conflict is not None:
                return conflict

    def _no_candidates(self, node: PackageNode) -> ConstraintConflict:
        edges = node.active_incoming()
        evidence = [edge.to_link() for edge in edges]
        narrowed = self.strategy.allowed_versions(node, self.graph)
        pin = self.strategy.pin_for(node.name)
        if pin is not None:
            evidence.append(ConflictLink(node.name, str(pin), PIN_LABEL))
            narrowed = narrowed.intersect(pin)
        if not narrowed.is_empty():
            evidence.append(ConflictLink(node.name, str(narrowed), None))
        conflict = ConstraintConflict(
            package=node.name,
            levels={edge.level for edge in node.incoming},
            evidence=evidence,
            level=self.graph.level,
        )
        self._report(conflict)
        return conflict

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def _open(self, node: PackageNode, reason: DecisionReason) -> Optional[ConstraintConflict]:
        if self.strategy.pin_for(node.name) is not None:
            reason = DecisionReason.PINNED
        candidates = await self._candidates(node)
        decision = self.graph.open_level(node.key, candidates, reason)
        return await self._advance(decision)

    async def _advance(self, decision: Decision) -> Optional[ConstraintConflict]:
        """Apply the next workable candidate of the top frame."""
        session = self.session
        node = self.graph.node(decision.key)

        while decision.has_next():
            version = decision.next_candidate()
            requirements = await session.requirements(node.name, version)
            if requirements is None:
                continue

            self.graph.assign(decision, version)
            session.stats.decisions += 1
            self._mediate_incoming(decision, node, version)
            conflict = await self._apply(decision, version, requirements)
            if conflict is None:
                session.transition(ResolverState.DECIDED)
                session.reporter.decided(
                    node.key.label, version, decision.level, decision.reason.value
                )
                self.log.debug(
                    "Level %d: %s==%s (%s)",
                    decision.level,
                    node.key.label,
                    version,
                    decision.reason.value,
                )
                self._speculate()
                return None

            self._report(conflict)
            if decision.level not in conflict.levels:
                # Other candidates here cannot fix it
                self.graph.pop_decision()
                return conflict
            decision.record_failure(conflict.levels, conflict.evidence, conflict.origin)
            self.graph.retract(decision)

        return self._exhausted(decision, node)

    def _mediate_incoming(self, decision: Decision, node: PackageNode, version: Version) -> None:
        for edge in node.active_incoming():
            if not edge.versions.contains(version) and self.strategy.mediates(edge, self.graph):
                self.graph.mediate(edge, decision)
                self.log.debug("Mediated %r", edge)

    async def _apply(
        self,
        decision: Decision,
        version: Version,
        requirements: List[Requirement],
    ) -> Optional[ConstraintConflict]:
        await self.session.list_all(_unique_names(requirements))
        for requirement in requirements:
            listing = await self.session.versions(requirement.name)
            target_key = self.strategy.placement(requirement, decision.key, self.graph, listing)
            edge = self.graph.add_edge(decision.key, version, target_key, requirement)
            target = self.graph.node(target_key)
            if target.version is None or requirement.versions.contains(target.version):
                continue
            if self.strategy.mediates(edge, self.graph):
                self.graph.mediate(edge)
                continue

            others = [e for e in target.active_incoming() if e is not edge]
            levels = {edge.level, target.level or 0}
            levels.update(e.level for e in others)
            return ConstraintConflict(
                package=target.name,
                levels=levels,
                evidence=[e.to_link() for e in others] + [edge.to_link()],
                level=decision.level,
            )
        return None

    def _exhausted(self, decision: Decision, node: PackageNode) -> ConstraintConflict:
        levels = set(decision.conflict_levels)
        levels.update(edge.level for edge in node.incoming)
        levels.discard(decision.level)

        evidence = [edge.to_link() for edge in node.active_incoming()]
        if decision.evidence:
            evidence.extend(link for link in decision.evidence if link not in evidence)
        else:
            allowed = self.strategy.allowed_versions(node, self.graph)
            evidence.append(ConflictLink(node.name, str(allowed), None))

        self.graph.pop_decision()
        self.log.debug("Level %d exhausted for %s", decision.level, node.key.label)
        return ConstraintConflict(
            package=node.name,
            levels=levels,
            evidence=evidence,
            level=decision.level,
            origin=decision.origin or node.name,
        )

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    async def _backjump(self, conflict: ConstraintConflict) -> Optional[ConstraintConflict]:
        session = self.session
        session.transition(ResolverState.CONFLICTED)
        target = conflict.target_level
        if target <= 0:
            raise _Unsatisfiable(conflict)

        session.note_backjump()
        session.transition(ResolverState.BACKTRACKING)
        while self.graph.level > target:
            self.graph.pop_decision()
        if conflict.level > target:
            session.reporter.backtracked(conflict.level, target)
        self.log.debug("Backjump from level %d to %d on %s", conflict.level, target, conflict.package)

        decision = self.graph.top
        assert decision is not None
        decision.record_failure(conflict.levels, conflict.evidence, conflict.origin)
        self.graph.retract(decision)
        return await self._advance(decision)

    def _report(self, conflict: ConstraintConflict) -> None:
        self.session.reporter.conflicted(conflict.evidence, conflict.level)

    def _failure(self, conflict: ConstraintConflict) -> Report:
        roots = [link for link in conflict.evidence if link.is_root()]
        rest = [link for link in conflict.evidence if not link.is_root()]
        chain = ConflictChain(roots + rest)
        self.log.info("Unsatisfiable: conflict on %s", conflict.origin)
        return Report.failed(
            chain,
            explain_chain(chain, conflict.origin),
            strategy=self.strategy.name,
            policy=self.policy,
            stats=self.session.stats,
        )


def explain_chain(chain: ConflictChain, package: str) -> str:
    """Render *chain* as a short linear narrative.

    Example::

        Because the root requires a any version,
        and a==1.0 requires c ==1.0,
        and the root requires b any version,
        and b==1.0 requires c ==2.0,
        no selection satisfies every requirement on c.
    """
    lines = chain.to_lines()
    if not lines:
        return f"No selection satisfies every requirement on {package}."
    text = [f"Because {lines[0]},"]
    text.extend(f"and {line}," for line in lines[1:])
    text.append(f"no selection satisfies every requirement on {package}.")
    return "\n".join(text)


def _unique_names(requirements: List[Requirement]) -> List[str]:
    names: List[str] = []
    for requirement in requirements:
        if requirement.name not in names:
            names.append(requirement.name)
    return names
