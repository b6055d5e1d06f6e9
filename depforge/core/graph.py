"""Dependency graph and decision trail.

The graph is a decision log layered over the logical requirement graph:

- :class:`PackageNode`: one placement of a package. Its identity is a
  :class:`NodeKey` ``(name, scope)``; every strategy except dedup-with-
  nesting only ever uses the shared scope ``()``.
- :class:`Edge`: one requirement declared by a requester (a decided node,
  or the virtual root) on a target node, with the provenance needed to
  explain conflicts: BFS depth, discovery sequence and the decision level
  that created it.
- :class:`Decision`: one frame of the decision trail: the node being
  decided, its ordered candidates, the candidate currently applied and the
  conflict evidence gathered while trying candidates.

Requirement edges may form cycles (two packages can require each other);
resolution *order* stays acyclic because decisions are stacked. Popping a
frame undoes exactly what that level did: the assignment, every edge the
level registered and every mediation it recorded. The trail is the only
undo mechanism.

Thread safety: this class is NOT thread-safe. A graph belongs to a single
resolution session; speculative branches must work on :meth:`copy`.
"""

from __future__ import annotations

import copy as _copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set, Tuple

from depforge.constants import ROOT_LABEL
from depforge.exceptions import InvariantViolation
from depforge.models.conflict import ConflictLink
from depforge.models.requirement import Requirement
from depforge.models.version import Version
from depforge.models.version_set import VersionSet

__all__ = [
    "ROOT",
    "NodeKey",
    "Edge",
    "EdgeState",
    "PackageNode",
    "Decision",
    "DecisionReason",
    "DependencyGraph",
]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class NodeKey:
    """Identity of a placement: package name plus placement scope.

    ``scope`` is the chain of package names the node is nested under;
    ``()`` is the shared (hoisted) placement.
    """

    name: str
    scope: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """``"name"`` for shared nodes, ``"parent/child/name"`` when nested."""
        return "/".join(self.scope + (self.name,))

    def is_root(self) -> bool:
        return self == ROOT

    def child_scope(self) -> Tuple[str, ...]:
        """Scope in which this node's own nested dependencies live."""
        if self.is_root():
            return ()
        return self.scope + (self.name,)

    def __str__(self) -> str:
        return self.label


#: Virtual requester of the root requirements.
ROOT = NodeKey("<root>")


# ---------------------------------------------------------------------------
# Edges, nodes, decisions
# ---------------------------------------------------------------------------


class EdgeState(Enum):
    ACTIVE = "active"
    #: Overridden by a nearer declaration (nearest-wins); not a constraint.
    MEDIATED = "mediated"


class DecisionReason(Enum):
    DECIDED = "decided"
    FORCED = "forced"
    PINNED = "pinned"


@dataclass(eq=False)
class Edge:
    """A requirement from *requester* on *target*."""

    requester: NodeKey
    requester_version: Optional[Version]
    target: NodeKey
    requirement: Requirement
    depth: int
    sequence: int
    level: int
    state: EdgeState = EdgeState.ACTIVE

    @property
    def versions(self) -> VersionSet:
        return self.requirement.versions

    @property
    def is_active(self) -> bool:
        return self.state is EdgeState.ACTIVE

    @property
    def requester_label(self) -> str:
        if self.requester.is_root():
            return ROOT_LABEL
        return f"{self.requester.label}=={self.requester_version}"

    def nearness(self) -> Tuple[int, int]:
        """Sort key: smaller is nearer to the root."""
        return (self.depth, self.sequence)

    def to_link(self) -> ConflictLink:
        return ConflictLink(self.target.name, str(self.versions), self.requester_label)

    def __repr__(self) -> str:
        return (
            f"Edge({self.requester_label} -> {self.target.label} "
            f"{self.versions.canonical()}, depth={self.depth}, level={self.level}, "
            f"{self.state.value})"
        )


@dataclass(eq=False)
class PackageNode:
    """One placement of a package and its current decision state."""

    key: NodeKey
    discovered: int
    incoming: List[Edge] = field(default_factory=list)
    version: Optional[Version] = None
    level: Optional[int] = None

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def is_assigned(self) -> bool:
        return self.version is not None

    def active_incoming(self) -> List[Edge]:
        return [edge for edge in self.incoming if edge.is_active]

    @property
    def depth(self) -> int:
        """BFS distance from the root through the nearest active edge."""
        active = self.active_incoming()
        return min(edge.depth for edge in active) if active else 0

    def nearest_edge(self) -> Optional[Edge]:
        active = self.active_incoming()
        return min(active, key=Edge.nearness) if active else None


@dataclass(eq=False)
class Decision:
    """One frame of the decision trail."""

    key: NodeKey
    level: int
    reason: DecisionReason
    candidates: List[Version]
    cursor: int = 0
    version: Optional[Version] = None
    conflict_levels: Set[int] = field(default_factory=set)
    evidence: List[ConflictLink] = field(default_factory=list)
    origin: Optional[str] = None
    mediated: List[Edge] = field(default_factory=list)

    def has_next(self) -> bool:
        return self.cursor < len(self.candidates)

    def next_candidate(self) -> Version:
        version = self.candidates[self.cursor]
        self.cursor += 1
        return version

    def record_failure(
        self,
        levels: Set[int],
        evidence: List[ConflictLink],
        origin: Optional[str] = None,
    ) -> None:
        """Remember why the current candidate failed (for later backjumps).

        *origin* is the package the failure was first detected on; the
        first one recorded is kept.
        """
        if self.origin is None:
            self.origin = origin
        self.conflict_levels.update(lvl for lvl in levels if lvl < self.level)
        for link in evidence:
            if link not in self.evidence:
                self.evidence.append(link)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class DependencyGraph:
    """Nodes, requirement edges and the decision trail of one session."""

    def __init__(self) -> None:
        self._nodes: Dict[NodeKey, PackageNode] = {}
        self._edges: List[Edge] = []
        self._trail: List[Decision] = []
        self._sequence: int = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def level(self) -> int:
        """Current decision level; ``0`` means only root edges exist."""
        return len(self._trail)

    @property
    def trail(self) -> List[Decision]:
        return list(self._trail)

    @property
    def top(self) -> Optional[Decision]:
        return self._trail[-1] if self._trail else None

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges)

    def nodes(self) -> List[PackageNode]:
        """Nodes in discovery order."""
        return list(self._nodes.values())

    def get(self, key: NodeKey) -> Optional[PackageNode]:
        return self._nodes.get(key)

    def node(self, key: NodeKey) -> PackageNode:
        return self._nodes[key]

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __iter__(self) -> Iterator[PackageNode]:
        return iter(list(self._nodes.values()))

    def __len__(self) -> int:
        return len(self._nodes)

    def incoming(self, key: NodeKey) -> List[Edge]:
        node = self._nodes.get(key)
        return node.active_incoming() if node else []

    def allowed(self, key: NodeKey) -> VersionSet:
        """Intersection of every active requirement on *key*."""
        allowed = VersionSet.any()
        for edge in self.incoming(key):
            allowed = allowed.intersect(edge.versions)
        return allowed

    def requester_depth(self, requester: NodeKey) -> int:
        if requester.is_root():
            return 0
        node = self._nodes.get(requester)
        return node.depth if node else 0

    def unassigned_required(self) -> List[PackageNode]:
        """Undecided nodes that something still requires, in discovery order."""
        return [
            node
            for node in self._nodes.values()
            if not node.is_assigned and node.active_incoming()
        ]

    def visible_node(self, name: str, scope: Tuple[str, ...]) -> Optional[PackageNode]:
        """Nearest node called *name* looking from *scope* up to the top.

        Mirrors how nested installs resolve a dependency: the requester's
        own scope first, then each enclosing scope, then the shared one.
        """
        for depth in range(len(scope), -1, -1):
            node = self._nodes.get(NodeKey(name, scope[:depth]))
            if node is not None and node.active_incoming():
                return node
        return None

    def violations(self) -> List[Edge]:
        """Active edges whose assigned target lies outside the edge's set."""
        return [
            edge
            for edge in self._edges
            if edge.is_active
            and self._nodes[edge.target].version is not None
            and not edge.versions.contains(self._nodes[edge.target].version)
        ]

    def mediated_edges(self) -> List[Edge]:
        return [edge for edge in self._edges if edge.state is EdgeState.MEDIATED]

    def assignment(self) -> List[Tuple[NodeKey, Version, DecisionReason]]:
        """Decided nodes in decision order."""
        result: List[Tuple[NodeKey, Version, DecisionReason]] = []
        for decision in self._trail:
            if decision.version is not None:
                result.append((decision.key, decision.version, decision.reason))
        return result

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_edge(
        self,
        requester: NodeKey,
        requester_version: Optional[Version],
        target: NodeKey,
        requirement: Requirement,
    ) -> Edge:
        """Register a requirement edge at the current decision level.

        The target node is created on first reference.
        """
        self._sequence += 1
        node = self._nodes.get(target)
        if node is None:
            node = PackageNode(key=target, discovered=self._sequence)
            self._nodes[target] = node

        edge = Edge(
            requester=requester,
            requester_version=requester_version,
            target=target,
            requirement=requirement,
            depth=self.requester_depth(requester) + 1,
            sequence=self._sequence,
            level=self.level,
        )
        node.incoming.append(edge)
        self._edges.append(edge)
        return edge

    def mediate(self, edge: Edge, decision: Optional[Decision] = None) -> None:
        """Deactivate *edge*; undone when *decision* (if given) is retracted."""
        edge.state = EdgeState.MEDIATED
        if decision is not None:
            decision.mediated.append(edge)

    def open_level(
        self,
        key: NodeKey,
        candidates: List[Version],
        reason: DecisionReason = DecisionReason.DECIDED,
    ) -> Decision:
        """Push a new frame for *key*; no candidate is applied yet."""
        if key not in self._nodes:
            raise InvariantViolation(f"Cannot decide unknown node {key.label}")
        decision = Decision(
            key=key,
            level=self.level + 1,
            reason=reason,
            candidates=list(candidates),
        )
        self._trail.append(decision)
        return decision

    def assign(self, decision: Decision, version: Version) -> None:
        """Apply *version* as the current candidate of the top frame."""
        if decision is not self.top:
            raise InvariantViolation("Only the top decision can be assigned")
        node = self._nodes[decision.key]
        decision.version = version
        node.version = version
        node.level = decision.level

    def retract(self, decision: Decision) -> None:
        """Undo the candidate currently applied by the top frame.

        Removes the edges registered at this level, restores mediated
        edges and clears the node's assignment; the frame stays so that
        remaining candidates can be tried.
        """
        if decision is not self.top:
            raise InvariantViolation("Only the top decision can be retracted")

        doomed = [edge for edge in self._edges if edge.level == decision.level]
        if doomed:
            doomed_ids = {id(edge) for edge in doomed}
            self._edges = [edge for edge in self._edges if id(edge) not in doomed_ids]
            for edge in doomed:
                target = self._nodes.get(edge.target)
                if target is not None:
                    target.incoming = [e for e in target.incoming if id(e) not in doomed_ids]

        for edge in decision.mediated:
            edge.state = EdgeState.ACTIVE
        decision.mediated.clear()

        node = self._nodes.get(decision.key)
        if node is not None:
            node.version = None
            node.level = None
        decision.version = None
        self._prune()

    def pop_decision(self) -> Decision:
        """Retract and remove the top frame."""
        decision = self.top
        if decision is None:
            raise InvariantViolation("Decision trail is empty")
        self.retract(decision)
        self._trail.pop()
        return decision

    def _prune(self) -> None:
        # Drop placements nothing refers to any more
        for key in [k for k, n in self._nodes.items() if not n.incoming and n.version is None]:
            del self._nodes[key]

    # ------------------------------------------------------------------
    # Invariants & forking
    # ------------------------------------------------------------------

    def assert_consistent(self) -> None:
        """Raise :class:`InvariantViolation` unless the graph is a solution."""
        broken = self.violations()
        if broken:
            raise InvariantViolation(
                f"Assignment violates {len(broken)} requirement(s)",
                {"first": repr(broken[0])},
            )
        undecided = self.unassigned_required()
        if undecided:
            raise InvariantViolation(
                f"{len(undecided)} required package(s) left undecided",
                {"first": undecided[0].key.label},
            )

    def copy(self) -> "DependencyGraph":
        """Independent copy of the whole decision state (copy-on-fork)."""
        return _copy.deepcopy(self)
