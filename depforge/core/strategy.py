"""Candidate selection policies.

A strategy decides, for the engine, *which* package to decide next,
*which order* its candidate versions are tried in and *where* a new
requirement is placed in the graph. It never touches the source or the
decision trail itself; engines feed it listings and graph state.

Available strategies:

- :class:`HighestFirst`: newest acceptable version first (``highest``).
- :class:`LowestFirst`: oldest acceptable version first (``lowest``);
  with exhaustive search this yields the minimal selection.
- :class:`NearestWins`: the declaration nearest to the root governs;
  farther incompatible declarations are mediated, not conflicts
  (``nearest``).
- :class:`DedupWithNesting`: compatible requirements share one placement,
  incompatible ones get a nested copy under their requester (``dedup``).

Common options (all strategies):

- ``prefer_local``: project-local candidates are tried before registry
  ones, keeping the strategy's order within each group;
- ``pins``: ``{name: VersionSet}``; a pinned package only considers the
  pinned versions, and requirements that exclude the pin still conflict.
"""

from __future__ import annotations

from abc import ABC
from typing import Callable, ClassVar, Dict, List, Mapping, Optional, Type, Union

from depforge.constants import MAX_NESTING_DEPTH
from depforge.core.graph import DependencyGraph, Edge, NodeKey, PackageNode
from depforge.exceptions import ConfigError, InvariantViolation
from depforge.models.requirement import Requirement, normalize_name
from depforge.models.version import Version, sort_versions
from depforge.models.version_set import VersionSet

__all__ = [
    "Strategy",
    "HighestFirst",
    "LowestFirst",
    "NearestWins",
    "DedupWithNesting",
    "STRATEGIES",
    "get_strategy",
]

LocalPredicate = Callable[[str, Version], bool]


def _never_local(name: str, version: Version) -> bool:
    return False


class Strategy(ABC):
    """Base class for candidate selection policies.

    Args:
        prefer_local: Try project-local candidates first.
        pins: Package name to the versions it is restricted to.
    """

    name: ClassVar[str] = ""
    #: Direction of the precedence order candidates are tried in.
    descending: ClassVar[bool] = True
    #: Whether a node with exactly one candidate may be decided out of turn.
    forces: ClassVar[bool] = True
    #: Whether the conflict-learning engine can drive this strategy.
    supports_learning: ClassVar[bool] = True

    def __init__(
        self,
        *,
        prefer_local: bool = False,
        pins: Optional[Mapping[str, Union[str, VersionSet]]] = None,
    ) -> None:
        self.prefer_local = prefer_local
        self.pins: Dict[str, VersionSet] = {
            normalize_name(name): VersionSet.parse(spec) for name, spec in (pins or {}).items()
        }

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def order(
        self,
        versions: List[Version],
        name: str = "",
        is_local: LocalPredicate = _never_local,
    ) -> List[Version]:
        """Return *versions* in the order they should be tried.

        Raises:
            InvariantViolation: If the sorted order is not monotone, which
                means version comparison is not a total order.
        """
        ordered = sort_versions(versions, descending=self.descending)
        _check_monotone(ordered, self.descending)
        if self.prefer_local:
            local = [v for v in ordered if is_local(name, v)]
            ordered = local + [v for v in ordered if not is_local(name, v)]
        return ordered

    def pin_for(self, name: str) -> Optional[VersionSet]:
        return self.pins.get(normalize_name(name))

    def filter_candidates(
        self,
        name: str,
        allowed: VersionSet,
        listing: List[Version],
        is_local: LocalPredicate = _never_local,
    ) -> List[Version]:
        """Ordered candidates of *name* within *allowed* (and its pin)."""
        pool = allowed.filter(listing)
        pin = self.pin_for(name)
        if pin is not None:
            pool = pin.filter(pool)
        return self.order(pool, name, is_local)

    def candidates(
        self,
        node: PackageNode,
        listing: List[Version],
        graph: DependencyGraph,
        is_local: LocalPredicate = _never_local,
    ) -> List[Version]:
        """Ordered candidates for *node* given the current graph."""
        return self.filter_candidates(
            node.name, self.allowed_versions(node, graph), listing, is_local
        )

    # ------------------------------------------------------------------
    # Graph policy hooks
    # ------------------------------------------------------------------

    def allowed_versions(self, node: PackageNode, graph: DependencyGraph) -> VersionSet:
        """Versions *node* may take: every active requirement must hold."""
        return graph.allowed(node.key)

    def pick_next(self, graph: DependencyGraph) -> Optional[PackageNode]:
        """Next undecided node, or ``None`` when every requirement is met."""
        pending = graph.unassigned_required()
        return pending[0] if pending else None

    def placement(
        self,
        requirement: Requirement,
        requester: NodeKey,
        graph: DependencyGraph,
        listing: List[Version],
    ) -> NodeKey:
        """Node a new requirement from *requester* attaches to."""
        return NodeKey(requirement.name)

    def mediates(self, edge: Edge, graph: DependencyGraph) -> bool:
        """Whether an edge excluding its target's version is overridden."""
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(prefer_local={self.prefer_local}, pins={len(self.pins)})"


def _check_monotone(ordered: List[Version], descending: bool) -> None:
    for left, right in zip(ordered, ordered[1:]):
        broken = left.precedence < right.precedence if descending else left.precedence > right.precedence
        if broken:
            raise InvariantViolation(
                "Candidate order is not monotone",
                {"left": str(left), "right": str(right)},
            )


class HighestFirst(Strategy):
    """Newest acceptable version first."""

    name = "highest"
    descending = True


class LowestFirst(Strategy):
    """Oldest acceptable version first (minimal version selection)."""

    name = "lowest"
    descending = False


class NearestWins(Strategy):
    """Nearest declaration governs each package.

    Packages are decided in breadth-first order of ``(depth, discovery)``,
    so by the time a package is decided every declaration at its depth or
    nearer is known. The nearest one (ties: first discovered) picks the
    highest version in its range; any other declaration that excludes that
    version is mediated and reported rather than treated as a conflict.
    """

    name = "nearest"
    descending = True
    forces = False
    supports_learning = False

    def allowed_versions(self, node: PackageNode, graph: DependencyGraph) -> VersionSet:
        nearest = node.nearest_edge()
        return nearest.versions if nearest is not None else VersionSet.any()

    def pick_next(self, graph: DependencyGraph) -> Optional[PackageNode]:
        pending = graph.unassigned_required()
        if not pending:
            return None
        return min(pending, key=lambda node: (node.depth, node.discovered))

    def mediates(self, edge: Edge, graph: DependencyGraph) -> bool:
        node = graph.get(edge.target)
        if node is None:
            return False
        return node.nearest_edge() is not edge


class DedupWithNesting(Strategy):
    """Share compatible placements, nest incompatible ones.

    A requirement joins the nearest visible placement of its package when
    that placement's accepted versions, narrowed by the new requirement,
    still contain a listed candidate. Otherwise a nested placement is
    created under the requester. Nesting stops at ``MAX_NESTING_DEPTH``,
    past which requirements share and may conflict.
    """

    name = "dedup"
    descending = True
    supports_learning = False

    def placement(
        self,
        requirement: Requirement,
        requester: NodeKey,
        graph: DependencyGraph,
        listing: List[Version],
    ) -> NodeKey:
        scope = requester.child_scope()
        visible = graph.visible_node(requirement.name, scope)
        if visible is None:
            return NodeKey(requirement.name)

        narrowed = graph.allowed(visible.key).intersect(requirement.versions)
        if narrowed.filter(listing):
            return visible.key

        nested = NodeKey(requirement.name, scope)
        if nested == visible.key or len(scope) > MAX_NESTING_DEPTH:
            return visible.key
        return nested


STRATEGIES: Dict[str, Type[Strategy]] = {
    "highest": HighestFirst,
    "lowest": LowestFirst,
    "nearest": NearestWins,
    "dedup": DedupWithNesting,
    # conflict-driven learning over newest-first ordering
    "cdcl": HighestFirst,
}


def get_strategy(
    name: str,
    *,
    prefer_local: bool = False,
    pins: Optional[Mapping[str, Union[str, VersionSet]]] = None,
) -> Strategy:
    """Instantiate a strategy by its configuration name.

    Raises:
        ConfigError: If *name* is not a known strategy.

    Example::

        >>> get_strategy("lowest").descending
        False
    """
    try:
        cls = STRATEGIES[name]
    except KeyError:
        raise ConfigError(
            f"Unknown strategy '{name}'. Valid strategies: {', '.join(STRATEGIES)}",
            option="strategy",
        ) from None
    return cls(prefer_local=prefer_local, pins=pins)
