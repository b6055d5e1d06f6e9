"""Unit tests for depforge.core.graph module.

Test Coverage:
- NodeKey labels and nested scopes
- Edge provenance (depth, discovery sequence, decision level)
- Decision trail: open, assign, retract and pop
- Undo of edges and mediations when a level is retracted
- Visibility lookup for nested placements
- Consistency checks and copy-on-fork
"""

from __future__ import annotations

import pytest

from depforge.core.graph import (
    ROOT,
    DecisionReason,
    DependencyGraph,
    EdgeState,
    NodeKey,
)
from depforge.exceptions import InvariantViolation
from depforge.models.conflict import ConflictLink
from depforge.models.requirement import Requirement
from depforge.models.version import Version


def req(text: str) -> Requirement:
    return Requirement.parse(text)


@pytest.fixture
def graph() -> DependencyGraph:
    """Graph with root requirements on ``a>=1.0`` and ``b``."""
    g = DependencyGraph()
    g.add_edge(ROOT, None, NodeKey("a"), req("a>=1.0"))
    g.add_edge(ROOT, None, NodeKey("b"), req("b"))
    return g


@pytest.mark.unit
class TestNodeKey:
    """Tests for NodeKey."""

    def test_shared_label(self) -> None:
        """Test a shared placement is labelled by its name."""
        assert NodeKey("a").label == "a"
        assert str(NodeKey("a")) == "a"

    def test_nested_label(self) -> None:
        """Test nested placements show their scope path."""
        assert NodeKey("c", ("a", "b")).label == "a/b/c"

    def test_child_scope(self) -> None:
        """Test the scope a node's own nested dependencies live in."""
        assert NodeKey("b", ("a",)).child_scope() == ("a", "b")
        assert ROOT.child_scope() == ()
        assert ROOT.is_root()


@pytest.mark.unit
class TestEdges:
    """Tests for edge registration."""

    def test_root_edges(self, graph: DependencyGraph) -> None:
        """Test root edges sit at depth 1 and level 0."""
        edge = graph.incoming(NodeKey("a"))[0]
        assert edge.depth == 1
        assert edge.level == 0
        assert edge.requester_label == "root"
        assert edge.to_link() == ConflictLink("a", ">=1.0", "root")

    def test_nodes_in_discovery_order(self, graph: DependencyGraph) -> None:
        """Test nodes are created on first reference, in order."""
        assert [n.name for n in graph.nodes()] == ["a", "b"]
        assert NodeKey("a") in graph
        assert len(graph) == 2

    def test_dependency_edge_depth(self, graph: DependencyGraph) -> None:
        """Test a dependency of a depth-1 node is at depth 2."""
        decision = graph.open_level(NodeKey("a"), [Version("1.0")])
        graph.assign(decision, Version("1.0"))
        edge = graph.add_edge(NodeKey("a"), Version("1.0"), NodeKey("c"), req("c<2"))
        assert edge.depth == 2
        assert edge.level == 1
        assert edge.requester_label == "a==1.0"
        assert graph.node(NodeKey("c")).depth == 2

    def test_allowed_intersects_active_edges(self, graph: DependencyGraph) -> None:
        """Test allowed() combines every active requirement."""
        graph.add_edge(ROOT, None, NodeKey("a"), req("a<2.0"))
        allowed = graph.allowed(NodeKey("a"))
        assert allowed.contains("1.5")
        assert not allowed.contains("2.0")
        assert not allowed.contains("0.9")

    def test_nearest_edge(self, graph: DependencyGraph) -> None:
        """Test the nearest edge is the one with the smallest (depth, sequence)."""
        decision = graph.open_level(NodeKey("b"), [Version("1.0")])
        graph.assign(decision, Version("1.0"))
        graph.add_edge(NodeKey("b"), Version("1.0"), NodeKey("a"), req("a<1.0"))
        nearest = graph.node(NodeKey("a")).nearest_edge()
        assert nearest is not None
        assert nearest.requester == ROOT


@pytest.mark.unit
class TestDecisionTrail:
    """Tests for open_level / assign / retract / pop_decision."""

    def test_open_and_assign(self, graph: DependencyGraph) -> None:
        """Test a frame is pushed and a candidate applied."""
        decision = graph.open_level(NodeKey("a"), [Version("2.0"), Version("1.0")])
        assert graph.level == 1
        assert decision.has_next()

        version = decision.next_candidate()
        graph.assign(decision, version)

        node = graph.node(NodeKey("a"))
        assert node.version == Version("2.0")
        assert node.level == 1
        assert graph.assignment() == [(NodeKey("a"), Version("2.0"), DecisionReason.DECIDED)]

    def test_open_unknown_node(self, graph: DependencyGraph) -> None:
        """Test deciding a node that does not exist is a defect."""
        with pytest.raises(InvariantViolation):
            graph.open_level(NodeKey("zzz"), [])

    def test_only_top_frame_can_change(self, graph: DependencyGraph) -> None:
        """Test assign and retract are restricted to the top frame."""
        first = graph.open_level(NodeKey("a"), [Version("1.0")])
        graph.assign(first, Version("1.0"))
        graph.open_level(NodeKey("b"), [Version("1.0")])

        with pytest.raises(InvariantViolation):
            graph.assign(first, Version("1.0"))
        with pytest.raises(InvariantViolation):
            graph.retract(first)

    def test_pop_empty_trail(self) -> None:
        """Test popping an empty trail is a defect."""
        with pytest.raises(InvariantViolation):
            DependencyGraph().pop_decision()

    def test_retract_removes_level_edges(self, graph: DependencyGraph) -> None:
        """Test retracting a level undoes its assignment and its edges."""
        decision = graph.open_level(NodeKey("a"), [Version("1.0")])
        graph.assign(decision, Version("1.0"))
        graph.add_edge(NodeKey("a"), Version("1.0"), NodeKey("c"), req("c"))
        graph.add_edge(NodeKey("a"), Version("1.0"), NodeKey("b"), req("b<3"))

        graph.retract(decision)

        assert graph.node(NodeKey("a")).version is None
        assert NodeKey("c") not in graph
        assert len(graph.incoming(NodeKey("b"))) == 1
        assert graph.level == 1

    def test_pop_removes_frame(self, graph: DependencyGraph) -> None:
        """Test pop_decision retracts and drops the frame."""
        decision = graph.open_level(NodeKey("a"), [Version("1.0")])
        graph.assign(decision, Version("1.0"))

        popped = graph.pop_decision()

        assert popped is decision
        assert graph.level == 0
        assert graph.top is None
        assert graph.assignment() == []

    def test_retract_restores_mediated_edges(self, graph: DependencyGraph) -> None:
        """Test mediations made by a level are undone with it."""
        edge = graph.incoming(NodeKey("a"))[0]
        decision = graph.open_level(NodeKey("a"), [Version("0.5")])
        graph.assign(decision, Version("0.5"))
        graph.mediate(edge, decision)

        assert edge.state is EdgeState.MEDIATED
        assert graph.mediated_edges() == [edge]

        graph.retract(decision)
        assert edge.state is EdgeState.ACTIVE
        assert graph.mediated_edges() == []

    def test_record_failure_keeps_lower_levels(self, graph: DependencyGraph) -> None:
        """Test a frame only remembers conflict levels below its own."""
        first = graph.open_level(NodeKey("a"), [Version("1.0")])
        graph.assign(first, Version("1.0"))
        second = graph.open_level(NodeKey("b"), [Version("1.0")])
        link = ConflictLink("b", "*", "root")

        second.record_failure({0, 1, 2, 3}, [link, link])

        assert second.conflict_levels == {0, 1}
        assert second.evidence == [link]

    def test_record_failure_keeps_first_origin(self, graph: DependencyGraph) -> None:
        """Test the package a failure started on survives later failures."""
        decision = graph.open_level(NodeKey("a"), [Version("1.0"), Version("2.0")])

        decision.record_failure({0}, [], "c")
        decision.record_failure({0}, [], "d")

        assert decision.origin == "c"


@pytest.mark.unit
class TestQueries:
    """Tests for visibility, violations and consistency."""

    def test_unassigned_required(self, graph: DependencyGraph) -> None:
        """Test undecided required nodes are listed in discovery order."""
        assert [n.name for n in graph.unassigned_required()] == ["a", "b"]
        decision = graph.open_level(NodeKey("a"), [Version("1.0")])
        graph.assign(decision, Version("1.0"))
        assert [n.name for n in graph.unassigned_required()] == ["b"]

    def test_visible_node_walks_up_scopes(self, graph: DependencyGraph) -> None:
        """Test a nested lookup falls back to enclosing and shared scopes."""
        decision = graph.open_level(NodeKey("a"), [Version("1.0")])
        graph.assign(decision, Version("1.0"))
        graph.add_edge(NodeKey("a"), Version("1.0"), NodeKey("b", ("a",)), req("b<1"))

        assert graph.visible_node("b", ("a",)).key == NodeKey("b", ("a",))
        assert graph.visible_node("b", ("a", "x")).key == NodeKey("b", ("a",))
        assert graph.visible_node("b", ("x",)).key == NodeKey("b")
        assert graph.visible_node("zzz", ()) is None

    def test_violations_and_consistency(self, graph: DependencyGraph) -> None:
        """Test a violated edge makes the graph inconsistent."""
        decision = graph.open_level(NodeKey("a"), [Version("0.5")])
        graph.assign(decision, Version("0.5"))
        other = graph.open_level(NodeKey("b"), [Version("1.0")])
        graph.assign(other, Version("1.0"))

        assert len(graph.violations()) == 1
        with pytest.raises(InvariantViolation):
            graph.assert_consistent()

    def test_undecided_is_inconsistent(self, graph: DependencyGraph) -> None:
        """Test required but undecided nodes fail the consistency check."""
        with pytest.raises(InvariantViolation) as exc_info:
            graph.assert_consistent()
        assert exc_info.value.details["first"] == "a"

    def test_consistent_solution(self, graph: DependencyGraph) -> None:
        """Test a complete, satisfying assignment passes."""
        for name in ("a", "b"):
            decision = graph.open_level(NodeKey(name), [Version("1.0")])
            graph.assign(decision, Version("1.0"))
        graph.assert_consistent()

    def test_copy_is_independent(self, graph: DependencyGraph) -> None:
        """Test mutations of a copy do not leak into the original."""
        fork = graph.copy()
        decision = fork.open_level(NodeKey("a"), [Version("1.0")])
        fork.assign(decision, Version("1.0"))

        assert graph.level == 0
        assert graph.node(NodeKey("a")).version is None
        assert fork.node(NodeKey("a")).version == Version("1.0")
