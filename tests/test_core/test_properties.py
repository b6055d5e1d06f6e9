"""Property-based tests for the resolver (hypothesis).

Small random registries are resolved and the reports are checked against
a brute-force enumeration of every possible assignment.

Test Coverage:
- Determinism of repeated sessions
- Soundness of solved reports
- Completeness (FAILED only when no assignment exists)
- LowestFirst single-swap minimality
- Backjumps always go to a lower level
- DedupWithNesting solutions violate no requirement
"""

from __future__ import annotations

import itertools
from typing import Dict, List, Optional, Tuple

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from depforge.core.reporter import RecordingReporter
from depforge.core.resolver import ResolverConfig, resolve_sync
from depforge.core.source import InMemorySource
from depforge.models.version import Version
from depforge.models.version_set import VersionSet

NAMES = ["a", "b", "c", "d"]
VERSIONS = ["1.0", "2.0", "3.0"]
CONSTRAINTS = ["*", ">=2.0", "<2.0", "==1.0", "==3.0", ">=1.0,<3.0", "!=2.0"]

Dependency = Tuple[str, str]
Registry = Dict[str, Dict[str, List[Dependency]]]

PROPERTY_SETTINGS = settings(
    max_examples=60,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)


# ============================================================================
# Generators
# ============================================================================


@st.composite
def registries(draw) -> Tuple[Registry, List[Dependency]]:
    registry: Registry = {}
    for name in NAMES:
        versions = draw(st.lists(st.sampled_from(VERSIONS), min_size=1, max_size=3, unique=True))
        others = [n for n in NAMES if n != name]
        registry[name] = {
            version: draw(
                st.lists(
                    st.tuples(st.sampled_from(others), st.sampled_from(CONSTRAINTS)),
                    max_size=2,
                    unique_by=lambda dep: dep[0],
                )
            )
            for version in versions
        }
    roots = draw(
        st.lists(
            st.tuples(st.sampled_from(NAMES), st.sampled_from(CONSTRAINTS)),
            min_size=1,
            max_size=3,
            unique_by=lambda dep: dep[0],
        )
    )
    return registry, roots


# ============================================================================
# Helpers
# ============================================================================


def requirement(name: str, constraint: str) -> str:
    return name if constraint == "*" else f"{name}{constraint}"


def to_source(registry: Registry) -> InMemorySource:
    return InMemorySource(
        {
            name: {version: [requirement(*dep) for dep in deps] for version, deps in versions.items()}
            for name, versions in registry.items()
        }
    )


def run(registry: Registry, roots: List[Dependency], reporter=None, **options):
    config = ResolverConfig(max_backjumps=None, **options)
    return resolve_sync(
        to_source(registry), [requirement(*root) for root in roots], config, reporter=reporter
    )


def allows(constraint: str, version: str) -> bool:
    return VersionSet.parse(constraint).contains(version)


def is_valid(registry: Registry, roots: List[Dependency], assignment: Dict[str, str]) -> bool:
    """Every root and every selected version's requirements are satisfied."""
    for name, constraint in roots:
        if name not in assignment or not allows(constraint, assignment[name]):
            return False
    for name, version in assignment.items():
        for dep, constraint in registry[name][version]:
            if dep not in assignment or not allows(constraint, assignment[dep]):
                return False
    return True


def any_valid(registry: Registry, roots: List[Dependency]) -> bool:
    options = [[None] + list(registry[name]) for name in NAMES]
    for combo in itertools.product(*options):
        assignment = {name: version for name, version in zip(NAMES, combo) if version is not None}
        if is_valid(registry, roots, assignment):
            return True
    return False


def reachable(
    registry: Registry, roots: List[Dependency], assignment: Dict[str, str]
) -> Optional[Dict[str, str]]:
    """Restrict *assignment* to what the roots need, or None if something is missing."""
    pending = [name for name, _ in roots]
    seen: Dict[str, str] = {}
    while pending:
        name = pending.pop()
        if name in seen:
            continue
        if name not in assignment:
            return None
        seen[name] = assignment[name]
        pending.extend(dep for dep, _ in registry[name][assignment[name]])
    return seen


def as_strings(report) -> Dict[str, str]:
    return {label: str(version) for label, version in report.solution.items()}


# ============================================================================
# Properties
# ============================================================================


@pytest.mark.unit
class TestResolverProperties:
    """Resolver properties over random registries."""

    @pytest.mark.parametrize(
        "strategy, policy",
        [
            ("highest", "backtrack"),
            ("lowest", "backtrack"),
            ("nearest", "backtrack"),
            ("dedup", "backtrack"),
            ("highest", "learn"),
            ("lowest", "learn"),
        ],
    )
    @PROPERTY_SETTINGS
    @given(case=registries())
    def test_deterministic(self, strategy: str, policy: str, case) -> None:
        """Test two sessions on the same input produce equal reports."""
        registry, roots = case
        first = run(registry, roots, strategy=strategy, conflict_policy=policy)
        second = run(registry, roots, strategy=strategy, conflict_policy=policy)
        assert first == second

    @pytest.mark.parametrize(
        "strategy, policy",
        [
            ("highest", "backtrack"),
            ("lowest", "backtrack"),
            ("highest", "learn"),
            ("lowest", "learn"),
        ],
    )
    @PROPERTY_SETTINGS
    @given(case=registries())
    def test_sound_and_complete(self, strategy: str, policy: str, case) -> None:
        """Test SOLVED reports are valid and FAILED means nothing is valid."""
        registry, roots = case
        report = run(registry, roots, strategy=strategy, conflict_policy=policy)

        if report.is_solved:
            solution = as_strings(report)
            assert is_valid(registry, roots, solution)
            assert reachable(registry, roots, solution) == solution
        else:
            assert report.is_failed
            assert not any_valid(registry, roots)
            assert report.conflict_chain.has_conflicts()

    @PROPERTY_SETTINGS
    @given(case=registries())
    def test_lowest_first_single_swap_minimal(self, case) -> None:
        """Test no selected version can be lowered on its own."""
        registry, roots = case
        report = run(registry, roots, strategy="lowest", conflict_policy="backtrack")
        if not report.is_solved:
            return

        solution = as_strings(report)
        for name, version in solution.items():
            for lower in registry[name]:
                if Version(lower) >= Version(version):
                    continue
                swapped = reachable(registry, roots, dict(solution, **{name: lower}))
                assert swapped is None or not is_valid(registry, roots, swapped)

    @pytest.mark.parametrize("policy", ["backtrack", "learn"])
    @PROPERTY_SETTINGS
    @given(case=registries())
    def test_backjumps_go_down(self, policy: str, case) -> None:
        """Test every backjump targets a strictly lower decision level."""
        registry, roots = case
        reporter = RecordingReporter()
        run(registry, roots, reporter=reporter, conflict_policy=policy)
        for _, from_level, to_level in reporter.of_kind("backtracked"):
            assert to_level < from_level

    @PROPERTY_SETTINGS
    @given(case=registries())
    def test_dedup_solutions_violate_nothing(self, case) -> None:
        """Test every requirement edge of a dedup solution is satisfied."""
        registry, roots = case
        report = run(registry, roots, strategy="dedup")
        if report.is_solved:
            assert report.graph is not None
            assert report.graph.violations() == []
            for name, constraint in roots:
                assert allows(constraint, str(report.version_of(name)))
