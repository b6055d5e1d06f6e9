"""Conflict-driven clause learning (PubGrub).

The learning engine reasons about *incompatibilities*: sets of terms that
cannot all hold at once. A term is a package with a :class:`VersionSet`,
positive ("some version in the set is selected") or negative ("no version
in the set is selected").

Every package fact enters as an external incompatibility:

- the root must be selected,
- ``a==1.0`` depends on ``b>=2`` becomes ``{a ==1.0, not b >=2}``,
- nothing satisfies ``b >=3`` becomes ``{b >=3}``.

Unit propagation derives new assignments from incompatibilities that are
almost satisfied. When one becomes fully satisfied, conflict resolution
combines it with the causes of its most recent satisfier. Each derived
incompatibility is learned into an append-only store indexed by package.
The engine then backjumps to the level where the learned fact becomes
unit, so no part of the search that fails for the same reason is visited
again. A derivation that reaches "the root cannot be selected" proves the
roots unsatisfiable; its derivation tree is the failure explanation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from depforge.constants import PIN_LABEL, ROOT_LABEL
from depforge.core.graph import ROOT, DecisionReason, DependencyGraph, NodeKey
from depforge.core.report import Report
from depforge.core.session import ResolutionSession, ResolverState
from depforge.exceptions import InvariantViolation
from depforge.models.conflict import ConflictChain, ConflictLink
from depforge.models.requirement import Requirement
from depforge.models.version import Version
from depforge.models.version_set import VersionSet

__all__ = [
    "SetRelation",
    "Term",
    "Incompatibility",
    "IncompatibilityStore",
    "PartialSolution",
    "PubGrubEngine",
]

ROOT_NAME = ROOT.name
ROOT_VERSION = Version("0")


# ---------------------------------------------------------------------------
# Terms
# ---------------------------------------------------------------------------


class SetRelation(Enum):
    SUBSET = "subset"
    DISJOINT = "disjoint"
    OVERLAPPING = "overlapping"


@dataclass(frozen=True)
class Term:
    """A positive or negative statement about one package's versions."""

    package: str
    versions: VersionSet
    positive: bool = True

    @property
    def inverse(self) -> "Term":
        return Term(self.package, self.versions, not self.positive)

    def satisfies(self, other: "Term") -> bool:
        """Whether every solution allowed by *self* is allowed by *other*."""
        return self.package == other.package and self.relation(other) is SetRelation.SUBSET

    def relation(self, other: "Term") -> SetRelation:
        """How the solutions of *self* relate to those of *other*.

        A negative term is also satisfied when the package is not selected
        at all, so a negative term is never a subset of a positive one.
        """
        mine, theirs = self.versions, other.versions
        if other.positive:
            if not self.positive:
                return SetRelation.DISJOINT if theirs.is_subset_of(mine) else SetRelation.OVERLAPPING
            if mine.is_disjoint_from(theirs):
                return SetRelation.DISJOINT
            if mine.is_subset_of(theirs):
                return SetRelation.SUBSET
            return SetRelation.OVERLAPPING

        if self.positive:
            if mine.is_disjoint_from(theirs):
                return SetRelation.SUBSET
            if mine.is_subset_of(theirs):
                return SetRelation.DISJOINT
            return SetRelation.OVERLAPPING
        if theirs.is_subset_of(mine):
            return SetRelation.SUBSET
        return SetRelation.OVERLAPPING

    def intersect(self, other: "Term") -> Optional["Term"]:
        """Term allowed by both, or ``None`` if nothing is."""
        if self.positive != other.positive:
            positive, negative = (self, other) if self.positive else (other, self)
            return _non_empty(self.package, positive.versions.difference(negative.versions), True)
        if self.positive:
            return _non_empty(self.package, self.versions.intersect(other.versions), True)
        return _non_empty(self.package, self.versions.union(other.versions), False)

    def difference(self, other: "Term") -> Optional["Term"]:
        return self.intersect(other.inverse)

    def describe(self) -> str:
        if self.package == ROOT_NAME:
            return "the root"
        if self.versions.is_any():
            return self.package
        return f"{self.package} {self.versions}"

    def __str__(self) -> str:
        return self.describe() if self.positive else f"not {self.describe()}"


def _non_empty(package: str, versions: VersionSet, positive: bool) -> Optional[Term]:
    if positive and versions.is_empty():
        return None
    return Term(package, versions, positive)


# ---------------------------------------------------------------------------
# Incompatibilities
# ---------------------------------------------------------------------------


class RootCause:
    """The root package must be selected."""


@dataclass(frozen=True)
class DependencyCause:
    package: str
    version: Version
    requirement: Requirement


@dataclass(frozen=True)
class NoVersionsCause:
    pin: Optional[VersionSet] = None


@dataclass(frozen=True)
class UnavailableCause:
    version: Version
    reason: str = "is unavailable"


@dataclass(frozen=True)
class ConflictCause:
    conflict: "Incompatibility"
    other: "Incompatibility"


Cause = Union[RootCause, DependencyCause, NoVersionsCause, UnavailableCause, ConflictCause]


class Incompatibility:
    """Terms that must not all be satisfied simultaneously."""

    def __init__(self, terms: Sequence[Term], cause: Cause) -> None:
        terms = list(terms)
        if (
            isinstance(cause, ConflictCause)
            and len(terms) != 1
            and any(t.positive and t.package == ROOT_NAME for t in terms)
        ):
            # "the root is selected" is always true; drop it from derived facts
            terms = [t for t in terms if not (t.positive and t.package == ROOT_NAME)]

        if len(terms) > 2 or (len(terms) == 2 and terms[0].package == terms[1].package):
            by_name: Dict[str, Term] = {}
            for term in terms:
                existing = by_name.get(term.package)
                merged = existing.intersect(term) if existing is not None else term
                by_name[term.package] = merged if merged is not None else term
            terms = list(by_name.values())

        self.terms: List[Term] = terms
        self.cause = cause

    @property
    def is_external(self) -> bool:
        return not isinstance(self.cause, ConflictCause)

    def is_failure(self) -> bool:
        return not self.terms or (
            len(self.terms) == 1 and self.terms[0].package == ROOT_NAME and self.terms[0].positive
        )

    def external_causes(self) -> List["Incompatibility"]:
        """External incompatibilities this one derives from, left to right."""
        found: List[Incompatibility] = []
        visited: Set[int] = set()

        def walk(incompatibility: Incompatibility) -> None:
            if id(incompatibility) in visited:
                return
            visited.add(id(incompatibility))
            cause = incompatibility.cause
            if isinstance(cause, ConflictCause):
                walk(cause.conflict)
                walk(cause.other)
            else:
                found.append(incompatibility)

        walk(self)
        return found

    def to_links(self) -> List[ConflictLink]:
        """Conflict evidence contributed by an external incompatibility."""
        cause = self.cause
        if isinstance(cause, DependencyCause):
            requester = ROOT_LABEL if cause.package == ROOT_NAME else f"{cause.package}=={cause.version}"
            req = cause.requirement
            return [ConflictLink(req.name, str(req.versions), requester)]
        if isinstance(cause, NoVersionsCause):
            term = self.terms[0]
            links = []
            if cause.pin is not None:
                links.append(ConflictLink(term.package, str(cause.pin), PIN_LABEL))
            links.append(ConflictLink(term.package, str(term.versions), None))
            return links
        if isinstance(cause, UnavailableCause):
            return [ConflictLink(self.terms[0].package, f"=={cause.version}", None)]
        return []

    def __str__(self) -> str:
        cause = self.cause
        if isinstance(cause, RootCause):
            return "the root is required"
        if isinstance(cause, DependencyCause):
            depender = "the root" if cause.package == ROOT_NAME else f"{cause.package}=={cause.version}"
            return f"{depender} requires {Term(cause.requirement.name, cause.requirement.versions).describe()}"
        if isinstance(cause, NoVersionsCause):
            text = f"no versions of {self.terms[0].describe()} are available"
            if cause.pin is not None:
                text += f" (pinned to {cause.pin})"
            return text
        if isinstance(cause, UnavailableCause):
            return f"{self.terms[0].package}=={cause.version} {cause.reason}"
        return self._describe_terms()

    def _describe_terms(self) -> str:
        if self.is_failure():
            return "version solving failed"
        positive = [t for t in self.terms if t.positive]
        negative = [t for t in self.terms if not t.positive]
        if len(self.terms) == 1:
            term = self.terms[0]
            return f"{term.describe()} is forbidden" if term.positive else f"{term.describe()} is required"
        if len(positive) == 1 and len(negative) == 1:
            return f"{positive[0].describe()} requires {negative[0].describe()}"
        if not negative:
            return " and ".join(t.describe() for t in positive) + " are incompatible"
        if not positive:
            return " or ".join(t.describe() for t in negative) + " is required"
        return (
            "if "
            + " and ".join(t.describe() for t in positive)
            + " then "
            + " or ".join(t.describe() for t in negative)
            + " is required"
        )

    def __repr__(self) -> str:
        return f"Incompatibility({', '.join(str(t) for t in self.terms)})"


class IncompatibilityStore:
    """Append-only store of incompatibilities, indexed by package name."""

    def __init__(self) -> None:
        self._all: List[Incompatibility] = []
        self._by_package: Dict[str, List[Incompatibility]] = {}

    def add(self, incompatibility: Incompatibility) -> Incompatibility:
        self._all.append(incompatibility)
        for term in incompatibility.terms:
            bucket = self._by_package.setdefault(term.package, [])
            if incompatibility not in bucket:
                bucket.append(incompatibility)
        return incompatibility

    def for_package(self, package: str) -> List[Incompatibility]:
        return list(self._by_package.get(package, ()))

    @property
    def learned(self) -> List[Incompatibility]:
        return [ic for ic in self._all if not ic.is_external]

    def __len__(self) -> int:
        return len(self._all)

    def __iter__(self) -> Iterator[Incompatibility]:
        return iter(list(self._all))


# ---------------------------------------------------------------------------
# Partial solution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Assignment:
    term: Term
    decision_level: int
    index: int
    cause: Optional[Incompatibility] = None

    @property
    def package(self) -> str:
        return self.term.package

    @property
    def is_decision(self) -> bool:
        return self.cause is None


class PartialSolution:
    """Ordered assignments (decisions and derivations) of one session."""

    def __init__(self) -> None:
        self.assignments: List[Assignment] = []
        self.decisions: Dict[str, Version] = {}
        self._positive: Dict[str, Term] = {}
        self._negative: Dict[str, Term] = {}
        self.attempted_solutions = 1
        self._backtracking = False

    @property
    def decision_level(self) -> int:
        return len(self.decisions)

    def decide(self, package: str, version: Version) -> None:
        if self._backtracking:
            self.attempted_solutions += 1
        self._backtracking = False
        self.decisions[package] = version
        self._assign(Assignment(Term(package, VersionSet.exact(version)), self.decision_level, len(self.assignments)))

    def derive(self, term: Term, cause: Incompatibility) -> None:
        self._assign(Assignment(term, self.decision_level, len(self.assignments), cause))

    def backtrack(self, level: int) -> None:
        """Drop every assignment made above decision *level*."""
        self._backtracking = True
        touched = set()
        while self.assignments and self.assignments[-1].decision_level > level:
            removed = self.assignments.pop()
            touched.add(removed.package)
            if removed.is_decision:
                self.decisions.pop(removed.package, None)
        for package in touched:
            self._positive.pop(package, None)
            self._negative.pop(package, None)
        for assignment in self.assignments:
            if assignment.package in touched:
                self._register(assignment)

    def satisfier(self, term: Term) -> Assignment:
        """Earliest assignment after which *term* is satisfied."""
        accumulated: Optional[Term] = None
        for assignment in self.assignments:
            if assignment.package != term.package:
                continue
            if accumulated is None:
                accumulated = assignment.term
            else:
                accumulated = accumulated.intersect(assignment.term) or accumulated
            if accumulated.satisfies(term):
                return assignment
        raise InvariantViolation(f"[BUG] {term} is not satisfied")

    def satisfies(self, term: Term) -> bool:
        return self.relation(term) is SetRelation.SUBSET

    def relation(self, term: Term) -> SetRelation:
        positive = self._positive.get(term.package)
        if positive is not None:
            return positive.relation(term)
        negative = self._negative.get(term.package)
        if negative is None:
            return SetRelation.OVERLAPPING
        return negative.relation(term)

    def unsatisfied(self) -> List[Term]:
        """Positive derivations whose package has not been decided yet."""
        return [term for package, term in self._positive.items() if package not in self.decisions]

    def _assign(self, assignment: Assignment) -> None:
        self.assignments.append(assignment)
        self._register(assignment)

    def _register(self, assignment: Assignment) -> None:
        package = assignment.package
        old_positive = self._positive.get(package)
        if old_positive is not None:
            merged = old_positive.intersect(assignment.term)
            if merged is None:
                raise InvariantViolation(f"[BUG] empty derivation for {package}")
            self._positive[package] = merged
            return

        old_negative = self._negative.get(package)
        term = assignment.term if old_negative is None else assignment.term.intersect(old_negative)
        if term is None:
            raise InvariantViolation(f"[BUG] empty derivation for {package}")
        if term.positive:
            self._negative.pop(package, None)
            self._positive[package] = term
        else:
            self._negative[package] = term


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class _SolveFailure(Exception):
    def __init__(self, incompatibility: Incompatibility) -> None:
        super().__init__(str(incompatibility))
        self.incompatibility = incompatibility


_CONFLICT = object()


class PubGrubEngine:
    """Resolution engine for the ``learn`` conflict policy.

    Drives :class:`~depforge.core.strategy.HighestFirst` or
    :class:`~depforge.core.strategy.LowestFirst` candidate order; pins and
    ``prefer_local`` apply as in the backtracking engine.
    """

    policy = "learn"

    def __init__(self, session: ResolutionSession) -> None:
        self.session = session
        self.strategy = session.strategy
        self.log = session.logger
        self.store = IncompatibilityStore()
        self.solution = PartialSolution()
        self._roots: List[Requirement] = []

    async def run(self, roots: List[Requirement]) -> Report:
        """Resolve *roots* to a ``SOLVED`` or ``FAILED`` report."""
        session = self.session
        self._roots = list(roots)
        session.transition(ResolverState.PROPAGATING)
        self._add(Incompatibility([Term(ROOT_NAME, VersionSet.exact(ROOT_VERSION), False)], RootCause()))

        next_package: Optional[str] = ROOT_NAME
        try:
            while next_package is not None:
                await session.checkpoint()
                self._propagate(next_package)
                next_package = await self._choose_package_version()
        except _SolveFailure as failure:
            session.transition(ResolverState.FAILED)
            return self._failure(failure.incompatibility)

        graph = await self._build_graph()
        graph.assert_consistent()
        session.transition(ResolverState.SOLVED)
        self.log.info(
            "Solved %d package(s) after %d attempt(s), %d learned",
            len(graph),
            self.solution.attempted_solutions,
            session.stats.learned,
        )
        return Report.solved(graph, strategy=self.strategy.name, policy=self.policy, stats=session.stats)

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def _propagate(self, package: str) -> None:
        self.session.transition(ResolverState.PROPAGATING)
        changed: List[str] = [package]
        while changed:
            current = changed.pop(0)
            # Newest incompatibilities first
            for incompatibility in reversed(self.store.for_package(current)):
                result = self._propagate_incompatibility(incompatibility)
                if result is _CONFLICT:
                    root_cause = self._resolve_conflict(incompatibility)
                    derived = self._propagate_incompatibility(root_cause)
                    if not isinstance(derived, str):
                        raise InvariantViolation(f"[BUG] {root_cause!r} is not almost satisfied")
                    changed = [derived]
                    break
                if isinstance(result, str) and result not in changed:
                    changed.append(result)

    def _propagate_incompatibility(self, incompatibility: Incompatibility) -> object:
        unsatisfied: Optional[Term] = None
        for term in incompatibility.terms:
            relation = self.solution.relation(term)
            if relation is SetRelation.DISJOINT:
                return None
            if relation is SetRelation.OVERLAPPING:
                if unsatisfied is not None:
                    return None
                unsatisfied = term

        if unsatisfied is None:
            return _CONFLICT
        self.solution.derive(unsatisfied.inverse, incompatibility)
        return unsatisfied.package

    def _resolve_conflict(self, incompatibility: Incompatibility) -> Incompatibility:
        session = self.session
        session.transition(ResolverState.CONFLICTED)
        session.reporter.conflicted(
            [link for leaf in incompatibility.external_causes() for link in leaf.to_links()],
            self.solution.decision_level,
        )
        self.log.debug("Conflict: %s", incompatibility)

        new_incompatibility = False
        while not incompatibility.is_failure():
            most_recent_term: Optional[Term] = None
            most_recent_satisfier: Optional[Assignment] = None
            difference: Optional[Term] = None
            previous_satisfier_level = 1

            for term in incompatibility.terms:
                satisfier = self.solution.satisfier(term)
                if most_recent_satisfier is None:
                    most_recent_term, most_recent_satisfier = term, satisfier
                elif most_recent_satisfier.index < satisfier.index:
                    previous_satisfier_level = max(previous_satisfier_level, most_recent_satisfier.decision_level)
                    most_recent_term, most_recent_satisfier = term, satisfier
                    difference = None
                else:
                    previous_satisfier_level = max(previous_satisfier_level, satisfier.decision_level)

                if most_recent_term is term:
                    difference = most_recent_satisfier.term.difference(most_recent_term)
                    if difference is not None:
                        previous_satisfier_level = max(
                            previous_satisfier_level,
                            self.solution.satisfier(difference.inverse).decision_level,
                        )

            assert most_recent_satisfier is not None
            if (
                previous_satisfier_level < most_recent_satisfier.decision_level
                or most_recent_satisfier.cause is None
            ):
                self._backtrack(previous_satisfier_level)
                if new_incompatibility:
                    self._learn(incompatibility)
                return incompatibility

            new_terms = [t for t in incompatibility.terms if t is not most_recent_term]
            new_terms.extend(
                t for t in most_recent_satisfier.cause.terms if t.package != most_recent_satisfier.package
            )
            if difference is not None:
                new_terms.append(difference.inverse)
            incompatibility = Incompatibility(
                new_terms, ConflictCause(incompatibility, most_recent_satisfier.cause)
            )
            new_incompatibility = True

        raise _SolveFailure(incompatibility)

    def _backtrack(self, level: int) -> None:
        session = self.session
        session.note_backjump()
        session.transition(ResolverState.BACKTRACKING)
        from_level = self.solution.decision_level
        self.solution.backtrack(level)
        session.reporter.backtracked(from_level, level)
        self.log.debug("Backjump from level %d to %d", from_level, level)

    def _learn(self, incompatibility: Incompatibility) -> None:
        self._add(incompatibility)
        self.session.stats.learned += 1
        self.session.reporter.learned(str(incompatibility))
        self.log.debug("Learned: %s", incompatibility)

    def _add(self, incompatibility: Incompatibility) -> None:
        self.store.add(incompatibility)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def _listing(self, package: str) -> List[Version]:
        if package == ROOT_NAME:
            return [ROOT_VERSION]
        return await self.session.versions(package)

    async def _requirements(self, package: str, version: Version) -> Optional[List[Requirement]]:
        if package == ROOT_NAME:
            return list(self._roots)
        return await self.session.requirements(package, version)

    async def _candidates(self, term: Term) -> List[Version]:
        listing = await self._listing(term.package)
        if term.package == ROOT_NAME:
            return listing
        return self.strategy.filter_candidates(term.package, term.versions, listing, self.session.is_local)

    async def _choose_package_version(self) -> Optional[str]:
        unsatisfied = self.solution.unsatisfied()
        if not unsatisfied:
            return None

        self.session.cache.prefetch(t.package for t in unsatisfied if t.package != ROOT_NAME)
        best: Optional[Tuple[int, int, Term, List[Version]]] = None
        for index, term in enumerate(unsatisfied):
            candidates = await self._candidates(term)
            if best is None or len(candidates) < best[0]:
                best = (len(candidates), index, term, candidates)
        assert best is not None
        _, _, term, candidates = best
        package = term.package

        if not candidates:
            self._add(Incompatibility([term], NoVersionsCause(self.strategy.pin_for(package))))
            return package

        version = candidates[0]
        requirements = await self._requirements(package, version)
        if requirements is None:
            self._add(Incompatibility([Term(package, VersionSet.exact(version))], UnavailableCause(version)))
            return package

        if self.session.prefetch:
            self.session.cache.prefetch(r.name for r in requirements)

        exact = Term(package, VersionSet.exact(version))
        conflict = False
        for requirement in requirements:
            if requirement.name == package:
                if requirement.versions.contains(version):
                    continue
                incompatibility = Incompatibility(
                    [exact], UnavailableCause(version, f"requires {requirement} of itself")
                )
            else:
                incompatibility = Incompatibility(
                    [exact, Term(requirement.name, requirement.versions, False)],
                    DependencyCause(package, version, requirement),
                )
            self._add(incompatibility)
            conflict = conflict or all(
                t.package == package or self.solution.satisfies(t) for t in incompatibility.terms
            )

        if not conflict:
            self.solution.decide(package, version)
            if package != ROOT_NAME:
                self.session.stats.decisions += 1
                self.session.transition(ResolverState.DECIDED)
                self.session.reporter.decided(
                    package, version, self.solution.decision_level, self._reason(package).value
                )
                self.log.debug("Level %d: %s==%s", self.solution.decision_level, package, version)
        return package

    def _reason(self, package: str) -> DecisionReason:
        return DecisionReason.PINNED if self.strategy.pin_for(package) is not None else DecisionReason.DECIDED

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def _build_graph(self) -> DependencyGraph:
        graph = DependencyGraph()
        for requirement in self._roots:
            graph.add_edge(ROOT, None, NodeKey(requirement.name), requirement)

        # Decision order, except that a package waits until a selected
        # requester has introduced it
        pending = [(p, v) for p, v in self.solution.decisions.items() if p != ROOT_NAME]
        while pending:
            index = next((i for i, (p, _) in enumerate(pending) if NodeKey(p) in graph), None)
            if index is None:
                raise InvariantViolation(
                    "Selected packages are not required by anything",
                    {"packages": ", ".join(p for p, _ in pending)},
                )
            package, version = pending.pop(index)
            key = NodeKey(package)
            decision = graph.open_level(key, [version], self._reason(package))
            graph.assign(decision, version)
            for requirement in await self._requirements(package, version) or []:
                if requirement.name == package:
                    continue
                graph.add_edge(key, version, NodeKey(requirement.name), requirement)
        return graph

    def _failure(self, incompatibility: Incompatibility) -> Report:
        links = [link for leaf in incompatibility.external_causes() for link in leaf.to_links()]
        chain = ConflictChain(
            [link for link in links if link.is_root()] + [link for link in links if not link.is_root()]
        )
        self.log.info("Unsatisfiable: %s", incompatibility)
        return Report.failed(
            chain,
            explain_derivation(incompatibility),
            strategy=self.strategy.name,
            policy=self.policy,
            stats=self.session.stats,
        )


def explain_derivation(incompatibility: Incompatibility) -> str:
    """Linear, numbered narrative of a derivation tree.

    Each derived incompatibility becomes one line, after the lines it
    depends on; a derived fact used twice is referenced by its number.
    """
    lines: List[str] = []
    numbered: Dict[int, int] = {}

    def visit(ic: Incompatibility) -> str:
        if not isinstance(ic.cause, ConflictCause):
            return str(ic)
        if id(ic) in numbered:
            return f"{ic} ({numbered[id(ic)]})"
        left = visit(ic.cause.conflict)
        right = visit(ic.cause.other)
        lines.append(f"Because {left} and {right}, {ic}.")
        numbered[id(ic)] = len(lines)
        return f"{ic} ({len(lines)})"

    if incompatibility.is_external:
        return f"{str(incompatibility).capitalize()}."
    visit(incompatibility)
    return "\n".join(f"{number}. {line}" for number, line in enumerate(lines, start=1))
