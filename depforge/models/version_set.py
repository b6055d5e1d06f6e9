"""
Version constraints as sets of versions.

A :class:`VersionSet` is an immutable union of disjoint :class:`Interval`
objects over version *precedence* (see :mod:`depforge.models.version`).
Open and closed bounds, unbounded ends and exact pins (degenerate closed
intervals) are all represented the same way, so intersection, union and
complement are closed operations. That closure is what the conflict-driven
engine relies on when it derives incompatibilities over ranges.

Accepted syntax (see :meth:`VersionSet.parse`):

- PEP 440 specifiers via ``packaging.specifiers``: ``==``, ``!=``, ``>=``,
  ``<=``, ``>``, ``<``, ``~=``, ``===``, ``==1.2.*`` and ``!=1.2.*``
- npm / Cargo forms: ``*``, ``^1.2.3``, ``~1.2.3``, ``=1.2.3`` and a bare
  version (exact)
- ``,`` (or whitespace between atoms) for conjunction, ``||`` for
  disjunction

Pre-releases are ordinary points in the order; no implicit pre-release
exclusion is applied. Upper bounds produced by ``^``, ``~``, ``~=`` and
wildcards sit at ``X.dev0`` so that pre-releases of the next series fall
outside the range.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Union

from packaging.specifiers import InvalidSpecifier, Specifier
from packaging.version import InvalidVersion
from packaging.version import Version as _PEP440Version

from depforge.exceptions import InvalidVersionSetError
from depforge.models.version import Version

__all__ = ["Bound", "Interval", "VersionSet", "intersect"]

VersionLike = Union[str, Version, _PEP440Version]

# Splits a conjunction on commas, or on whitespace that precedes an operator
# (``">=1.0 <2.0"``).
_ATOM_SPLIT_RE = re.compile(r"\s*,\s*|\s+(?=[<>=!~^])")
_NPM_ATOM_RE = re.compile(r"^(?P<op>\^|~(?!=)|=(?!=))\s*(?P<ver>\S+)$")


def _precedence(value: VersionLike) -> _PEP440Version:
    if isinstance(value, Version):
        return value.precedence
    if isinstance(value, _PEP440Version):
        return _PEP440Version(value.public) if value.local else value
    return Version(value).precedence


# ---------------------------------------------------------------------------
# Bounds and intervals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Bound:
    """One end of an interval."""

    version: _PEP440Version
    inclusive: bool


def _lower_key(bound: Optional[Bound]) -> Tuple:
    # ``None`` is -infinity; an inclusive bound starts before an exclusive one
    if bound is None:
        return (0,)
    return (1, bound.version, 0 if bound.inclusive else 1)


def _upper_key(bound: Optional[Bound]) -> Tuple:
    # ``None`` is +infinity; an inclusive bound ends after an exclusive one
    if bound is None:
        return (1,)
    return (0, bound.version, 1 if bound.inclusive else 0)


@dataclass(frozen=True)
class Interval:
    """A contiguous range; ``None`` bounds are unbounded."""

    lower: Optional[Bound] = None
    upper: Optional[Bound] = None

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower.version > self.upper.version:
            return True
        if self.lower.version == self.upper.version:
            return not (self.lower.inclusive and self.upper.inclusive)
        return False

    def contains(self, point: _PEP440Version) -> bool:
        if self.lower is not None:
            if point < self.lower.version:
                return False
            if point == self.lower.version and not self.lower.inclusive:
                return False
        if self.upper is not None:
            if point > self.upper.version:
                return False
            if point == self.upper.version and not self.upper.inclusive:
                return False
        return True

    def intersect(self, other: "Interval") -> "Interval":
        lower = max(self.lower, other.lower, key=_lower_key)
        upper = min(self.upper, other.upper, key=_upper_key)
        return Interval(lower, upper)

    def is_exact(self) -> bool:
        return (
            self.lower is not None
            and self.upper is not None
            and self.lower.version == self.upper.version
            and self.lower.inclusive
            and self.upper.inclusive
        )

    def __str__(self) -> str:
        if self.lower is None and self.upper is None:
            return "*"
        if self.is_exact():
            assert self.lower is not None
            return f"=={self.lower.version}"
        parts: List[str] = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower.inclusive else '>'}{self.lower.version}")
        if self.upper is not None:
            parts.append(f"{'<=' if self.upper.inclusive else '<'}{self.upper.version}")
        return ",".join(parts)


def _connected(left: Interval, right: Interval) -> bool:
    """True when *right* (starting no earlier) overlaps or touches *left*."""
    if left.upper is None or right.lower is None:
        return True
    if right.lower.version < left.upper.version:
        return True
    if right.lower.version == left.upper.version:
        return right.lower.inclusive or left.upper.inclusive
    return False


def _normalize(intervals: Iterable[Interval]) -> Tuple[Interval, ...]:
    """Drop empty intervals, sort, and merge overlapping or touching ones."""
    ordered = sorted(
        (iv for iv in intervals if not iv.is_empty()),
        key=lambda iv: _lower_key(iv.lower),
    )
    merged: List[Interval] = []
    for interval in ordered:
        if merged and _connected(merged[-1], interval):
            last = merged[-1]
            upper = max(last.upper, interval.upper, key=_upper_key)
            merged[-1] = Interval(last.lower, upper)
        else:
            merged.append(interval)
    return tuple(merged)


# ---------------------------------------------------------------------------
# VersionSet
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VersionSet:
    """Immutable set of versions.

    Equality and hashing consider only the normalised intervals; the
    original expression text (when parsed) is kept for display.

    Example::

        >>> s = VersionSet.parse(">=1.0,<2.0")
        >>> Version("1.5") in s
        True
        >>> (s & VersionSet.parse(">=2.0")).is_empty()
        True
    """

    intervals: Tuple[Interval, ...] = ()
    text: Optional[str] = field(default=None, compare=False)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_intervals(
        cls, intervals: Iterable[Interval], text: Optional[str] = None
    ) -> "VersionSet":
        return cls(_normalize(intervals), text)

    @classmethod
    def any(cls) -> "VersionSet":
        return cls((Interval(),), "*")

    @classmethod
    def empty(cls) -> "VersionSet":
        return cls((), None)

    @classmethod
    def exact(cls, version: VersionLike) -> "VersionSet":
        point = _precedence(version)
        bound = Bound(point, True)
        return cls((Interval(bound, bound),), f"=={version}")

    @classmethod
    def at_least(cls, version: VersionLike, *, inclusive: bool = True) -> "VersionSet":
        return cls((Interval(Bound(_precedence(version), inclusive), None),))

    @classmethod
    def below(cls, version: VersionLike, *, inclusive: bool = False) -> "VersionSet":
        return cls((Interval(None, Bound(_precedence(version), inclusive)),))

    @classmethod
    def parse(cls, text: Union[str, "VersionSet", None]) -> "VersionSet":
        """Parse a constraint expression.

        Raises:
            InvalidVersionSetError: If any atom is malformed.
        """
        if isinstance(text, VersionSet):
            return text
        if text is None:
            return cls.any()

        expression = text.strip()
        if not expression or expression == "*":
            return cls.any()

        result = cls.empty()
        for alternative in expression.split("||"):
            alternative = alternative.strip()
            if not alternative:
                raise InvalidVersionSetError(
                    "Empty alternative in constraint", expression=text
                )
            conjunction = cls.any()
            for atom in _ATOM_SPLIT_RE.split(alternative):
                if atom:
                    conjunction = conjunction.intersect(_parse_atom(atom, text))
            result = result.union(conjunction)

        return cls(result.intervals, expression)

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_empty(self) -> bool:
        return not self.intervals

    def is_any(self) -> bool:
        return len(self.intervals) == 1 and self.intervals[0] == Interval()

    def contains(self, version: VersionLike) -> bool:
        point = _precedence(version)
        return any(interval.contains(point) for interval in self.intervals)

    def __contains__(self, version: object) -> bool:
        if not isinstance(version, (str, Version, _PEP440Version)):
            return False
        return self.contains(version)

    def is_subset_of(self, other: "VersionSet") -> bool:
        return self.difference(other).is_empty()

    def is_disjoint_from(self, other: "VersionSet") -> bool:
        return self.intersect(other).is_empty()

    def single_point(self) -> Optional[_PEP440Version]:
        """Return the pinned precedence if this set is an exact pin."""
        if len(self.intervals) == 1 and self.intervals[0].is_exact():
            bound = self.intervals[0].lower
            assert bound is not None
            return bound.version
        return None

    # ------------------------------------------------------------------
    # Set algebra
    # ------------------------------------------------------------------

    def intersect(self, other: "VersionSet") -> "VersionSet":
        pieces = [a.intersect(b) for a in self.intervals for b in other.intervals]
        return VersionSet.from_intervals(pieces)

    def union(self, other: "VersionSet") -> "VersionSet":
        return VersionSet.from_intervals(self.intervals + other.intervals)

    def complement(self) -> "VersionSet":
        gaps: List[Interval] = []
        cursor: Optional[Bound] = None
        open_start = True
        for interval in self.intervals:
            if interval.lower is not None:
                gap_end = Bound(interval.lower.version, not interval.lower.inclusive)
                gaps.append(Interval(None if open_start else cursor, gap_end))
            if interval.upper is None:
                return VersionSet.from_intervals(gaps)
            cursor = Bound(interval.upper.version, not interval.upper.inclusive)
            open_start = False
        gaps.append(Interval(None if open_start else cursor, None))
        return VersionSet.from_intervals(gaps)

    def difference(self, other: "VersionSet") -> "VersionSet":
        return self.intersect(other.complement())

    __and__ = intersect
    __or__ = union

    def __invert__(self) -> "VersionSet":
        return self.complement()

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    def filter(self, candidates: Iterable[Version]) -> List[Version]:
        """Return the candidates inside this set, preserving their order."""
        return [v for v in candidates if self.contains(v)]

    def highest_satisfying(self, candidates: Iterable[Version]) -> Optional[Version]:
        """Highest contained candidate; the first listed wins among equals."""
        best: Optional[Version] = None
        for candidate in self.filter(candidates):
            if best is None or candidate.precedence > best.precedence:
                best = candidate
        return best

    def lowest_satisfying(self, candidates: Iterable[Version]) -> Optional[Version]:
        """Lowest contained candidate; the first listed wins among equals."""
        best: Optional[Version] = None
        for candidate in self.filter(candidates):
            if best is None or candidate.precedence < best.precedence:
                best = candidate
        return best

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def canonical(self) -> str:
        if not self.intervals:
            return "<empty>"
        return " || ".join(str(interval) for interval in self.intervals)

    def __str__(self) -> str:
        return self.text if self.text else self.canonical()

    def __repr__(self) -> str:
        return f"VersionSet({self.canonical()!r})"


def intersect(a: VersionSet, b: VersionSet) -> VersionSet:
    """Module-level alias of :meth:`VersionSet.intersect`."""
    return a.intersect(b)


# ---------------------------------------------------------------------------
# Atom parsing
# ---------------------------------------------------------------------------


def _pep440(text: str, expression: str) -> _PEP440Version:
    try:
        return _precedence(_PEP440Version(text))
    except InvalidVersion as exc:
        raise InvalidVersionSetError(
            f"Invalid version {text!r} in constraint", expression=expression
        ) from exc


def _bump(release: Tuple[int, ...], position: int) -> _PEP440Version:
    """Return ``X.dev0`` where X increments *release* at *position*."""
    parts = list(release[: position + 1])
    while len(parts) <= position:
        parts.append(0)
    parts[position] += 1
    return _PEP440Version(".".join(str(p) for p in parts) + ".dev0")


def _range(
    lower: _PEP440Version, upper: _PEP440Version
) -> VersionSet:
    return VersionSet((Interval(Bound(lower, True), Bound(upper, False)),))


def _wildcard(prefix: str, expression: str) -> VersionSet:
    base = _pep440(prefix, expression)
    start = _PEP440Version(".".join(str(p) for p in base.release) + ".dev0")
    return _range(start, _bump(base.release, len(base.release) - 1))


def _parse_atom(atom: str, expression: str) -> VersionSet:
    atom = atom.strip()
    if atom == "*":
        return VersionSet.any()

    npm = _NPM_ATOM_RE.match(atom)
    if npm:
        op, text = npm.group("op"), npm.group("ver")
        base = _pep440(text, expression)
        release = base.release
        if op == "=":
            return VersionSet.exact(base)
        if op == "~":
            position = 0 if len(release) == 1 else 1
            return _range(base, _bump(release, position))
        # caret: the left-most non-zero component is fixed
        position = next((i for i, part in enumerate(release) if part != 0), len(release) - 1)
        return _range(base, _bump(release, min(position, 2)))

    if atom[0].isdigit():
        return VersionSet.exact(_pep440(atom, expression))

    try:
        spec = Specifier(atom)
    except InvalidSpecifier as exc:
        raise InvalidVersionSetError(
            f"Invalid constraint atom {atom!r}", expression=expression
        ) from exc

    op, text = spec.operator, spec.version

    if op in ("==", "!="):
        if text.endswith(".*"):
            matched = _wildcard(text[:-2], expression)
        else:
            matched = VersionSet.exact(_pep440(text, expression))
        return matched if op == "==" else matched.complement()
    if op == "===":
        return VersionSet.exact(_pep440(text, expression))

    point = _pep440(text, expression)
    if op == ">=":
        return VersionSet.at_least(point)
    if op == ">":
        return VersionSet.at_least(point, inclusive=False)
    if op == "<=":
        return VersionSet.below(point, inclusive=True)
    if op == "<":
        return VersionSet.below(point)
    if op == "~=":
        # packaging already rejects ~= with a single release component
        return _range(point, _bump(point.release, len(point.release) - 2))

    raise InvalidVersionSetError(  # pragma: no cover
        f"Unsupported operator {op!r}", expression=expression
    )
