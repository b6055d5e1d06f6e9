"""
Version value type for depforge.

Versions are parsed with ``packaging`` (PEP 440). SemVer inputs such as
``1.0.0-rc.1`` or ``1.0.0+build.5`` are accepted through PEP 440's
normalisation, so both ecosystems share one numeric ordering; plain string
comparison is never used (``1.9 < 1.10``).

Build metadata (the PEP 440 *local* segment) does not take part in
precedence: ``1.0+a`` and ``1.0+b`` compare :attr:`Ordering.EQUAL` under
:func:`compare` and both satisfy ``==1.0``. They remain distinct values, and
strategies break such ties with the package source's declaration order.
"""

from __future__ import annotations

from enum import Enum
from functools import total_ordering
from typing import Iterable, List, Tuple, Union

from packaging.version import InvalidVersion
from packaging.version import Version as _PEP440Version

from depforge.exceptions import InvalidVersionError

__all__ = ["Ordering", "Version", "compare", "parse_version", "sort_versions"]


class Ordering(Enum):
    """Three-way comparison result."""

    LESS = -1
    EQUAL = 0
    GREATER = 1


@total_ordering
class Version:
    """Immutable, hashable, totally ordered package version.

    Args:
        text: Version text in PEP 440 or SemVer form.

    Raises:
        InvalidVersionError: If *text* cannot be parsed.

    Example::

        >>> Version("1.10") > Version("1.9")
        True
        >>> compare(Version("1.0+a"), Version("1.0+b"))
        <Ordering.EQUAL: 0>
    """

    __slots__ = ("_text", "_parsed", "_precedence")

    def __init__(self, text: str) -> None:
        raw = text.strip() if isinstance(text, str) else text
        if not raw:
            raise InvalidVersionError("Empty version string", version=str(text))
        try:
            parsed = _PEP440Version(raw)
        except (InvalidVersion, TypeError) as exc:
            raise InvalidVersionError(
                f"Invalid version: {text!r}", version=str(text)
            ) from exc

        self._text: str = raw
        self._parsed: _PEP440Version = parsed
        self._precedence: _PEP440Version = (
            _PEP440Version(parsed.public) if parsed.local else parsed
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def text(self) -> str:
        """The version exactly as the source declared it."""
        return self._text

    @property
    def precedence(self) -> _PEP440Version:
        """Public part of the version; the only thing ranges look at."""
        return self._precedence

    @property
    def local(self) -> str:
        """Build metadata (PEP 440 local segment), or ``""``."""
        return self._parsed.local or ""

    @property
    def release(self) -> Tuple[int, ...]:
        return self._parsed.release

    @property
    def is_prerelease(self) -> bool:
        return self._parsed.is_prerelease

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def _sort_key(self) -> Tuple[_PEP440Version, _PEP440Version]:
        return (self._precedence, self._parsed)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._parsed == other._parsed

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self) -> int:
        return hash(self._parsed)

    def __str__(self) -> str:
        return self._text

    def __repr__(self) -> str:
        return f"Version({self._text!r})"


def parse_version(value: Union[str, Version]) -> Version:
    """Return *value* as a :class:`Version`, parsing strings."""
    if isinstance(value, Version):
        return value
    return Version(value)


def compare(v1: Version, v2: Version) -> Ordering:
    """Compare two versions by precedence, ignoring build metadata.

    Example::

        >>> compare(Version("1.9"), Version("1.10"))
        <Ordering.LESS: -1>
    """
    if v1.precedence < v2.precedence:
        return Ordering.LESS
    if v1.precedence > v2.precedence:
        return Ordering.GREATER
    return Ordering.EQUAL


def sort_versions(
    versions: Iterable[Version],
    *,
    descending: bool = False,
) -> List[Version]:
    """Sort by precedence while keeping declaration order among equals.

    ``sorted`` is stable, so versions that compare :attr:`Ordering.EQUAL`
    (differing only in build metadata) keep the order in which the package
    source listed them, in both directions.
    """
    return sorted(versions, key=lambda v: v.precedence, reverse=descending)
