"""Package source interface consumed by the resolver.

The resolver never talks to a registry directly. Everything it knows about
packages comes from a :class:`PackageSource`, whose two queries may be slow
or remote and are therefore ``async``:

- :meth:`PackageSource.list_versions`: candidate versions of a package,
  in whatever order the source can provide cheaply (declaration order is
  used as the tie-break between versions of equal precedence);
- :meth:`PackageSource.requirements_of`: the requirements declared by one
  version.

Failures are reported with :class:`~depforge.exceptions.SourceNotFound`
(no such package / version) and
:class:`~depforge.exceptions.SourceUnavailable` (could not answer).

:class:`InMemorySource` is the reference implementation used by the file
index, tests and embedding code.

Typical usage::

    source = InMemorySource({
        "a": {"1.0": ["b>=1.0"], "1.5": ["b>=1.0"]},
        "b": {"1.0": [], "2.0": []},
    })
    versions = await source.list_versions("a")
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from depforge.exceptions import SourceError, SourceNotFound
from depforge.models.requirement import Requirement, normalize_name
from depforge.models.version import Version, parse_version

# Public API
__all__ = ["PackageSource", "InMemorySource"]

RequirementLike = Union[str, Requirement]
VersionLike = Union[str, Version]


class PackageSource(ABC):
    """Abstract collaborator supplying package metadata."""

    @abstractmethod
    async def list_versions(self, name: str) -> Iterable[Version]:
        """Return the candidate versions of *name*.

        Raises:
            SourceNotFound: The package does not exist.
            SourceUnavailable: The source could not be queried.
        """

    @abstractmethod
    async def requirements_of(self, name: str, version: Version) -> Iterable[Requirement]:
        """Return the requirements declared by *name* at *version*.

        Raises:
            SourceNotFound: The version does not exist.
            SourceUnavailable: The source could not be queried.
        """

    def is_local(self, name: str, version: Version) -> bool:
        """Whether this candidate is project-local (workspace, path, ...)."""
        return False

    async def aclose(self) -> None:
        """Release any resources held by the source."""


class InMemorySource(PackageSource):
    """Dictionary-backed package source.

    Args:
        packages: ``{name: {version: [requirement, ...]}}``. Version order
            in each inner mapping is the declaration order reported by
            :meth:`list_versions`.
        local: ``(name, version)`` pairs (or bare names) considered
            project-local.
        latency: Seconds every query sleeps before answering.

    Example::

        >>> source = InMemorySource({"a": {"1.0": ["b"]}, "b": {"1.0": []}})
        >>> source.fail("b", SourceUnavailable("registry down", package_name="b"))
    """

    def __init__(
        self,
        packages: Optional[Mapping[str, Mapping[VersionLike, Iterable[RequirementLike]]]] = None,
        *,
        local: Iterable[Union[str, Tuple[str, VersionLike]]] = (),
        latency: float = 0.0,
    ) -> None:
        self._packages: Dict[str, Dict[Version, List[Requirement]]] = {}
        self._local_names: Set[str] = set()
        self._local_versions: Set[Tuple[str, Version]] = set()
        self._failures: Dict[Tuple[str, Optional[Version]], SourceError] = {}
        self.latency = latency
        self.calls: List[Tuple[str, Optional[Version]]] = []

        for name, versions in (packages or {}).items():
            for version, requirements in versions.items():
                self.add(name, version, requirements)
            if not versions:
                self._packages.setdefault(normalize_name(name), {})

        for entry in local:
            self.mark_local(*((entry,) if isinstance(entry, str) else entry))

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------

    def add(
        self,
        name: str,
        version: VersionLike,
        requirements: Iterable[RequirementLike] = (),
    ) -> None:
        """Declare *name* at *version* with its requirements."""
        parsed = parse_version(version)
        self._packages.setdefault(normalize_name(name), {})[parsed] = [
            Requirement.coerce(req) for req in requirements
        ]

    def mark_local(self, name: str, version: Optional[VersionLike] = None) -> None:
        """Flag a package (or a single version of it) as project-local."""
        normalized = normalize_name(name)
        if version is None:
            self._local_names.add(normalized)
        else:
            self._local_versions.add((normalized, parse_version(version)))

    def fail(
        self,
        name: str,
        error: SourceError,
        version: Optional[VersionLike] = None,
    ) -> None:
        """Make queries for *name* (or one version of it) raise *error*."""
        key = (normalize_name(name), parse_version(version) if version is not None else None)
        self._failures[key] = error

    @property
    def names(self) -> List[str]:
        return list(self._packages)

    # ------------------------------------------------------------------
    # PackageSource interface
    # ------------------------------------------------------------------

    async def list_versions(self, name: str) -> List[Version]:
        normalized = normalize_name(name)
        await self._answer(normalized, None)
        versions = self._packages.get(normalized)
        if versions is None:
            raise SourceNotFound(f"Package '{name}' not found", package_name=normalized)
        return list(versions)

    async def requirements_of(self, name: str, version: Version) -> List[Requirement]:
        normalized = normalize_name(name)
        await self._answer(normalized, version)
        versions = self._packages.get(normalized, {})
        if version not in versions:
            raise SourceNotFound(
                f"Version {version} of '{name}' not found",
                package_name=normalized,
                version=str(version),
            )
        return list(versions[version])

    def is_local(self, name: str, version: Version) -> bool:
        normalized = normalize_name(name)
        return normalized in self._local_names or (normalized, version) in self._local_versions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _answer(self, name: str, version: Optional[Version]) -> None:
        self.calls.append((name, version))
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        # A package-wide failure also covers its per-version queries
        error = self._failures.get((name, version)) or self._failures.get((name, None))
        if error is not None:
            raise error
