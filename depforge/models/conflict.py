"""
Conflict evidence models for depforge.

When a resolution fails, the engines hand back a :class:`ConflictChain`:
an ordered, de-duplicated list of :class:`ConflictLink` steps that, read
top to bottom, explains why no assignment exists. Each link names the
constrained package, the constraint, and who imposed it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from depforge.constants import PIN_LABEL, ROOT_LABEL
from depforge.models.requirement import normalize_name


@dataclass(frozen=True)
class ConflictLink:
    """One step of a conflict narrative.

    Args:
        package: Package being constrained.
        requirement: Constraint text imposed on *package*.
        requester: ``"root"``, ``"name==version"`` of the declaring
            package, or ``None`` when the link records that no acceptable
            version of *package* exists at all.
    """

    package: str
    requirement: str
    requester: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "package", normalize_name(self.package))

    def is_root(self) -> bool:
        return self.requester == ROOT_LABEL

    def to_display_string(self) -> str:
        """Return a human-readable description of the link."""
        constraint = self.requirement if self.requirement != "*" else "any version"
        if self.requester is None:
            return f"no available version of {self.package} matches {constraint}"
        if self.is_root():
            return f"the root requires {self.package} {constraint}"
        if self.requester == PIN_LABEL:
            return f"{self.package} is pinned to {constraint}"
        return f"{self.requester} requires {self.package} {constraint}"

    def to_json(self) -> Dict[str, Optional[str]]:
        """Return a JSON-serializable representation."""
        return {
            "package": self.package,
            "requirement": self.requirement,
            "requester": self.requester,
        }

    def __str__(self) -> str:
        return self.to_display_string()


@dataclass
class ConflictChain:
    """Ordered collection of conflict links with insertion de-duplication.

    Args:
        links: Initial links; duplicates are dropped keeping the first.
    """

    links: List[ConflictLink] = field(default_factory=list)

    def __post_init__(self) -> None:
        initial, self.links = self.links, []
        self.extend(initial)

    def add(self, link: ConflictLink) -> None:
        """Append *link* unless an identical link is already present."""
        if link not in self.links:
            self.links.append(link)

    def extend(self, links: Iterable[ConflictLink]) -> None:
        for link in links:
            self.add(link)

    def packages(self) -> List[str]:
        """Every package mentioned, as constrained package or requester."""
        seen: List[str] = []
        for link in self.links:
            for name in (_requester_name(link.requester), link.package):
                if name and name not in seen:
                    seen.append(name)
        return seen

    def requirements_on(self, package: str) -> List[str]:
        """Constraint texts imposed on *package*, in chain order."""
        target = normalize_name(package)
        return [link.requirement for link in self.links if link.package == target]

    def to_json(self) -> List[Dict[str, Optional[str]]]:
        return [link.to_json() for link in self.links]

    def to_lines(self) -> List[str]:
        return [link.to_display_string() for link in self.links]

    def has_conflicts(self) -> bool:
        return bool(self.links)

    def __len__(self) -> int:
        return len(self.links)

    def __iter__(self) -> Iterator[ConflictLink]:
        return iter(self.links)


def _requester_name(requester: Optional[str]) -> Optional[str]:
    if requester is None or requester in (ROOT_LABEL, PIN_LABEL):
        return None
    # Nested labels look like "b/c==2.0"
    name, _, _ = requester.partition("==")
    return name.rsplit("/", 1)[-1]

