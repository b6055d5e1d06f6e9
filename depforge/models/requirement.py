"""
Requirement data model for depforge.

A requirement is a package name paired with the :class:`VersionSet` its
requester accepts. Requirements are value objects: who declared them and
when is tracked by the dependency graph's edges, not here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from depforge.exceptions import InvalidVersionSetError
from depforge.models.version_set import VersionSet

__all__ = ["Requirement", "normalize_name"]

_NAME_RE = re.compile(r"^\s*(?P<name>[A-Za-z0-9@](?:[A-Za-z0-9._/-]*[A-Za-z0-9])?)\s*(?P<rest>.*)$")
_SEPARATORS_RE = re.compile(r"[-_.]+")


def normalize_name(name: str) -> str:
    """Normalize a package name according to PEP 503.

    Example::

        >>> normalize_name("Flask_Login")
        'flask-login'
    """
    return _SEPARATORS_RE.sub("-", name.strip()).lower()


@dataclass(frozen=True)
class Requirement:
    """A (package name, version set) pair.

    Attributes:
        name: Normalized package name.
        versions: Accepted versions.

    Example::

        >>> req = Requirement.parse("Requests>=2.0,<3")
        >>> req.name
        'requests'
        >>> str(req)
        'requests>=2.0,<3'
    """

    name: str
    versions: VersionSet = field(default_factory=VersionSet.any)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", normalize_name(self.name))
        if not isinstance(self.versions, VersionSet):
            object.__setattr__(self, "versions", VersionSet.parse(self.versions))

    @classmethod
    def parse(cls, text: str) -> "Requirement":
        """Parse ``name<constraint>`` text such as ``"a>=1.0,<2.0"``.

        A bare name means any version. The constraint may also follow a
        space or an ``@`` (``"left-pad ^1.3"``, ``"left-pad@^1.3"``).

        Raises:
            InvalidVersionSetError: If the text has no name or the
                constraint cannot be parsed.
        """
        match = _NAME_RE.match(text)
        if not match:
            raise InvalidVersionSetError(
                f"Cannot parse requirement {text!r}", expression=text
            )
        name, rest = match.group("name"), match.group("rest").strip()
        if rest.startswith("@"):
            rest = rest[1:].strip()
        return cls(name, VersionSet.parse(rest))

    @classmethod
    def coerce(cls, value: Union[str, "Requirement"]) -> "Requirement":
        return value if isinstance(value, Requirement) else cls.parse(value)

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "versions": str(self.versions)}

    def __str__(self) -> str:
        constraint = str(self.versions)
        if constraint == "*":
            return self.name
        if constraint[0].isdigit():
            return f"{self.name} {constraint}"
        return f"{self.name}{constraint}"

    def __repr__(self) -> str:
        return f"Requirement(name={self.name!r}, versions={self.versions.canonical()!r})"
