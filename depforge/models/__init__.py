"""
Unified data model exports for depforge.

This module re-exports the value types shared by every engine so callers
can import them directly from ``depforge.models``.

Example:
    >>> from depforge.models import Requirement, Version, VersionSet
"""

from __future__ import annotations

from depforge.models.version import Ordering, Version, compare, parse_version
from depforge.models.version_set import VersionSet, intersect
from depforge.models.requirement import Requirement, normalize_name
from depforge.models.conflict import ConflictChain, ConflictLink

__all__ = [
    "Ordering",
    "Version",
    "compare",
    "parse_version",
    "VersionSet",
    "intersect",
    "Requirement",
    "normalize_name",
    "ConflictChain",
    "ConflictLink",
]
