"""
depforge: multi-strategy dependency resolver

depforge selects one version per package (or per nested placement) such
that every requirement is satisfied, using a configurable selection
strategy and conflict policy.

Features include:
    • Highest-first, lowest-first, nearest-wins and dedup-with-nesting strategies
    • Backjumping search and PubGrub-style clause learning
    • Human-readable conflict explanations
    • Cooperative cancellation and timeouts
    • File index and PyPI package sources
"""

from __future__ import annotations

from depforge.__version__ import __version__
from depforge.core import (
    InMemorySource,
    PackageSource,
    Report,
    Resolver,
    ResolverConfig,
    resolve,
    resolve_sync,
)

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "depforge Contributors"
__license__ = "Apache-2.0"
__description__ = "Multi-strategy dependency resolver with conflict explanations."

__all__ = [
    "__version__",
    "PackageSource",
    "InMemorySource",
    "Report",
    "Resolver",
    "ResolverConfig",
    "resolve",
    "resolve_sync",
]
