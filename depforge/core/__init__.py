"""
Core functionality exports for depforge.

This module provides convenient access to the resolution subsystems.
Importing from here keeps user-facing imports clean and stable:

    from depforge.core import Resolver, ResolverConfig, InMemorySource
"""

from __future__ import annotations

from depforge.core.source import InMemorySource, PackageSource
from depforge.core.source_cache import SourceCache
from depforge.core.graph import DependencyGraph, NodeKey
from depforge.core.strategy import (
    DedupWithNesting,
    HighestFirst,
    LowestFirst,
    NearestWins,
    Strategy,
    get_strategy,
)
from depforge.core.report import LockEntry, Outcome, Report, ResolutionStats
from depforge.core.reporter import BaseReporter, RecordingReporter
from depforge.core.resolver import (
    Resolver,
    ResolverConfig,
    ResolverState,
    resolve,
    resolve_sync,
)

__all__ = [
    "PackageSource",
    "InMemorySource",
    "SourceCache",
    "DependencyGraph",
    "NodeKey",
    "Strategy",
    "HighestFirst",
    "LowestFirst",
    "NearestWins",
    "DedupWithNesting",
    "get_strategy",
    "Outcome",
    "LockEntry",
    "ResolutionStats",
    "Report",
    "BaseReporter",
    "RecordingReporter",
    "Resolver",
    "ResolverConfig",
    "ResolverState",
    "resolve",
    "resolve_sync",
]
