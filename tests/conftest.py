"""Shared fixtures for the depforge test-suite."""

from __future__ import annotations

import pytest

from depforge.core.source import InMemorySource


@pytest.fixture
def two_level_source() -> InMemorySource:
    """``a`` in two versions, both needing ``b>=1.0``; ``b`` in 1.0 and 2.0."""
    return InMemorySource(
        {
            "a": {"1.0": ["b>=1.0"], "1.5": ["b>=1.0"]},
            "b": {"1.0": [], "2.0": []},
        }
    )


@pytest.fixture
def diamond_conflict_source() -> InMemorySource:
    """``a`` and ``b`` each demand a different exact version of ``c``."""
    return InMemorySource(
        {
            "a": {"1.0": ["c==1.0"]},
            "b": {"1.0": ["c==2.0"]},
            "c": {"1.0": [], "2.0": []},
        }
    )
