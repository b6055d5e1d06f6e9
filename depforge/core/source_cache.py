"""Session-scoped metadata cache in front of a :class:`PackageSource`.

Provides a unified, async-safe cache so that every engine step, every
strategy query and every speculative prefetch share a single source call
per ``name`` (version listing) and per ``(name, version)`` (requirements).

The cache stores *tasks*, not values: a query that is already in flight is
joined rather than repeated, and a finished task simply returns its result
(or re-raises its failure) when awaited again. Prefetching therefore costs
nothing extra when the resolver later consumes the same data, and a
prefetch failure surfaces only when, and if, that data is actually
consumed.

Failure handling:

- ``SourceNotFound`` for a package becomes an empty version list;
- ``SourceNotFound`` for a version becomes ``None`` (candidate unusable);
- ``SourceUnavailable`` propagates to the consumer and aborts the session.

One cache belongs to exactly one resolution session and is closed with it;
it is never shared between sessions.

Typical usage::

    cache = SourceCache(source, concurrent_limit=5)
    cache.prefetch(["flask", "click", "jinja2"])   # fire and forget
    versions = await cache.versions("flask")       # joins the prefetch
    await cache.aclose()
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from depforge.core.source import PackageSource
from depforge.exceptions import SourceNotFound
from depforge.models.requirement import Requirement, normalize_name
from depforge.models.version import Version
from depforge.utils.logger import get_logger

logger = get_logger("source_cache")

# Public API
__all__ = ["SourceCache"]

_Key = Union[str, Tuple[str, Version]]


class SourceCache:
    """Async-safe, per-session cache for package source answers.

    A :class:`asyncio.Semaphore` bounds the number of source calls in
    flight; joining in-flight tasks prevents duplicate requests when several
    coroutines ask for the same package simultaneously.

    Args:
        source: The package source to query.
        concurrent_limit: Maximum number of source calls in flight at once.
            Defaults to ``10``.
    """

    def __init__(self, source: PackageSource, concurrent_limit: int = 10) -> None:
        self.source = source
        self._semaphore = asyncio.Semaphore(concurrent_limit)
        self._tasks: Dict[_Key, "asyncio.Task[Any]"] = {}
        self.fetch_count: int = 0
        self._closed = False

    # ------------------------------------------------------------------
    # Public async accessors
    # ------------------------------------------------------------------

    async def versions(self, name: str) -> List[Version]:
        """Return the candidate versions of *name* in source order.

        An unknown package yields ``[]``.

        Raises:
            SourceUnavailable: The source could not answer.
        """
        normalized = normalize_name(name)
        return await self._join(normalized, lambda: self._fetch_versions(normalized))

    async def requirements(self, name: str, version: Version) -> Optional[List[Requirement]]:
        """Return the requirements of *name* at *version*.

        Returns ``None`` when the source does not know that version, which
        callers treat as "this candidate does not exist".

        Raises:
            SourceUnavailable: The source could not answer.
        """
        normalized = normalize_name(name)
        return await self._join(
            (normalized, version),
            lambda: self._fetch_requirements(normalized, version),
        )

    def prefetch(self, names: Iterable[str]) -> None:
        """Start version listings for *names* without waiting for them."""
        for name in names:
            normalized = normalize_name(name)
            self._start(normalized, lambda n=normalized: self._fetch_versions(n))

    def prefetch_requirements(self, pairs: Iterable[Tuple[str, Version]]) -> None:
        """Start requirement queries for ``(name, version)`` pairs."""
        for name, version in pairs:
            normalized = normalize_name(name)
            self._start(
                (normalized, version),
                lambda n=normalized, v=version: self._fetch_requirements(n, v),
            )

    # ------------------------------------------------------------------
    # Public synchronous accessors (cache-only, no I/O)
    # ------------------------------------------------------------------

    def cached_versions(self, name: str) -> Optional[List[Version]]:
        """Return the listing for *name* if it already completed successfully."""
        return self._completed(normalize_name(name))

    def cached_requirements(self, name: str, version: Version) -> Optional[List[Requirement]]:
        """Return requirements if already fetched, else ``None``."""
        return self._completed((normalize_name(name), version))

    def is_local(self, name: str, version: Version) -> bool:
        return self.source.is_local(normalize_name(name), version)

    @property
    def in_flight(self) -> int:
        """Number of source calls started but not finished."""
        return sum(1 for task in self._tasks.values() if not task.done())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel in-flight calls and drop every cached answer."""
        self._closed = True
        pending = [task for task in self._tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.debug("Discarded %d in-flight source call(s)", len(pending))
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Task bookkeeping (private)
    # ------------------------------------------------------------------

    def _start(self, key: _Key, factory: Callable[[], Awaitable[Any]]) -> "asyncio.Task[Any]":
        task = self._tasks.get(key)
        if task is None:
            if self._closed:
                raise RuntimeError("SourceCache is closed")
            task = asyncio.ensure_future(self._bounded(factory))
            # Retrieve failures of tasks nobody awaits so asyncio stays quiet
            task.add_done_callback(_consume_exception)
            self._tasks[key] = task
        return task

    async def _join(self, key: _Key, factory: Callable[[], Awaitable[Any]]) -> Any:
        # Shield: a cancelled consumer must not cancel a shared fetch
        return await asyncio.shield(self._start(key, factory))

    def _completed(self, key: _Key) -> Any:
        task = self._tasks.get(key)
        if task is None or not task.done() or task.cancelled() or task.exception():
            return None
        return task.result()

    async def _bounded(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        async with self._semaphore:
            self.fetch_count += 1
            return await factory()

    # ------------------------------------------------------------------
    # Source calls (private)
    # ------------------------------------------------------------------

    async def _fetch_versions(self, name: str) -> List[Version]:
        try:
            versions = list(await self.source.list_versions(name))
        except SourceNotFound:
            logger.debug("Package %s not found; no candidates", name)
            return []
        logger.debug("Fetched %d version(s) of %s", len(versions), name)
        return versions

    async def _fetch_requirements(self, name: str, version: Version) -> Optional[List[Requirement]]:
        try:
            return list(await self.source.requirements_of(name, version))
        except SourceNotFound:
            logger.debug("%s==%s not found; candidate dropped", name, version)
            return None


def _consume_exception(task: "asyncio.Task[Any]") -> None:
    if not task.cancelled():
        task.exception()
