"""
Registry JSON client for network-backed package sources.

Every request a package source makes is a GET for one JSON document, so
the client exposes a single operation, :meth:`HTTPClient.get_json`.
Responses are handled by status:

- ``2xx``/``3xx``: the body is decoded and must be a JSON object;
- ``404``: :class:`~depforge.exceptions.RegistryError` tagged with the
  package being looked up, raised at once so the source can report the
  package (or version) as missing;
- ``429``: the client waits for ``Retry-After`` and asks again, up to
  :attr:`RetryPolicy.max_throttled` times;
- other ``4xx``: :class:`~depforge.exceptions.NetworkError`, no retry;
- ``5xx`` and transport failures: retried with exponential backoff, then
  :class:`~depforge.exceptions.NetworkError`.

A semaphore caps the number of requests in flight, which is what keeps a
prefetching resolver from flooding the registry.
"""

from __future__ import annotations

import httpx
import random
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, cast

from depforge.utils.logger import get_logger
from depforge.__version__ import __version__
from depforge.exceptions import NetworkError, RegistryError
from depforge.constants import (
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    USER_AGENT_TEMPLATE,
)

logger = get_logger("http")

__all__ = ["HTTPClient", "RetryPolicy"]


@dataclass(frozen=True)
class RetryPolicy:
    """How often, and after how long, a failed request is tried again.

    Attributes:
        max_retries: Retries after a server or transport failure.
        max_throttled: Retries after ``429 Too Many Requests``. Counted
            separately from *max_retries*.
        base_delay: Backoff before the first retry, doubled for each
            following one.
        jitter: Upper bound of the random delay added to each backoff.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    max_throttled: int = 5
    base_delay: float = 1.0
    jitter: float = 0.3

    def backoff(self, retry: int) -> float:
        """Delay before retry number *retry* (starting at 0)."""
        return self.base_delay * (2**retry) + random.uniform(0.0, self.jitter)

    @staticmethod
    def retry_after(response: httpx.Response) -> float:
        """Seconds a throttled *response* asks us to wait (1 when unstated)."""
        try:
            return max(0.0, float(response.headers.get("Retry-After", "1")))
        except ValueError:
            return 1.0


class HTTPClient:
    """Async client fetching JSON documents from a package registry.

    Args:
        timeout: Per-request timeout in seconds.
        retry: Retry behaviour; defaults to :class:`RetryPolicy()`.
        user_agent: ``User-Agent`` header value.
        max_concurrency: Maximum number of requests in flight.
        transport: httpx transport to send requests through, such as
            ``httpx.MockTransport``. HTTP/2 is used when omitted.

    Example:
        >>> async with HTTPClient() as client:
        ...     data = await client.get_json(
        ...         "https://pypi.org/pypi/attrs/json", package="attrs"
        ...     )
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry: Optional[RetryPolicy] = None,
        user_agent: Optional[str] = None,
        max_concurrency: int = DEFAULT_CONCURRENT_LIMIT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.user_agent = user_agent or USER_AGENT_TEMPLATE.format(version=__version__)
        self.max_concurrency = max_concurrency
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def __aenter__(self) -> "HTTPClient":
        self._open()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    def _open(self) -> httpx.AsyncClient:
        if self._client is None:
            options: Dict[str, Any] = {"http2": True}
            if self.transport is not None:
                options = {"transport": self.transport}
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                **options,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying connection pool; safe to call twice."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_json(self, url: str, *, package: Optional[str] = None) -> Dict[str, Any]:
        """Fetch *url* and return its body as a JSON object.

        Args:
            url: Document to fetch. Stray quotes and whitespace are removed.
            package: Package the document describes, attached to errors.

        Raises:
            RegistryError: The registry answered ``404``.
            NetworkError: Any other failure, once retries are used up.
        """
        url = url.strip().strip("\"'")
        response = await self._fetch(url, package)
        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Invalid JSON response from {url}",
                url=url,
                response_body=response.text,
            ) from exc
        if not isinstance(data, dict):
            raise NetworkError(
                f"Expected JSON object from {url}",
                url=url,
                response_body=response.text,
            )
        return cast(Dict[str, Any], data)

    async def _fetch(self, url: str, package: Optional[str]) -> httpx.Response:
        client = self._open()
        policy = self.retry
        failures = 0
        throttled = 0

        while True:
            cause: Optional[Exception] = None
            try:
                async with self._semaphore:
                    response = await client.get(url)
            except httpx.TransportError as exc:
                cause = exc
                problem = f"{type(exc).__name__}: {exc}"
            else:
                status = response.status_code
                if status < 400:
                    return response
                if status == 429:
                    throttled += 1
                    if throttled > policy.max_throttled:
                        raise NetworkError(
                            f"Rate limit exceeded after {policy.max_throttled} retries",
                            url=url,
                            status_code=429,
                        )
                    wait = policy.retry_after(response)
                    logger.warning(
                        "Rate limited, retrying after %gs (%d/%d): %s",
                        wait,
                        throttled,
                        policy.max_throttled,
                        url,
                    )
                    await asyncio.sleep(wait)
                    continue
                if status == 404:
                    raise RegistryError(
                        f"Not found on registry: {url}",
                        package_name=package,
                        url=url,
                        status_code=404,
                    )
                if status < 500:
                    raise NetworkError(
                        f"HTTP {status} error for {url}",
                        url=url,
                        status_code=status,
                        response_body=response.text,
                    )
                problem = f"HTTP {status}"

            failures += 1
            if failures > policy.max_retries:
                raise NetworkError(
                    f"Request failed after {failures} attempts: {url}",
                    url=url,
                ) from cause
            wait = policy.backoff(failures - 1)
            logger.warning(
                "%s (%d/%d), retrying in %.2fs: %s",
                problem,
                failures,
                policy.max_retries,
                wait,
                url,
            )
            await asyncio.sleep(wait)
