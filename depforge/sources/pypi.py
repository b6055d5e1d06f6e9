"""PyPI-backed package source.

Answers resolver queries from the PyPI JSON API:

- ``/pypi/{name}/json`` → version listing (``releases`` keys, in the order
  PyPI returns them). Releases without uploaded files and versions that do
  not parse are skipped; pre-releases are skipped unless requested.
- ``/pypi/{name}/{version}/json`` → ``info.requires_dist`` of one version.
  Only base dependencies are kept: entries that only apply with an ``extra``
  are dropped and the remaining environment markers are evaluated against
  the running interpreter.

Registry failures are translated into the source error taxonomy: ``404``
becomes :class:`~depforge.exceptions.SourceNotFound`, everything else
:class:`~depforge.exceptions.SourceUnavailable`.

Typical usage::

    async with HTTPClient() as client:
        source = PyPISource(client)
        report = await Resolver(source).resolve(["flask>=2"])
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from packaging.markers import InvalidMarker, UndefinedEnvironmentName
from packaging.requirements import InvalidRequirement
from packaging.requirements import Requirement as PEP508Requirement

from depforge.constants import PYPI_JSON_API, PYPI_VERSION_JSON_API
from depforge.core.source import PackageSource
from depforge.exceptions import (
    InvalidVersionError,
    InvalidVersionSetError,
    NetworkError,
    RegistryError,
    SourceNotFound,
    SourceUnavailable,
)
from depforge.models.requirement import Requirement, normalize_name
from depforge.models.version import Version
from depforge.utils.http import HTTPClient
from depforge.utils.logger import get_logger

logger = get_logger("pypi")

# Public API
__all__ = ["PyPISource", "parse_requires_dist"]


class PyPISource(PackageSource):
    """Package source reading the PyPI JSON API.

    Args:
        http_client: Client used for every request. When omitted, the
            source creates one and closes it in :meth:`aclose`.
        include_prereleases: Also list pre-release versions.
        index_url: ``/pypi/{package}/json`` URL template.
        version_url: ``/pypi/{package}/{version}/json`` URL template.
    """

    def __init__(
        self,
        http_client: Optional[HTTPClient] = None,
        *,
        include_prereleases: bool = False,
        index_url: str = PYPI_JSON_API,
        version_url: str = PYPI_VERSION_JSON_API,
    ) -> None:
        self._owns_client = http_client is None
        self.http_client = http_client or HTTPClient()
        self.include_prereleases = include_prereleases
        self.index_url = index_url
        self.version_url = version_url

    async def list_versions(self, name: str) -> List[Version]:
        normalized = normalize_name(name)
        data = await self._get_json(self.index_url.format(package=normalized), normalized)
        return self._parse_releases(normalized, data.get("releases") or {})

    async def requirements_of(self, name: str, version: Version) -> List[Requirement]:
        normalized = normalize_name(name)
        url = self.version_url.format(package=normalized, version=version.text)
        data = await self._get_json(url, normalized, version)
        info = data.get("info") or {}
        return parse_requires_dist(info.get("requires_dist") or [])

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        url: str,
        name: str,
        version: Optional[Version] = None,
    ) -> Dict[str, Any]:
        label = name if version is None else f"{name}=={version}"
        try:
            return await self.http_client.get_json(url, package=name)
        except RegistryError as exc:
            if exc.status_code == 404:
                raise SourceNotFound(
                    f"'{label}' not found on PyPI",
                    package_name=name,
                    version=str(version) if version is not None else None,
                ) from exc
            raise SourceUnavailable(
                f"PyPI error for '{label}': {exc.message}",
                package_name=name,
                version=str(version) if version is not None else None,
            ) from exc
        except NetworkError as exc:
            raise SourceUnavailable(
                f"PyPI unavailable for '{label}': {exc.message}",
                package_name=name,
                version=str(version) if version is not None else None,
            ) from exc

    def _parse_releases(self, name: str, releases: Dict[str, Any]) -> List[Version]:
        versions: List[Version] = []
        for text, files in releases.items():
            # Releases with no uploaded files cannot be installed
            if not files:
                continue
            try:
                version = Version(text)
            except InvalidVersionError:
                logger.debug("Skipping unparseable version %r of %s", text, name)
                continue
            if version.is_prerelease and not self.include_prereleases:
                continue
            versions.append(version)
        return versions


def parse_requires_dist(requires_dist: List[str]) -> List[Requirement]:
    """Convert PEP 508 ``requires_dist`` entries into base requirements.

    Entries that only apply with an ``extra``, entries whose marker does not hold
    for the running interpreter and entries that cannot be parsed are
    dropped.

    Example::

        >>> [str(r) for r in parse_requires_dist(["idna>=2.5", "PySocks; extra == 'socks'"])]
        ['idna>=2.5']
    """
    requirements: List[Requirement] = []
    for entry in requires_dist:
        try:
            parsed = PEP508Requirement(entry)
        except InvalidRequirement:
            logger.debug("Skipping unparseable requirement %r", entry)
            continue

        if parsed.marker is not None:
            # An empty extra keeps base dependencies and drops optional ones
            try:
                if not parsed.marker.evaluate({"extra": ""}):
                    continue
            except (InvalidMarker, UndefinedEnvironmentName):
                logger.debug("Skipping requirement with unusable marker %r", entry)
                continue

        try:
            requirement = Requirement(parsed.name, str(parsed.specifier))
        except InvalidVersionSetError:
            logger.debug("Skipping requirement with unsupported constraint %r", entry)
            continue
        if requirement not in requirements:
            requirements.append(requirement)
    return requirements
