"""File-backed package index.

Loads a complete package universe from a TOML or JSON document so that
resolutions can be run offline, reproduced in bug reports and used in
tests. The layout is the same for both formats::

    # index.toml
    local = ["mylib"]            # optional: project-local packages

    [packages.a]
    "1.0" = ["b>=1.0"]
    "1.5" = ["b>=1.0"]

    [packages.b]
    "1.0" = []
    "2.0" = []

``local`` entries are either a bare name (every version is local) or
``name==version``. Version order inside each package table is the
declaration order reported to the resolver.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import tomli as tomllib

from depforge.constants import MAX_FILE_SIZE
from depforge.core.source import InMemorySource
from depforge.exceptions import InvalidVersionError, InvalidVersionSetError, ParseError
from depforge.models.requirement import normalize_name
from depforge.models.version import Version
from depforge.utils.logger import get_logger

logger = get_logger("index_file")

# Public API
__all__ = ["FileIndexSource", "load_index"]

PathLike = Union[str, Path]


def load_index(path: PathLike) -> Dict[str, Any]:
    """Read and decode an index document.

    The format is chosen by extension: ``.json`` is JSON, anything else is
    TOML.

    Raises:
        ParseError: If the file is missing, too large or malformed.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise ParseError(f"Index file not found: {file_path}", file_path=str(file_path))

    size = file_path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ParseError(
            f"Index file too large ({size} bytes, limit {MAX_FILE_SIZE})",
            file_path=str(file_path),
        )

    try:
        if file_path.suffix.lower() == ".json":
            data = json.loads(file_path.read_text(encoding="utf-8"))
        else:
            with open(file_path, "rb") as fh:
                data = tomllib.load(fh)
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"Cannot read index file: {exc}", file_path=str(file_path)) from exc
    except json.JSONDecodeError as exc:
        raise ParseError(
            f"Invalid JSON in index file: {exc.msg}",
            line_number=exc.lineno,
            file_path=str(file_path),
        ) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ParseError(f"Invalid TOML in index file: {exc}", file_path=str(file_path)) from exc

    if not isinstance(data, dict):
        raise ParseError("Index document must be a table / object", file_path=str(file_path))
    return data


class FileIndexSource(InMemorySource):
    """In-memory source populated from an index file.

    Args:
        path: TOML or JSON index file.

    Raises:
        ParseError: If the file cannot be read or does not follow the
            index layout.
    """

    def __init__(self, path: PathLike) -> None:
        super().__init__()
        self.path = Path(path)
        data = load_index(self.path)
        self._populate(data)
        logger.debug("Loaded %d package(s) from %s", len(self.names), self.path)

    def _populate(self, data: Mapping[str, Any]) -> None:
        packages = data.get("packages")
        if not isinstance(packages, dict):
            raise ParseError("Index is missing a 'packages' table", file_path=str(self.path))

        for name, versions in packages.items():
            if not isinstance(versions, dict):
                raise ParseError(
                    f"Package '{name}' must map versions to requirement lists",
                    file_path=str(self.path),
                )
            if not versions:
                self._packages.setdefault(normalize_name(name), {})
            for version, requirements in versions.items():
                self._add_entry(name, version, requirements)

        local = data.get("local", [])
        if not isinstance(local, list):
            raise ParseError("'local' must be a list", file_path=str(self.path))
        for entry in local:
            name, _, version = str(entry).partition("==")
            try:
                self.mark_local(name.strip(), version.strip() or None)
            except InvalidVersionError as exc:
                raise ParseError(
                    f"Invalid local entry {entry!r}: {exc.message}",
                    file_path=str(self.path),
                ) from exc

    def _add_entry(self, name: str, version: str, requirements: Any) -> None:
        if not isinstance(requirements, list):
            raise ParseError(
                f"{name}=={version}: requirements must be a list",
                file_path=str(self.path),
            )
        entries: List[str] = [str(req) for req in requirements]
        try:
            parsed = Version(version)
            self._reject_duplicate(name, parsed, entries)
            self.add(name, parsed, entries)
        except (InvalidVersionError, InvalidVersionSetError) as exc:
            raise ParseError(
                f"{name}=={version}: {exc.message}",
                line_content=", ".join(entries),
                file_path=str(self.path),
            ) from exc

    def _reject_duplicate(self, name: str, version: Version, entries: List[str]) -> None:
        # "1.0" and "1.0.0" are the same version and would share one slot
        for existing in self._packages.get(normalize_name(name), {}):
            if existing == version:
                raise ParseError(
                    f"{name}=={version}: duplicate of version {existing.text!r}",
                    line_content=", ".join(entries),
                    file_path=str(self.path),
                )
