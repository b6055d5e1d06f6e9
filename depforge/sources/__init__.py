"""Concrete package sources: file indexes and the PyPI registry."""

from depforge.sources.index_file import FileIndexSource, load_index
from depforge.sources.pypi import PyPISource, parse_requires_dist

__all__ = ["FileIndexSource", "PyPISource", "load_index", "parse_requires_dist"]
