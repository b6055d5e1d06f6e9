"""
Centralized constants for depforge.

This module defines immutable configuration values used across depforge,
including network settings, resolver defaults, configuration file names,
and logging formats. All values are intended to be treated as read-only.
"""

from typing import Final, Sequence

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = "depforge/{version}"

# ---------------------------------------------------------------------------
# Registry endpoints
# ---------------------------------------------------------------------------

#: Base URL for the PyPI JSON API.
PYPI_JSON_API: Final[str] = "https://pypi.org/pypi/{package}/json"

#: Per-version PyPI JSON API.
PYPI_VERSION_JSON_API: Final[str] = "https://pypi.org/pypi/{package}/{version}/json"

# ---------------------------------------------------------------------------
# HTTP configuration
# ---------------------------------------------------------------------------

#: Default network timeout in seconds.
DEFAULT_TIMEOUT: Final[int] = 30

#: Maximum number of retries for failed HTTP requests.
DEFAULT_MAX_RETRIES: Final[int] = 3

# ---------------------------------------------------------------------------
# Resolver defaults
# ---------------------------------------------------------------------------

#: Strategy used when neither config nor CLI selects one.
DEFAULT_STRATEGY: Final[str] = "highest"

#: Conflict handling policy used when none is selected.
DEFAULT_CONFLICT_POLICY: Final[str] = "backtrack"

#: Upper bound on backjumps before the session gives up (``None`` = unlimited).
DEFAULT_MAX_BACKJUMPS: Final[int] = 10_000

#: Maximum number of package source calls in flight at once.
DEFAULT_CONCURRENT_LIMIT: Final[int] = 10

#: Whether metadata for newly discovered packages is fetched speculatively.
DEFAULT_PREFETCH: Final[bool] = True

#: Whether project-local candidates are preferred over registry ones.
DEFAULT_PREFER_LOCAL: Final[bool] = False

#: Deepest nested placement the dedup strategy creates before sharing anyway.
MAX_NESTING_DEPTH: Final[int] = 32

#: Strategy names accepted by configuration and CLI.
STRATEGY_NAMES: Final[Sequence[str]] = ("highest", "lowest", "nearest", "dedup", "cdcl")

#: Conflict policies accepted by configuration and CLI.
CONFLICT_POLICIES: Final[Sequence[str]] = ("backtrack", "learn")

#: Requester label used for root requirements in reports.
ROOT_LABEL: Final[str] = "root"

#: Requester label used for configured pins in conflict evidence.
PIN_LABEL: Final[str] = "pin"

# ---------------------------------------------------------------------------
# Configuration files
# ---------------------------------------------------------------------------

#: Dedicated configuration file name.
CONFIG_FILE_NAME: Final[str] = "depforge.toml"

#: Environment variable holding an explicit configuration path.
CONFIG_ENV_VAR: Final[str] = "DEPFORGE_CONFIG"

# ---------------------------------------------------------------------------
# Security constraints
# ---------------------------------------------------------------------------

#: Maximum allowed file size (in bytes) when reading index files.
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024  # 10 MB

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
