"""Configuration file loader for depforge.

Handles discovery, loading, parsing, and validation of configuration files.
Supports two formats:

- ``depforge.toml``: settings under ``[depforge]`` table
- ``pyproject.toml``: settings under ``[tool.depforge]`` table

Discovery order:

1. Explicit path from ``--config`` or ``DEPFORGE_CONFIG``
2. ``depforge.toml`` in current directory
3. ``pyproject.toml`` with ``[tool.depforge]`` section

Configuration precedence: defaults < config file < environment < CLI args.

Typical usage::

    config = load_config()  # Auto-discover
    config = load_config(Path("custom.toml"))  # Explicit path
    resolver_config = config.to_resolver_config(strategy="lowest")

Example (``depforge.toml``)::

    [depforge]
    strategy = "lowest"
    conflict_policy = "learn"
    max_backjumps = 5000
    index = "packages.toml"

    [depforge.pins]
    urllib3 = "<2"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import tomli as tomllib

from depforge.constants import (
    CONFIG_FILE_NAME,
    CONFLICT_POLICIES,
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_CONFLICT_POLICY,
    DEFAULT_MAX_BACKJUMPS,
    DEFAULT_PREFER_LOCAL,
    DEFAULT_PREFETCH,
    DEFAULT_STRATEGY,
    STRATEGY_NAMES,
)
from depforge.core.resolver import ResolverConfig
from depforge.exceptions import ConfigError
from depforge.utils.logger import get_logger

logger = get_logger("config")


@dataclass
class DepForgeConfig:
    """Parsed and validated depforge configuration.

    Contains settings from ``depforge.toml`` or ``pyproject.toml``.
    All fields have defaults, so empty config files are valid.

    Attributes:
        strategy: Candidate selection strategy name.
        conflict_policy: ``backtrack`` or ``learn``.
        max_backjumps: Backjump budget; ``None`` disables the limit.
        prefer_local: Prefer project-local candidates.
        prefetch: Fetch metadata speculatively.
        concurrent_limit: Maximum source calls in flight.
        timeout: Seconds before a resolution is cancelled.
        index: Package index file used when no source is given on the
            command line (relative paths are relative to the config file).
        pins: Package name to constraint it is restricted to.
        source_path: Path to loaded config file, or ``None`` if using defaults.
    """

    strategy: str = DEFAULT_STRATEGY
    conflict_policy: str = DEFAULT_CONFLICT_POLICY
    max_backjumps: Optional[int] = DEFAULT_MAX_BACKJUMPS
    prefer_local: bool = DEFAULT_PREFER_LOCAL
    prefetch: bool = DEFAULT_PREFETCH
    concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT
    timeout: Optional[float] = None
    index: Optional[Path] = None
    pins: Dict[str, str] = field(default_factory=dict)

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary for debug logging.

        Excludes ``source_path`` metadata.
        """
        return {
            "strategy": self.strategy,
            "conflict_policy": self.conflict_policy,
            "max_backjumps": self.max_backjumps,
            "prefer_local": self.prefer_local,
            "prefetch": self.prefetch,
            "concurrent_limit": self.concurrent_limit,
            "timeout": self.timeout,
            "index": str(self.index) if self.index else None,
            "pins": dict(self.pins),
        }

    def to_resolver_config(self, **overrides: Any) -> ResolverConfig:
        """Build a :class:`ResolverConfig`, letting *overrides* win.

        ``None`` overrides are ignored so that unset CLI options fall back
        to the file values. ``pins`` overrides are merged on top of the
        configured pins.

        Raises:
            ConfigError: If the combined options are invalid.
        """
        values: Dict[str, Any] = {
            "strategy": self.strategy,
            "conflict_policy": self.conflict_policy,
            "max_backjumps": self.max_backjumps,
            "prefer_local": self.prefer_local,
            "prefetch": self.prefetch,
            "concurrent_limit": self.concurrent_limit,
            "timeout": self.timeout,
            "pins": dict(self.pins),
        }
        for key, value in overrides.items():
            if key not in values:
                raise ConfigError(f"Unknown resolver option: {key}", option=key)
            if value is None:
                continue
            if key == "pins":
                values["pins"].update(value)
            else:
                values[key] = value

        config = ResolverConfig(**values)
        config.validate()
        return config


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Search order:

    1. ``explicit_path`` (from ``--config`` or ``DEPFORGE_CONFIG``)
    2. ``depforge.toml`` in current directory
    3. ``pyproject.toml`` with ``[tool.depforge]`` section in current directory

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    depforge_toml = cwd / CONFIG_FILE_NAME
    if depforge_toml.is_file():
        logger.debug("Found %s: %s", CONFIG_FILE_NAME, depforge_toml)
        return depforge_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file() and _pyproject_has_depforge_section(pyproject_toml):
        logger.debug("Found [tool.depforge] in pyproject.toml: %s", pyproject_toml)
        return pyproject_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_depforge_section(path: Path) -> bool:
    """Check if pyproject.toml contains a ``[tool.depforge]`` section.

    Parse errors count as "no section" so that a broken unrelated
    pyproject.toml does not stop the CLI.
    """
    try:
        raw = _read_toml(path)
    except ConfigError:
        return False
    tool = raw.get("tool", {})
    return isinstance(tool, dict) and "depforge" in tool


def load_config(config_path: Optional[Path] = None) -> DepForgeConfig:
    """Load and validate depforge configuration.

    Returns config with defaults if no file is found.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return DepForgeConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    if resolved.name == "pyproject.toml":
        section = raw.get("tool", {}).get("depforge", {})
    else:
        section = raw.get("depforge", {})

    if not section:
        logger.debug("Config file found but no depforge section, using defaults")
        return DepForgeConfig(source_path=resolved)

    config = _parse_section(section, config_path=resolved)
    config.source_path = resolved

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


_KNOWN_KEYS = frozenset(
    {
        "strategy",
        "conflict_policy",
        "max_backjumps",
        "prefer_local",
        "prefetch",
        "concurrent_limit",
        "timeout",
        "index",
        "pins",
    }
)


def _parse_section(section: Dict[str, Any], *, config_path: Path) -> DepForgeConfig:
    """Parse and validate a ``[depforge]`` / ``[tool.depforge]`` table.

    Raises:
        ConfigError: Unknown keys, incorrect types or invalid values.
    """
    path_text = str(config_path)
    config = DepForgeConfig()

    unknown = set(section) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            config_path=path_text,
        )

    def fail(option: str, message: str) -> ConfigError:
        return ConfigError(message, config_path=path_text, option=option)

    if "strategy" in section:
        val = section["strategy"]
        if not isinstance(val, str):
            raise fail("strategy", f"strategy must be a string, got {type(val).__name__}")
        if val not in STRATEGY_NAMES:
            raise fail(
                "strategy",
                f"Unknown strategy '{val}'. Valid strategies: {', '.join(STRATEGY_NAMES)}",
            )
        config.strategy = val

    if "conflict_policy" in section:
        val = section["conflict_policy"]
        if not isinstance(val, str):
            raise fail(
                "conflict_policy",
                f"conflict_policy must be a string, got {type(val).__name__}",
            )
        if val not in CONFLICT_POLICIES:
            raise fail(
                "conflict_policy",
                f"Unknown conflict policy '{val}'. Valid policies: {', '.join(CONFLICT_POLICIES)}",
            )
        config.conflict_policy = val

    if "max_backjumps" in section:
        val = section["max_backjumps"]
        # bool is an int subclass
        if isinstance(val, bool) or not isinstance(val, int):
            raise fail(
                "max_backjumps",
                f"max_backjumps must be an integer, got {type(val).__name__}",
            )
        if val < 0:
            raise fail("max_backjumps", "max_backjumps must not be negative")
        config.max_backjumps = val

    for option in ("prefer_local", "prefetch"):
        if option in section:
            val = section[option]
            if not isinstance(val, bool):
                raise fail(option, f"{option} must be a boolean, got {type(val).__name__}")
            setattr(config, option, val)

    if "concurrent_limit" in section:
        val = section["concurrent_limit"]
        if isinstance(val, bool) or not isinstance(val, int):
            raise fail(
                "concurrent_limit",
                f"concurrent_limit must be an integer, got {type(val).__name__}",
            )
        if val < 1:
            raise fail("concurrent_limit", "concurrent_limit must be at least 1")
        config.concurrent_limit = val

    if "timeout" in section:
        val = section["timeout"]
        if isinstance(val, bool) or not isinstance(val, (int, float)):
            raise fail("timeout", f"timeout must be a number, got {type(val).__name__}")
        if val <= 0:
            raise fail("timeout", "timeout must be positive")
        config.timeout = float(val)

    if "index" in section:
        val = section["index"]
        if not isinstance(val, str):
            raise fail("index", f"index must be a string, got {type(val).__name__}")
        index = Path(val)
        config.index = index if index.is_absolute() else config_path.parent / index

    if "pins" in section:
        val = section["pins"]
        if not isinstance(val, dict):
            raise fail("pins", f"pins must be a table, got {type(val).__name__}")
        for name, spec in val.items():
            if not isinstance(spec, str):
                raise fail("pins", f"pin for '{name}' must be a string, got {type(spec).__name__}")
        config.pins = dict(val)

    return config
