"""
Custom exception hierarchy for depforge.

This module defines structured exception types used across depforge.
All exceptions inherit from :class:`DepForgeError` and support optional
structured metadata via the ``details`` attribute to improve diagnostics
and logging.

Resolution outcomes are *not* exceptions: an unsatisfiable root set is a
``FAILED`` :class:`~depforge.core.report.Report` and an operator abort is a
``CANCELLED`` report. Exceptions are reserved for configuration mistakes,
package source failures that abort a session, search limits, and engine
defects.
"""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional


class DepForgeError(Exception):
    """Base exception for all depforge errors.

    All depforge-specific exceptions should inherit from this class.
    It supports structured metadata via ``details`` for richer error
    reporting and debugging.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        # Internally normalize to a mutable dict
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class ConfigError(DepForgeError):
    """Raised when a configuration file or option is invalid.

    Args:
        message: Error description.
        config_path: Path of the configuration file involved.
        option: Name of the offending option.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


class ParseError(DepForgeError):
    """Raised when a package index file cannot be parsed.

    Args:
        message: Error description.
        line_number: Line number where parsing failed.
        line_content: Raw content of the problematic entry.
        file_path: Path to the file being parsed.
    """

    __slots__ = ("line_number", "line_content", "file_path")

    def __init__(
        self,
        message: str,
        *,
        line_number: Optional[int] = None,
        line_content: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "line", line_number)
        _add_if(details, "content", line_content)
        _add_if(details, "file", file_path)

        super().__init__(message, details)

        self.line_number = line_number
        self.line_content = line_content
        self.file_path = file_path


class InvalidVersionError(DepForgeError):
    """Raised when a version string cannot be parsed.

    Args:
        message: Error description.
        version: The offending version text.
    """

    __slots__ = ("version",)

    def __init__(self, message: str, *, version: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "version", version)
        super().__init__(message, details)
        self.version = version


class InvalidVersionSetError(DepForgeError):
    """Raised when a version constraint expression cannot be parsed.

    Args:
        message: Error description.
        expression: The offending constraint text.
    """

    __slots__ = ("expression",)

    def __init__(self, message: str, *, expression: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "expression", expression)
        super().__init__(message, details)
        self.expression = expression


class SourceError(DepForgeError):
    """Base class for failures reported by a package source.

    Args:
        message: Error description.
        package_name: Package being queried.
        version: Version being queried, when the call was version-specific.
    """

    __slots__ = ("package_name", "version")

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        version: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "package", package_name)
        _add_if(details, "version", version)
        super().__init__(message, details)
        self.package_name = package_name
        self.version = version


class SourceNotFound(SourceError):
    """The package (or the specific version) does not exist in the source.

    The resolver treats this as "no such candidate" rather than a fatal
    session error.
    """


class SourceUnavailable(SourceError):
    """The source could not answer (network or registry failure).

    Aborts the resolution session immediately. The resolver never retries;
    retrying the whole session is the caller's decision.
    """


class ResolutionError(DepForgeError):
    """Base class for errors raised by the resolution engine itself."""


class ResolutionTooDeep(ResolutionError):
    """Raised when the configured backjump budget is exhausted.

    This is deliberately distinct from a ``FAILED`` report: running out of
    budget proves nothing about satisfiability.

    Args:
        message: Error description.
        max_backjumps: The limit that was exceeded.
    """

    __slots__ = ("max_backjumps",)

    def __init__(self, message: str, *, max_backjumps: Optional[int] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "max_backjumps", max_backjumps)
        super().__init__(message, details)
        self.max_backjumps = max_backjumps


class InvariantViolation(ResolutionError):
    """An internal engine invariant does not hold.

    Signals an implementation defect (for example a non-transitive version
    ordering or an unsound final assignment), never a normal outcome.
    """


class NetworkError(DepForgeError):
    """Raised when HTTP or network operations fail.

    Args:
        message: Error description.
        url: URL being accessed.
        status_code: HTTP status code, if available.
        response_body: Raw response body, truncated for safety.
    """

    __slots__ = ("url", "status_code", "response_body")

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "url", url)
        _add_if(details, "status_code", status_code)

        if response_body is not None:
            details["response"] = _truncate(response_body)

        super().__init__(message, details)

        self.url = url
        self.status_code = status_code
        self.response_body = response_body


class RegistryError(NetworkError):
    """Raised for failures related to a package registry API.

    Args:
        message: Error description.
        package_name: Name of the package involved.
        **kwargs: Additional arguments forwarded to ``NetworkError``.
    """

    __slots__ = ("package_name",)

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)

        self.package_name = package_name
        if package_name is not None:
            self.details["package"] = package_name
