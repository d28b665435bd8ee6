"""
Unified error handling for filterproxy.

Every failure the proxy raises derives from FilterProxyError. Each class
carries the process exit code used by the CLI entry point and the HTTP
status metrics requests answer with. Discovery requests answer 500 for any
failure.

Exit Codes:
- 0: Success
- 10: Configuration or credential error
- 11: Upstream or cluster resolution failure
- 12: Invalid client input
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for the filterproxy process."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    UPSTREAM_ERROR = 11
    INPUT_ERROR = 12
    UNKNOWN_ERROR = 127


class FilterProxyError(Exception):
    """Base exception for filterproxy errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    http_status: int = 500
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(FilterProxyError):
    """Raised for malformed or missing configuration."""

    exit_code = ExitCode.CONFIG_ERROR


class CredentialError(FilterProxyError):
    """Raised when an endpoint's upstream credential cannot be resolved."""

    exit_code = ExitCode.CONFIG_ERROR


class UpstreamFetchError(FilterProxyError):
    """Raised when an upstream exporter cannot be fetched or decoded."""

    exit_code = ExitCode.UPSTREAM_ERROR
    http_status = 502


class ResolutionError(FilterProxyError):
    """Raised when the cluster endpoint lookup fails."""

    exit_code = ExitCode.UPSTREAM_ERROR
    http_status = 502


class EndpointNotFoundError(ResolutionError):
    """Raised when the looked-up cluster endpoints resource does not exist."""


class ClientInputError(FilterProxyError):
    """Raised for ambiguous or invalid request parameters."""

    exit_code = ExitCode.INPUT_ERROR
    http_status = 400


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for the process entry point that provides unified error handling.

    Catches exceptions and converts them to exit codes with consistent
    error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - FilterProxyError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except FilterProxyError as e:
                if log_errors:
                    logger.error(
                        "startup_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator

