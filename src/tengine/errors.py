"""Failure taxonomy shared by every engine.

Each error carries the HTTP status a web front end would answer with and the
exit code the CLI returns for it.
"""

from __future__ import annotations


class TransformError(Exception):
    """Base class for all request-scoped transform failures."""

    status_code = 500
    exit_code = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(TransformError):
    status_code = 500
    exit_code = 2


class ValidationError(TransformError):
    status_code = 400
    exit_code = 2


class TransformTimeoutError(TransformError, TimeoutError):
    status_code = 500
    exit_code = 3


class ToolFailure(TransformError):
    """The external tool or in-process library reported a failure."""

    status_code = 400
    exit_code = 1

    def __init__(self, message: str, *, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class ExtractorNotFoundError(TransformError, LookupError):
    status_code = 400
    exit_code = 4


class UnavailableError(TransformError):
    status_code = 503
    exit_code = 5
