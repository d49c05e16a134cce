"""
Error taxonomy shared by the sync engine, query engine and API.

Every error carries an HTTP-style status code and optional details so the
API layer can render it without knowing which component raised it.
"""

from typing import Any


class AppError(Exception):
    """Base application error."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "statusCode": self.status_code,
            "details": self.details,
        }


class ConfigurationError(AppError):
    """Missing or invalid configuration. Fatal at startup."""


class ValidationError(AppError):
    """Malformed caller input, rejected before any work begins."""

    status_code = 400


class UpstreamAPIError(AppError):
    """Embedding, generation or Drive call failed."""

    status_code = 502

    def __init__(
        self, message: str, service: str, details: dict[str, Any] | None = None
    ):
        super().__init__(message, details)
        self.service = service


class FileProcessingError(AppError):
    """Text extraction failed for a single file."""

    def __init__(
        self, message: str, file_name: str, details: dict[str, Any] | None = None
    ):
        super().__init__(message, details)
        self.file_name = file_name


class StoreError(AppError):
    """Persistence layer failure."""


class RetrievalError(AppError):
    """A query could not be answered; `stage` names the step that failed."""

    status_code = 502

    def __init__(
        self, message: str, stage: str, details: dict[str, Any] | None = None
    ):
        super().__init__(message, details)
        self.stage = stage


class ConflictError(AppError):
    """The request clashes with work already in progress."""

    status_code = 409


class ServiceUnavailableError(AppError):
    """A feature the request needs is not configured in this process."""

    status_code = 503
