"""Custom exceptions for the user import pipeline.

This module defines exception classes for the error conditions that can occur
while talking to the source identity provider, the destination user store,
and while driving an import session.
"""

from user_import.records import SessionErrorKind


class UserImportError(Exception):
    """Base exception for all user import errors."""

    pass


class APIError(UserImportError):
    """Base class for API-related errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class AuthenticationError(APIError):
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class AuthorizationError(APIError):
    """Raised when authorization fails (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when a resource is not found (404 Not Found)."""

    pass


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class NetworkError(UserImportError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class ConfigurationError(UserImportError):
    """Raised when configuration is invalid or missing."""

    pass


class StateError(UserImportError):
    """Raised when session state persistence fails."""

    pass


class SessionStateError(StateError):
    """Raised when an operation is not allowed in the session's current phase."""

    pass


class ConflictError(UserImportError):
    """Raised when the destination store rejects a write on a uniqueness constraint."""

    pass


class IdConflictError(ConflictError):
    """Raised when a destination id already belongs to a different email."""

    pass


class InvalidRecordError(UserImportError):
    """Raised when a source record cannot be mapped (e.g. missing email)."""

    pass


class SourceError(UserImportError):
    """Base class for session-fatal source provider errors.

    Attributes:
        kind: Closed error classification surfaced to callers
        recoverable: Whether the session may resume from ``cursor``
        cursor: Cursor of the first page that was not fetched
    """

    kind: SessionErrorKind = SessionErrorKind.UNRECOVERABLE_SOURCE_ERROR
    recoverable: bool = False

    def __init__(self, message: str, cursor: int | None = None):
        self.message = message
        self.cursor = cursor
        super().__init__(message)


class InvalidCredentialError(SourceError):
    """Raised when the source provider rejects the service credential."""

    kind = SessionErrorKind.INVALID_CREDENTIAL


class UnreachableError(SourceError):
    """Raised when the source provider cannot be reached."""

    kind = SessionErrorKind.UNREACHABLE


class SourceFetchError(UnreachableError):
    """Raised when a page fetch fails after retries; resumable from ``cursor``."""

    recoverable = True


class UnrecoverableSourceError(SourceError):
    """Raised when the source returns data the pipeline cannot continue with."""

    kind = SessionErrorKind.UNRECOVERABLE_SOURCE_ERROR
