"""Exception hierarchy for the gateway and its collaborators."""

from __future__ import annotations

from typing import Optional

from fastapi import status

# PostgREST reports "no rows for a single-object request" with this code.
NOT_FOUND_CODE = "PGRST116"

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred"


class StoreError(Exception):
    """Raised by a record store when a row operation fails."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class RecordNotFound(StoreError):
    """Raised when a keyed lookup matches no row."""

    def __init__(self, message: str = "The result contains 0 rows") -> None:
        super().__init__(message, code=NOT_FOUND_CODE)


class AuthError(Exception):
    """Raised by an identity provider when it rejects an operation."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GatewayError(Exception):
    """Base class for errors that map onto an HTTP response envelope."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST


class QuotaExceeded(GatewayError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str = "Too many requests, please try again later") -> None:
        super().__init__(message)


class NotFound(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(GatewayError):
    """A collaborator rejected the requested operation."""

    status_code = status.HTTP_400_BAD_REQUEST


class InternalError(GatewayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "AuthError",
    "DEFAULT_ERROR_MESSAGE",
    "GatewayError",
    "InternalError",
    "NOT_FOUND_CODE",
    "NotFound",
    "QuotaExceeded",
    "RecordNotFound",
    "StoreError",
    "UpstreamError",
    "ValidationError",
]
