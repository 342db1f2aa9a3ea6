"""Custom exception classes for Trove."""

from typing import Optional

from fastapi import HTTPException, status


class TroveError(Exception):
    """Base exception for Trove."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred", status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class AuthenticationError(TroveError):
    """Raised when authentication fails."""
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(TroveError):
    """Raised when user lacks permission."""
    status_code = status.HTTP_403_FORBIDDEN


class ResourceNotFoundError(TroveError):
    """Raised when a requested resource is not found."""
    status_code = status.HTTP_404_NOT_FOUND


class ResourceConflictError(TroveError):
    """Raised when a resource already exists."""
    status_code = status.HTTP_409_CONFLICT


class ValidationError(TroveError):
    """Raised when input validation fails."""
    pass


class PayloadTooLargeError(TroveError):
    """Raised when a request body exceeds the upload limit."""
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class QuotaExceededError(TroveError):
    """Raised when an upload would exceed the user's storage quota."""
    status_code = status.HTTP_507_INSUFFICIENT_STORAGE


class IntegrityCheckError(TroveError):
    """Raised when assembled content does not match its declared hash or size."""
    pass


class SessionExpiredError(TroveError):
    """Raised when an upload session is past its expiry."""
    status_code = status.HTTP_410_GONE


class QueueFullError(TroveError):
    """Raised when the background upload queue cannot take another job."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class StorageError(TroveError):
    """Raised when a storage backend operation fails."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class StorageNotFoundError(StorageError):
    """Raised by storage backends for keys that do not exist."""
    status_code = status.HTTP_404_NOT_FOUND


# HTTP exception shortcuts
def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )
