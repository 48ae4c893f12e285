from __future__ import annotations

from datetime import datetime
from typing import Optional


class ServiceError(Exception):
    """Base class for auth-core failures.

    Each subclass carries a stable ``error_code`` the UI can switch on and an
    HTTP-style ``status_code`` used by the proxy envelope:
    - invalid_credentials (401)
    - account_locked (423)
    - duplicate_username (409)
    - not_found (404)
    - session_expired / session_superseded (401)
    - store_unavailable (503)
    - validation_error (400)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Input rejected before touching the store (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidCredentialsError(ServiceError):
    """Unknown user, inactive user or wrong password (401)."""
    status_code = 401
    error_code = "invalid_credentials"

    def __init__(self, message: str = "Invalid username or password", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AccountLockedError(ServiceError):
    """Too many failed attempts for the username (423)."""
    status_code = 423
    error_code = "account_locked"

    def __init__(self, message: str, *, tier: int, unlock_at: datetime, **kwargs) -> None:
        detail = dict(kwargs.pop("detail", None) or {})
        detail.update(tier=tier, unlock_at=unlock_at.isoformat())
        super().__init__(message, detail=detail, **kwargs)
        self.tier = tier
        self.unlock_at = unlock_at


class DuplicateUsernameError(ServiceError):
    """Username already taken (409)."""
    status_code = 409
    error_code = "duplicate_username"

    def __init__(self, message: str = "Username already exists", **kwargs) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(ServiceError):
    """Requested record not found (404)."""
    status_code = 404
    error_code = "not_found"


class SessionExpiredError(ServiceError):
    """Session passed its expiry (401)."""
    status_code = 401
    error_code = "session_expired"

    def __init__(self, message: str = "Session expired. Please log in again.", **kwargs) -> None:
        super().__init__(message, **kwargs)


class SessionSupersededError(ServiceError):
    """Session was replaced by a login on another device (401)."""
    status_code = 401
    error_code = "session_superseded"

    def __init__(
        self,
        message: str = "Your session was ended because you logged in on another device.",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


class StoreUnavailableError(ServiceError):
    """The key-value store could not be reached and no fallback applies (503)."""
    status_code = 503
    error_code = "store_unavailable"

    def __init__(self, message: str = "Storage is temporarily unavailable", **kwargs) -> None:
        super().__init__(message, **kwargs)


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidCredentialsError",
    "AccountLockedError",
    "DuplicateUsernameError",
    "NotFoundError",
    "SessionExpiredError",
    "SessionSupersededError",
    "StoreUnavailableError",
]
