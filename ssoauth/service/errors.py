from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for credential-service failures.

    Each subclass carries the HTTP ``status_code`` and stable ``error_code``
    the transport adapter maps it to:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    - cancelled (504)
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


class InvalidArgumentError(ServiceError):
    """Malformed caller input (400). Never worth retrying."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed (401)."""
    status_code = 401
    error_code = "unauthorized"


class CredentialMismatchError(AuthenticationError):
    """Password does not match the stored hash."""

    def __init__(self, message: str = "invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)


class CodeMismatchError(AuthenticationError):
    """Verification code does not match the pending code."""

    def __init__(self, message: str = "invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)


class InvalidTokenError(AuthenticationError):
    """Token is malformed, forged, or expired."""

    def __init__(self, message: str = "invalid token", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(ServiceError):
    """Access denied by policy (403)."""
    status_code = 403
    error_code = "forbidden"


class UnverifiedUserError(ForbiddenError):
    """Login refused because the account never accepted its verification code."""


class NotFoundError(ServiceError):
    """Requested record not found (404)."""
    status_code = 404
    error_code = "not_found"


class UserNotFoundError(NotFoundError):
    pass


class AppNotFoundError(NotFoundError):
    pass


class ConflictError(ServiceError):
    """State conflict (409)."""
    status_code = 409
    error_code = "conflict"


class UserExistsError(ConflictError):
    """Email already registered."""


class NoPendingCodeError(ConflictError):
    """The user has no unconsumed verification code."""


class ServerError(ServiceError):
    """Infrastructure failure (500). Detail is logged, never shown to callers."""
    status_code = 500
    error_code = "server_error"


class HashingFailureError(ServerError):
    pass


class SigningFailureError(ServerError):
    pass


class DispatchFailureError(ServerError):
    """The verification code could not be delivered."""


class PersistenceFailureError(ServerError):
    """The backing store failed or was unreachable."""


class OperationCancelledError(ServiceError):
    """The operation exceeded its deadline before completing (504)."""
    status_code = 504
    error_code = "cancelled"


__all__ = [
    "ServiceError",
    "InvalidArgumentError",
    "AuthenticationError",
    "CredentialMismatchError",
    "CodeMismatchError",
    "InvalidTokenError",
    "ForbiddenError",
    "UnverifiedUserError",
    "NotFoundError",
    "UserNotFoundError",
    "AppNotFoundError",
    "ConflictError",
    "UserExistsError",
    "NoPendingCodeError",
    "ServerError",
    "HashingFailureError",
    "SigningFailureError",
    "DispatchFailureError",
    "PersistenceFailureError",
    "OperationCancelledError",
]
