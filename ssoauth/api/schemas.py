from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from ssoauth.logging import get_correlation_id

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
    "cancelled",
})


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope: every response carries a status and the request id."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


# Request bodies only check shape; the credential service validates content
# so every caller gets the same InvalidArgument behavior.


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)


class RegisterResponse(BaseModel):
    user_id: int


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)
    app_id: int


class LoginResponse(BaseModel):
    token: str


class ValidateCodeRequest(BaseModel):
    email: str = Field(..., max_length=320)
    code: str = Field(..., max_length=32)


class ValidateCodeResponse(BaseModel):
    valid_code: bool


class ResendCodeRequest(BaseModel):
    email: str = Field(..., max_length=320)


class ResendCodeResponse(BaseModel):
    status: str = "sent"


class IsAdminResponse(BaseModel):
    is_admin: bool


class VerifyTokenRequest(BaseModel):
    token: str = Field(..., max_length=4096)
    app_id: int


class VerifyTokenResponse(BaseModel):
    claims: dict[str, Any]
