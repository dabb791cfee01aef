from __future__ import annotations

from fastapi import APIRouter, Path

from ssoauth.api.schemas import (
    Envelope,
    IsAdminResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    ResendCodeRequest,
    ResendCodeResponse,
    ValidateCodeRequest,
    ValidateCodeResponse,
    VerifyTokenRequest,
    VerifyTokenResponse,
)
from ssoauth.logging import get_logger
from ssoauth.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an unverified account and email its verification code.

    Raises:
        400: malformed email or empty password
        409: email already registered
    """
    runtime = get_runtime()
    user_id = await runtime.credentials.register(body.email, body.password)
    return Envelope(status="ok", data=RegisterResponse(user_id=user_id))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Exchange email and password for a token bound to ``app_id``.

    Raises:
        401: wrong password
        403: unverified account while unverified login is disabled
        404: unknown user or application
    """
    runtime = get_runtime()
    token = await runtime.credentials.login(body.email, body.password, body.app_id)
    return Envelope(status="ok", data=LoginResponse(token=token))


@router.post("/auth/validate_code", response_model=Envelope, tags=["auth"])
async def validate_code(body: ValidateCodeRequest):
    runtime = get_runtime()
    valid = await runtime.credentials.validate_code(body.email, body.code)
    return Envelope(status="ok", data=ValidateCodeResponse(valid_code=valid))


@router.post("/auth/resend_code", response_model=Envelope, tags=["auth"])
async def resend_code(body: ResendCodeRequest):
    runtime = get_runtime()
    await runtime.credentials.resend_code(body.email)
    return Envelope(status="ok", data=ResendCodeResponse())


@router.post("/auth/verify_token", response_model=Envelope, tags=["auth"])
async def verify_token(body: VerifyTokenRequest):
    runtime = get_runtime()
    claims = await runtime.credentials.verify_token(body.token, body.app_id)
    return Envelope(status="ok", data=VerifyTokenResponse(claims=claims))


@router.get("/users/{user_id}/is_admin", response_model=Envelope, tags=["users"])
async def is_admin(user_id: int = Path(...)):
    runtime = get_runtime()
    flag = await runtime.credentials.is_admin(user_id)
    return Envelope(status="ok", data=IsAdminResponse(is_admin=flag))
