from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from datetime import timedelta
from typing import Any, Callable, Union

from ssoauth.logging import get_logger
from ssoauth.service.errors import InvalidTokenError, SigningFailureError

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _as_key(secret: Union[bytes, str]) -> bytes:
    return secret.encode() if isinstance(secret, str) else bytes(secret)


class TokenIssuer:
    """Issues and verifies HS256 session tokens keyed by an application secret.

    Claims are ``uid``, ``identity``, ``app_id``, ``iat`` and ``exp``; ``exp``
    is always ``iat + ttl``. Tokens are not renewable.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def issue(
        self,
        user_id: int,
        identity: str,
        app_id: int,
        secret: Union[bytes, str],
        ttl: Union[int, timedelta],
    ) -> str:
        ttl_seconds = int(ttl.total_seconds()) if isinstance(ttl, timedelta) else int(ttl)
        if not secret:
            raise SigningFailureError(
                "signing secret is empty", detail={"op": "TokenIssuer.issue", "app_id": app_id}
            )
        if ttl_seconds <= 0:
            raise SigningFailureError(
                "token ttl must be positive", detail={"op": "TokenIssuer.issue"}
            )
        issued_at = int(self._clock())
        payload = {
            "uid": user_id,
            "identity": identity,
            "app_id": app_id,
            "iat": issued_at,
            "exp": issued_at + ttl_seconds,
        }
        try:
            header_enc = _encode_segment(
                json.dumps(_HEADER, separators=(",", ":")).encode()
            )
            payload_enc = _encode_segment(
                json.dumps(payload, separators=(",", ":")).encode()
            )
            signing_input = f"{header_enc}.{payload_enc}"
            signature = hmac.new(
                _as_key(secret), signing_input.encode(), hashlib.sha256
            ).digest()
        except (TypeError, ValueError) as exc:
            logger.error("token_signing_failed", app_id=app_id, error=str(exc))
            raise SigningFailureError(
                "token signing failed", detail={"op": "TokenIssuer.issue", "app_id": app_id}
            ) from exc
        return f"{signing_input}.{_encode_segment(signature)}"

    def verify(self, token: str, secret: Union[bytes, str]) -> dict[str, Any]:
        if not secret:
            raise InvalidTokenError()
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise InvalidTokenError()

        # Reject anything but HS256 to rule out algorithm confusion.
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("token_header_decode_failed")
            raise InvalidTokenError()
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("token_invalid_algorithm")
            raise InvalidTokenError()

        signing_input = f"{header_b64}.{payload_b64}"
        expected_sig = _encode_segment(
            hmac.new(_as_key(secret), signing_input.encode(), hashlib.sha256).digest()
        )
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidTokenError()
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError):
            raise InvalidTokenError()
        if not isinstance(payload, dict):
            raise InvalidTokenError()
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError()
        if exp_ts <= self._clock():
            raise InvalidTokenError("token expired")
        return payload
