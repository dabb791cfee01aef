from __future__ import annotations

import re

from ssoauth.service.errors import InvalidArgumentError

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def validate_email(value: str) -> str:
    """Return the address stripped of surrounding whitespace.

    Case is preserved: addresses are unique exactly as stored.
    """
    if not isinstance(value, str):
        raise InvalidArgumentError("email must be a string", detail={"field": "email"})
    candidate = value.strip()
    if len(candidate) > 254:
        raise InvalidArgumentError("email address too long", detail={"field": "email"})
    local, sep, domain = candidate.partition("@")
    if not sep or not local or not domain:
        raise InvalidArgumentError("invalid email address", detail={"field": "email"})
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise InvalidArgumentError("invalid email address format", detail={"field": "email"})
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise InvalidArgumentError("invalid email address format", detail={"field": "email"})
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise InvalidArgumentError(
                "invalid email address format", detail={"field": "email"}
            )
    return candidate


def validate_password(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError("password must not be empty", detail={"field": "password"})
    return value


def validate_code(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError("code must not be empty", detail={"field": "code"})
    return value.strip()


def validate_user_id(value: int) -> int:
    # Zero is the "absent" sentinel and is never a real id.
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgumentError("user id is required", detail={"field": "user_id"})
    return value


def normalize_email(value: str) -> str:
    """Strip an address used for lookup; format is not re-checked."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError("email must not be empty", detail={"field": "email"})
    return value.strip()
