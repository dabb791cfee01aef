import base64
import json
from datetime import timedelta

import pytest

from ssoauth.service.errors import InvalidTokenError, SigningFailureError
from ssoauth.service.tokens import TokenIssuer


def _claims(token: str) -> dict:
    payload = token.split(".")[1]
    payload += "=" * (-len(payload) % 4)
    return json.loads(base64.urlsafe_b64decode(payload))


def test_issue_embeds_claims_and_exact_expiry(clock):
    issuer = TokenIssuer(clock=clock)

    token = issuer.issue(7, "alice@example.com", 3, b"app-secret", 3600)

    claims = _claims(token)
    assert claims["uid"] == 7
    assert claims["identity"] == "alice@example.com"
    assert claims["app_id"] == 3
    assert claims["iat"] == int(clock.now)
    assert claims["exp"] == int(clock.now) + 3600


def test_issue_accepts_timedelta_ttl(clock):
    issuer = TokenIssuer(clock=clock)
    token = issuer.issue(1, "a@example.com", 1, "secret", timedelta(minutes=5))
    assert _claims(token)["exp"] == int(clock.now) + 300


@pytest.mark.parametrize("secret", [b"", ""])
def test_issue_rejects_empty_secret(clock, secret):
    with pytest.raises(SigningFailureError) as exc_info:
        TokenIssuer(clock=clock).issue(1, "a@example.com", 1, secret, 60)
    assert exc_info.value.status_code == 500
    assert exc_info.value.detail["op"] == "TokenIssuer.issue"


def test_issue_rejects_non_positive_ttl(clock):
    with pytest.raises(SigningFailureError):
        TokenIssuer(clock=clock).issue(1, "a@example.com", 1, b"k", 0)


def test_verify_round_trip(clock):
    issuer = TokenIssuer(clock=clock)
    token = issuer.issue(9, "bob@example.com", 2, b"k", 60)

    claims = issuer.verify(token, b"k")
    assert claims["uid"] == 9
    assert claims["app_id"] == 2


def test_verify_rejects_other_secret(clock):
    issuer = TokenIssuer(clock=clock)
    token = issuer.issue(9, "bob@example.com", 2, b"k", 60)

    with pytest.raises(InvalidTokenError):
        issuer.verify(token, b"other")


def test_verify_rejects_expired_token(clock):
    issuer = TokenIssuer(clock=clock)
    token = issuer.issue(9, "bob@example.com", 2, b"k", 60)

    clock.now += 60
    with pytest.raises(InvalidTokenError) as exc_info:
        issuer.verify(token, b"k")
    assert exc_info.value.message == "token expired"


def test_verify_rejects_tampered_payload(clock):
    issuer = TokenIssuer(clock=clock)
    header, _, signature = issuer.issue(9, "bob@example.com", 2, b"k", 60).split(".")
    forged = base64.urlsafe_b64encode(
        json.dumps({"uid": 1, "app_id": 2, "exp": clock.now + 999}).encode()
    ).decode().rstrip("=")

    with pytest.raises(InvalidTokenError):
        issuer.verify(f"{header}.{forged}.{signature}", b"k")


def test_verify_rejects_alg_none(clock):
    header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').decode().rstrip("=")
    payload = base64.urlsafe_b64encode(b'{"uid":1,"exp":9999999999}').decode().rstrip("=")

    with pytest.raises(InvalidTokenError):
        TokenIssuer(clock=clock).verify(f"{header}.{payload}.", b"k")


@pytest.mark.parametrize("token", ["", "a.b", "a.b.c.d", "###.###.###"])
def test_verify_rejects_malformed(clock, token):
    with pytest.raises(InvalidTokenError):
        TokenIssuer(clock=clock).verify(token, b"k")
