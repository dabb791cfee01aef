from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from ssoauth.logging import get_logger
from ssoauth.service.errors import CredentialMismatchError, HashingFailureError

logger = get_logger(__name__)


class PasswordHasher:
    """Salted argon2id hashing with constant-time verification."""

    def __init__(
        self,
        *,
        time_cost: Optional[int] = None,
        memory_cost: Optional[int] = None,
        parallelism: Optional[int] = None,
    ) -> None:
        params = {
            name: value
            for name, value in (
                ("time_cost", time_cost),
                ("memory_cost", memory_cost),
                ("parallelism", parallelism),
            )
            if value is not None
        }
        self._hasher = Argon2Hasher(type=Type.ID, **params)

    def hash(self, password: str) -> str:
        try:
            return self._hasher.hash(password)
        except HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise HashingFailureError(
                "hashing failed", detail={"op": "PasswordHasher.hash"}
            ) from exc

    def verify(self, stored_hash: str, password: str) -> None:
        """Raise ``CredentialMismatchError`` unless ``password`` matches ``stored_hash``."""
        try:
            self._hasher.verify(stored_hash, password)
        except VerificationError as exc:
            raise CredentialMismatchError() from exc
        except InvalidHashError as exc:
            # A corrupt hash can never match; report it like any other mismatch.
            logger.warning("password_hash_unparseable")
            raise CredentialMismatchError() from exc

    def matches(self, stored_hash: str, candidate: str) -> bool:
        try:
            self.verify(stored_hash, candidate)
        except CredentialMismatchError:
            return False
        return True

    def needs_rehash(self, stored_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHashError:
            return True
