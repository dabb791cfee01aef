from __future__ import annotations

import secrets

from ssoauth.service.passwords import PasswordHasher

CODE_MIN = 100000
CODE_MAX = 999999


class CodeChallenge:
    """Single-use six digit verification codes.

    Only the hash of a code is ever stored; it is produced by the same
    argon2id hasher used for passwords. Consuming the code after a
    successful ``validate`` is the caller's job.
    """

    def __init__(self, hasher: PasswordHasher) -> None:
        self.hasher = hasher

    def generate(self) -> str:
        return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))

    def hash_for_storage(self, code: str) -> str:
        return self.hasher.hash(code)

    def validate(self, stored_hash: str, claimed_code: str) -> bool:
        return self.hasher.matches(stored_hash, claimed_code)
