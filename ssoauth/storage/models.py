from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    email: str
    password_hash: str = field(repr=False)
    code_hash: Optional[str] = field(default=None, repr=False)
    verified: bool = False
    is_admin: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def has_pending_code(self) -> bool:
        return self.code_hash is not None


@dataclass
class Application:
    id: int
    name: str
    secret: bytes = field(repr=False)
    created_at: datetime = field(default_factory=_utcnow)
