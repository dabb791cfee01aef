from __future__ import annotations

import hashlib
import threading
import time
from typing import Dict, Optional, Protocol, Tuple

from ssoauth.logging import get_logger

logger = get_logger(__name__)

_KEY_PREFIX = "replay:code:"


class GuardCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...


def _digest(*parts: str) -> str:
    return hashlib.sha256("\x00".join(parts).encode()).hexdigest()


class ReplayGuard:
    """Advisory memory of a recently rejected verification code per email.

    A hit lets the caller reject an identical retry without touching the
    store or the hasher. A miss, an expired entry or an unreachable backend
    all mean "unknown" and never block validation. Backend errors are logged
    and swallowed. Without a cache a local expiring dict is used.
    """

    def __init__(self, cache: Optional[GuardCache], ttl_seconds: int = 60) -> None:
        if ttl_seconds <= 0:
            raise ValueError("replay guard ttl must be positive")
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._local: Dict[str, Tuple[str, float]] = {}

    @staticmethod
    def _key(email: str) -> str:
        return _KEY_PREFIX + _digest(email)

    @staticmethod
    def _value(email: str, code: str) -> str:
        return _digest(email, code)

    async def is_rejected(self, email: str, code: str) -> bool:
        key = self._key(email)
        expected = self._value(email, code)
        if self.cache is None:
            return self._local_get(key) == expected
        try:
            cached = await self.cache.get(key)
        except Exception as exc:
            logger.warning("replay_guard_read_failed", error_type=type(exc).__name__, error=str(exc))
            return False
        if isinstance(cached, bytes):
            cached = cached.decode()
        return cached == expected

    async def remember_rejection(self, email: str, code: str) -> None:
        """Record a rejected code unless one is already held for ``email``.

        The first rejection occupies the slot until it expires; later ones
        are dropped and simply go through the full check.
        """
        key = self._key(email)
        value = self._value(email, code)
        if self.cache is None:
            self._local_set_if_absent(key, value)
            return
        try:
            await self.cache.set_if_absent(key, value, self.ttl_seconds)
        except Exception as exc:
            logger.warning("replay_guard_write_failed", error_type=type(exc).__name__, error=str(exc))

    def _local_get(self, key: str) -> Optional[str]:
        now = time.monotonic()
        with self._lock:
            entry = self._local.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= now:
                self._local.pop(key, None)
                return None
            return value

    def _local_set_if_absent(self, key: str, value: str) -> None:
        now = time.monotonic()
        with self._lock:
            expired = [k for k, (_, exp) in self._local.items() if exp <= now]
            for stale in expired:
                self._local.pop(stale, None)
            self._local.setdefault(key, (value, now + self.ttl_seconds))
