from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from ssoauth.config import get_settings, reset_settings_cache
from ssoauth.logging import configure_for_environment, get_logger
from ssoauth.service.codes import CodeChallenge
from ssoauth.service.credentials import CredentialService
from ssoauth.service.email import EmailService
from ssoauth.service.passwords import PasswordHasher
from ssoauth.service.replay_guard import ReplayGuard
from ssoauth.service.tokens import TokenIssuer
from ssoauth.storage.memory import MemoryStore
from ssoauth.storage.postgres import PostgresStore
from ssoauth.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        configure_for_environment(self.settings.env.value)
        logger.info(
            "runtime_init_started",
            env=self.settings.env.value,
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Optional[Union[RedisCache, SyncRedisCache]] = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                # Use sync Redis client in test mode to avoid event loop issues
                if self.settings.test_mode:
                    cache = SyncRedisCache(self.settings.redis_url)
                else:
                    cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        if not self.cache:
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for the verification code replay guard; "
                    "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error
            fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; "
                    "rejected verification codes are remembered in process memory only."
                ),
                mode=fallback_mode,
            )

        self.hasher = PasswordHasher(
            time_cost=self.settings.password_hash_time_cost,
            memory_cost=self.settings.password_hash_memory_cost,
            parallelism=self.settings.password_hash_parallelism,
        )
        self.issuer = TokenIssuer()
        self.challenge = CodeChallenge(self.hasher)
        self.guard = ReplayGuard(self.cache, ttl_seconds=self.settings.code_replay_ttl_seconds)
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
        )
        self.credentials = CredentialService(
            users=self.store,
            apps=self.store,
            hasher=self.hasher,
            issuer=self.issuer,
            challenge=self.challenge,
            guard=self.guard,
            dispatcher=self.email,
            token_ttl_seconds=self.settings.token_ttl_seconds,
            operation_timeout_seconds=self.settings.operation_timeout_seconds,
            allow_unverified_login=self.settings.allow_unverified_login,
        )

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            redis_enabled=self.cache is not None,
            email_configured=self.email.is_configured,
            allow_unverified_login=self.settings.allow_unverified_login,
        )

    async def start(self) -> None:
        """Open connection pools; called once from the application lifespan."""
        await self.store.open()
        logger.info("runtime_started")

    async def close(self) -> None:
        await self.store.close()
        if self.cache is not None:
            await self.cache.close()
        logger.info("runtime_closed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.cache is not None:
            cache = runtime.cache
            try:
                if isinstance(cache, SyncRedisCache):
                    cache.client.close()
                else:
                    try:
                        loop = asyncio.get_running_loop()
                        loop.create_task(cache.close())
                    except RuntimeError:
                        asyncio.run(cache.close())
            except Exception as exc:
                logger.debug("runtime_reset_cache_close_failed", error=str(exc))

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
