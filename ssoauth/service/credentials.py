from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, Protocol, TypeVar

from ssoauth.logging import get_logger
from ssoauth.service.codes import CodeChallenge
from ssoauth.service.errors import (
    AppNotFoundError,
    CodeMismatchError,
    DispatchFailureError,
    InvalidTokenError,
    NoPendingCodeError,
    OperationCancelledError,
    PersistenceFailureError,
    UnverifiedUserError,
    UserExistsError,
    UserNotFoundError,
)
from ssoauth.service.passwords import PasswordHasher
from ssoauth.service.replay_guard import ReplayGuard
from ssoauth.service.tokens import TokenIssuer
from ssoauth.service.validation import (
    normalize_email,
    validate_code,
    validate_email,
    validate_password,
    validate_user_id,
)
from ssoauth.storage.errors import ConstraintViolation, StorageError
from ssoauth.storage.models import Application, User

logger = get_logger(__name__)

T = TypeVar("T")


class UserStore(Protocol):
    async def save_user(self, email: str, password_hash: str, code_hash: str) -> int: ...

    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    async def is_admin(self, user_id: int) -> Optional[bool]: ...

    async def accept_code(self, email: str, expected_code_hash: str) -> bool: ...

    async def replace_code(self, email: str, code_hash: str) -> bool: ...

    async def update_password_hash(self, user_id: int, password_hash: str) -> bool: ...


class AppStore(Protocol):
    async def get_app(self, app_id: int) -> Optional[Application]: ...


class CodeDispatcher(Protocol):
    def send_verification_code(self, to_email: str, code: str) -> bool: ...


class CredentialService:
    """Registration, login, code verification and admin lookup.

    The service keeps no per-call state; users, pending codes and
    applications live in the stores and rejected codes in the replay guard.
    Every public coroutine is bounded by ``timeout`` (falling back to
    ``operation_timeout_seconds``) and raises ``OperationCancelledError`` when
    it runs out. Task cancellation propagates as ``asyncio.CancelledError``.
    """

    def __init__(
        self,
        users: UserStore,
        apps: AppStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        challenge: CodeChallenge,
        guard: ReplayGuard,
        dispatcher: CodeDispatcher,
        *,
        token_ttl_seconds: int = 3600,
        operation_timeout_seconds: float = 10.0,
        allow_unverified_login: bool = True,
    ) -> None:
        collaborators = {
            "users": users,
            "apps": apps,
            "hasher": hasher,
            "issuer": issuer,
            "challenge": challenge,
            "guard": guard,
            "dispatcher": dispatcher,
        }
        missing = [name for name, value in collaborators.items() if value is None]
        if missing:
            raise ValueError(f"missing collaborators: {', '.join(missing)}")
        if token_ttl_seconds <= 0:
            raise ValueError("token_ttl_seconds must be positive")
        if operation_timeout_seconds <= 0:
            raise ValueError("operation_timeout_seconds must be positive")
        self.users = users
        self.apps = apps
        self.hasher = hasher
        self.issuer = issuer
        self.challenge = challenge
        self.guard = guard
        self.dispatcher = dispatcher
        self.token_ttl_seconds = token_ttl_seconds
        self.operation_timeout_seconds = operation_timeout_seconds
        self.allow_unverified_login = allow_unverified_login
        self.logger = logger

    async def _bounded(self, op: str, awaitable: Awaitable[T], timeout: Optional[float]) -> T:
        limit = self.operation_timeout_seconds if timeout is None else timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError as exc:
            self.logger.warning("operation_timed_out", op=op, timeout_seconds=limit)
            raise OperationCancelledError(
                f"{op} did not complete in time", detail={"op": op}
            ) from exc

    async def _store(self, op: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except StorageError as exc:
            self.logger.error("store_operation_failed", op=op, error=str(exc))
            raise PersistenceFailureError(
                "store operation failed", detail={"op": op}
            ) from exc

    async def _dispatch(self, op: str, email: str, code: str) -> None:
        try:
            delivered = await asyncio.to_thread(
                self.dispatcher.send_verification_code, email, code
            )
        except Exception as exc:
            self.logger.error(
                "code_dispatch_failed", op=op, error_type=type(exc).__name__, error=str(exc)
            )
            raise DispatchFailureError(
                "verification code could not be sent", detail={"op": op}
            ) from exc
        if not delivered:
            self.logger.error("code_dispatch_failed", op=op)
            raise DispatchFailureError(
                "verification code could not be sent", detail={"op": op}
            )

    async def _require_user(self, op: str, email: str) -> User:
        user = await self._store(op, self.users.get_user_by_email(email))
        if user is None:
            raise UserNotFoundError("user not found", detail={"op": op})
        return user

    async def register(
        self, email: str, password: str, *, timeout: Optional[float] = None
    ) -> int:
        """Create an unverified user and send them a verification code.

        Nothing is persisted when hashing or dispatch fails. The store's
        uniqueness constraint decides duplicates, reported as ``UserExistsError``.
        """
        return await self._bounded("register", self._register(email, password), timeout)

    async def _register(self, email: str, password: str) -> int:
        email = validate_email(email)
        password = validate_password(password)

        password_hash = await asyncio.to_thread(self.hasher.hash, password)
        code = self.challenge.generate()
        code_hash = await asyncio.to_thread(self.challenge.hash_for_storage, code)
        await self._dispatch("register", email, code)

        try:
            user_id = await self._store(
                "register", self.users.save_user(email, password_hash, code_hash)
            )
        except ConstraintViolation as exc:
            self.logger.info("register_duplicate_email", email=email)
            raise UserExistsError("user already exists", detail={"op": "register"}) from exc
        self.logger.info("user_registered", user_id=user_id)
        return user_id

    async def login(
        self, email: str, password: str, app_id: int, *, timeout: Optional[float] = None
    ) -> str:
        """Authenticate ``email``/``password`` and return a token for ``app_id``."""
        return await self._bounded("login", self._login(email, password, app_id), timeout)

    async def _login(self, email: str, password: str, app_id: int) -> str:
        email = normalize_email(email)
        password = validate_password(password)

        user = await self._require_user("login", email)
        await asyncio.to_thread(self.hasher.verify, user.password_hash, password)
        if self.hasher.needs_rehash(user.password_hash):
            await self._rehash_password(user, password)
        if not user.verified and not self.allow_unverified_login:
            self.logger.info("login_unverified_refused", user_id=user.id)
            raise UnverifiedUserError("email not verified", detail={"op": "login"})

        app = await self._store("login", self.apps.get_app(app_id))
        if app is None:
            raise AppNotFoundError("app not found", detail={"op": "login", "app_id": app_id})

        token = self.issuer.issue(user.id, user.email, app.id, app.secret, self.token_ttl_seconds)
        self.logger.info("user_logged_in", user_id=user.id, app_id=app.id)
        return token

    async def _rehash_password(self, user: User, password: str) -> None:
        new_hash = await asyncio.to_thread(self.hasher.hash, password)
        try:
            await self.users.update_password_hash(user.id, new_hash)
        except StorageError as exc:
            self.logger.warning("password_rehash_failed", user_id=user.id, error=str(exc))
            return
        self.logger.info("password_rehashed", user_id=user.id)

    async def validate_code(
        self, email: str, code: str, *, timeout: Optional[float] = None
    ) -> bool:
        """Accept the pending verification code for ``email``.

        Returns ``True`` once the code is consumed and the user is verified;
        every other outcome raises. A retry of a code that was just rejected
        is refused without consulting the store.
        """
        return await self._bounded("validate_code", self._validate_code(email, code), timeout)

    async def _validate_code(self, email: str, code: str) -> bool:
        code = validate_code(code)
        email = normalize_email(email)

        if await self.guard.is_rejected(email, code):
            self.logger.info("code_replay_rejected")
            raise CodeMismatchError(detail={"op": "validate_code"})

        user = await self._require_user("validate_code", email)
        if not user.has_pending_code:
            raise NoPendingCodeError("no pending code", detail={"op": "validate_code"})

        matched = await asyncio.to_thread(self.challenge.validate, user.code_hash, code)
        if not matched:
            await self.guard.remember_rejection(email, code)
            self.logger.info("code_mismatch", user_id=user.id)
            raise CodeMismatchError(detail={"op": "validate_code"})

        accepted = await self._store(
            "validate_code", self.users.accept_code(email, user.code_hash)
        )
        if not accepted:
            # Someone else consumed or replaced the code between read and write.
            raise NoPendingCodeError("no pending code", detail={"op": "validate_code"})
        self.logger.info("code_accepted", user_id=user.id)
        return True

    async def resend_code(self, email: str, *, timeout: Optional[float] = None) -> None:
        """Issue a fresh code for an unverified user, superseding the old one."""
        await self._bounded("resend_code", self._resend_code(email), timeout)

    async def _resend_code(self, email: str) -> None:
        email = normalize_email(email)
        user = await self._require_user("resend_code", email)
        if user.verified:
            raise NoPendingCodeError("user already verified", detail={"op": "resend_code"})

        code = self.challenge.generate()
        code_hash = await asyncio.to_thread(self.challenge.hash_for_storage, code)
        await self._dispatch("resend_code", email, code)
        replaced = await self._store("resend_code", self.users.replace_code(email, code_hash))
        if not replaced:
            raise NoPendingCodeError("user already verified", detail={"op": "resend_code"})
        self.logger.info("code_reissued", user_id=user.id)

    async def is_admin(self, user_id: int, *, timeout: Optional[float] = None) -> bool:
        return await self._bounded("is_admin", self._is_admin(user_id), timeout)

    async def _is_admin(self, user_id: int) -> bool:
        user_id = validate_user_id(user_id)
        flag = await self._store("is_admin", self.users.is_admin(user_id))
        if flag is None:
            raise UserNotFoundError("user not found", detail={"op": "is_admin"})
        return flag

    async def verify_token(
        self, token: str, app_id: int, *, timeout: Optional[float] = None
    ) -> dict[str, Any]:
        """Return the claims of ``token`` if it was issued for ``app_id`` and is unexpired."""
        return await self._bounded("verify_token", self._verify_token(token, app_id), timeout)

    async def _verify_token(self, token: str, app_id: int) -> dict[str, Any]:
        app = await self._store("verify_token", self.apps.get_app(app_id))
        if app is None:
            raise AppNotFoundError(
                "app not found", detail={"op": "verify_token", "app_id": app_id}
            )
        claims = self.issuer.verify(token, app.secret)
        if claims.get("app_id") != app.id:
            self.logger.warning("token_app_mismatch", app_id=app.id)
            raise InvalidTokenError()
        return claims
