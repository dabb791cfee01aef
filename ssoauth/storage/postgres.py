from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from ssoauth.logging import get_logger
from ssoauth.storage.errors import ConstraintViolation, StorageError
from ssoauth.storage.models import Application, User

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS user_profile (
        id BIGSERIAL PRIMARY KEY,
        email TEXT NOT NULL,
        pass_hash TEXT NOT NULL,
        code_hash TEXT,
        verified BOOLEAN NOT NULL DEFAULT FALSE,
        is_admin BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS user_profile_email_key ON user_profile (email)",
    """
    CREATE TABLE IF NOT EXISTS apps (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        secret BYTEA NOT NULL CHECK (octet_length(secret) > 0),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)


class PostgresStore:
    """Postgres-backed UserStore and AppStore on an async psycopg pool.

    The unique index on ``user_profile.email`` is the only de-duplication
    mechanism; concurrent registrations race there and the loser gets
    ``ConstraintViolation``. Cancelling a call rolls back its transaction.
    """

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = AsyncConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=False,
        )

    async def open(self) -> None:
        await self.pool.open(wait=True)
        await self._ensure_schema()
        self.logger.info("postgres_store_opened", min_size=self.pool.min_size)

    async def close(self) -> None:
        await self.pool.close()

    @asynccontextmanager
    async def _connect(self, op: str) -> AsyncIterator[psycopg.AsyncConnection]:
        try:
            async with self.pool.connection() as conn:
                yield conn
        except psycopg.Error as exc:
            self.logger.error(
                "postgres_operation_failed",
                op=op,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StorageError(op, str(exc)) from exc

    async def _ensure_schema(self) -> None:
        async with self._connect("postgres.ensure_schema") as conn:
            for statement in _SCHEMA:
                await conn.execute(statement)

    async def ping(self) -> None:
        async with self._connect("postgres.ping") as conn:
            await conn.execute("SELECT 1")

    # users
    async def save_user(self, email: str, password_hash: str, code_hash: str) -> int:
        async with self._connect("postgres.save_user") as conn:
            try:
                cur = await conn.execute(
                    """
                    INSERT INTO user_profile (email, pass_hash, code_hash)
                    VALUES (%s, %s, %s)
                    RETURNING id
                    """,
                    (email, password_hash, code_hash),
                )
            except errors.UniqueViolation:
                raise ConstraintViolation("email already exists", {"field": "email"})
            row = await cur.fetchone()
        return int(row["id"])

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._connect("postgres.get_user_by_email") as conn:
            cur = await conn.execute(
                "SELECT * FROM user_profile WHERE email = %s", (email,)
            )
            row = await cur.fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    async def is_admin(self, user_id: int) -> Optional[bool]:
        async with self._connect("postgres.is_admin") as conn:
            cur = await conn.execute(
                "SELECT is_admin FROM user_profile WHERE id = %s", (user_id,)
            )
            row = await cur.fetchone()
        if not row:
            return None
        return bool(row["is_admin"])

    async def accept_code(self, email: str, expected_code_hash: str) -> bool:
        # Compare-and-set: only the caller that still sees the pending hash wins.
        async with self._connect("postgres.accept_code") as conn:
            cur = await conn.execute(
                """
                UPDATE user_profile
                SET verified = TRUE, code_hash = NULL
                WHERE email = %s AND code_hash = %s
                """,
                (email, expected_code_hash),
            )
            return cur.rowcount == 1

    async def replace_code(self, email: str, code_hash: str) -> bool:
        async with self._connect("postgres.replace_code") as conn:
            cur = await conn.execute(
                """
                UPDATE user_profile
                SET code_hash = %s
                WHERE email = %s AND verified = FALSE
                """,
                (code_hash, email),
            )
            return cur.rowcount == 1

    async def update_password_hash(self, user_id: int, password_hash: str) -> bool:
        async with self._connect("postgres.update_password_hash") as conn:
            cur = await conn.execute(
                "UPDATE user_profile SET password_hash = %s WHERE id = %s",
                (password_hash, user_id),
            )
            return cur.rowcount == 1

    async def set_admin(self, user_id: int, is_admin: bool = True) -> bool:
        async with self._connect("postgres.set_admin") as conn:
            cur = await conn.execute(
                "UPDATE user_profile SET is_admin = %s WHERE id = %s",
                (is_admin, user_id),
            )
            return cur.rowcount == 1

    # apps
    async def create_app(self, name: str, secret: bytes) -> Application:
        if not secret:
            raise ValueError("application secret must not be empty")
        async with self._connect("postgres.create_app") as conn:
            try:
                cur = await conn.execute(
                    "INSERT INTO apps (name, secret) VALUES (%s, %s) RETURNING *",
                    (name, bytes(secret)),
                )
            except errors.UniqueViolation:
                raise ConstraintViolation("app already exists", {"field": "name"})
            row = await cur.fetchone()
        return self._app_from_row(row)

    async def get_app(self, app_id: int) -> Optional[Application]:
        async with self._connect("postgres.get_app") as conn:
            cur = await conn.execute("SELECT * FROM apps WHERE id = %s", (app_id,))
            row = await cur.fetchone()
        if not row:
            return None
        return self._app_from_row(row)

    @staticmethod
    def _user_from_row(row: dict) -> User:
        return User(
            id=int(row["id"]),
            email=row["email"],
            password_hash=row["pass_hash"],
            code_hash=row.get("code_hash"),
            verified=bool(row.get("verified", False)),
            is_admin=bool(row.get("is_admin", False)),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )

    @staticmethod
    def _app_from_row(row: dict) -> Application:
        return Application(
            id=int(row["id"]),
            name=row["name"],
            secret=bytes(row["secret"]),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )
