from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Environment(str, Enum):
    """Deployment environments; each selects a logging profile."""

    LOCAL = "local"
    DEV = "dev"
    PROD = "prod"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the credential service."""

    env: Environment = env_field(Environment.LOCAL, "ENV")
    database_url: str = env_field("postgresql://localhost:5432/sso", "DATABASE_URL")
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str | None = env_field(
        None,
        "SHARED_FS_ROOT",
        description="Directory for memory-store snapshots; unset keeps state in process only",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (sync redis client, runtime resets)",
    )

    # Credential lifecycle
    token_ttl_seconds: int = env_field(
        3600, "TOKEN_TTL_SECONDS", description="Lifetime of issued session tokens"
    )
    code_replay_ttl_seconds: int = env_field(
        60,
        "CODE_REPLAY_TTL_SECONDS",
        description="How long a rejected verification code short-circuits retries",
    )
    operation_timeout_seconds: float = env_field(
        10.0,
        "OPERATION_TIMEOUT_SECONDS",
        description="Default upper bound for a single service operation",
    )
    allow_unverified_login: bool = env_field(
        True,
        "ALLOW_UNVERIFIED_LOGIN",
        description="Allow users who never accepted their verification code to log in",
    )

    # argon2id work factor; None keeps the argon2-cffi defaults
    password_hash_time_cost: int | None = env_field(None, "PASSWORD_HASH_TIME_COST")
    password_hash_memory_cost: int | None = env_field(None, "PASSWORD_HASH_MEMORY_COST")
    password_hash_parallelism: int | None = env_field(None, "PASSWORD_HASH_PARALLELISM")

    # Email delivery for verification codes
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("SSO", "EMAIL_FROM_NAME")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("env")
    @classmethod
    def _validate_env(cls, value: Environment) -> Environment:
        return Environment(value)

    @field_validator("token_ttl_seconds", "code_replay_ttl_seconds")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("ttl must be a positive number of seconds")
        return value

    @field_validator("operation_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("operation timeout must be positive")
        return value

    @field_validator(
        "password_hash_time_cost",
        "password_hash_memory_cost",
        "password_hash_parallelism",
    )
    @classmethod
    def _positive_work_factor(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("argon2 work factor parameters must be >= 1")
        return value

    @field_validator("redis_url", "smtp_host", "email_from_address", "shared_fs_root")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
