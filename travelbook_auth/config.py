from __future__ import annotations

import os
from datetime import timedelta
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StoreBackend(str, Enum):
    """Key-value backends the auth core can be wired to."""

    REDIS = "redis"
    UPSTASH = "upstash"
    PROXY = "proxy"
    MEMORY = "memory"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the admin auth core and the store proxy."""

    kv_backend: StoreBackend = env_field(StoreBackend.MEMORY, "KV_BACKEND")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    upstash_rest_url: str | None = env_field(None, "UPSTASH_REDIS_REST_URL")
    upstash_rest_token: str | None = env_field(None, "UPSTASH_REDIS_REST_TOKEN")
    proxy_base_url: str | None = env_field(None, "STORE_PROXY_URL")
    proxy_api_key: str | None = env_field(None, "STORE_PROXY_API_KEY")
    origin_allowlist: list[str] = env_field(
        [],
        "ORIGIN_ALLOWLIST",
        description="Comma separated origins allowed to call the store proxy; empty allows all",
    )
    internal_api_key: str | None = env_field(None, "INTERNAL_API_KEY")
    state_dir: str | None = env_field(
        None,
        "TRAVELBOOK_STATE_DIR",
        description="Directory for the persisted local cache; unset keeps it in memory",
    )
    store_timeout_seconds: float = env_field(5.0, "STORE_TIMEOUT_SECONDS")

    single_session: bool = env_field(
        True,
        "SINGLE_SESSION",
        description="Logging in evicts the user's sessions on every other device",
    )
    session_duration_minutes: int = env_field(24 * 60, "SESSION_DURATION_MINUTES")
    inactivity_timeout_seconds: int = env_field(15 * 60, "INACTIVITY_TIMEOUT_SECONDS")
    warning_lead_seconds: int = env_field(60, "WARNING_LEAD_SECONDS")
    auto_logout_delay_seconds: float = env_field(1.0, "AUTO_LOGOUT_DELAY_SECONDS")
    revalidation_interval_seconds: int = env_field(30, "REVALIDATION_INTERVAL_SECONDS")
    invalidation_grace_seconds: float = env_field(3.0, "INVALIDATION_GRACE_SECONDS")

    max_login_attempts: int = env_field(5, "MAX_LOGIN_ATTEMPTS")
    lockout_minutes: int = env_field(5, "LOCKOUT_MINUTES")
    max_login_attempts_extended: int = env_field(10, "MAX_LOGIN_ATTEMPTS_EXTENDED")
    extended_lockout_minutes: int = env_field(15, "EXTENDED_LOCKOUT_MINUTES")

    users_key: str = env_field("travelbook:admin_users", "USERS_KEY")
    login_attempts_key: str = env_field("travelbook:login_attempts", "LOGIN_ATTEMPTS_KEY")
    active_sessions_key: str = env_field("travelbook:active_sessions", "ACTIVE_SESSIONS_KEY")
    session_cache_key: str = env_field("travelbook_admin_session", "SESSION_CACHE_KEY")

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

    @field_validator("kv_backend", mode="before")
    @classmethod
    def _validate_backend(cls, value: Any) -> StoreBackend:
        if isinstance(value, str):
            value = value.strip().lower()
        return StoreBackend(value)

    @field_validator("origin_allowlist", mode="before")
    @classmethod
    def _split_allowlist(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return list(value)

    @model_validator(mode="after")
    def _check_timing_order(self) -> "Settings":
        if self.warning_lead_seconds <= 0:
            raise ValueError("warning_lead_seconds must be positive")
        if self.warning_lead_seconds >= self.inactivity_timeout_seconds:
            raise ValueError("warning_lead_seconds must be shorter than inactivity_timeout_seconds")
        if self.inactivity_timeout_seconds >= self.session_duration_minutes * 60:
            raise ValueError("inactivity_timeout_seconds must be shorter than the session duration")
        if self.max_login_attempts >= self.max_login_attempts_extended:
            raise ValueError("max_login_attempts must be below max_login_attempts_extended")
        if self.lockout_minutes >= self.extended_lockout_minutes:
            raise ValueError("lockout_minutes must be shorter than extended_lockout_minutes")
        return self

    @model_validator(mode="after")
    def _check_backend_credentials(self) -> "Settings":
        if self.kv_backend == StoreBackend.UPSTASH and not (
            self.upstash_rest_url and self.upstash_rest_token
        ):
            raise ValueError(
                "KV_BACKEND=upstash requires UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN"
            )
        if self.kv_backend == StoreBackend.PROXY and not self.proxy_base_url:
            raise ValueError("KV_BACKEND=proxy requires STORE_PROXY_URL")
        return self

    @property
    def session_duration(self) -> timedelta:
        return timedelta(minutes=self.session_duration_minutes)

    @property
    def lockout_window(self) -> timedelta:
        return timedelta(minutes=self.lockout_minutes)

    @property
    def extended_lockout_window(self) -> timedelta:
        return timedelta(minutes=self.extended_lockout_minutes)
