from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class Role(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise ValueError(f"expected an ISO timestamp, got {type(raw).__name__}")
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def require_datetime(raw: Optional[str], field_name: str) -> datetime:
    dt = deserialize_datetime(raw)
    if dt is None:
        raise ValueError(f"{field_name} is required")
    return dt


def to_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


@dataclass
class UserProfile:
    """Public projection of a user record; never carries the password hash."""

    id: str
    username: str
    email: str
    role: Role
    created_at: datetime
    last_login: Optional[datetime] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "created_at": serialize_datetime(self.created_at),
            "last_login": serialize_datetime(self.last_login),
            "is_active": self.is_active,
            "updated_at": serialize_datetime(self.updated_at),
        }


@dataclass
class User:
    id: str
    username: str
    password_hash: str
    email: str = ""
    role: Role = Role.EDITOR
    created_at: datetime = field(default_factory=utcnow)
    last_login: Optional[datetime] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            username=self.username,
            email=self.email,
            role=self.role,
            created_at=self.created_at,
            last_login=self.last_login,
            is_active=self.is_active,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> dict:
        return {**self.profile().to_dict(), "password": self.password_hash}

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        """Build a user from its stored JSON; raises KeyError/ValueError on bad shape."""
        return cls(
            id=str(data["id"]),
            username=str(data["username"]),
            password_hash=str(data["password"]),
            email=data.get("email") or "",
            role=Role(data.get("role", Role.EDITOR.value)),
            created_at=require_datetime(data.get("created_at"), "created_at"),
            last_login=deserialize_datetime(data.get("last_login")),
            is_active=bool(data.get("is_active", True)),
            updated_at=deserialize_datetime(data.get("updated_at")),
        )


@dataclass
class Session:
    id: str
    user_id: str
    username: str
    role: Role
    created_at: datetime
    expires_at: datetime
    remember_me: bool = False

    @staticmethod
    def new_token(now: datetime) -> str:
        return f"sess_{to_millis(now)}_{secrets.token_urlsafe(24)}"

    @classmethod
    def new(
        cls,
        user: User,
        *,
        now: datetime,
        duration: timedelta,
        remember_me: bool = False,
    ) -> "Session":
        return cls(
            id=cls.new_token(now),
            user_id=user.id,
            username=user.username,
            role=user.role,
            created_at=now,
            expires_at=now + duration,
            remember_me=remember_me,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "role": self.role.value,
            "created_at": serialize_datetime(self.created_at),
            "expires_at": serialize_datetime(self.expires_at),
            "remember_me": self.remember_me,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            username=str(data["username"]),
            role=Role(data["role"]),
            created_at=require_datetime(data.get("created_at"), "created_at"),
            expires_at=require_datetime(data.get("expires_at"), "expires_at"),
            remember_me=bool(data.get("remember_me", False)),
        )


@dataclass
class ActiveSessionEntry:
    session_id: str
    created_at: datetime
    last_activity: datetime

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "createdAt": serialize_datetime(self.created_at),
            "lastActivity": serialize_datetime(self.last_activity),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActiveSessionEntry":
        created_at = require_datetime(data.get("createdAt"), "createdAt")
        return cls(
            session_id=str(data["sessionId"]),
            created_at=created_at,
            last_activity=deserialize_datetime(data.get("lastActivity")) or created_at,
        )
