from __future__ import annotations

import secrets
from typing import Callable, List, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from travelbook_auth.logging import get_logger
from travelbook_auth.service.clock import Clock
from travelbook_auth.service.errors import (
    DuplicateUsernameError,
    InvalidCredentialsError,
    NotFoundError,
    ServiceError,
    StoreUnavailableError,
    ValidationError,
)
from travelbook_auth.service.results import Result
from travelbook_auth.storage.errors import StoreUnavailable
from travelbook_auth.storage.models import Role, User, UserProfile
from travelbook_auth.storage.users import UserRepository

logger = get_logger(__name__)


class CredentialStore:
    """Admin user directory with argon2id password hashes.

    Every mutation reads the whole collection, changes one record and writes
    the collection back through the repository. Public operations return a
    ``Result``; ``verify_credentials`` is the one internal entry point that
    raises, for use by the session manager.
    """

    def __init__(
        self,
        repository: UserRepository,
        clock: Clock,
        *,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None

    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify_password(self, user: User, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(user.password_hash, password)
        except VerifyMismatchError:
            return False
        except InvalidHash:
            logger.warning("password_hash_invalid", user_id=user.id)
            return False

    def _burn_verification(self, password: str) -> None:
        # Unknown users still cost one verification so timing does not reveal them
        if self._dummy_hash is None:
            self._dummy_hash = self._pwd_hasher.hash(secrets.token_urlsafe(16))
        try:
            self._pwd_hasher.verify(self._dummy_hash, password)
        except VerifyMismatchError:
            pass

    async def _load(self, *, allow_fallback: bool) -> List[User]:
        try:
            return await self.repository.load_all(allow_fallback=allow_fallback)
        except StoreUnavailable as exc:
            raise StoreUnavailableError(detail=exc.detail) from exc

    async def _save(self, users: List[User]) -> None:
        try:
            await self.repository.save_all(users)
        except StoreUnavailable as exc:
            raise StoreUnavailableError(detail=exc.detail) from exc

    async def find_by_username(
        self, username: str, *, active_only: bool = True
    ) -> Optional[User]:
        """Exact, case-sensitive lookup. Inactive users are hidden unless asked for."""
        try:
            users = await self._load(allow_fallback=True)
        except StoreUnavailableError:
            logger.warning("user_lookup_store_unavailable")
            return None
        for user in users:
            if user.username == username and (user.is_active or not active_only):
                return user
        return None

    async def verify_credentials(self, username: str, password: str) -> User:
        """Return the active user matching the credentials.

        Raises ``InvalidCredentialsError`` for an unknown user, an inactive user
        or a wrong password alike, and ``StoreUnavailableError`` when the store
        cannot be read (no fallback: logins fail closed).
        """
        users = await self._load(allow_fallback=False)
        user = next((u for u in users if u.username == username and u.is_active), None)
        if user is None:
            self._burn_verification(password)
            raise InvalidCredentialsError()
        if not self.verify_password(user, password):
            raise InvalidCredentialsError()
        return user

    async def create(
        self,
        username: str,
        password: str,
        *,
        email: str = "",
        role: Role | str = Role.EDITOR,
    ) -> Result[UserProfile]:
        try:
            username = (username or "").strip()
            if not username:
                raise ValidationError("Username is required")
            if not password:
                raise ValidationError("Password is required")
            role = self._coerce_role(role)
            users = await self._load(allow_fallback=False)
            if any(u.username == username for u in users):
                raise DuplicateUsernameError()
            user = User(
                id=User.new_id(),
                username=username,
                password_hash=self.hash_password(password),
                email=email,
                role=role,
                created_at=self.clock.now(),
            )
            users.append(user)
            await self._save(users)
        except ServiceError as exc:
            logger.info("user_create_failed", username=username, error_code=exc.error_code)
            return Result.fail(exc)
        logger.info("user_created", user_id=user.id, username=username, role=role.value)
        return Result.ok(user.profile(), "User created successfully")

    async def update_password(
        self, username: str, current_password: str, new_password: str
    ) -> Result[None]:
        try:
            if not new_password:
                raise ValidationError("New password is required")
            users = await self._load(allow_fallback=False)
            user = next((u for u in users if u.username == username), None)
            if user is None:
                raise NotFoundError("User not found")
            if not self.verify_password(user, current_password):
                raise InvalidCredentialsError("Current password is incorrect")
            user.password_hash = self.hash_password(new_password)
            user.updated_at = self.clock.now()
            await self._save(users)
        except ServiceError as exc:
            logger.info("password_update_failed", username=username, error_code=exc.error_code)
            return Result.fail(exc)
        logger.info("password_updated", user_id=user.id)
        return Result.ok(message="Password updated successfully")

    async def list(self) -> Result[List[UserProfile]]:
        """All users including inactive ones, oldest first, without password hashes."""
        try:
            users = await self._load(allow_fallback=True)
        except ServiceError as exc:
            return Result.fail(exc)
        return Result.ok([user.profile() for user in users])

    async def _update_user(self, user_id: str, change: Callable[[User], None]) -> User:
        users = await self._load(allow_fallback=False)
        user = next((u for u in users if u.id == user_id), None)
        if user is None:
            raise NotFoundError("User not found", detail={"user_id": user_id})
        change(user)
        await self._save(users)
        return user

    async def set_active(self, user_id: str, active: bool) -> Result[UserProfile]:
        def change(user: User) -> None:
            user.is_active = active
            user.updated_at = self.clock.now()

        try:
            user = await self._update_user(user_id, change)
        except ServiceError as exc:
            return Result.fail(exc)
        logger.info("user_status_changed", user_id=user_id, is_active=active)
        return Result.ok(user.profile())

    async def toggle_status(self, user_id: str) -> Result[bool]:
        def change(user: User) -> None:
            user.is_active = not user.is_active
            user.updated_at = self.clock.now()

        try:
            user = await self._update_user(user_id, change)
        except ServiceError as exc:
            return Result.fail(exc)
        logger.info("user_status_changed", user_id=user_id, is_active=user.is_active)
        state = "activated" if user.is_active else "deactivated"
        return Result.ok(user.is_active, f"User {state} successfully")

    async def update_role(self, user_id: str, role: Role | str) -> Result[UserProfile]:
        try:
            new_role = self._coerce_role(role)

            def change(user: User) -> None:
                user.role = new_role
                user.updated_at = self.clock.now()

            user = await self._update_user(user_id, change)
        except ServiceError as exc:
            return Result.fail(exc)
        logger.info("user_role_changed", user_id=user_id, role=new_role.value)
        return Result.ok(user.profile())

    async def record_login(self, user_id: str) -> Result[None]:
        def change(user: User) -> None:
            user.last_login = self.clock.now()

        try:
            await self._update_user(user_id, change)
        except ServiceError as exc:
            logger.warning("last_login_update_failed", user_id=user_id, error_code=exc.error_code)
            return Result.fail(exc)
        return Result.ok()

    @staticmethod
    def _coerce_role(role: Role | str) -> Role:
        try:
            return Role(role)
        except ValueError as exc:
            raise ValidationError(f"Unknown role: {role}") from exc
