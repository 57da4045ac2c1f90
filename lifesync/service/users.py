from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from lifesync.logging import get_logger
from lifesync.service.errors import ForbiddenError, NotFoundError, ValidationError
from lifesync.storage.models import Role, User, calculate_level

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100


class UserStore(Protocol):
    def create_user(
        self,
        *,
        tenant_id: str,
        email: str,
        name: str,
        password_hash: Optional[str],
        role: str = Role.EMPLOYEE.value,
        xp: int = 0,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str, tenant_id: str) -> Optional[User]: ...

    def list_users(
        self,
        tenant_id: str,
        *,
        offset: int = 0,
        limit: int = 20,
        role: Optional[str] = None,
    ) -> List[User]: ...

    def count_users(self, tenant_id: str, role: Optional[str] = None) -> int: ...

    def update_user_name(self, user_id: str, name: str) -> Optional[User]: ...

    def update_refresh_fingerprint(
        self, user_id: str, fingerprint_hash: Optional[str]
    ) -> bool: ...

    def swap_refresh_fingerprint(
        self, user_id: str, expected: str, fingerprint_hash: Optional[str]
    ) -> bool: ...

    def add_xp(self, user_id: str, amount: int) -> Optional[User]: ...


@dataclass(frozen=True)
class PublicUser:
    id: str
    name: str
    email: str
    role: str
    xp: int
    level: int
    tenant_id: str

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            xp=user.xp,
            level=user.level,
            tenant_id=user.tenant_id,
        )


@dataclass(frozen=True)
class XpAward:
    xp: int
    level: int


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserDirectory:
    """Tenant-scoped user lookup, creation, XP accounting and profile edits."""

    def __init__(self, store: UserStore) -> None:
        self.store = store

    @staticmethod
    def calculate_level(xp: int) -> int:
        return calculate_level(xp)

    def find_by_email_and_tenant(self, email: str, tenant_id: str) -> Optional[User]:
        return self.store.get_user_by_email(normalize_email(email), tenant_id)

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.store.get_user(user_id)

    def create(
        self,
        *,
        tenant_id: str,
        email: str,
        name: str,
        password_hash: Optional[str],
        role: str = Role.EMPLOYEE.value,
    ) -> User:
        return self.store.create_user(
            tenant_id=tenant_id,
            email=normalize_email(email),
            name=name.strip(),
            password_hash=password_hash,
            role=role,
        )

    def update_refresh_fingerprint(
        self,
        user_id: str,
        fingerprint_hash: Optional[str],
        *,
        expected: Optional[str] = None,
    ) -> bool:
        """Store a new refresh fingerprint, or clear it with ``None``.

        With ``expected`` set the write only happens if the stored value still
        equals it, so two refreshes racing on one token cannot both rotate.
        """
        if expected is not None:
            return self.store.swap_refresh_fingerprint(user_id, expected, fingerprint_hash)
        return self.store.update_refresh_fingerprint(user_id, fingerprint_hash)

    def add_xp(self, user_id: str, amount: int) -> XpAward:
        if amount < 0:
            raise ValidationError("XP amount must not be negative", detail={"amount": amount})
        user = self.store.add_xp(user_id, amount)
        if user is None:
            raise NotFoundError("User not found", detail={"user_id": user_id})
        logger.info("xp_awarded", user_id=user_id, amount=amount, xp=user.xp, level=user.level)
        return XpAward(xp=user.xp, level=user.level)

    def get_profile(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", detail={"user_id": user_id})
        return user

    def list_users(
        self,
        tenant_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        role: Optional[str] = None,
    ) -> dict[str, Any]:
        page = max(page, 1)
        take = max(1, min(limit, MAX_PAGE_SIZE))
        users = self.store.list_users(
            tenant_id, offset=(page - 1) * take, limit=take, role=role
        )
        total = self.store.count_users(tenant_id, role)
        return {
            "data": users,
            "meta": {
                "page": page,
                "limit": take,
                "total": total,
                "total_pages": math.ceil(total / take),
            },
        }

    def update_profile(
        self,
        user_id: str,
        *,
        name: Optional[str],
        actor_id: str,
        actor_role: str,
        actor_tenant_id: str,
    ) -> User:
        user = self.store.get_user(user_id)
        # Users of other tenants are invisible, not forbidden
        if user is None or user.tenant_id != actor_tenant_id:
            raise NotFoundError("User not found", detail={"user_id": user_id})
        if user_id != actor_id and actor_role != Role.ADMIN.value:
            raise ForbiddenError("You can only update your own profile")
        if name is None:
            return user
        cleaned = name.strip()
        if not NAME_MIN_LENGTH <= len(cleaned) <= NAME_MAX_LENGTH:
            raise ValidationError(
                f"name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
            )
        updated = self.store.update_user_name(user_id, cleaned)
        if updated is None:
            raise NotFoundError("User not found", detail={"user_id": user_id})
        logger.info("user_profile_updated", user_id=user_id, actor_id=actor_id)
        return updated
