from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Dict, List, Optional, Set, Tuple

from lifesync.logging import get_logger
from lifesync.storage.errors import ConstraintViolation
from lifesync.storage.models import (
    Badge,
    Challenge,
    ChallengeCompletion,
    MoodLog,
    Role,
    Tenant,
    User,
    calculate_level,
)


class MemoryStore:
    """In-process backing store used by tests and local development.

    Records are returned as copies so callers never mutate shared state
    outside the lock.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.tenants: Dict[str, Tenant] = {}
        self.users: Dict[str, User] = {}
        self.mood_logs: Dict[str, MoodLog] = {}
        self.challenges: Dict[str, Challenge] = {}
        self.completions: List[ChallengeCompletion] = []
        self.badges: Dict[Tuple[str, str], Badge] = {}
        # RLock so helpers can re-enter while a public method holds it
        self._data_lock = threading.RLock()

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None

    # -- tenants -------------------------------------------------------

    def create_tenant(self, domain: str, name: str) -> Tenant:
        with self._data_lock:
            if any(t.domain == domain for t in self.tenants.values()):
                raise ConstraintViolation("domain already exists", {"field": "domain"})
            tenant = Tenant(id=str(uuid.uuid4()), domain=domain, name=name)
            self.tenants[tenant.id] = tenant
            return replace(tenant)

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        with self._data_lock:
            tenant = self.tenants.get(tenant_id)
            return replace(tenant) if tenant else None

    def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        with self._data_lock:
            for tenant in self.tenants.values():
                if tenant.domain == domain:
                    return replace(tenant)
        return None

    # -- users ---------------------------------------------------------

    def create_user(
        self,
        *,
        tenant_id: str,
        email: str,
        name: str,
        password_hash: Optional[str],
        role: str = Role.EMPLOYEE.value,
        xp: int = 0,
    ) -> User:
        with self._data_lock:
            if tenant_id not in self.tenants:
                raise ConstraintViolation("tenant does not exist", {"field": "tenant_id"})
            if self._find_user(email, tenant_id):
                raise ConstraintViolation(
                    "email already exists", {"field": "email", "tenant_id": tenant_id}
                )
            user = User(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                email=email,
                name=name,
                password_hash=password_hash,
                role=role,
                xp=xp,
                level=calculate_level(xp),
            )
            self.users[user.id] = user
            return replace(user)

    def _find_user(self, email: str, tenant_id: str) -> Optional[User]:
        for user in self.users.values():
            if user.email == email and user.tenant_id == tenant_id:
                return user
        return None

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str, tenant_id: str) -> Optional[User]:
        with self._data_lock:
            user = self._find_user(email, tenant_id)
            return replace(user) if user else None

    def _filtered_users(self, tenant_id: str, role: Optional[str]) -> List[User]:
        return [
            u
            for u in self.users.values()
            if u.tenant_id == tenant_id and (role is None or u.role == role)
        ]

    def list_users(
        self,
        tenant_id: str,
        *,
        offset: int = 0,
        limit: int = 20,
        role: Optional[str] = None,
    ) -> List[User]:
        with self._data_lock:
            users = sorted(
                self._filtered_users(tenant_id, role),
                key=lambda u: (u.created_at, u.id),
                reverse=True,
            )
            return [replace(u) for u in users[offset : offset + limit]]

    def count_users(self, tenant_id: str, role: Optional[str] = None) -> int:
        with self._data_lock:
            return len(self._filtered_users(tenant_id, role))

    def update_user_name(self, user_id: str, name: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.name = name
            return replace(user)

    def update_refresh_fingerprint(
        self, user_id: str, fingerprint_hash: Optional[str]
    ) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return False
            user.refresh_token_hash = fingerprint_hash
            return True

    def swap_refresh_fingerprint(
        self, user_id: str, expected: str, fingerprint_hash: Optional[str]
    ) -> bool:
        """Replace the fingerprint only if it still equals ``expected``."""
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or user.refresh_token_hash != expected:
                return False
            user.refresh_token_hash = fingerprint_hash
            return True

    def add_xp(self, user_id: str, amount: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.xp += amount
            user.level = calculate_level(user.xp)
            return replace(user)

    # -- mood logs -----------------------------------------------------

    def create_mood_log(
        self,
        user_id: str,
        *,
        mood: int,
        tags: str,
        note: Optional[str],
        logged_at: datetime,
    ) -> MoodLog:
        with self._data_lock:
            log = MoodLog(
                id=str(uuid.uuid4()),
                user_id=user_id,
                mood=mood,
                tags=tags,
                note=note,
                logged_at=logged_at,
                created_at=logged_at,
            )
            self.mood_logs[log.id] = log
            return replace(log)

    def update_mood_log(
        self, log_id: str, *, mood: int, tags: str, note: Optional[str]
    ) -> Optional[MoodLog]:
        with self._data_lock:
            log = self.mood_logs.get(log_id)
            if not log:
                return None
            log.mood = mood
            log.tags = tags
            log.note = note
            return replace(log)

    def find_mood_log_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> Optional[MoodLog]:
        with self._data_lock:
            for log in self.mood_logs.values():
                if log.user_id == user_id and start <= log.logged_at < end:
                    return replace(log)
        return None

    def list_mood_logs(
        self,
        user_id: str,
        *,
        limit: int,
        before: Optional[Tuple[datetime, str]] = None,
    ) -> List[MoodLog]:
        """Return logs newest first, strictly after ``before`` in that order."""
        with self._data_lock:
            logs = [log for log in self.mood_logs.values() if log.user_id == user_id]
            if before is not None:
                logs = [log for log in logs if (log.logged_at, log.id) < before]
            logs.sort(key=lambda log: (log.logged_at, log.id), reverse=True)
            return [replace(log) for log in logs[:limit]]

    def count_mood_logs(self, user_id: str) -> int:
        with self._data_lock:
            return sum(1 for log in self.mood_logs.values() if log.user_id == user_id)

    def list_mood_log_days(self, user_id: str, *, limit: int) -> List[date]:
        with self._data_lock:
            days = {
                log.logged_at.date()
                for log in self.mood_logs.values()
                if log.user_id == user_id
            }
        return sorted(days, reverse=True)[:limit]

    # -- challenges ----------------------------------------------------

    def create_challenge(
        self,
        *,
        title: str,
        description: str,
        category: str,
        xp_reward: int,
        tenant_id: Optional[str],
        is_global: bool = False,
    ) -> Challenge:
        with self._data_lock:
            challenge = Challenge(
                id=str(uuid.uuid4()),
                title=title,
                description=description,
                category=category,
                xp_reward=xp_reward,
                tenant_id=tenant_id,
                is_global=is_global,
            )
            self.challenges[challenge.id] = challenge
            return replace(challenge)

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        with self._data_lock:
            challenge = self.challenges.get(challenge_id)
            return replace(challenge) if challenge else None

    def list_available_challenges(self, tenant_id: str) -> List[Challenge]:
        with self._data_lock:
            available = [
                c
                for c in self.challenges.values()
                if c.is_global or c.tenant_id == tenant_id
            ]
        available.sort(key=lambda c: (c.category, -c.xp_reward))
        return [replace(c) for c in available]

    def find_global_challenge(self, title: str) -> Optional[Challenge]:
        with self._data_lock:
            for challenge in self.challenges.values():
                if challenge.is_global and challenge.title == title:
                    return replace(challenge)
        return None

    def create_challenge_completion(
        self, user_id: str, challenge_id: str, completed_at: datetime
    ) -> ChallengeCompletion:
        with self._data_lock:
            completion = ChallengeCompletion(
                id=str(uuid.uuid4()),
                user_id=user_id,
                challenge_id=challenge_id,
                completed_at=completed_at,
            )
            self.completions.append(completion)
            return replace(completion)

    def list_completed_challenge_ids(
        self, user_id: str, start: datetime, end: datetime
    ) -> Set[str]:
        with self._data_lock:
            return {
                c.challenge_id
                for c in self.completions
                if c.user_id == user_id and start <= c.completed_at < end
            }

    def count_challenge_completions(self, user_id: str) -> int:
        with self._data_lock:
            return sum(1 for c in self.completions if c.user_id == user_id)

    # -- badges --------------------------------------------------------

    def create_badge(
        self,
        user_id: str,
        name: str,
        description: str,
        icon_url: Optional[str] = None,
    ) -> Badge:
        with self._data_lock:
            key = (user_id, name)
            if key in self.badges:
                raise ConstraintViolation("badge already awarded", {"field": "name"})
            badge = Badge(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=name,
                description=description,
                icon_url=icon_url,
            )
            self.badges[key] = badge
            return replace(badge)

    def get_badge(self, user_id: str, name: str) -> Optional[Badge]:
        with self._data_lock:
            badge = self.badges.get((user_id, name))
            return replace(badge) if badge else None

    def list_badges(self, user_id: str) -> List[Badge]:
        with self._data_lock:
            badges = [b for (uid, _), b in self.badges.items() if uid == user_id]
        badges.sort(key=lambda b: b.awarded_at)
        return [replace(b) for b in badges]
