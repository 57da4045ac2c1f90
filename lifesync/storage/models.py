from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class ChallengeCategory(str, Enum):
    PHYSICAL = "PHYSICAL"
    MENTAL = "MENTAL"
    NUTRITION = "NUTRITION"
    SOCIAL = "SOCIAL"


@dataclass
class Tenant:
    id: str
    domain: str
    name: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class User:
    id: str
    tenant_id: str
    email: str
    name: str
    password_hash: Optional[str] = None
    role: str = Role.EMPLOYEE.value
    xp: int = 0
    level: int = 1
    refresh_token_hash: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class MoodLog:
    id: str
    user_id: str
    mood: int
    tags: str = ""
    note: Optional[str] = None
    logged_at: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class Challenge:
    id: str
    title: str
    description: str
    category: str
    xp_reward: int
    tenant_id: Optional[str] = None
    is_global: bool = False
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ChallengeCompletion:
    id: str
    user_id: str
    challenge_id: str
    completed_at: datetime = field(default_factory=_utcnow)


@dataclass
class Badge:
    id: str
    user_id: str
    name: str
    description: str
    icon_url: Optional[str] = None
    awarded_at: datetime = field(default_factory=_utcnow)


XP_PER_LEVEL = 100


def calculate_level(xp: int) -> int:
    """Level 1 covers 0..99 XP, level 2 starts at exactly 100, and so on."""
    return xp // XP_PER_LEVEL + 1
