from __future__ import annotations

import re
from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from lifesync.service.mood_logs import MAX_NOTE_LENGTH, MAX_TAG_LENGTH, MAX_TAGS

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope wrapping every response."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_MAX_EMAIL_LENGTH = 255


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = value.strip().lower()
    if len(normalized) > _MAX_EMAIL_LENGTH:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_company_domain(value: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError("company_domain must not be empty")
    return cleaned


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    email: str
    password: str = Field(..., min_length=8, max_length=128)
    company_domain: str = Field(..., max_length=255)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        cleaned = value.strip()
        if len(cleaned) < 3:
            raise ValueError("name must be at least 3 characters")
        return cleaned

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("company_domain")
    @classmethod
    def _validate_domain(cls, value: str) -> str:
        return _validate_company_domain(value)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=128)
    company_domain: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("company_domain")
    @classmethod
    def _validate_domain(cls, value: str) -> str:
        return _validate_company_domain(value)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=2048)


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    xp: int
    level: int
    tenant_id: str


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    message: str


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class UserListResponse(BaseModel):
    data: List[UserResponse]
    meta: PageMeta


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)


class BadgeResponse(BaseModel):
    id: str
    name: str
    description: str
    icon_url: Optional[str] = None
    awarded_at: datetime


class MoodLogRequest(BaseModel):
    mood: int = Field(..., ge=1, le=5)
    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)
    note: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)

    @field_validator("tags")
    @classmethod
    def _validate_tags(cls, value: List[str]) -> List[str]:
        for tag in value:
            if not tag.strip() or len(tag.strip()) > MAX_TAG_LENGTH:
                raise ValueError(f"tags must be 1 to {MAX_TAG_LENGTH} characters")
        return value


class MoodLogResponse(BaseModel):
    id: str
    mood: int
    tags: List[str]
    note: Optional[str] = None
    logged_at: datetime
    xp_earned: int = 0


class MoodHistoryResponse(BaseModel):
    items: List[MoodLogResponse]
    next_cursor: Optional[str] = None


ChallengeCategoryName = Literal["PHYSICAL", "MENTAL", "NUTRITION", "SOCIAL"]


class ChallengeRequest(BaseModel):
    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=10, max_length=500)
    category: ChallengeCategoryName
    xp_reward: int = Field(..., ge=1, le=100)


class ChallengeResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    xp_reward: int
    is_global: bool
    tenant_id: Optional[str] = None


class ChallengeCompletionResponse(BaseModel):
    challenge: ChallengeResponse
    xp_earned: int
    total_xp: int
    new_level: int
