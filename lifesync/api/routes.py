from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query

from lifesync.api.schemas import (
    AuthResponse,
    BadgeResponse,
    ChallengeCompletionResponse,
    ChallengeRequest,
    ChallengeResponse,
    Envelope,
    LoginRequest,
    MessageResponse,
    MoodHistoryResponse,
    MoodLogRequest,
    MoodLogResponse,
    PageMeta,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UpdateUserRequest,
    UserListResponse,
    UserResponse,
)
from lifesync.logging import get_logger
from lifesync.service.auth import AuthContext, AuthResult, SessionManager
from lifesync.service.errors import AuthenticationError
from lifesync.service.mood_logs import DEFAULT_HISTORY_LIMIT, string_to_tags
from lifesync.service.runtime import get_runtime
from lifesync.service.users import PublicUser
from lifesync.storage.models import Badge, Challenge, MoodLog, Role, User

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    try:
        return runtime.auth.authenticate(authorization)
    except AuthenticationError as exc:
        raise _http_error("unauthorized", exc.message, status_code=401) from None


async def get_manager_user(principal: AuthContext = Depends(get_user)) -> AuthContext:
    SessionManager.require_role(principal, Role.MANAGER, Role.ADMIN)
    return principal


def _user_response(user: User | PublicUser) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        xp=user.xp,
        level=user.level,
        tenant_id=user.tenant_id,
    )


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        user=_user_response(result.user),
    )


def _mood_log_response(log: MoodLog, xp_earned: int = 0) -> MoodLogResponse:
    return MoodLogResponse(
        id=log.id,
        mood=log.mood,
        tags=string_to_tags(log.tags),
        note=log.note,
        logged_at=log.logged_at,
        xp_earned=xp_earned,
    )


def _challenge_response(challenge: Challenge) -> ChallengeResponse:
    return ChallengeResponse(
        id=challenge.id,
        title=challenge.title,
        description=challenge.description,
        category=challenge.category,
        xp_reward=challenge.xp_reward,
        is_global=challenge.is_global,
        tenant_id=challenge.tenant_id,
    )


def _badge_response(badge: Badge) -> BadgeResponse:
    return BadgeResponse(
        id=badge.id,
        name=badge.name,
        description=badge.description,
        icon_url=badge.icon_url,
        awarded_at=badge.awarded_at,
    )


# -- auth --------------------------------------------------------------


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an employee account in the company owning ``company_domain``.

    Raises:
        404: If no company uses the domain
        409: If the email is already registered in that company
    """
    runtime = get_runtime()
    result = await runtime.auth.register(
        body.company_domain, body.name, body.email, body.password
    )
    return Envelope(status="ok", data=_auth_response(result))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with company domain, email and password.

    Raises:
        401: If the domain, user or password is wrong
    """
    runtime = get_runtime()
    result = await runtime.auth.login(body.company_domain, body.email, body.password)
    return Envelope(status="ok", data=_auth_response(result))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(body: RefreshRequest):
    """Rotate a refresh token; the presented token stops working afterwards."""
    runtime = get_runtime()
    tokens = await runtime.auth.refresh(body.refresh_token)
    return Envelope(
        status="ok",
        data=TokenPairResponse(
            access_token=tokens.access_token, refresh_token=tokens.refresh_token
        ),
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    result = await runtime.auth.logout(principal.user_id)
    return Envelope(status="ok", data=MessageResponse(**result))


# -- users -------------------------------------------------------------


@router.get("/users/me", response_model=Envelope, tags=["users"])
async def get_me(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user = runtime.users.get_profile(principal.user_id)
    return Envelope(status="ok", data=_user_response(user))


@router.get("/users/me/badges", response_model=Envelope, tags=["users"])
async def get_my_badges(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    badges = runtime.gamification.list_badges(principal.user_id)
    return Envelope(status="ok", data=[_badge_response(b) for b in badges])


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    role: Optional[Role] = Query(None),
    principal: AuthContext = Depends(get_user),
):
    """List users of the caller's company, newest first."""
    runtime = get_runtime()
    result = runtime.users.list_users(
        principal.tenant_id,
        page=page,
        limit=limit,
        role=role.value if role else None,
    )
    return Envelope(
        status="ok",
        data=UserListResponse(
            data=[_user_response(u) for u in result["data"]],
            meta=PageMeta(**result["meta"]),
        ),
    )


@router.patch("/users/{user_id}", response_model=Envelope, tags=["users"])
async def update_user(
    body: UpdateUserRequest,
    user_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_user),
):
    """Update a profile; only the owner or an admin of the same company may do so."""
    runtime = get_runtime()
    user = runtime.users.update_profile(
        user_id,
        name=body.name,
        actor_id=principal.user_id,
        actor_role=principal.role,
        actor_tenant_id=principal.tenant_id,
    )
    return Envelope(status="ok", data=_user_response(user))


# -- mood logs -----------------------------------------------------------


@router.post("/mood-logs", response_model=Envelope, status_code=201, tags=["mood"])
async def create_mood_log(body: MoodLogRequest, principal: AuthContext = Depends(get_user)):
    """Record today's mood; a second check-in on the same day replaces the first."""
    runtime = get_runtime()
    result = await runtime.mood_logs.create(
        principal.user_id, body.mood, tags=body.tags, note=body.note
    )
    return Envelope(status="ok", data=_mood_log_response(result.log, result.xp_earned))


@router.get("/mood-logs/history", response_model=Envelope, tags=["mood"])
async def mood_history(
    limit: int = Query(DEFAULT_HISTORY_LIMIT),
    cursor: Optional[str] = Query(None, max_length=512),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    page = runtime.mood_logs.find_history(principal.user_id, limit=limit, cursor=cursor)
    items: List[MoodLogResponse] = [_mood_log_response(log) for log in page.items]
    return Envelope(
        status="ok",
        data=MoodHistoryResponse(items=items, next_cursor=page.next_cursor),
    )


# -- challenges ----------------------------------------------------------


@router.post("/challenges", response_model=Envelope, status_code=201, tags=["challenges"])
async def create_challenge(
    body: ChallengeRequest, principal: AuthContext = Depends(get_manager_user)
):
    runtime = get_runtime()
    challenge = runtime.challenges.create(
        actor_role=principal.role,
        tenant_id=principal.tenant_id,
        title=body.title,
        description=body.description,
        category=body.category,
        xp_reward=body.xp_reward,
    )
    return Envelope(status="ok", data=_challenge_response(challenge))


@router.get("/challenges/daily", response_model=Envelope, tags=["challenges"])
async def daily_challenges(principal: AuthContext = Depends(get_user)):
    """Challenges still open for the caller today."""
    runtime = get_runtime()
    challenges = runtime.challenges.find_daily(principal.user_id, principal.tenant_id)
    return Envelope(status="ok", data=[_challenge_response(c) for c in challenges])


@router.post(
    "/challenges/{challenge_id}/complete", response_model=Envelope, tags=["challenges"]
)
async def complete_challenge(
    challenge_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_user),
):
    """Mark a challenge done for today and collect its XP.

    Raises:
        404: If the challenge does not exist in the caller's company
        400: If it was already completed today
    """
    runtime = get_runtime()
    result = await runtime.challenges.complete(
        principal.user_id, principal.tenant_id, challenge_id
    )
    return Envelope(
        status="ok",
        data=ChallengeCompletionResponse(
            challenge=_challenge_response(result.challenge),
            xp_earned=result.xp_earned,
            total_xp=result.total_xp,
            new_level=result.new_level,
        ),
    )
