from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Set

from lifesync.logging import get_logger
from lifesync.service.clock import Clock, start_of_day
from lifesync.service.errors import BadRequestError, ForbiddenError, NotFoundError, ValidationError
from lifesync.service.events import ChallengeCompleted, EventChannel
from lifesync.service.users import UserDirectory
from lifesync.storage.models import Challenge, ChallengeCategory, ChallengeCompletion, Role

logger = get_logger(__name__)

_MANAGING_ROLES = {Role.MANAGER.value, Role.ADMIN.value}

TITLE_LENGTH = (5, 100)
DESCRIPTION_LENGTH = (10, 500)
XP_REWARD_RANGE = (1, 100)


class ChallengeStore(Protocol):
    def create_challenge(
        self,
        *,
        title: str,
        description: str,
        category: str,
        xp_reward: int,
        tenant_id: Optional[str],
        is_global: bool = False,
    ) -> Challenge: ...

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]: ...

    def list_available_challenges(self, tenant_id: str) -> List[Challenge]: ...

    def create_challenge_completion(
        self, user_id: str, challenge_id: str, completed_at: datetime
    ) -> ChallengeCompletion: ...

    def list_completed_challenge_ids(
        self, user_id: str, start: datetime, end: datetime
    ) -> Set[str]: ...


def _check_range(field: str, value: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if not low <= value <= high:
        raise ValidationError(
            f"{field} must be between {low} and {high}", detail={"field": field}
        )


@dataclass(frozen=True)
class CompletionResult:
    challenge: Challenge
    xp_earned: int
    total_xp: int
    new_level: int


class ChallengeService:
    def __init__(
        self,
        store: ChallengeStore,
        users: UserDirectory,
        events: EventChannel,
        clock: Clock,
    ) -> None:
        self.store = store
        self.users = users
        self.events = events
        self.clock = clock

    def _today_bounds(self) -> tuple[datetime, datetime]:
        start = start_of_day(self.clock.today())
        return start, start + timedelta(days=1)

    def create(
        self,
        *,
        actor_role: str,
        tenant_id: str,
        title: str,
        description: str,
        category: str,
        xp_reward: int,
    ) -> Challenge:
        if actor_role not in _MANAGING_ROLES:
            raise ForbiddenError("Only managers and admins can create challenges")
        try:
            category_value = ChallengeCategory(category).value
        except ValueError:
            raise ValidationError(
                "unknown challenge category", detail={"category": category}
            ) from None
        _check_range("title", len(title.strip()), TITLE_LENGTH)
        _check_range("description", len(description.strip()), DESCRIPTION_LENGTH)
        _check_range("xp_reward", xp_reward, XP_REWARD_RANGE)
        challenge = self.store.create_challenge(
            title=title.strip(),
            description=description.strip(),
            category=category_value,
            xp_reward=xp_reward,
            tenant_id=tenant_id,
            is_global=False,
        )
        logger.info("challenge_created", challenge_id=challenge.id, tenant_id=tenant_id)
        return challenge

    def find_daily(self, user_id: str, tenant_id: str) -> List[Challenge]:
        """Global and tenant challenges the user has not completed today."""
        challenges = self.store.list_available_challenges(tenant_id)
        start, end = self._today_bounds()
        done = self.store.list_completed_challenge_ids(user_id, start, end)
        return [c for c in challenges if c.id not in done]

    async def complete(self, user_id: str, tenant_id: str, challenge_id: str) -> CompletionResult:
        challenge = self.store.get_challenge(challenge_id)
        if challenge is None or not (challenge.is_global or challenge.tenant_id == tenant_id):
            raise NotFoundError("Challenge not found", detail={"challenge_id": challenge_id})
        start, end = self._today_bounds()
        if challenge.id in self.store.list_completed_challenge_ids(user_id, start, end):
            raise BadRequestError("Challenge already completed today")

        xp_before = self.users.get_profile(user_id).xp
        self.store.create_challenge_completion(user_id, challenge.id, self.clock.now())
        await self.events.publish(ChallengeCompleted(user_id, challenge.id, challenge.xp_reward))
        user = self.users.get_profile(user_id)
        logger.info(
            "challenge_completed",
            challenge_id=challenge.id,
            user_id=user_id,
            xp=user.xp,
            level=user.level,
        )
        return CompletionResult(
            challenge=challenge,
            xp_earned=max(0, user.xp - xp_before),
            total_xp=user.xp,
            new_level=user.level,
        )
