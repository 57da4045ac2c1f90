from __future__ import annotations

from datetime import date, timedelta
from typing import List, Optional, Protocol

from lifesync.logging import get_logger
from lifesync.service.clock import Clock
from lifesync.service.events import ChallengeCompleted, MoodLogged
from lifesync.service.users import UserDirectory
from lifesync.storage.errors import ConstraintViolation
from lifesync.storage.models import Badge

logger = get_logger(__name__)

FIRST_STEP = "Primeiro Passo"
CONSISTENT = "Consistente"
DEDICATED = "Dedicado"
WELLNESS_MASTER = "Mestre do Bem-Estar"

BADGE_DESCRIPTIONS = {
    FIRST_STEP: "Completou o primeiro mood log",
    CONSISTENT: "7 dias consecutivos de check-in",
    DEDICATED: "30 dias consecutivos de check-in",
    WELLNESS_MASTER: "100 desafios completados",
}

# (streak length in days, badge)
STREAK_BADGES = ((7, CONSISTENT), (30, DEDICATED))
MASTER_COMPLETIONS = 100


class GamificationStore(Protocol):
    def create_badge(
        self,
        user_id: str,
        name: str,
        description: str,
        icon_url: Optional[str] = None,
    ) -> Badge: ...

    def get_badge(self, user_id: str, name: str) -> Optional[Badge]: ...

    def list_badges(self, user_id: str) -> List[Badge]: ...

    def count_mood_logs(self, user_id: str) -> int: ...

    def list_mood_log_days(self, user_id: str, *, limit: int) -> List[date]: ...

    def count_challenge_completions(self, user_id: str) -> int: ...


def current_streak(days: List[date], today: date) -> int:
    """Count consecutive check-in days ending today; 0 if today has no check-in."""
    logged = set(days)
    cursor = today
    streak = 0
    while cursor in logged:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


class GamificationService:
    """Awards XP and badges in reaction to mood logs and challenge completions."""

    def __init__(self, store: GamificationStore, users: UserDirectory, clock: Clock) -> None:
        self.store = store
        self.users = users
        self.clock = clock

    async def on_mood_logged(self, event: MoodLogged) -> None:
        if event.xp_to_award:
            self.users.add_xp(event.user_id, event.xp_to_award)
        self.check_first_mood_log_badge(event.user_id)
        self.check_streak_badges(event.user_id)

    async def on_challenge_completed(self, event: ChallengeCompleted) -> None:
        self.users.add_xp(event.user_id, event.xp_reward)
        self.check_challenges_master_badge(event.user_id)

    def award_badge(self, user_id: str, badge_name: str) -> Optional[Badge]:
        """Create the badge unless the user already holds it."""
        if self.store.get_badge(user_id, badge_name):
            return None
        description = BADGE_DESCRIPTIONS.get(badge_name, badge_name)
        try:
            badge = self.store.create_badge(user_id, badge_name, description)
        except ConstraintViolation:
            # Awarded concurrently
            return None
        logger.info("badge_awarded", user_id=user_id, badge=badge_name)
        return badge

    def check_first_mood_log_badge(self, user_id: str) -> Optional[Badge]:
        if self.store.count_mood_logs(user_id) == 1:
            return self.award_badge(user_id, FIRST_STEP)
        return None

    def check_streak_badges(self, user_id: str) -> List[Badge]:
        longest = max(length for length, _ in STREAK_BADGES)
        days = self.store.list_mood_log_days(user_id, limit=longest + 1)
        streak = current_streak(days, self.clock.today())
        awarded = []
        for length, name in STREAK_BADGES:
            if streak >= length:
                badge = self.award_badge(user_id, name)
                if badge:
                    awarded.append(badge)
        return awarded

    def check_challenges_master_badge(self, user_id: str) -> Optional[Badge]:
        if self.store.count_challenge_completions(user_id) >= MASTER_COMPLETIONS:
            return self.award_badge(user_id, WELLNESS_MASTER)
        return None

    def list_badges(self, user_id: str) -> List[Badge]:
        return self.store.list_badges(user_id)
