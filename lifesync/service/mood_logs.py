from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Protocol, Tuple

from lifesync.logging import get_logger
from lifesync.service.clock import Clock, start_of_day
from lifesync.service.errors import NotFoundError, ValidationError
from lifesync.service.events import EventChannel, MoodLogged
from lifesync.storage.cursors import decode_time_id_cursor, encode_time_id_cursor
from lifesync.storage.models import MoodLog

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 7
MAX_HISTORY_LIMIT = 30
MAX_TAGS = 10
MAX_TAG_LENGTH = 5
MAX_NOTE_LENGTH = 500


class MoodLogStore(Protocol):
    def create_mood_log(
        self,
        user_id: str,
        *,
        mood: int,
        tags: str,
        note: Optional[str],
        logged_at: datetime,
    ) -> MoodLog: ...

    def update_mood_log(
        self, log_id: str, *, mood: int, tags: str, note: Optional[str]
    ) -> Optional[MoodLog]: ...

    def find_mood_log_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> Optional[MoodLog]: ...

    def list_mood_logs(
        self,
        user_id: str,
        *,
        limit: int,
        before: Optional[Tuple[datetime, str]] = None,
    ) -> List[MoodLog]: ...


def tags_to_string(tags: Optional[Iterable[str]]) -> str:
    if not tags:
        return ""
    return ",".join(tag.strip().lower() for tag in tags)


def string_to_tags(tags: Optional[str]) -> List[str]:
    if not tags:
        return []
    return [tag for tag in tags.split(",") if tag]


@dataclass(frozen=True)
class MoodLogResult:
    log: MoodLog
    xp_earned: int
    created: bool


@dataclass(frozen=True)
class MoodHistoryPage:
    items: List[MoodLog]
    next_cursor: Optional[str]


class MoodLogService:
    """Daily mood check-ins and their cursor-paged history."""

    def __init__(
        self,
        store: MoodLogStore,
        events: EventChannel,
        clock: Clock,
        *,
        xp_reward: int = 5,
    ) -> None:
        self.store = store
        self.events = events
        self.clock = clock
        self.xp_reward = xp_reward

    def _validate(self, mood: int, tags: Optional[List[str]], note: Optional[str]) -> None:
        if not isinstance(mood, int) or isinstance(mood, bool) or not 1 <= mood <= 5:
            raise ValidationError("mood must be an integer between 1 and 5")
        if tags:
            if len(tags) > MAX_TAGS:
                raise ValidationError(f"at most {MAX_TAGS} tags are allowed")
            for tag in tags:
                cleaned = tag.strip()
                if not cleaned or len(cleaned) > MAX_TAG_LENGTH:
                    raise ValidationError(
                        f"tags must be 1 to {MAX_TAG_LENGTH} characters",
                        detail={"tag": tag},
                    )
        if note is not None and len(note) > MAX_NOTE_LENGTH:
            raise ValidationError(f"note must be at most {MAX_NOTE_LENGTH} characters")

    async def create(
        self,
        user_id: str,
        mood: int,
        tags: Optional[List[str]] = None,
        note: Optional[str] = None,
    ) -> MoodLogResult:
        """Record today's mood, replacing today's earlier entry if there is one."""
        self._validate(mood, tags, note)
        tags_string = tags_to_string(tags)
        now = self.clock.now()
        day_start = start_of_day(now.date())
        existing = self.store.find_mood_log_between(
            user_id, day_start, day_start + timedelta(days=1)
        )

        if existing:
            log = self.store.update_mood_log(existing.id, mood=mood, tags=tags_string, note=note)
            if log is None:
                raise NotFoundError("Mood log not found", detail={"mood_log_id": existing.id})
            logger.info("mood_log_updated", user_id=user_id, mood_log_id=log.id)
            return MoodLogResult(log=log, xp_earned=0, created=False)

        log = self.store.create_mood_log(
            user_id, mood=mood, tags=tags_string, note=note, logged_at=now
        )
        logger.info("mood_log_created", user_id=user_id, mood_log_id=log.id)
        await self.events.publish(MoodLogged(user_id, log.id, self.xp_reward))
        return MoodLogResult(log=log, xp_earned=self.xp_reward, created=True)

    def find_history(
        self,
        user_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        cursor: Optional[str] = None,
    ) -> MoodHistoryPage:
        take = max(1, min(limit, MAX_HISTORY_LIMIT))
        before = self._decode_cursor(cursor) if cursor else None
        logs = self.store.list_mood_logs(user_id, limit=take, before=before)
        next_cursor = None
        if len(logs) == take:
            last = logs[-1]
            next_cursor = encode_time_id_cursor(last.logged_at, last.id)
        return MoodHistoryPage(items=logs, next_cursor=next_cursor)

    @staticmethod
    def _decode_cursor(cursor: str) -> Optional[Tuple[datetime, str]]:
        # An unreadable cursor restarts from the newest entry
        try:
            logged_at, identifier = decode_time_id_cursor(cursor)
            uuid.UUID(identifier)
        except ValueError:
            logger.info("mood_cursor_invalid")
            return None
        return logged_at, identifier
