from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Union

from lifesync.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MoodLogged:
    user_id: str
    mood_log_id: str
    xp_to_award: int = 5


@dataclass(frozen=True)
class ChallengeCompleted:
    user_id: str
    challenge_id: str
    xp_reward: int


WellnessEvent = Union[MoodLogged, ChallengeCompleted]


class WellnessEventHandler(Protocol):
    async def on_mood_logged(self, event: MoodLogged) -> None: ...

    async def on_challenge_completed(self, event: ChallengeCompleted) -> None: ...


class EventChannel:
    """In-process fan-out of wellness events to typed handlers.

    Handlers run in subscription order and are awaited before ``publish``
    returns. A failing handler is logged and skipped; the publisher's own
    write has already happened and is not rolled back.
    """

    def __init__(self) -> None:
        self._handlers: List[WellnessEventHandler] = []

    def subscribe(self, handler: WellnessEventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: WellnessEventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, event: WellnessEvent) -> None:
        if isinstance(event, MoodLogged):
            method = "on_mood_logged"
        elif isinstance(event, ChallengeCompleted):
            method = "on_challenge_completed"
        else:
            raise TypeError(f"unsupported event type: {type(event).__name__}")

        for handler in list(self._handlers):
            try:
                await getattr(handler, method)(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    event_type=type(event).__name__,
                    handler=type(handler).__name__,
                    user_id=event.user_id,
                )
