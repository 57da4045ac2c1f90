from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional, Union

from lifesync.config import get_settings, reset_settings_cache
from lifesync.logging import get_logger
from lifesync.service.auth import SessionManager
from lifesync.service.challenges import ChallengeService
from lifesync.service.clock import Clock
from lifesync.service.events import EventChannel
from lifesync.service.gamification import GamificationService
from lifesync.service.hasher import CredentialHasher
from lifesync.service.mood_logs import MoodLogService
from lifesync.service.tenants import TenantResolver
from lifesync.service.tokens import TokenSigner
from lifesync.service.users import UserDirectory
from lifesync.storage.memory import MemoryStore
from lifesync.storage.postgres import PostgresStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, clock: Optional[Clock] = None):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(
                    self.settings.database_url,
                    min_size=self.settings.db_pool_min_size,
                    max_size=self.settings.db_pool_max_size,
                )
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.clock = clock or Clock()
        self.hasher = CredentialHasher.from_settings(self.settings)
        self.signer = TokenSigner.from_settings(self.settings, clock=self.clock)
        self.tenants = TenantResolver(self.store)
        self.users = UserDirectory(self.store)
        self.auth = SessionManager(self.tenants, self.users, self.hasher, self.signer)

        self.events = EventChannel()
        self.gamification = GamificationService(self.store, self.users, self.clock)
        self.events.subscribe(self.gamification)
        self.mood_logs = MoodLogService(
            self.store,
            self.events,
            self.clock,
            xp_reward=self.settings.mood_xp_reward,
        )
        self.challenges = ChallengeService(self.store, self.users, self.events, self.clock)

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            access_ttl=str(timedelta(minutes=self.settings.access_token_ttl_minutes)),
            hash_cost_factor=self.settings.hash_cost_factor,
        )

    def close(self) -> None:
        self.store.close()
        logger.info("runtime_closed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking: the fast path skips the lock once the
    runtime exists, the slow path re-checks under the lock before creating.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(clock: Optional[Clock] = None) -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(clock=clock)
        return runtime
