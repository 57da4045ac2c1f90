from __future__ import annotations

import asyncio
import hashlib
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from lifesync.config import Settings
from lifesync.logging import get_logger

logger = get_logger(__name__)


class CredentialHasher:
    """Slow one-way hashing for passwords and refresh-token fingerprints.

    argon2id does the CPU-bound work; every call is pushed to a worker thread
    so the event loop keeps serving other requests while a hash runs.

    Refresh tokens are hashed twice: the raw token is reduced to a SHA-256 hex
    digest first, and only the digest goes through argon2. The stored value is
    therefore never a direct transform of the token, and the argon2 input stays
    a fixed 64 characters no matter how large the token grows.
    """

    def __init__(
        self,
        *,
        cost_factor: int = 3,
        memory_cost_kib: int = 64 * 1024,
        parallelism: int = 4,
    ) -> None:
        self.cost_factor = cost_factor
        self.memory_cost_kib = memory_cost_kib
        self.parallelism = parallelism
        self._hashers: dict[int, PasswordHasher] = {}
        self._pwd_hasher = self._hasher_for(cost_factor)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialHasher":
        return cls(
            cost_factor=settings.hash_cost_factor,
            memory_cost_kib=settings.hash_memory_cost_kib,
            parallelism=settings.hash_parallelism,
        )

    def _hasher_for(self, cost_factor: int) -> PasswordHasher:
        hasher = self._hashers.get(cost_factor)
        if hasher is None:
            hasher = PasswordHasher(
                time_cost=cost_factor,
                memory_cost=self.memory_cost_kib,
                parallelism=self.parallelism,
                type=Type.ID,
            )
            self._hashers[cost_factor] = hasher
        return hasher

    async def hash(self, plaintext: str, cost_factor: Optional[int] = None) -> str:
        if cost_factor is not None and cost_factor < 1:
            raise ValueError("cost_factor must be at least 1")
        hasher = self._hasher_for(cost_factor or self.cost_factor)
        return await asyncio.to_thread(hasher.hash, plaintext)

    async def compare(self, plaintext: str, hashed: str) -> bool:
        """Return True when ``plaintext`` matches ``hashed``.

        The argon2 encoding carries its own parameters, so hashes made with a
        different cost factor still verify.
        """
        if not hashed:
            return False
        return await asyncio.to_thread(self._verify, hashed, plaintext)

    def _verify(self, hashed: str, plaintext: str) -> bool:
        try:
            return self._pwd_hasher.verify(hashed, plaintext)
        except VerificationError:
            return False
        except InvalidHash:
            logger.warning("credential_hash_invalid")
            return False

    @staticmethod
    def fingerprint(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    async def hash_token(self, token: str) -> str:
        return await self.hash(self.fingerprint(token))

    async def compare_token(self, token: str, hashed: str) -> bool:
        return await self.compare(self.fingerprint(token), hashed)
