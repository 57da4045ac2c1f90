import hashlib

import pytest

from lifesync.service.hasher import CredentialHasher


class TestPasswordHashing:
    """Tests for argon2id password hashing."""

    async def test_hash_is_salted_argon2id(self, hasher):
        first = await hasher.hash("longpassword1")
        second = await hasher.hash("longpassword1")

        assert first.startswith("$argon2id$")
        assert first != second
        assert "longpassword1" not in first

    async def test_compare(self, hasher):
        hashed = await hasher.hash("longpassword1")
        assert await hasher.compare("longpassword1", hashed)
        assert not await hasher.compare("longpassword2", hashed)

    async def test_invalid_or_empty_hash_is_false(self, hasher):
        """Malformed stored hashes never raise."""
        assert not await hasher.compare("longpassword1", "not-a-hash")
        assert not await hasher.compare("longpassword1", "")

    async def test_cost_factor_is_encoded(self, hasher):
        """Hashes made at another cost still verify."""
        hashed = await hasher.hash("longpassword1", cost_factor=2)
        assert "t=2" in hashed
        assert await hasher.compare("longpassword1", hashed)

    async def test_rejects_zero_cost(self, hasher):
        with pytest.raises(ValueError):
            await hasher.hash("longpassword1", cost_factor=0)

    def test_from_settings(self):
        from lifesync.config import Settings

        settings = Settings(
            jwt_secret="x" * 32,
            hash_cost_factor=2,
            hash_memory_cost_kib=2048,
            hash_parallelism=1,
        )
        hasher = CredentialHasher.from_settings(settings)
        assert (hasher.cost_factor, hasher.memory_cost_kib, hasher.parallelism) == (2, 2048, 1)


class TestTokenFingerprint:
    def test_fingerprint_is_sha256_hex(self):
        assert CredentialHasher.fingerprint("abc") == hashlib.sha256(b"abc").hexdigest()

    async def test_token_hash_round_trip(self, hasher):
        token = "header.payload.signature" * 40
        hashed = await hasher.hash_token(token)

        assert token not in hashed
        assert await hasher.compare_token(token, hashed)
        assert not await hasher.compare_token(token + "x", hashed)
        # Only the digest goes through argon2
        assert await hasher.compare(CredentialHasher.fingerprint(token), hashed)
