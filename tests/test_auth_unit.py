"""Unit tests for the session manager.

Covers:
- Registration and login against a tenant
- Refresh-token rotation and replay rejection
- Logout revocation
- Concurrent refresh of one token
- Bearer authentication for protected routes
"""

import asyncio
from dataclasses import replace

import pytest

from lifesync.service.auth import (
    DUPLICATE_EMAIL,
    INVALID_CREDENTIALS,
    INVALID_REFRESH,
    SessionManager,
)
from lifesync.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from lifesync.service.tenants import TenantResolver
from lifesync.service.users import UserDirectory
from lifesync.storage.errors import ConstraintViolation
from lifesync.storage.models import Role


@pytest.fixture
def users(memory_store):
    return UserDirectory(memory_store)


@pytest.fixture
def sessions(memory_store, users, hasher, signer):
    return SessionManager(TenantResolver(memory_store), users, hasher, signer)


@pytest.fixture
def globex(memory_store):
    return memory_store.create_tenant("globex.com", "Globex")


class TestRegister:
    """Tests for account creation."""

    async def test_register_returns_tokens_and_employee_view(self, sessions, acme):
        """A fresh registration is an EMPLOYEE at level 1 with no XP."""
        result = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

        assert result.access_token
        assert result.refresh_token
        assert result.access_token != result.refresh_token
        assert result.user.role == "EMPLOYEE"
        assert result.user.xp == 0
        assert result.user.level == 1
        assert result.user.tenant_id == acme.id

    async def test_register_normalizes_email(self, sessions, memory_store, acme):
        """Emails are stored trimmed and lowercased."""
        result = await sessions.register("acme.com", "Jane", "  Jane@ACME.com ", "longpassword1")

        assert result.user.email == "jane@acme.com"
        assert memory_store.get_user_by_email("jane@acme.com", acme.id) is not None

    async def test_register_unknown_domain_is_not_found(self, sessions, acme):
        with pytest.raises(NotFoundError) as exc_info:
            await sessions.register("nowhere.io", "Jane", "jane@nowhere.io", "longpassword1")
        assert exc_info.value.message == "Company domain not found"

    async def test_register_duplicate_email_conflicts(self, sessions, acme):
        """Second registration of one email in one tenant is a conflict."""
        await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

        with pytest.raises(ConflictError) as exc_info:
            await sessions.register("acme.com", "Jane Again", "JANE@acme.com", "longpassword2")
        assert exc_info.value.message == DUPLICATE_EMAIL

    async def test_insert_race_on_email_is_conflict(self, sessions, memory_store, acme, monkeypatch):
        def lost_race(**kwargs):
            raise ConstraintViolation("email already exists", {"field": "email"})

        monkeypatch.setattr(memory_store, "create_user", lost_race)
        with pytest.raises(ConflictError):
            await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

    async def test_other_constraint_is_not_a_duplicate(self, sessions, memory_store, acme, monkeypatch):
        def tenant_gone(**kwargs):
            raise ConstraintViolation("tenant does not exist", {"field": "tenant_id"})

        monkeypatch.setattr(memory_store, "create_user", tenant_gone)
        with pytest.raises(ConstraintViolation):
            await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

    async def test_same_email_in_two_tenants(self, sessions, acme, globex):
        """Uniqueness is per tenant, so both registrations succeed."""
        first = await sessions.register("acme.com", "Jane", "jane@example.com", "longpassword1")
        second = await sessions.register("globex.com", "Jane", "jane@example.com", "longpassword1")

        assert first.user.id != second.user.id
        assert first.user.tenant_id == acme.id
        assert second.user.tenant_id == globex.id

    async def test_register_stores_fingerprint_not_token(self, sessions, memory_store):
        memory_store.create_tenant("acme.com", "ACME Corporation")
        result = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

        stored = memory_store.get_user(result.user.id)
        assert stored.refresh_token_hash
        assert result.refresh_token not in stored.refresh_token_hash
        assert stored.password_hash != "longpassword1"


class TestLogin:
    """Tests for credential login."""

    async def test_register_then_login(self, sessions, acme):
        """Login right after registration returns the same user."""
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        logged_in = await sessions.login("acme.com", "jane@acme.com", "longpassword1")

        assert logged_in.user.id == registered.user.id
        assert logged_in.user.role == registered.user.role
        assert logged_in.refresh_token != registered.refresh_token

    async def test_login_failures_are_indistinguishable(self, sessions, acme):
        """Wrong password, unknown email and unknown tenant share one error."""
        await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

        errors = []
        for domain, email, password in (
            ("acme.com", "jane@acme.com", "wrong-password"),
            ("acme.com", "ghost@acme.com", "longpassword1"),
            ("nowhere.io", "jane@acme.com", "longpassword1"),
        ):
            with pytest.raises(AuthenticationError) as exc_info:
                await sessions.login(domain, email, password)
            errors.append(exc_info.value)

        assert {type(e) for e in errors} == {AuthenticationError}
        assert {e.message for e in errors} == {INVALID_CREDENTIALS}
        assert {e.status_code for e in errors} == {401}
        assert all(e.detail == {} for e in errors)

    async def test_login_user_without_password_hash(self, sessions, memory_store, acme):
        memory_store.create_user(
            tenant_id=acme.id,
            email="sso@acme.com",
            name="SSO User",
            password_hash=None,
        )
        with pytest.raises(AuthenticationError):
            await sessions.login("acme.com", "sso@acme.com", "anything123")

    async def test_login_is_tenant_scoped(self, sessions, acme, globex):
        """A user of one tenant cannot log in through another tenant's domain."""
        await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        with pytest.raises(AuthenticationError):
            await sessions.login("globex.com", "jane@acme.com", "longpassword1")


class TestRefresh:
    """Tests for refresh-token rotation."""

    async def test_refresh_rotates_pair(self, sessions, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        rotated = await sessions.refresh(registered.refresh_token)

        assert rotated.refresh_token != registered.refresh_token
        assert rotated.access_token != registered.access_token

    async def test_superseded_token_is_rejected(self, sessions, acme):
        """A refresh token replayed after rotation is unauthorized."""
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        rotated = await sessions.refresh(registered.refresh_token)

        with pytest.raises(AuthenticationError) as exc_info:
            await sessions.refresh(registered.refresh_token)
        assert exc_info.value.message == INVALID_REFRESH

        # The current token still works
        assert await sessions.refresh(rotated.refresh_token)

    async def test_login_supersedes_previous_refresh_token(self, sessions, acme):
        """Each login rotates the single live refresh token."""
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        await sessions.login("acme.com", "jane@acme.com", "longpassword1")

        with pytest.raises(AuthenticationError):
            await sessions.refresh(registered.refresh_token)

    async def test_refresh_after_logout_is_rejected(self, sessions, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        await sessions.logout(registered.user.id)

        with pytest.raises(AuthenticationError) as exc_info:
            await sessions.refresh(registered.refresh_token)
        assert exc_info.value.message == INVALID_REFRESH

    async def test_access_token_cannot_refresh(self, sessions, acme):
        """Token type is checked so an access token is not a refresh token."""
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        with pytest.raises(AuthenticationError):
            await sessions.refresh(registered.access_token)

    async def test_garbage_and_expired_tokens(self, sessions, acme, clock):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        with pytest.raises(AuthenticationError):
            await sessions.refresh("not-a-token")

        clock.advance(days=8)
        with pytest.raises(AuthenticationError):
            await sessions.refresh(registered.refresh_token)

    async def test_refresh_for_deleted_user(self, sessions, memory_store, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        del memory_store.users[registered.user.id]

        with pytest.raises(AuthenticationError):
            await sessions.refresh(registered.refresh_token)

    async def test_concurrent_refresh_rotates_once(self, sessions, acme):
        """Two refreshes racing on one token yield exactly one new pair."""
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

        results = await asyncio.gather(
            sessions.refresh(registered.refresh_token),
            sessions.refresh(registered.refresh_token),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], AuthenticationError)
        assert await sessions.refresh(successes[0].refresh_token)

    async def test_store_failure_propagates(self, sessions, memory_store, acme, monkeypatch):
        """Unexpected store errors are not disguised as auth failures."""
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

        def broken(user_id):
            raise RuntimeError("store offline")

        monkeypatch.setattr(memory_store, "get_user", broken)
        with pytest.raises(RuntimeError):
            await sessions.refresh(registered.refresh_token)


class TestLogout:
    async def test_logout_is_idempotent(self, sessions, memory_store, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")

        first = await sessions.logout(registered.user.id)
        second = await sessions.logout(registered.user.id)

        assert first == second == {"message": "Logged out successfully"}
        assert memory_store.get_user(registered.user.id).refresh_token_hash is None

    async def test_logout_unknown_user_still_succeeds(self, sessions):
        assert (await sessions.logout("missing"))["message"] == "Logged out successfully"


class TestAuthenticate:
    """Tests for bearer access-token checks."""

    async def test_valid_bearer_token(self, sessions, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        ctx = sessions.authenticate(f"Bearer {registered.access_token}")

        assert ctx.user_id == registered.user.id
        assert ctx.tenant_id == acme.id
        assert ctx.role == "EMPLOYEE"

    async def test_refresh_token_is_not_a_bearer(self, sessions, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        with pytest.raises(AuthenticationError):
            sessions.authenticate(f"Bearer {registered.refresh_token}")

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "token-only"])
    def test_missing_or_malformed_header(self, sessions, header):
        with pytest.raises(AuthenticationError):
            sessions.authenticate(header)

    async def test_expired_access_token(self, sessions, acme, clock):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        clock.advance(minutes=16)
        with pytest.raises(AuthenticationError):
            sessions.authenticate(f"Bearer {registered.access_token}")

    async def test_non_ascii_signature_is_unauthorized(self, sessions, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        header, payload, _ = registered.access_token.split(".")
        with pytest.raises(AuthenticationError):
            sessions.authenticate(f"Bearer {header}.{payload}.\u00e9")

    async def test_require_role(self, sessions, acme):
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        ctx = sessions.authenticate(f"Bearer {registered.access_token}")

        with pytest.raises(ForbiddenError):
            SessionManager.require_role(ctx, Role.MANAGER, Role.ADMIN)
        SessionManager.require_role(replace(ctx, role="ADMIN"), Role.MANAGER, Role.ADMIN)


class TestAcmeScenario:
    async def test_register_login_and_replay(self, sessions, acme):
        """Register, log in, rotate twice, then replay the first refresh token."""
        registered = await sessions.register("acme.com", "Jane", "jane@acme.com", "longpassword1")
        assert registered.user.role == "EMPLOYEE"
        assert (registered.user.xp, registered.user.level) == (0, 1)

        logged_in = await sessions.login("acme.com", "jane@acme.com", "longpassword1")
        old_refresh = logged_in.refresh_token

        first = await sessions.refresh(old_refresh)
        with pytest.raises(AuthenticationError):
            await sessions.refresh(old_refresh)
        second = await sessions.refresh(first.refresh_token)
        assert second.refresh_token != first.refresh_token
