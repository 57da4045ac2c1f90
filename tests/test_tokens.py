import base64
import json
from datetime import timedelta

import pytest

from lifesync.service.tokens import ACCESS, REFRESH, InvalidTokenError, TokenSigner
from lifesync.storage.models import User


@pytest.fixture
def user():
    return User(
        id="3f6c1d2e-0000-4000-8000-000000000001",
        tenant_id="tenant-1",
        email="jane@acme.com",
        name="Jane",
        role="EMPLOYEE",
    )


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


class TestIssueAndVerify:
    def test_pair_round_trip(self, signer, user):
        pair = signer.issue_pair(user)

        access = signer.verify(pair.access_token, token_type=ACCESS)
        refresh = signer.verify(pair.refresh_token, token_type=REFRESH)

        assert access.sub == refresh.sub == user.id
        assert access.tenant_id == user.tenant_id
        assert access.role == "EMPLOYEE"
        assert access.jti != refresh.jti

    def test_same_second_tokens_differ(self, signer, user):
        """jti keeps tokens unique even when issued at the same instant."""
        first = signer.issue_pair(user)
        second = signer.issue_pair(user)
        assert first.refresh_token != second.refresh_token

    def test_wrong_type_rejected(self, signer, user):
        pair = signer.issue_pair(user)
        with pytest.raises(InvalidTokenError, match="wrong token type"):
            signer.verify(pair.access_token, token_type=REFRESH)

    def test_expiry_uses_injected_clock(self, signer, user, clock):
        pair = signer.issue_pair(user)
        clock.advance(minutes=14, seconds=59)
        signer.verify(pair.access_token, token_type=ACCESS)

        clock.advance(seconds=1)
        with pytest.raises(InvalidTokenError, match="expired"):
            signer.verify(pair.access_token, token_type=ACCESS)

    def test_leeway_tolerates_skew(self, clock, user):
        signer = TokenSigner(
            "unit-test-signing-secret-0123456789abcdef",
            issuer="lifesync",
            audience="lifesync-clients",
            access_ttl=timedelta(minutes=1),
            refresh_ttl=timedelta(minutes=2),
            clock=clock,
            leeway=timedelta(seconds=30),
        )
        token = signer.issue({"sub": user.id, "role": "EMPLOYEE", "tenant_id": "t"}, timedelta(minutes=1))
        clock.advance(minutes=1, seconds=20)
        assert signer.verify(token).sub == user.id


class TestTampering:
    def test_other_secret_rejected(self, signer, user, clock):
        other = TokenSigner(
            "another-signing-secret-0123456789abcdefgh",
            issuer="lifesync",
            audience="lifesync-clients",
            access_ttl=timedelta(minutes=15),
            refresh_ttl=timedelta(days=7),
            clock=clock,
        )
        token = other.issue_pair(user).access_token
        with pytest.raises(InvalidTokenError, match="signature"):
            signer.verify(token)

    def test_modified_payload_rejected(self, signer, user):
        header, _, sig = signer.issue_pair(user).access_token.split(".")
        forged = _b64({"sub": user.id, "role": "ADMIN", "tenant_id": user.tenant_id})
        with pytest.raises(InvalidTokenError):
            signer.verify(f"{header}.{forged}.{sig}")

    def test_none_algorithm_rejected(self, signer, user):
        _, payload, sig = signer.issue_pair(user).access_token.split(".")
        header = _b64({"alg": "none", "typ": "JWT"})
        with pytest.raises(InvalidTokenError, match="algorithm"):
            signer.verify(f"{header}.{payload}.{sig}")

    @pytest.mark.parametrize(
        "token", ["", "abc", "a.b", "a.b.c.d", "!!!.###.$$$", "h.p.\u00e9", "\u00e9.p.s"]
    )
    def test_malformed_tokens(self, signer, token):
        with pytest.raises(InvalidTokenError):
            signer.verify(token)

    def test_non_ascii_signature_rejected(self, signer, user):
        header, payload, _ = signer.issue_pair(user).access_token.split(".")
        with pytest.raises(InvalidTokenError, match="signature"):
            signer.verify(f"{header}.{payload}.\u00e9")

    def test_audience_and_issuer_checked(self, signer, user, clock):
        foreign = TokenSigner(
            "unit-test-signing-secret-0123456789abcdef",
            issuer="someone-else",
            audience="other-clients",
            access_ttl=timedelta(minutes=15),
            refresh_ttl=timedelta(days=7),
            clock=clock,
        )
        with pytest.raises(InvalidTokenError, match="issuer"):
            signer.verify(foreign.issue_pair(user).access_token)
