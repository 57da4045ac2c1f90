from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from lifesync.config import Settings
from lifesync.logging import get_logger
from lifesync.service.clock import Clock
from lifesync.storage.models import User

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class InvalidTokenError(Exception):
    """Token failed signature, structure, audience or expiry checks."""


@dataclass(frozen=True)
class Claims:
    sub: str
    email: str
    role: str
    tenant_id: str
    token_type: str
    jti: str
    exp: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenSigner:
    """HS256 JWT issuance and verification with an injectable clock."""

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        clock: Optional[Clock] = None,
        leeway: timedelta = timedelta(0),
    ) -> None:
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock or Clock()
        self.leeway = leeway

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Clock] = None) -> "TokenSigner":
        return cls(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(minutes=settings.refresh_token_ttl_minutes),
            clock=clock,
            leeway=timedelta(seconds=settings.jwt_leeway_seconds),
        )

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(self, claims: dict[str, Any], ttl: timedelta, *, token_type: str = ACCESS) -> str:
        now = self.clock.now()
        payload = dict(claims)
        payload.update(
            {
                "iss": self.issuer,
                "aud": self.audience,
                "token_type": token_type,
                "jti": str(uuid.uuid4()),
                "iat": int(now.timestamp()),
                "exp": int((now + ttl).timestamp()),
            }
        )
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = self._encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def issue_pair(self, user: User) -> TokenPair:
        claims = {
            "sub": user.id,
            "email": user.email,
            "role": user.role,
            "tenant_id": user.tenant_id,
        }
        return TokenPair(
            access_token=self.issue(claims, self.access_ttl, token_type=ACCESS),
            refresh_token=self.issue(claims, self.refresh_ttl, token_type=REFRESH),
        )

    def verify(self, token: str, *, token_type: Optional[str] = None) -> Claims:
        if not isinstance(token, str):
            raise InvalidTokenError("token must be a string")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidTokenError("malformed token") from None

        # Pin the algorithm so a forged header cannot downgrade verification
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            raise InvalidTokenError("malformed header") from None
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=alg)
            raise InvalidTokenError("unsupported algorithm")

        expected = self._sign(f"{header_b64}.{payload_b64}").encode()
        if not hmac.compare_digest(expected, sig_b64.encode("utf-8", "replace")):
            raise InvalidTokenError("signature mismatch")
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError):
            raise InvalidTokenError("malformed payload") from None
        if not isinstance(payload, dict):
            raise InvalidTokenError("malformed payload")

        if payload.get("iss") != self.issuer:
            raise InvalidTokenError("issuer mismatch")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise InvalidTokenError("audience mismatch")
        try:
            exp = int(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError("missing expiry") from None
        if exp <= self.clock.timestamp() - self.leeway.total_seconds():
            raise InvalidTokenError("token expired")
        if token_type is not None and payload.get("token_type") != token_type:
            raise InvalidTokenError("wrong token type")

        try:
            return Claims(
                sub=str(payload["sub"]),
                email=str(payload.get("email", "")),
                role=str(payload["role"]),
                tenant_id=str(payload["tenant_id"]),
                token_type=str(payload.get("token_type", "")),
                jti=str(payload.get("jti", "")),
                exp=exp,
            )
        except KeyError as exc:
            raise InvalidTokenError(f"missing claim {exc.args[0]}") from None
