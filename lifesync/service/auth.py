from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn, Optional

from lifesync.logging import get_logger
from lifesync.service.errors import AuthenticationError, ConflictError, ForbiddenError
from lifesync.service.hasher import CredentialHasher
from lifesync.service.tenants import TenantResolver
from lifesync.service.tokens import ACCESS, REFRESH, InvalidTokenError, TokenPair, TokenSigner
from lifesync.service.users import PublicUser, UserDirectory, normalize_email
from lifesync.storage.errors import ConstraintViolation
from lifesync.storage.models import Role, User

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH = "Invalid or revoked refresh token"
DUPLICATE_EMAIL = "Email already exists in this company"
LOGGED_OUT = "Logged out successfully"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    email: str
    role: str
    tenant_id: str


@dataclass(frozen=True)
class AuthResult:
    access_token: str
    refresh_token: str
    user: PublicUser


class SessionManager:
    """Register, login, refresh-token rotation and logout.

    Each user holds at most one live refresh token. Its fingerprint (argon2 of
    the token's SHA-256 digest) is stored on the user row; every successful
    register/login/refresh overwrites it and logout clears it. A refresh token
    whose fingerprint no longer matches was either rotated out or revoked, and
    both cases are rejected the same way.
    """

    def __init__(
        self,
        tenants: TenantResolver,
        users: UserDirectory,
        hasher: CredentialHasher,
        signer: TokenSigner,
    ) -> None:
        self.tenants = tenants
        self.users = users
        self.hasher = hasher
        self.signer = signer
        self.logger = logger

    async def register(
        self, tenant_domain: str, name: str, email: str, password: str
    ) -> AuthResult:
        tenant = self.tenants.resolve_by_domain(tenant_domain)
        normalized = normalize_email(email)
        if self.users.find_by_email_and_tenant(normalized, tenant.id):
            raise ConflictError(DUPLICATE_EMAIL)
        password_hash = await self.hasher.hash(password)
        try:
            user = self.users.create(
                tenant_id=tenant.id,
                email=normalized,
                name=name,
                password_hash=password_hash,
                role=Role.EMPLOYEE.value,
            )
        except ConstraintViolation as exc:
            if exc.field != "email":
                raise
            # A concurrent registration won between the lookup and the insert
            raise ConflictError(DUPLICATE_EMAIL, detail=exc.detail) from exc
        tokens = await self._issue_and_store(user)
        self.logger.info("user_registered", user_id=user.id, tenant_id=tenant.id)
        return AuthResult(tokens.access_token, tokens.refresh_token, PublicUser.from_user(user))

    async def login(self, tenant_domain: str, email: str, password: str) -> AuthResult:
        tenant = self.tenants.find_by_domain(tenant_domain)
        if tenant is None:
            self.logger.warning("login_failed", reason="unknown_tenant", tenant_domain=tenant_domain)
            raise AuthenticationError(INVALID_CREDENTIALS)
        user = self.users.find_by_email_and_tenant(email, tenant.id)
        if user is None or not user.password_hash:
            self.logger.warning("login_failed", reason="unknown_user", tenant_domain=tenant_domain)
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not await self.hasher.compare(password, user.password_hash):
            self.logger.warning(
                "login_failed",
                reason="password_mismatch",
                user_id=user.id,
                tenant_domain=tenant_domain,
            )
            raise AuthenticationError(INVALID_CREDENTIALS)
        tokens = await self._issue_and_store(user)
        self.logger.info("login_succeeded", user_id=user.id, tenant_id=tenant.id)
        return AuthResult(tokens.access_token, tokens.refresh_token, PublicUser.from_user(user))

    async def refresh(self, refresh_token: str) -> TokenPair:
        try:
            claims = self.signer.verify(refresh_token, token_type=REFRESH)
        except InvalidTokenError as exc:
            self._reject_refresh(reason=str(exc))
        user = self.users.find_by_id(claims.sub)
        if user is None:
            self._reject_refresh(reason="unknown_user", user_id=claims.sub)
        stored = user.refresh_token_hash
        if not stored:
            self._reject_refresh(reason="revoked", user_id=user.id)
        if user.tenant_id != claims.tenant_id:
            self._reject_refresh(reason="tenant_mismatch", user_id=user.id)
        if not await self.hasher.compare_token(refresh_token, stored):
            # Superseded by a later rotation, or a replayed token
            self._reject_refresh(reason="fingerprint_mismatch", user_id=user.id)

        tokens = self.signer.issue_pair(user)
        new_hash = await self.hasher.hash_token(tokens.refresh_token)
        if not self.users.update_refresh_fingerprint(user.id, new_hash, expected=stored):
            self.logger.warning("refresh_rotation_lost_race", user_id=user.id)
            raise AuthenticationError(INVALID_REFRESH)
        self.logger.info("tokens_refreshed", user_id=user.id)
        return tokens

    async def logout(self, user_id: str) -> dict[str, str]:
        self.users.update_refresh_fingerprint(user_id, None)
        self.logger.info("user_logged_out", user_id=user_id)
        return {"message": LOGGED_OUT}

    def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """Resolve a ``Bearer`` access token into the caller's identity."""
        token = self._extract_bearer(authorization)
        if not token:
            raise AuthenticationError("Missing bearer token")
        try:
            claims = self.signer.verify(token, token_type=ACCESS)
        except InvalidTokenError as exc:
            self.logger.info("access_token_rejected", reason=str(exc))
            raise AuthenticationError("Invalid or expired access token") from None
        return AuthContext(
            user_id=claims.sub,
            email=claims.email,
            role=claims.role,
            tenant_id=claims.tenant_id,
        )

    @staticmethod
    def require_role(ctx: AuthContext, *roles: Role) -> None:
        if ctx.role not in {role.value for role in roles}:
            raise ForbiddenError("Insufficient role", detail={"required": [r.value for r in roles]})

    async def _issue_and_store(self, user: User) -> TokenPair:
        tokens = self.signer.issue_pair(user)
        fingerprint_hash = await self.hasher.hash_token(tokens.refresh_token)
        self.users.update_refresh_fingerprint(user.id, fingerprint_hash)
        return tokens

    def _reject_refresh(self, *, reason: str, user_id: Optional[str] = None) -> NoReturn:
        self.logger.warning("refresh_rejected", reason=reason, user_id=user_id)
        raise AuthenticationError(INVALID_REFRESH)

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()
