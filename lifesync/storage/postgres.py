from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from lifesync.logging import get_logger
from lifesync.storage.errors import ConstraintViolation
from lifesync.storage.models import (
    XP_PER_LEVEL,
    Badge,
    Challenge,
    ChallengeCompletion,
    MoodLog,
    Role,
    Tenant,
    User,
    calculate_level,
)

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS tenant (
        id UUID PRIMARY KEY,
        domain TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        tenant_id UUID NOT NULL REFERENCES tenant(id),
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        password_hash TEXT,
        role TEXT NOT NULL DEFAULT 'EMPLOYEE',
        xp INTEGER NOT NULL DEFAULT 0 CHECK (xp >= 0),
        level INTEGER NOT NULL DEFAULT 1,
        refresh_token_hash TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (email, tenant_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mood_log (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        mood SMALLINT NOT NULL CHECK (mood BETWEEN 1 AND 5),
        tags TEXT NOT NULL DEFAULT '',
        note TEXT,
        logged_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS mood_log_user_keyset ON mood_log (user_id, logged_at DESC, id DESC)",
    """
    CREATE TABLE IF NOT EXISTS challenge (
        id UUID PRIMARY KEY,
        tenant_id UUID REFERENCES tenant(id),
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        category TEXT NOT NULL,
        xp_reward INTEGER NOT NULL,
        is_global BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS challenge_completion (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        challenge_id UUID NOT NULL REFERENCES challenge(id) ON DELETE CASCADE,
        completed_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS challenge_completion_user ON challenge_completion (user_id, completed_at)",
    """
    CREATE TABLE IF NOT EXISTS badge (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT NOT NULL,
        icon_url TEXT,
        awarded_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (user_id, name)
    )
    """,
)


def _valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _tenant_from_row(row: Dict[str, Any]) -> Tenant:
    return Tenant(
        id=str(row["id"]),
        domain=row["domain"],
        name=row["name"],
        created_at=row["created_at"],
    )


def _user_from_row(row: Dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        email=row["email"],
        name=row["name"],
        password_hash=row.get("password_hash"),
        role=row.get("role", Role.EMPLOYEE.value),
        xp=row.get("xp", 0),
        level=row.get("level", 1),
        refresh_token_hash=row.get("refresh_token_hash"),
        created_at=row["created_at"],
    )


def _mood_log_from_row(row: Dict[str, Any]) -> MoodLog:
    return MoodLog(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        mood=row["mood"],
        tags=row.get("tags") or "",
        note=row.get("note"),
        logged_at=row["logged_at"],
        created_at=row["created_at"],
    )


def _challenge_from_row(row: Dict[str, Any]) -> Challenge:
    return Challenge(
        id=str(row["id"]),
        title=row["title"],
        description=row["description"],
        category=row["category"],
        xp_reward=row["xp_reward"],
        tenant_id=str(row["tenant_id"]) if row.get("tenant_id") else None,
        is_global=row.get("is_global", False),
        created_at=row["created_at"],
    )


def _badge_from_row(row: Dict[str, Any]) -> Badge:
    return Badge(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        name=row["name"],
        description=row["description"],
        icon_url=row.get("icon_url"),
        awarded_at=row["awarded_at"],
    )


class PostgresStore:
    """Postgres-backed store; same surface as :class:`MemoryStore`."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create tables and indexes that are missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready", statements=len(_SCHEMA_STATEMENTS))

    def ping(self) -> bool:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    def close(self) -> None:
        self.pool.close()

    # -- tenants -------------------------------------------------------

    def create_tenant(self, domain: str, name: str) -> Tenant:
        tenant_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "INSERT INTO tenant (id, domain, name) VALUES (%s, %s, %s) RETURNING *",
                    (tenant_id, domain, name),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("domain already exists", {"field": "domain"})
        return _tenant_from_row(row)

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tenant WHERE id = %s", (tenant_id,)).fetchone()
        return _tenant_from_row(row) if row else None

    def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tenant WHERE domain = %s", (domain,)).fetchone()
        return _tenant_from_row(row) if row else None

    # -- users ---------------------------------------------------------

    def create_user(
        self,
        *,
        tenant_id: str,
        email: str,
        name: str,
        password_hash: Optional[str],
        role: str = Role.EMPLOYEE.value,
        xp: int = 0,
    ) -> User:
        user_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (id, tenant_id, email, name, password_hash, role, xp, level)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (user_id, tenant_id, email, name, password_hash, role, xp, calculate_level(xp)),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "email already exists", {"field": "email", "tenant_id": tenant_id}
            )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("tenant does not exist", {"field": "tenant_id"})
        return _user_from_row(row)

    def get_user(self, user_id: str) -> Optional[User]:
        if not _valid_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM app_user WHERE id = %s", (user_id,)).fetchone()
        return _user_from_row(row) if row else None

    def get_user_by_email(self, email: str, tenant_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s AND tenant_id = %s",
                (email, tenant_id),
            ).fetchone()
        return _user_from_row(row) if row else None

    def list_users(
        self,
        tenant_id: str,
        *,
        offset: int = 0,
        limit: int = 20,
        role: Optional[str] = None,
    ) -> List[User]:
        clauses = ["tenant_id = %s"]
        params: List[Any] = [tenant_id]
        if role:
            clauses.append("role = %s")
            params.append(role)
        params.extend([limit, offset])
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM app_user WHERE {' AND '.join(clauses)} "
                "ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s",
                params,
            ).fetchall()
        return [_user_from_row(row) for row in rows]

    def count_users(self, tenant_id: str, role: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) AS total FROM app_user WHERE tenant_id = %s"
        params: List[Any] = [tenant_id]
        if role:
            query += " AND role = %s"
            params.append(role)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return int(row["total"]) if row else 0

    def update_user_name(self, user_id: str, name: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET name = %s WHERE id = %s RETURNING *",
                (name, user_id),
            ).fetchone()
        return _user_from_row(row) if row else None

    def update_refresh_fingerprint(
        self, user_id: str, fingerprint_hash: Optional[str]
    ) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET refresh_token_hash = %s WHERE id = %s RETURNING id",
                (fingerprint_hash, user_id),
            ).fetchone()
        return row is not None

    def swap_refresh_fingerprint(
        self, user_id: str, expected: str, fingerprint_hash: Optional[str]
    ) -> bool:
        """Replace the fingerprint only if it still equals ``expected``."""
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user SET refresh_token_hash = %s
                WHERE id = %s AND refresh_token_hash = %s
                RETURNING id
                """,
                (fingerprint_hash, user_id, expected),
            ).fetchone()
        return row is not None

    def add_xp(self, user_id: str, amount: int) -> Optional[User]:
        # Single statement so concurrent awards never lose an increment
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET xp = xp + %s, level = (xp + %s) / %s + 1
                WHERE id = %s
                RETURNING *
                """,
                (amount, amount, XP_PER_LEVEL, user_id),
            ).fetchone()
        return _user_from_row(row) if row else None

    # -- mood logs -----------------------------------------------------

    def create_mood_log(
        self,
        user_id: str,
        *,
        mood: int,
        tags: str,
        note: Optional[str],
        logged_at: datetime,
    ) -> MoodLog:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO mood_log (id, user_id, mood, tags, note, logged_at, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (str(uuid.uuid4()), user_id, mood, tags, note, logged_at, logged_at),
            ).fetchone()
        return _mood_log_from_row(row)

    def update_mood_log(
        self, log_id: str, *, mood: int, tags: str, note: Optional[str]
    ) -> Optional[MoodLog]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE mood_log SET mood = %s, tags = %s, note = %s WHERE id = %s RETURNING *",
                (mood, tags, note, log_id),
            ).fetchone()
        return _mood_log_from_row(row) if row else None

    def find_mood_log_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> Optional[MoodLog]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM mood_log
                WHERE user_id = %s AND logged_at >= %s AND logged_at < %s
                ORDER BY logged_at DESC LIMIT 1
                """,
                (user_id, start, end),
            ).fetchone()
        return _mood_log_from_row(row) if row else None

    def list_mood_logs(
        self,
        user_id: str,
        *,
        limit: int,
        before: Optional[Tuple[datetime, str]] = None,
    ) -> List[MoodLog]:
        if before is None:
            query = (
                "SELECT * FROM mood_log WHERE user_id = %s "
                "ORDER BY logged_at DESC, id DESC LIMIT %s"
            )
            params: Tuple[Any, ...] = (user_id, limit)
        else:
            query = (
                "SELECT * FROM mood_log WHERE user_id = %s AND (logged_at, id) < (%s, %s::uuid) "
                "ORDER BY logged_at DESC, id DESC LIMIT %s"
            )
            params = (user_id, before[0], before[1], limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_mood_log_from_row(row) for row in rows]

    def count_mood_logs(self, user_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM mood_log WHERE user_id = %s", (user_id,)
            ).fetchone()
        return int(row["total"]) if row else 0

    def list_mood_log_days(self, user_id: str, *, limit: int) -> List[date]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT (logged_at AT TIME ZONE 'UTC')::date AS day
                FROM mood_log WHERE user_id = %s
                ORDER BY day DESC LIMIT %s
                """,
                (user_id, limit),
            ).fetchall()
        return [row["day"] for row in rows]

    # -- challenges ----------------------------------------------------

    def create_challenge(
        self,
        *,
        title: str,
        description: str,
        category: str,
        xp_reward: int,
        tenant_id: Optional[str],
        is_global: bool = False,
    ) -> Challenge:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO challenge (id, tenant_id, title, description, category, xp_reward, is_global)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (str(uuid.uuid4()), tenant_id, title, description, category, xp_reward, is_global),
            ).fetchone()
        return _challenge_from_row(row)

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        if not _valid_uuid(challenge_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM challenge WHERE id = %s", (challenge_id,)
            ).fetchone()
        return _challenge_from_row(row) if row else None

    def list_available_challenges(self, tenant_id: str) -> List[Challenge]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM challenge
                WHERE is_global OR tenant_id = %s
                ORDER BY category ASC, xp_reward DESC
                """,
                (tenant_id,),
            ).fetchall()
        return [_challenge_from_row(row) for row in rows]

    def find_global_challenge(self, title: str) -> Optional[Challenge]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM challenge WHERE is_global AND title = %s LIMIT 1", (title,)
            ).fetchone()
        return _challenge_from_row(row) if row else None

    def create_challenge_completion(
        self, user_id: str, challenge_id: str, completed_at: datetime
    ) -> ChallengeCompletion:
        completion_id = str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO challenge_completion (id, user_id, challenge_id, completed_at)
                VALUES (%s, %s, %s, %s)
                """,
                (completion_id, user_id, challenge_id, completed_at),
            )
        return ChallengeCompletion(
            id=completion_id,
            user_id=user_id,
            challenge_id=challenge_id,
            completed_at=completed_at,
        )

    def list_completed_challenge_ids(
        self, user_id: str, start: datetime, end: datetime
    ) -> Set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT challenge_id FROM challenge_completion
                WHERE user_id = %s AND completed_at >= %s AND completed_at < %s
                """,
                (user_id, start, end),
            ).fetchall()
        return {str(row["challenge_id"]) for row in rows}

    def count_challenge_completions(self, user_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM challenge_completion WHERE user_id = %s",
                (user_id,),
            ).fetchone()
        return int(row["total"]) if row else 0

    # -- badges --------------------------------------------------------

    def create_badge(
        self,
        user_id: str,
        name: str,
        description: str,
        icon_url: Optional[str] = None,
    ) -> Badge:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO badge (id, user_id, name, description, icon_url)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (str(uuid.uuid4()), user_id, name, description, icon_url),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("badge already awarded", {"field": "name"})
        return _badge_from_row(row)

    def get_badge(self, user_id: str, name: str) -> Optional[Badge]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM badge WHERE user_id = %s AND name = %s", (user_id, name)
            ).fetchone()
        return _badge_from_row(row) if row else None

    def list_badges(self, user_id: str) -> List[Badge]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM badge WHERE user_id = %s ORDER BY awarded_at ASC", (user_id,)
            ).fetchall()
        return [_badge_from_row(row) for row in rows]
