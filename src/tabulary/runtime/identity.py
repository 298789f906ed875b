"""
Identity service adapter.

The runtime consumes identity through the ``IdentityService`` protocol:
effective permission names and roles for a principal, plus upsert-by-name for
the generated permission catalogue. ``SQLiteIdentityStore`` implements it on
four tables in the application database. ``TokenVerifier`` verifies and issues
bearer tokens with PyJWT.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

import jwt

from tabulary.runtime.errors import AuthenticationError
from tabulary.runtime.repository import DatabaseManager

logger = logging.getLogger(__name__)


@runtime_checkable
class IdentityService(Protocol):
    """What the runtime needs from an identity provider."""

    def effective_permissions(self, principal_id: str) -> set[str]:
        """Union of permission names over the principal's roles."""
        ...

    def roles_for(self, principal_id: str) -> list[str]: ...

    def upsert_permission(self, name: str, description: str | None = None) -> bool:
        """Create the permission if missing. Returns True if it was created."""
        ...

    def list_permissions(self) -> list[dict[str, Any]]: ...


# =============================================================================
# SQLite Identity Store
# =============================================================================


_SCHEMA = """
CREATE TABLE IF NOT EXISTS tabulary_permissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS tabulary_roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT
);
CREATE TABLE IF NOT EXISTS tabulary_role_permissions (
    role_id INTEGER NOT NULL REFERENCES tabulary_roles(id) ON DELETE CASCADE,
    permission_id INTEGER NOT NULL REFERENCES tabulary_permissions(id) ON DELETE CASCADE,
    PRIMARY KEY (role_id, permission_id)
);
CREATE TABLE IF NOT EXISTS tabulary_user_roles (
    principal_id TEXT NOT NULL,
    role_id INTEGER NOT NULL REFERENCES tabulary_roles(id) ON DELETE CASCADE,
    PRIMARY KEY (principal_id, role_id)
);
"""


class SQLiteIdentityStore:
    """
    Roles and permissions stored alongside the application tables.

    Table names carry the ``tabulary_`` prefix so schema discovery skips them.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self._init_db()

    def _init_db(self) -> None:
        self.db.execute_script(_SCHEMA)

    def _role_id(self, conn: Any, role: str) -> int:
        row = conn.execute("SELECT id FROM tabulary_roles WHERE name = ?", (role,)).fetchone()
        if row is None:
            raise ValueError(f"Unknown role: {role}")
        return int(row["id"])

    # -- IdentityService ------------------------------------------------------

    def upsert_permission(self, name: str, description: str | None = None) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO tabulary_permissions (name, description) VALUES (?, ?)",
                (name, description),
            )
            return cursor.rowcount == 1

    def list_permissions(self) -> list[dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT name, description FROM tabulary_permissions ORDER BY name"
            ).fetchall()
        return [dict(row) for row in rows]

    def roles_for(self, principal_id: str) -> list[str]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT r.name FROM tabulary_roles r
                JOIN tabulary_user_roles ur ON ur.role_id = r.id
                WHERE ur.principal_id = ?
                ORDER BY r.name
                """,
                (str(principal_id),),
            ).fetchall()
        return [row["name"] for row in rows]

    def effective_permissions(self, principal_id: str) -> set[str]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT p.name FROM tabulary_permissions p
                JOIN tabulary_role_permissions rp ON rp.permission_id = p.id
                JOIN tabulary_user_roles ur ON ur.role_id = rp.role_id
                WHERE ur.principal_id = ?
                """,
                (str(principal_id),),
            ).fetchall()
        return {row["name"] for row in rows}

    # -- administration -------------------------------------------------------

    def create_role(self, name: str, description: str | None = None) -> bool:
        """Create a role if missing. Returns True if it was created."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO tabulary_roles (name, description) VALUES (?, ?)",
                (name, description),
            )
            return cursor.rowcount == 1

    def grant(self, role: str, *permissions: str) -> int:
        """
        Grant existing permissions to a role.

        Raises:
            ValueError: unknown role or permission name

        Returns:
            Number of new grants
        """
        granted = 0
        with self.db.connection() as conn:
            role_id = self._role_id(conn, role)
            for name in permissions:
                row = conn.execute(
                    "SELECT id FROM tabulary_permissions WHERE name = ?", (name,)
                ).fetchone()
                if row is None:
                    raise ValueError(f"Unknown permission: {name}")
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO tabulary_role_permissions (role_id, permission_id) "
                    "VALUES (?, ?)",
                    (role_id, row["id"]),
                )
                granted += cursor.rowcount
        return granted

    def assign_role(self, principal_id: str, role: str) -> bool:
        with self.db.connection() as conn:
            role_id = self._role_id(conn, role)
            cursor = conn.execute(
                "INSERT OR IGNORE INTO tabulary_user_roles (principal_id, role_id) VALUES (?, ?)",
                (str(principal_id), role_id),
            )
            return cursor.rowcount == 1


# =============================================================================
# Bearer Tokens
# =============================================================================

# "none" and anything not listed here is rejected
ALLOWED_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})
MIN_HMAC_SECRET_LENGTH = 32
MAX_TOKEN_LENGTH = 16 * 1024


@dataclass
class TokenConfig:
    """
    Bearer token settings.

    Attributes:
        algorithm: HMAC signing algorithm
        secret_key: Shared secret; a random one is generated when omitted
        issuer: ``iss`` claim issued and required
        access_token_expire_minutes: Lifetime of issued tokens
        leeway_seconds: Clock skew tolerance
    """

    algorithm: str = "HS256"
    secret_key: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    issuer: str = "tabulary"
    access_token_expire_minutes: int = 60
    leeway_seconds: int = 30


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    exp: int
    iat: int
    iss: str


class TokenVerifier:
    """Verifies and issues HMAC-signed access tokens."""

    def __init__(self, config: TokenConfig | None = None):
        self.config = config or TokenConfig()
        if self.config.algorithm not in ALLOWED_ALGORITHMS:
            raise ValueError(
                f"Algorithm '{self.config.algorithm}' is not allowed. "
                f"Allowed: {', '.join(sorted(ALLOWED_ALGORITHMS))}"
            )
        if len(self.config.secret_key) < MIN_HMAC_SECRET_LENGTH:
            raise ValueError(
                f"Secret key must be at least {MIN_HMAC_SECRET_LENGTH} characters "
                f"(got {len(self.config.secret_key)})"
            )

    def create_access_token(self, principal_id: str, expires_minutes: int | None = None) -> str:
        """Issue a token whose ``sub`` is the principal id."""
        now = datetime.now(UTC)
        minutes = (
            self.config.access_token_expire_minutes if expires_minutes is None else expires_minutes
        )
        payload = {
            "sub": str(principal_id),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=minutes)).timestamp()),
            "iss": self.config.issuer,
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """
        Verify a bearer token.

        Raises:
            AuthenticationError: malformed, expired or wrongly signed token
        """
        if len(token) > MAX_TOKEN_LENGTH:
            raise AuthenticationError("Invalid token")
        try:
            header_alg = jwt.get_unverified_header(token).get("alg", "")
        except jwt.DecodeError:
            raise AuthenticationError("Invalid token")
        if header_alg != self.config.algorithm:
            raise AuthenticationError("Invalid token")

        try:
            payload = jwt.decode(
                token,
                self.config.secret_key,
                algorithms=[self.config.algorithm],
                issuer=self.config.issuer,
                leeway=timedelta(seconds=self.config.leeway_seconds),
                options={"require": ["sub", "exp", "iat", "iss"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected token: %s", e)
            raise AuthenticationError("Invalid token")

        return TokenClaims(
            sub=str(payload["sub"]),
            exp=int(payload["exp"]),
            iat=int(payload["iat"]),
            iss=str(payload["iss"]),
        )
