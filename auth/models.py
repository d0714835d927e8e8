"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these types only own the shape.

Timestamps are epoch seconds (float) throughout the domain layer. The API
layer renders them as ISO 8601 strings.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Closed set of user roles. Carried inside every token payload."""

    admin = "admin"
    moderator = "moderator"
    user = "user"
    guest = "guest"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


class AuditAction(str, Enum):
    login = "LOGIN"
    logout = "LOGOUT"
    signup = "SIGNUP"
    password_change = "PASSWORD_CHANGE"
    password_reset = "PASSWORD_RESET"
    profile_update = "PROFILE_UPDATE"
    account_deletion = "ACCOUNT_DELETION"
    role_change = "ROLE_CHANGE"
    token_refresh = "TOKEN_REFRESH"


@dataclass
class User:
    """A registered identity.

    email is always stored lowercased. password_hash is the PasswordHasher
    output ("<salt hex>:<derived key hex>") and is replaced wholesale on
    password change.
    """

    email: str
    password_hash: str
    role: Role = Role.user
    id: str | None = None
    username: str | None = None
    is_active: bool = True
    email_verified: bool = False
    last_login_at: float | None = None
    created_at: float | None = None
    updated_at: float | None = None


@dataclass(frozen=True)
class TokenPayload:
    """Claims carried by a signed token. Never mutated after minting.

    Validity is derived (now <= expires_at), not stored.
    """

    sub: str
    email: str
    role: Role
    iat: int
    exp: int
    jti: str

    def to_claims(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "email": self.email,
            "role": self.role.value,
            "iat": self.iat,
            "exp": self.exp,
            "jti": self.jti,
        }

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "TokenPayload":
        """Build a payload from decoded claims.

        Raises KeyError / ValueError / TypeError on missing or malformed
        claims; TokenService downgrades those to "invalid".
        """
        return cls(
            sub=str(claims["sub"]),
            email=str(claims["email"]),
            role=Role(claims["role"]),
            iat=int(claims["iat"]),
            exp=int(claims["exp"]),
            jti=str(claims["jti"]),
        )


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh tokens returned to the caller. Not persisted as a unit."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class Session:
    """One row per active login.

    refresh_token is overwritten (not versioned) on each rotation. A session
    is expired once expires_at is in the past; nothing sweeps it eagerly.
    """

    id: str
    user_id: str
    refresh_token: str
    user_agent: str
    ip_address: str
    expires_at: float
    created_at: float


@dataclass
class AuditLogEntry:
    user_id: str
    action: AuditAction
    id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    created_at: float | None = None


@dataclass
class Page:
    """One page of a count + fetch listing."""

    items: list
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return -(-self.total // self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1
