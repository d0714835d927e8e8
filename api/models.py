"""
API request and response models for TenantAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON field names are camelCase (accessToken, refreshToken, expiresIn,
tokenType, ...). Request bodies also accept the snake_case field names.
Timestamps leave the API as ISO 8601 UTC strings.

Field length caps here are transport limits only (keep argon2 input bounded,
reject absurd payloads early). The real credential rules live in
auth/validators.py so their messages reach the caller verbatim.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import AuditLogEntry, Page, Role, Session, TokenPair, TokenPayload, User
from core.clock import to_iso


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(_CamelModel):
    """Request body for POST /api/v1/auth/signup."""

    email: str = Field(max_length=320)
    password: str = Field(max_length=255)
    confirm_password: str = Field(max_length=255)
    username: Optional[str] = Field(default=None, max_length=64)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=320)
    password: str = Field(max_length=255)


class LogoutRequest(_CamelModel):
    session_id: str = Field(min_length=1, max_length=64)


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class ForgotPasswordRequest(_CamelModel):
    email: str = Field(max_length=320)


class ResetPasswordRequest(_CamelModel):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(max_length=255)


class ChangePasswordRequest(_CamelModel):
    current_password: str = Field(max_length=255)
    new_password: str = Field(max_length=255)


class ProfileUpdate(_CamelModel):
    """Request body for PUT /api/v1/users/me. Omitted fields are left unchanged."""

    email: Optional[str] = Field(default=None, max_length=320)
    username: Optional[str] = Field(default=None, max_length=64)


class RoleUpdate(_CamelModel):
    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenPairResponse(_FrozenCamelModel):
    """Wire shape of a TokenPair: {accessToken, refreshToken, expiresIn, tokenType}."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
            token_type=pair.token_type,
        )


class AuthResponse(TokenPairResponse):
    """TokenPair plus the id of the session it belongs to (needed for logout)."""

    session_id: str

    @classmethod
    def from_login(cls, pair: TokenPair, session: Session) -> "AuthResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
            token_type=pair.token_type,
            session_id=session.id,
        )


class MessageResponse(_FrozenCamelModel):
    message: str


class SessionResponse(_FrozenCamelModel):
    """One active session. The refresh token itself is never returned."""

    id: str
    user_agent: str
    ip_address: str
    created_at: str
    expires_at: str

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            created_at=to_iso(session.created_at),
            expires_at=to_iso(session.expires_at),
        )


class SessionStateResponse(_FrozenCamelModel):
    """Who the caller is, if anyone. Anonymous callers get authenticated=False."""

    authenticated: bool
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None
    expires_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Optional[TokenPayload]) -> "SessionStateResponse":
        if payload is None:
            return cls(authenticated=False)
        return cls(
            authenticated=True,
            user_id=payload.sub,
            email=payload.email,
            role=payload.role,
            expires_at=to_iso(payload.exp),
        )


class UserResponse(_FrozenCamelModel):
    """A user with the password hash stripped."""

    id: str
    email: str
    username: Optional[str]
    role: Role
    is_active: bool
    email_verified: bool
    last_login_at: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            role=user.role,
            is_active=user.is_active,
            email_verified=user.email_verified,
            last_login_at=to_iso(user.last_login_at),
            created_at=to_iso(user.created_at),
            updated_at=to_iso(user.updated_at),
        )


class UserPageResponse(_FrozenCamelModel):
    items: list[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool

    @classmethod
    def from_page(cls, page: Page) -> "UserPageResponse":
        return cls(
            items=[UserResponse.from_user(u) for u in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
            has_next=page.has_next,
            has_previous=page.has_previous,
        )


class AuditEntryResponse(_FrozenCamelModel):
    id: str
    user_id: str
    action: str
    metadata: dict[str, Any]
    ip_address: str
    user_agent: str
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            action=entry.action.value,
            metadata=entry.metadata,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=to_iso(entry.created_at),
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
