"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST   /api/v1/auth/signup               -- create account; returns tokens + sessionId (201)
  POST   /api/v1/auth/login                -- password login; returns tokens + sessionId
  POST   /api/v1/auth/logout               -- end one of the caller's sessions (requires auth)
  POST   /api/v1/auth/refresh              -- rotate a refresh token; returns a new pair
  POST   /api/v1/auth/forgot-password      -- issue a reset token; same response either way
  POST   /api/v1/auth/reset-password       -- consume a reset token, set a new password
  GET    /api/v1/auth/sessions             -- list the caller's active sessions (requires auth)
  DELETE /api/v1/auth/sessions/{id}        -- revoke one of the caller's sessions (requires auth)
  GET    /api/v1/auth/session-state        -- who the caller is; anonymous callers get a 200 too

Security:
  [H2] signup, login and forgot-password are throttled per client address
       before any password work runs (Depends(rate_limit(...))).
  [C1] AuthService.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  IDOR guard: session deletes pass the caller's user id to the store; another
       user's session id matches nothing.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response

from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SessionResponse,
    SessionStateResponse,
    SignupRequest,
    TokenPairResponse,
)
from auth.dependencies import (
    get_auth_service,
    get_client_info,
    get_current_payload,
    rate_limit,
    try_get_current_payload,
)
from auth.models import AuditAction, TokenPayload
from auth.service import AuthService, ClientInfo

# Auth policy:
# - POST   /auth/signup, /auth/login, /auth/forgot-password: public, throttled
# - POST   /auth/refresh, /auth/reset-password:              public -- the token in the body is the credential
# - POST   /auth/logout:                                      requires auth (get_current_payload)
# - GET    /auth/sessions, DELETE /auth/sessions/{id}:       requires auth + ownership check in store
# - GET    /auth/session-state:                             optional auth (try_get_current_payload)
router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a reset link has been sent."


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/auth/signup",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(rate_limit("signup"))],
)
def signup(
    body: SignupRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> AuthResponse:
    """Create an account with role User and start its first session."""
    result = service.signup(body.email, body.password, body.confirm_password, body.username, client=client)
    _no_store(response)
    return AuthResponse.from_login(result.tokens, result.session)


@router.post("/auth/login", response_model=AuthResponse, dependencies=[Depends(rate_limit("login"))])
def login(
    body: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and inactive account all produce the same
    401 bad_credentials response.
    """
    result = service.login(body.email, body.password, client=client)
    _no_store(response)
    return AuthResponse.from_login(result.tokens, result.session)


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(
    body: RefreshRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> TokenPairResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    pair = service.refresh(body.refresh_token, client=client)
    _no_store(response)
    return TokenPairResponse.from_pair(pair)


@router.post(
    "/auth/forgot-password",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("forgot_password"))],
)
def forgot_password(
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Request a password reset. The response never reveals whether the email is registered."""
    service.forgot_password(body.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> MessageResponse:
    """Set a new password with a reset token. Signs the account out everywhere."""
    service.reset_password(body.token, body.new_password, client=client)
    return MessageResponse(message="Password has been reset.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    body: LogoutRequest,
    payload: TokenPayload = Depends(get_current_payload),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> MessageResponse:
    """End a session. Idempotent: an already-ended session still returns 200."""
    service.logout(payload, body.session_id, client=client)
    return MessageResponse(message="Logged out.")


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(
    payload: TokenPayload = Depends(get_current_payload),
    service: AuthService = Depends(get_auth_service),
) -> list[SessionResponse]:
    """List the caller's unexpired sessions, newest first. Refresh tokens are never returned."""
    return [SessionResponse.from_session(s) for s in service.sessions.list_active(payload.sub)]


@router.delete("/auth/sessions/{session_id}", status_code=204)
def revoke_session(
    session_id: str,
    payload: TokenPayload = Depends(get_current_payload),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> Response:
    """Revoke one of the caller's sessions, e.g. a lost device.

    Ownership is verified server-side. Idempotent: an unknown, expired or
    foreign session id is a 204 that changes nothing.
    """
    if service.sessions.destroy(session_id, user_id=payload.sub):
        service.audit(payload.sub, AuditAction.logout, client, session_id=session_id, revoked=True)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Optional-auth endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/session-state", response_model=SessionStateResponse)
def session_state(
    response: Response,
    payload: Optional[TokenPayload] = Depends(try_get_current_payload),
) -> SessionStateResponse:
    """Report the caller's identity. A missing or invalid token is not an error here."""
    _no_store(response)
    return SessionStateResponse.from_payload(payload)
