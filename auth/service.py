"""
auth/service.py -- Credential flows (signup, login, logout, refresh, password reset)
and account management (profile, deletion, listing, role changes, audit log).

Flow for a credential-bearing request:
    validators -> PasswordHasher -> TokenService.issue_pair -> SessionStore.create -> caller

Security design decisions:
  [C1] Timing equalization. login() always runs the KDF, against a dummy
       hash when the email is unknown, so response time does not reveal
       whether an account exists. Unknown user, wrong password and inactive
       account all raise the same InvalidCredentials; only the log line
       differs.

  Hashing failures (argon2 HashingError) are not caught here. They surface
  as a generic 500 through the API catch-all handler, never as
  "invalid credentials".

  Password reset: forgot_password() always behaves the same from the
  outside. For a known, active account it stores the HMAC fingerprint of a
  random token and hands the raw token to the reset notifier. Delivery
  (email) lives outside this service; the default notifier only logs that a
  reset was issued. reset_password() consumes the token exactly once and
  ends every session of the account.

Rate limiting is applied by the route layer (AuthGate.throttle) before any
of these methods run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict, InvalidCredentials, InvalidInput, InvalidToken, NotFound
from auth.models import AuditAction, AuditLogEntry, Page, Role, Session, TokenPair, TokenPayload, User
from auth.passwords import PasswordHasher
from auth.permissions import Permission, require_permission
from auth.sessions import SessionStore
from auth.store import AuthStore
from auth.tokens import TokenService, generate_reset_token
from auth.validators import normalize_email, validate_email, validate_password, validate_username
from core.clock import Clock, system_clock

logger = logging.getLogger("tenantauth.auth.service")

# Receives (user, raw reset token). Must not log the token.
ResetNotifier = Callable[[User, str], None]


def log_reset_notifier(user: User, raw_token: str) -> None:
    logger.info("Password reset issued user_id=%s (no delivery channel configured)", user.id)


@dataclass(frozen=True)
class ClientInfo:
    """Where a request came from, for session rows and the audit log."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"


@dataclass(frozen=True)
class LoginResult:
    user: User
    session: Session
    tokens: TokenPair


class AuthService:
    """Orchestrates the auth components for credential endpoints.

    Usage:
        service = AuthService(store, hasher, tokens, sessions)
        result = service.signup("a@b.com", "Abcdef12", "Abcdef12", client=ClientInfo("10.0.0.1", "curl"))
        result = service.login("a@b.com", "Abcdef12")
        new_pair = service.refresh(result.tokens.refresh_token)
    """

    def __init__(
        self,
        store: AuthStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        sessions: SessionStore,
        clock: Clock = system_clock,
        reset_ttl: int = 3600,
        reset_notifier: ResetNotifier | None = None,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._tokens = tokens
        self._sessions = sessions
        self._clock = clock
        self._reset_ttl = reset_ttl
        self._notify_reset = reset_notifier or log_reset_notifier
        # Computed once so the first unknown-email login is not measurably
        # faster than later ones [C1].
        self._dummy_hash = hasher.hash("tenantauth_timing_dummy")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def audit(
        self,
        user_id: str,
        action: AuditAction,
        client: ClientInfo | None = None,
        **metadata,
    ) -> None:
        client = client or ClientInfo()
        self._store.add_audit_entry(
            AuditLogEntry(
                user_id=user_id,
                action=action,
                metadata=metadata,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
        )

    def _start_session(self, user: User, client: ClientInfo) -> tuple[TokenPair, Session]:
        pair = self._tokens.issue_pair(user.id, user.email, user.role)
        session = self._sessions.create(
            user.id, user.email, user.role, pair, user_agent=client.user_agent, ip_address=client.ip_address
        )
        return pair, session

    # ------------------------------------------------------------------
    # Signup / login / logout / refresh
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        confirm_password: str,
        username: str | None = None,
        client: ClientInfo | None = None,
    ) -> LoginResult:
        """Create an account with role User and start its first session."""
        client = client or ClientInfo()
        error = validate_email(email)
        if error is None and username is not None:
            error = validate_username(username)
        if error is None:
            error = validate_password(password)
        if error is None and password != confirm_password:
            error = "Passwords do not match"
        if error:
            raise InvalidInput(error)

        normalized = normalize_email(email)
        if self._store.get_user_by_email(normalized) is not None:
            raise Conflict("Email already in use")

        try:
            user = self._store.create_user(
                User(
                    email=normalized,
                    username=username.strip() if username else None,
                    password_hash=self._hasher.hash(password),
                    role=Role.user,
                )
            )
        except IntegrityError as exc:
            # A concurrent signup for the same email committed first.
            raise Conflict("Email already in use") from exc

        pair, session = self._start_session(user, client)
        self.audit(user.id, AuditAction.signup, client)
        logger.info("User signed up user_id=%s", user.id)
        return LoginResult(user=user, session=session, tokens=pair)

    def login(self, email: str, password: str, client: ClientInfo | None = None) -> LoginResult:
        """Verify credentials and start a session. Raises InvalidCredentials on any mismatch."""
        client = client or ClientInfo()
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None:
            # Equalize timing -- do NOT return before running the KDF [C1]
            self._hasher.verify(password, self._dummy_hash)
            logger.warning("Login failed: unknown email ip=%s", client.ip_address)
            raise InvalidCredentials()
        if not self._hasher.verify(password, user.password_hash):
            logger.warning("Login failed: wrong password user_id=%s ip=%s", user.id, client.ip_address)
            raise InvalidCredentials()
        if not user.is_active:
            logger.warning("Login failed: inactive account user_id=%s", user.id)
            raise InvalidCredentials()

        pair, session = self._start_session(user, client)
        user = self._store.update_user(user.id, last_login_at=self._clock()) or user
        self.audit(user.id, AuditAction.login, client)
        logger.info("User logged in user_id=%s", user.id)
        return LoginResult(user=user, session=session, tokens=pair)

    def logout(self, payload: TokenPayload, session_id: str, client: ClientInfo | None = None) -> bool:
        """End one of the caller's sessions. Idempotent; another user's session id matches nothing."""
        removed = self._sessions.destroy(session_id, user_id=payload.sub)
        self.audit(payload.sub, AuditAction.logout, client, session_id=session_id)
        return removed

    def refresh(self, refresh_token: str, client: ClientInfo | None = None) -> TokenPair:
        """Rotate a refresh token. Raises InvalidToken when rotation is refused."""
        pair = self._sessions.refresh(refresh_token)
        if pair is None:
            raise InvalidToken("Invalid refresh token")
        # Our own freshly minted token: decoding it only names the subject for the audit row.
        minted = self._tokens.decode(pair.access_token)
        if minted is not None:
            self.audit(minted.sub, AuditAction.token_refresh, client)
        return pair

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue a reset token for a known, active account. Silent otherwise."""
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return
        raw_token = generate_reset_token()
        self._store.create_password_reset(
            self._tokens.fingerprint(raw_token),
            user.id,
            expires_at=self._clock() + self._reset_ttl,
        )
        self._notify_reset(user, raw_token)
        logger.info("Password reset requested user_id=%s", user.id)

    def reset_password(self, token: str, new_password: str, client: ClientInfo | None = None) -> None:
        """Set a new password using a reset token, then end every session of the account."""
        error = validate_password(new_password)
        if error:
            raise InvalidInput(error)
        user_id = self._store.consume_password_reset(self._tokens.fingerprint(token or ""), self._clock())
        if user_id is None:
            raise InvalidToken("Invalid or expired reset token")
        if self._store.update_user(user_id, password_hash=self._hasher.hash(new_password)) is None:
            raise InvalidToken("Invalid or expired reset token")
        self._sessions.destroy_all(user_id)
        self.audit(user_id, AuditAction.password_reset, client)
        logger.info("Password reset completed user_id=%s", user_id)

    def change_password(
        self,
        payload: TokenPayload,
        current_password: str,
        new_password: str,
        client: ClientInfo | None = None,
    ) -> None:
        """Replace the caller's password after re-verifying the current one."""
        require_permission(payload.role, Permission.update_own_profile)
        user = self._store.get_user(payload.sub)
        if user is None:
            raise NotFound("User not found")
        if not self._hasher.verify(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        error = validate_password(new_password)
        if error:
            raise InvalidInput(error)
        self._store.update_user(user.id, password_hash=self._hasher.hash(new_password))
        self.audit(user.id, AuditAction.password_change, client)
        logger.info("Password changed user_id=%s", user.id)

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    def get_profile(self, payload: TokenPayload) -> User:
        require_permission(payload.role, Permission.read_own_profile)
        user = self._store.get_user(payload.sub)
        if user is None:
            raise NotFound("User not found")
        return user

    def update_profile(
        self,
        payload: TokenPayload,
        email: str | None = None,
        username: str | None = None,
        client: ClientInfo | None = None,
    ) -> User:
        """Change the caller's email and/or username. None leaves a field as it is."""
        require_permission(payload.role, Permission.update_own_profile)
        user = self.get_profile(payload)
        changes: dict = {}
        if email is not None:
            error = validate_email(email)
            if error:
                raise InvalidInput(error)
            normalized = normalize_email(email)
            if normalized != user.email:
                if self._store.get_user_by_email(normalized) is not None:
                    raise Conflict("Email already in use")
                # A new address has not been verified yet.
                changes["email"] = normalized
                changes["email_verified"] = False
        if username is not None:
            error = validate_username(username)
            if error:
                raise InvalidInput(error)
            changes["username"] = username.strip()
        if not changes:
            return user
        try:
            updated = self._store.update_user(user.id, **changes)
        except IntegrityError as exc:
            raise Conflict("Email already in use") from exc
        if updated is None:
            raise NotFound("User not found")
        self.audit(user.id, AuditAction.profile_update, client, fields=sorted(changes))
        return updated

    def delete_account(self, payload: TokenPayload, client: ClientInfo | None = None) -> None:
        """Delete the caller's account and every session it holds. Audit entries are kept.

        [M4] The last active admin cannot delete their own account.
        """
        require_permission(payload.role, Permission.delete_own_account)
        user = self._store.get_user(payload.sub)
        if user is None:
            raise NotFound("User not found")
        if user.role == Role.admin and user.is_active and self._store.count_active_admins() <= 1:
            raise InvalidInput("Cannot delete the last active admin")
        if not self._store.delete_user(user.id):
            raise NotFound("User not found")
        self.audit(payload.sub, AuditAction.account_deletion, client)
        logger.info("Account deleted user_id=%s", payload.sub)

    def list_users(self, payload: TokenPayload, page: int = 1, page_size: int = 20) -> Page:
        require_permission(payload.role, Permission.list_users)
        return self._store.list_users(page=page, page_size=page_size)

    def get_user(self, payload: TokenPayload, user_id: str) -> User:
        require_permission(payload.role, Permission.read_any_profile)
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def change_role(
        self,
        payload: TokenPayload,
        user_id: str,
        role: Role,
        client: ClientInfo | None = None,
    ) -> User:
        """Assign a new role to another account.

        [M4] Prevents:
          - An admin demoting themselves.
          - Demoting the last active admin (no recovery path without DB access).

        Tokens already issued keep the old role claim until they expire;
        ending the target's sessions stops them from being refreshed.
        """
        require_permission(payload.role, Permission.manage_roles)
        role = Role(role)
        target = self._store.get_user(user_id)
        if target is None:
            raise NotFound("User not found")
        if target.role == role:
            return target
        if target.role == Role.admin:
            if target.id == payload.sub:
                raise InvalidInput("You cannot change your own admin role")
            if target.is_active and self._store.count_active_admins() <= 1:
                raise InvalidInput("Cannot demote the last active admin")
        updated = self._store.update_user(target.id, role=role)
        if updated is None:
            raise NotFound("User not found")
        self._sessions.destroy_all(target.id)
        self.audit(
            payload.sub,
            AuditAction.role_change,
            client,
            target_user_id=target.id,
            old_role=target.role.value,
            new_role=role.value,
        )
        logger.info(
            "Role changed target=%s old=%s new=%s by=%s", target.id, target.role.value, role.value, payload.sub
        )
        return updated

    def audit_log(
        self,
        payload: TokenPayload,
        user_id: str | None = None,
        action: AuditAction | None = None,
        limit: int = 50,
    ) -> list[AuditLogEntry]:
        require_permission(payload.role, Permission.view_audit_log)
        return self._store.list_audit_entries(user_id=user_id, action=action, limit=limit)
