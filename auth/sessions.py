"""
auth/sessions.py -- Server-side session and refresh-token registry.

One Session row per active login. The row's refresh_token is replaced on
every rotation, so each refresh token value is usable exactly once:

    refresh(old)  -> verify old (signature + expiry, refresh secret)
                  -> mint a new pair for the same subject/email/role
                  -> UPDATE sessions SET refresh_token = new
                     WHERE refresh_token = old AND expires_at > now
                  -> rowcount == 1 ? new pair : None

The conditional UPDATE is the whole concurrency story: of two concurrent
refreshes with the same token, exactly one matches the row. The loser's
freshly minted pair is discarded and never reaches storage.

Session expiry is created_at + refresh TTL (the lifetime of the token it
stores), never the access TTL. Expiry is absolute: rotation does not extend it.

Storage failures propagate. Nothing here retries.
"""

from __future__ import annotations

import logging
import uuid

from auth.models import Role, Session, TokenKind, TokenPair, TokenPayload
from auth.store import AuthStore
from auth.tokens import TokenService
from core.clock import Clock, system_clock

logger = logging.getLogger("tenantauth.auth.sessions")


class SessionStore:
    """Create, rotate, validate and destroy login sessions.

    Usage:
        sessions = SessionStore(store, tokens)
        pair = tokens.issue_pair(user.id, user.email, user.role)
        session = sessions.create(user.id, user.email, user.role, pair, user_agent, ip)
        new_pair = sessions.refresh(pair.refresh_token)
    """

    def __init__(self, store: AuthStore, tokens: TokenService, clock: Clock = system_clock) -> None:
        self._store = store
        self._tokens = tokens
        self._clock = clock

    def create(
        self,
        user_id: str,
        email: str,
        role: Role | str,
        token_pair: TokenPair,
        user_agent: str = "",
        ip_address: str = "",
    ) -> Session:
        """Persist a new session holding token_pair's refresh token.

        email and role are accepted for symmetry with TokenService; the
        session row itself only needs the user id.
        """
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            refresh_token=token_pair.refresh_token,
            user_agent=user_agent or "",
            ip_address=ip_address or "",
            expires_at=now + self._tokens.refresh_ttl,
            created_at=now,
        )
        self._store.insert_session(session)
        logger.info("Session created user_id=%s session_id=%s", user_id, session.id)
        return session

    def destroy(self, session_id: str, user_id: str | None = None) -> bool:
        """Delete a session. Idempotent; returns whether a row was removed.

        With user_id, only a session owned by that user is removed, so a
        caller cannot end somebody else's session by guessing its id.
        """
        removed = self._store.delete_session(session_id, user_id=user_id)
        logger.info("Session destroyed session_id=%s removed=%s", session_id, removed)
        return removed

    def destroy_all(self, user_id: str) -> int:
        removed = self._store.delete_user_sessions(user_id)
        logger.info("All sessions destroyed user_id=%s count=%d", user_id, removed)
        return removed

    def refresh(self, old_refresh_token: str) -> TokenPair | None:
        """Rotate a refresh token. Returns the new pair, or None if the token is not usable.

        None covers: bad signature, expired token, access token presented,
        no such session, session expired, and token already rotated.
        Storage is not touched when the token itself fails verification.
        """
        payload = self._tokens.verify(old_refresh_token, TokenKind.refresh)
        if payload is None:
            logger.warning("Invalid refresh token presented")
            return None
        new_pair = self._tokens.issue_pair(payload.sub, payload.email, payload.role)
        if not self._store.swap_refresh_token(old_refresh_token, new_pair.refresh_token, self._clock()):
            # Either the session never existed, it expired, or this token was
            # already rotated (possible replay of a stolen token).
            logger.warning("No active session for refresh token user_id=%s", payload.sub)
            return None
        logger.info("Session refreshed user_id=%s", payload.sub)
        return new_pair

    def validate(self, session_id: str) -> TokenPayload | None:
        """Return the session's current refresh-token payload if the session is still good.

        Out-of-band introspection ("is this session alive"), not request
        authentication.
        """
        session = self._store.get_active_session(session_id, self._clock())
        if session is None:
            return None
        return self._tokens.verify(session.refresh_token, TokenKind.refresh)

    def get(self, session_id: str) -> Session | None:
        return self._store.get_active_session(session_id, self._clock())

    def list_active(self, user_id: str) -> list[Session]:
        """All unexpired sessions for user_id, newest first. Read-only."""
        return self._store.list_active_sessions(user_id, self._clock())

    def purge_expired(self) -> int:
        """Delete expired session rows. Optional compaction; reads never rely on it."""
        removed = self._store.purge_expired_sessions(self._clock())
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed
