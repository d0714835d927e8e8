"""Unit tests for auth/sessions.py -- SessionStore over AuthStore.

Covers:
- create() sets expiry from the refresh-token lifetime
- refresh() rotates: the new token works once, the old one never again
- refresh() refuses access tokens, unknown sessions and expired sessions
- destroy() is idempotent and owner-scoped
- validate() / list_active() / purge_expired()
- concurrent refreshes with the same token: exactly one wins
"""

from __future__ import annotations

import threading

from auth.models import Role, TokenKind
from auth.sessions import SessionStore
from auth.store import AuthStore
from auth.tokens import TokenService


def _login(sessions: SessionStore, tokens: TokenService, user_id: str = "user-1", agent: str = "pytest"):
    pair = tokens.issue_pair(user_id, "a@b.com", Role.user)
    session = sessions.create(user_id, "a@b.com", Role.user, pair, user_agent=agent, ip_address="10.0.0.1")
    return pair, session


def test_create_uses_refresh_lifetime(sessions: SessionStore, tokens: TokenService, clock) -> None:
    _, session = _login(sessions, tokens)
    assert session.created_at == clock()
    assert session.expires_at == clock() + tokens.refresh_ttl
    # Still alive long after the access token has expired.
    clock.advance(tokens.access_ttl * 2)
    assert sessions.get(session.id) is not None


def test_refresh_rotates_single_use(sessions: SessionStore, tokens: TokenService) -> None:
    pair, session = _login(sessions, tokens)

    new_pair = sessions.refresh(pair.refresh_token)
    assert new_pair is not None
    assert new_pair.refresh_token != pair.refresh_token
    assert tokens.verify(new_pair.access_token, TokenKind.access).sub == "user-1"

    assert sessions.refresh(pair.refresh_token) is None
    assert sessions.get(session.id).refresh_token == new_pair.refresh_token
    assert sessions.refresh(new_pair.refresh_token) is not None


def test_refresh_rejects_access_token(sessions: SessionStore, tokens: TokenService) -> None:
    pair, _ = _login(sessions, tokens)
    assert sessions.refresh(pair.access_token) is None
    # The real refresh token is untouched by the failed attempt.
    assert sessions.refresh(pair.refresh_token) is not None


def test_refresh_without_session(sessions: SessionStore, tokens: TokenService) -> None:
    orphan = tokens.issue_pair("user-1", "a@b.com", Role.user)
    assert sessions.refresh(orphan.refresh_token) is None


def test_refresh_after_session_expiry(sessions: SessionStore, tokens: TokenService, clock) -> None:
    pair, session = _login(sessions, tokens)
    clock.advance(tokens.refresh_ttl - 10)
    rotated = sessions.refresh(pair.refresh_token)
    assert rotated is not None
    # Rotation does not extend the session.
    clock.advance(10)
    assert sessions.refresh(rotated.refresh_token) is None
    assert sessions.get(session.id) is None


def test_destroy_is_idempotent(sessions: SessionStore, tokens: TokenService) -> None:
    pair, session = _login(sessions, tokens)
    assert sessions.destroy(session.id) is True
    assert sessions.destroy(session.id) is False
    assert sessions.validate(session.id) is None
    assert sessions.refresh(pair.refresh_token) is None


def test_destroy_is_owner_scoped(sessions: SessionStore, tokens: TokenService) -> None:
    _, session = _login(sessions, tokens, user_id="owner")
    assert sessions.destroy(session.id, user_id="intruder") is False
    assert sessions.get(session.id) is not None
    assert sessions.destroy(session.id, user_id="owner") is True


def test_validate(sessions: SessionStore, tokens: TokenService, clock) -> None:
    _, session = _login(sessions, tokens)
    payload = sessions.validate(session.id)
    assert payload is not None and payload.sub == "user-1"
    assert sessions.validate("no-such-session") is None
    clock.advance(tokens.refresh_ttl + 1)
    assert sessions.validate(session.id) is None


def test_list_active_newest_first(sessions: SessionStore, tokens: TokenService, clock) -> None:
    _, first = _login(sessions, tokens, agent="laptop")
    clock.advance(60)
    _, second = _login(sessions, tokens, agent="phone")
    _login(sessions, tokens, user_id="someone-else")

    active = sessions.list_active("user-1")
    assert [s.id for s in active] == [second.id, first.id]
    assert active[0].user_agent == "phone"

    clock.advance(tokens.refresh_ttl - 30)
    assert [s.id for s in sessions.list_active("user-1")] == [second.id]


def test_destroy_all(sessions: SessionStore, tokens: TokenService) -> None:
    _login(sessions, tokens)
    _login(sessions, tokens)
    assert sessions.destroy_all("user-1") == 2
    assert sessions.list_active("user-1") == []


def test_purge_expired(sessions: SessionStore, tokens: TokenService, clock) -> None:
    _, old = _login(sessions, tokens)
    clock.advance(tokens.refresh_ttl)
    _, fresh = _login(sessions, tokens)
    assert sessions.purge_expired() == 1
    assert sessions.get(fresh.id) is not None


def test_concurrent_refresh_single_winner(tmp_path, clock) -> None:
    """Racing refreshes of one token: exactly one new pair is issued."""
    store = AuthStore(db_url=f"sqlite:///{tmp_path / 'race.db'}", clock=clock)
    tokens = TokenService("race-secret-key-long-enough-for-hs256-xx", clock=clock)
    sessions = SessionStore(store, tokens, clock=clock)
    try:
        pair, session = _login(sessions, tokens)
        results = []
        lock = threading.Lock()
        start = threading.Barrier(8)

        def worker() -> None:
            start.wait()
            outcome = sessions.refresh(pair.refresh_token)
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r is not None]
        assert len(results) == 8
        assert len(winners) == 1
        assert sessions.get(session.id).refresh_token == winners[0].refresh_token
    finally:
        store.close()
