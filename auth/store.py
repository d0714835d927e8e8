"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository for users,
sessions, audit log entries and password reset tokens; the _row_to_* helpers
are the mappers. Services never touch SQL directly.

Concurrency:
  Refresh rotation and reset-token consumption are single conditional
  UPDATE statements (compare-and-swap): the WHERE clause repeats every
  precondition (old value, not expired, not used) and success is judged by
  rowcount. Two concurrent callers presenting the same token cannot both
  observe rowcount == 1.

  Storage errors propagate to the caller. Nothing here retries: retrying a
  non-idempotent rotation could hand out two live token pairs.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are epoch seconds stored as REAL. Expiry-guarded reads take `now`
from the caller so the component that owns the expiry rule also owns the
clock reading.

Expired sessions and reset tokens are not swept automatically; reads filter
them out. purge_expired_sessions() / purge_expired_resets() compact storage
when an operator or the API housekeeping task calls them.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    false,
    func,
    select,
    true,
)
from sqlalchemy.engine import Engine

from auth.models import AuditAction, AuditLogEntry, Page, Role, Session, User
from core.clock import Clock, system_clock

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'tenantauth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(254), nullable=False, unique=True),  # always lowercased
    Column("username", String(30)),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("email_verified", Boolean, nullable=False, server_default=false()),
    Column("last_login_at", Float),
    Column("created_at", Float, nullable=False),
    Column("updated_at", Float, nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    # UNIQUE: a refresh token value identifies at most one session at any instant.
    Column("refresh_token", Text, nullable=False, unique=True),
    Column("user_agent", String(512), nullable=False, server_default=""),
    Column("ip_address", String(45), nullable=False, server_default=""),
    Column("expires_at", Float, nullable=False),
    Column("created_at", Float, nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("action", String(32), nullable=False),
    Column("details", Text, nullable=False, server_default="{}"),  # JSON object
    Column("ip_address", String(45), nullable=False, server_default="unknown"),
    Column("user_agent", String(512), nullable=False, server_default="unknown"),
    Column("created_at", Float, nullable=False),
)
Index("ix_audit_logs_user_created", _audit_logs.c.user_id, _audit_logs.c.created_at)

_password_resets = Table(
    "password_resets",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", String(36), nullable=False),
    Column("expires_at", Float, nullable=False),
    Column("used_at", Float),
    Column("created_at", Float, nullable=False),
)

# Columns update_user() will write. Anything else is rejected before SQL.
_USER_MUTABLE_FIELDS = frozenset(
    {"email", "username", "password_hash", "role", "is_active", "email_verified", "last_login_at"}
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the rotation writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, sessions, audit log entries and reset tokens.

    Usage:
        store = AuthStore("sqlite:///tenantauth.db")
        user = store.create_user(User(email="a@b.com", password_hash=hasher.hash("...")))
        store.get_user_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Clock = system_clock) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self._clock = clock
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a conflict: a concurrent signup won the race.
        """
        now = self._clock()
        user_id = user.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.lower(),
                    username=user.username,
                    password_hash=user.password_hash,
                    role=Role(user.role).value,
                    is_active=user.is_active,
                    email_verified=user.email_verified,
                    last_login_at=user.last_login_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return User(
            id=user_id,
            email=user.email.lower(),
            username=user.username,
            password_hash=user.password_hash,
            role=Role(user.role),
            is_active=user.is_active,
            email_verified=user.email_verified,
            last_login_at=user.last_login_at,
            created_at=now,
            updated_at=now,
        )

    def get_user(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable fields and stamp updated_at.

        Returns the updated User, or None if user_id was not found. Unknown
        field names raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - _USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        fields["updated_at"] = self._clock()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_user(user_id)

    def delete_user(self, user_id: str) -> bool:
        """Delete a user together with their sessions and pending reset tokens.

        Audit log entries are kept. Returns True if the user existed.
        """
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.execute(_password_resets.delete().where(_password_resets.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def list_users(self, page: int = 1, page_size: int = 20) -> Page:
        """Return one page of users, newest first, plus the total count."""
        offset = (page - 1) * page_size
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users)).scalar() or 0
            rows = conn.execute(
                _users.select().order_by(_users.c.created_at.desc(), _users.c.id).limit(page_size).offset(offset)
            ).fetchall()
        return Page(items=[_row_to_user(r) for r in rows], total=total, page=page, page_size=page_size)

    def count_active_admins(self) -> int:
        """Return the number of active admin users (last-admin guard)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.is_active.is_(True)))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: Session) -> None:
        """Insert a session row. Raises IntegrityError on a duplicate refresh token."""
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    refresh_token=session.refresh_token,
                    user_agent=session.user_agent,
                    ip_address=session.ip_address,
                    expires_at=session.expires_at,
                    created_at=session.created_at,
                )
            )
            conn.commit()

    def delete_session(self, session_id: str, user_id: str | None = None) -> bool:
        """Delete a session. When user_id is given, only that user's session matches.

        Returns True if a row was removed. Removing an absent row is not an error.
        """
        condition = _sessions.c.id == session_id
        if user_id is not None:
            condition = condition & (_sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(condition))
            conn.commit()
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def get_active_session(self, session_id: str, now: float) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.id == session_id) & (_sessions.c.expires_at > now))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def swap_refresh_token(self, old_token: str, new_token: str, now: float) -> bool:
        """Atomically replace old_token with new_token on its unexpired session.

        Single conditional UPDATE. Returns True only for the one caller whose
        statement matched the row; a replayed or concurrently rotated token
        matches nothing.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.refresh_token == old_token) & (_sessions.c.expires_at > now))
                .values(refresh_token=new_token)
            )
            conn.commit()
        return result.rowcount == 1

    def list_active_sessions(self, user_id: str, now: float) -> list[Session]:
        """Return a user's unexpired sessions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > now))
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired_sessions(self, now: float) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def add_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        entry.id = entry.id or str(uuid.uuid4())
        entry.created_at = entry.created_at if entry.created_at is not None else self._clock()
        with self.engine.connect() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    id=entry.id,
                    user_id=entry.user_id,
                    action=AuditAction(entry.action).value,
                    details=json.dumps(entry.metadata),
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    created_at=entry.created_at,
                )
            )
            conn.commit()
        return entry

    def list_audit_entries(
        self,
        user_id: str | None = None,
        action: AuditAction | None = None,
        limit: int = 50,
    ) -> list[AuditLogEntry]:
        """Return audit entries newest first, optionally filtered by user and action."""
        query = _audit_logs.select()
        if user_id is not None:
            query = query.where(_audit_logs.c.user_id == user_id)
        if action is not None:
            query = query.where(_audit_logs.c.action == AuditAction(action).value)
        query = query.order_by(_audit_logs.c.created_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_entry(r) for r in rows]

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_password_reset(self, token_hash: str, user_id: str, expires_at: float) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _password_resets.insert().values(
                    token_hash=token_hash,
                    user_id=user_id,
                    expires_at=expires_at,
                    used_at=None,
                    created_at=self._clock(),
                )
            )
            conn.commit()

    def consume_password_reset(self, token_hash: str, now: float) -> str | None:
        """Mark an unused, unexpired reset token as used and return its user id.

        The UPDATE repeats the unused/unexpired guard, so a token can be
        consumed exactly once even under concurrent submissions.
        """
        live = (
            (_password_resets.c.token_hash == token_hash)
            & (_password_resets.c.used_at.is_(None))
            & (_password_resets.c.expires_at > now)
        )
        with self.engine.begin() as conn:
            row = conn.execute(select(_password_resets.c.user_id).where(live)).fetchone()
            if row is None:
                return None
            result = conn.execute(_password_resets.update().where(live).values(used_at=now))
        return row.user_id if result.rowcount == 1 else None

    def purge_expired_resets(self, now: float) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _password_resets.delete().where(
                    (_password_resets.c.expires_at <= now) | (_password_resets.c.used_at.is_not(None))
                )
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        role=Role(row.role),
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_audit_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        action=AuditAction(row.action),
        metadata=json.loads(row.details or "{}"),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )
