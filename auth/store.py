"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and refresh tokens.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_identity / _row_to_refresh_token are the
mappers. Services and dependencies never touch SQL directly.

Concurrency:
  Every method opens its own connection and performs one statement, so each
  operation is atomic at the record level. Nothing is cached in-process: a
  revoked refresh token is invisible to the very next request.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps:
  Stored as UTC ISO-8601 strings with fixed microsecond precision (see
  format_ts). Fixed precision makes lexical comparison in SQL equal to
  chronological comparison, so "expires_at <= now" works on plain TEXT.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Identity, RefreshToken

logger = logging.getLogger("storekeep.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(255), nullable=False, unique=True),
    Column("user_id", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_by_ip", String(64), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Index("ix_refresh_tokens_user_id", "user_id"),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: datetime) -> str:
    """Render dt as a fixed-width UTC ISO-8601 string (always with microseconds)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Identity and RefreshToken records.

    Usage:
        store = UserStore("sqlite:///auth.db")
        user_id = store.create_user(Identity(email="a@b.c", name="A", hashed_password=hash_password("x")))
        user = store.get_by_email("a@b.c")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True

    # ------------------------------------------------------------------
    # Identity queries
    # ------------------------------------------------------------------

    def create_user(self, user: Identity) -> str:
        """Insert a new identity and return its assigned id.

        The email is lower-cased before insert. Raises
        sqlalchemy.exc.IntegrityError if the email is already registered;
        callers treat that as "email already exists" (a concurrent
        registration may have won the race after the pre-check).
        """
        user_id = uuid.uuid4().hex
        now = format_ts(utcnow())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.lower(),
                    name=user.name,
                    role=user.role,
                    hashed_password=user.hashed_password,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, user_id: str) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def update_password(self, user_id: str, hashed_password: str) -> bool:
        """Replace the password hash. Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=format_ts(utcnow()))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh token queries
    # ------------------------------------------------------------------

    def create_refresh_token(self, refresh_token: RefreshToken) -> int:
        """Insert a refresh token record and return its id.

        No deduplication: every login gets its own row so several devices can
        hold independent sessions for the same identity.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token=refresh_token.token,
                    user_id=refresh_token.user_id,
                    expires_at=refresh_token.expires_at,
                    created_by_ip=refresh_token.created_by_ip,
                    created_at=refresh_token.created_at or format_ts(utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        """Look up a refresh token by its opaque value. O(1) via the UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def get_latest_refresh_token_for_user(self, user_id: str) -> RefreshToken | None:
        """Return the identity's most recently created refresh token, or None.

        The authorization check compares the caller's origin against this
        record's created_by_ip.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.created_at.desc(), _refresh_tokens.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_refresh_tokens_for_user(self, user_id: str) -> list[RefreshToken]:
        """Return all refresh tokens of an identity, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.created_at.desc(), _refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def delete_refresh_token(self, token_id: int) -> bool:
        """Delete one refresh token by id. Returns True if a row was deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.id == token_id))
            conn.commit()
        return result.rowcount > 0

    def delete_refresh_token_for_user(self, token: str, user_id: str) -> bool:
        """Delete a refresh token by value, only if user_id owns it.

        Both conditions must match, so one identity cannot revoke another
        identity's session by guessing a token value.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.token == token) & (_refresh_tokens.c.user_id == user_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_expired_refresh_tokens(self, user_id: str, now: datetime | None = None) -> int:
        """Delete the identity's refresh tokens with expires_at <= now. Returns rows removed."""
        cutoff = format_ts(now or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.expires_at <= cutoff)
                )
            )
            conn.commit()
        return result.rowcount

    def delete_refresh_tokens_for_user(self, user_id: str) -> int:
        """Delete every refresh token of the identity. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired_refresh_tokens(self, now: datetime | None = None) -> int:
        """Delete all expired refresh tokens across identities. Returns rows removed."""
        cutoff = format_ts(now or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        name=row.name,
        role=row.role,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_by_ip=row.created_by_ip,
        created_at=row.created_at,
    )
