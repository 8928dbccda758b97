"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_connection are the
mappers. Route, service and broker code never touches SQL directly.

The CRM connection is stored flattened into nullable oauth_* columns on the
users row so every connection write is a single-row UPDATE (atomic at the
storage layer). oauth_connected IS NULL means "no connection record".
Three explicit operations cover its lifecycle:

  replace_oauth_connection -- overwrite every oauth_* column (code exchange)
  merge_oauth_connection   -- patch named fields, siblings untouched (refresh)
  unset_oauth_connection   -- null every oauth_* column (disconnect)

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails and usernames are stored lowercase; lookups lowercase their input,
  which makes the UNIQUE constraints case-insensitive in practice.

Layer rule: no imports from api/, core/ or crm/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine

from auth.models import USER_STATUSES, OAuthConnection, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    # Embedded CRM connection (all NULL when absent)
    Column("oauth_access_token", Text),
    Column("oauth_refresh_token", Text),
    Column("oauth_expires_at", String(32)),  # ISO 8601, UTC
    Column("oauth_location_id", String(255)),
    Column("oauth_company_id", String(255)),
    Column("oauth_connected", Integer),  # NULL = no record, 0/1 otherwise
    Column("oauth_last_error", Text),
    Column("oauth_updated_at", String(32)),
)

# OAuthConnection attribute -> column. Used by merge_oauth_connection() to
# validate field names before any SQL is built.
_CONNECTION_COLUMNS: dict[str, str] = {
    "access_token": "oauth_access_token",
    "refresh_token": "oauth_refresh_token",
    "expires_at": "oauth_expires_at",
    "location_id": "oauth_location_id",
    "company_id": "oauth_company_id",
    "connected": "oauth_connected",
    "last_error": "oauth_last_error",
    "updated_at": "oauth_updated_at",
}

# Columns a caller may patch through update_user(). Identity columns and the
# oauth_* block have dedicated methods.
_USER_UPDATABLE = {"name", "status", "password_hash", "last_login"}

# Columns returned by the default projection (password hash excluded).
_PUBLIC_COLUMNS = [c for c in _users.c if c.name != "password_hash"]


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def derive_username(email: str) -> str:
    """Return the default username for an email: its lowercased local part."""
    return email.split("@", 1)[0].strip().lower()


def _to_column_value(field: str, value):
    if field == "expires_at" and isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat()
    if field == "connected" and value is not None:
        return 1 if value else 0
    return value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their embedded CRM connection.

    Usage:
        store = UserStore("sqlite:///leadbridge.db")
        user_id = store.create_user(User(name="Ana", email="ana@example.com", password_hash=h))
        user = store.get_by_email("ANA@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        id defaults to a random uuid4 hex; username defaults to the email
        local part. Raises sqlalchemy.exc.IntegrityError if the email or
        username already exists -- callers check get_by_email() first and
        treat IntegrityError as a concurrent duplicate.
        """
        now = _now_iso()
        user_id = user.id or uuid.uuid4().hex
        email = user.email.strip().lower()
        username = (user.username or derive_username(email)).strip().lower()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=email,
                    username=username,
                    password_hash=user.password_hash,
                    status=user.status,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str, with_password: bool = False) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        columns = list(_users.c) if with_password else _PUBLIC_COLUMNS
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*columns).where(_users.c.email == email.strip().lower())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*_PUBLIC_COLUMNS).where(_users.c.username == username.lower())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str, with_password: bool = False) -> User | None:
        """Look up a user by id. The password hash is excluded unless asked for."""
        columns = list(_users.c) if with_password else _PUBLIC_COLUMNS
        with self.engine.connect() as conn:
            row = conn.execute(select(*columns).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Patch mutable user fields. Returns True if a row was updated.

        Accepted fields: name, status, password_hash, last_login. Unknown
        keys raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - _USER_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "status" in fields and fields["status"] not in USER_STATUSES:
            raise ValueError(f"Unknown user status: {fields['status']!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login."""
        self.update_user(user_id, last_login=_now_iso())

    # ------------------------------------------------------------------
    # CRM connection
    # ------------------------------------------------------------------

    def replace_oauth_connection(self, user_id: str, connection: OAuthConnection) -> bool:
        """Overwrite the whole connection record. No merge with a prior one.

        Returns False if user_id does not exist.
        """
        values = {
            column: _to_column_value(field, getattr(connection, field))
            for field, column in _CONNECTION_COLUMNS.items()
        }
        values["oauth_updated_at"] = connection.updated_at or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def merge_oauth_connection(self, user_id: str, **fields) -> bool:
        """Patch the named connection fields, leaving siblings untouched.

        Only applies when a connection record exists: a merge never
        resurrects a half-populated record after a concurrent disconnect.
        Unknown field names raise ValueError. Returns True if a row was
        updated.
        """
        unknown = set(fields) - set(_CONNECTION_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown connection fields: {unknown!r}")
        if not fields:
            return False
        values = {_CONNECTION_COLUMNS[f]: _to_column_value(f, v) for f, v in fields.items()}
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.oauth_connected.is_not(None)))
                .values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def unset_oauth_connection(self, user_id: str) -> None:
        """Remove the connection record. Idempotent."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(**{column: None for column in _CONNECTION_COLUMNS.values()})
            )
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_connection(row) -> OAuthConnection | None:
    if row.oauth_connected is None:
        return None
    expires_at = datetime.fromisoformat(row.oauth_expires_at)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return OAuthConnection(
        access_token=row.oauth_access_token or "",
        refresh_token=row.oauth_refresh_token or "",
        expires_at=expires_at,
        connected=bool(row.oauth_connected),
        location_id=row.oauth_location_id,
        company_id=row.oauth_company_id,
        last_error=row.oauth_last_error,
        updated_at=row.oauth_updated_at,
    )


def _row_to_user(row) -> User:
    # password_hash is absent from the public projection.
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        username=row.username,
        password_hash=getattr(row, "password_hash", None),
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
        oauth_connection=_row_to_connection(row),
    )
