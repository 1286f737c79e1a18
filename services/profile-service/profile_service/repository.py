"""Account persistence: the account directory and its Postgres session slot."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Iterator, Protocol

import psycopg
from psycopg import sql
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool, PoolTimeout

from .domain.account import Account, Profile, Role, normalize_email
from .domain.contracts import CreateAccountInput, ProfileUpdate
from .domain.errors import DuplicateEmail, NotFound, StorageUnavailable
from .security.sessions import tokens_match

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id    TEXT PRIMARY KEY,
    email         TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    role          TEXT NOT NULL DEFAULT 'user',
    name          TEXT NOT NULL,
    phone         TEXT NOT NULL,
    postal_code   TEXT NOT NULL,
    region        TEXT NOT NULL,
    address       TEXT NOT NULL,
    image_url     TEXT,
    refresh_token TEXT,
    created_at    TIMESTAMPTZ NOT NULL,
    updated_at    TIMESTAMPTZ NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS accounts_email_key ON accounts (email);
"""

_ACCOUNT_COLUMNS = (
    "account_id, email, password_hash, role, name, phone, postal_code, "
    "region, address, image_url, created_at, updated_at"
)


class AccountDirectory(Protocol):
    """Keyed store of account records with a unique email index."""

    def create(self, payload: CreateAccountInput) -> Account: ...

    def find_by_email(self, email: str) -> Account: ...

    def find_by_id(self, account_id: str) -> Account: ...

    def update_profile(self, account_id: str, update: ProfileUpdate) -> Account: ...

    def list(self) -> list[Account]: ...


def _copy(account: Account) -> Account:
    return replace(account, profile=replace(account.profile))


class InMemoryAccountRepository:
    """Process-local account directory used for development and tests."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._ids_by_email: dict[str, str] = {}
        self._lock = Lock()

    def create(self, payload: CreateAccountInput) -> Account:
        """Insert a new account; the uniqueness check and insert share one lock."""
        email = normalize_email(payload.email)
        now = datetime.now(timezone.utc)
        account = Account(
            account_id=str(uuid.uuid4()),
            email=email,
            password_hash=payload.password_hash,
            profile=replace(payload.profile),
            created_at=now,
            updated_at=now,
            role=payload.role,
        )
        with self._lock:
            if email in self._ids_by_email:
                raise DuplicateEmail()
            self._accounts[account.account_id] = account
            self._ids_by_email[email] = account.account_id
        return _copy(account)

    def find_by_email(self, email: str) -> Account:
        with self._lock:
            account_id = self._ids_by_email.get(normalize_email(email))
            if account_id is None:
                raise NotFound()
            return _copy(self._accounts[account_id])

    def find_by_id(self, account_id: str) -> Account:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise NotFound()
            return _copy(account)

    def update_profile(self, account_id: str, update: ProfileUpdate) -> Account:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise NotFound()
            account.profile = update.apply(account.profile)
            account.updated_at = datetime.now(timezone.utc)
            return _copy(account)

    def list(self) -> list[Account]:
        with self._lock:
            return [_copy(account) for account in self._accounts.values()]


@contextmanager
def _pooled_connection(pool: ConnectionPool) -> Iterator[psycopg.Connection]:
    """Borrow a pooled connection, surfacing driver outages as ``StorageUnavailable``."""
    try:
        with pool.connection() as conn:
            yield conn
    except (psycopg.OperationalError, PoolTimeout) as exc:
        logger.warning("account store unavailable: %s", exc)
        raise StorageUnavailable() from exc


class AccountRepository:
    """Postgres-backed account directory."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def ensure_schema(self) -> None:
        """Create the accounts table and its unique email index when missing."""
        with _pooled_connection(self._pool) as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()

    def create(self, payload: CreateAccountInput) -> Account:
        """Insert an account; the unique index arbitrates concurrent registrations."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        profile = payload.profile
        try:
            with _pooled_connection(self._pool) as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (
                            account_id, email, password_hash, role, name, phone,
                            postal_code, region, address, image_url, created_at, updated_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account_id,
                            normalize_email(payload.email),
                            payload.password_hash,
                            payload.role.value,
                            profile.name,
                            profile.phone,
                            profile.postal_code,
                            profile.region,
                            profile.address,
                            profile.image_url,
                            now,
                            now,
                        ),
                    )
                    record = cur.fetchone()
                conn.commit()
        except UniqueViolation as exc:
            raise DuplicateEmail() from exc
        return self._map_record(record)

    def find_by_email(self, email: str) -> Account:
        return self._fetch_one("email = %s", normalize_email(email))

    def find_by_id(self, account_id: str) -> Account:
        return self._fetch_one("account_id = %s", account_id)

    def update_profile(self, account_id: str, update: ProfileUpdate) -> Account:
        """Apply only the supplied profile columns in a single ``UPDATE``."""
        changes = update.changes()
        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in changes
        ]
        assignments.append(sql.SQL("updated_at = %s"))
        query = sql.SQL("UPDATE accounts SET {} WHERE account_id = %s RETURNING {}").format(
            sql.SQL(", ").join(assignments),
            sql.SQL(_ACCOUNT_COLUMNS),
        )
        params = [*changes.values(), datetime.now(timezone.utc), account_id]
        with _pooled_connection(self._pool) as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
            conn.commit()
        if row is None:
            raise NotFound()
        return self._map_record(row)

    def list(self) -> list[Account]:
        with _pooled_connection(self._pool) as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts ORDER BY created_at")
                rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def _fetch_one(self, predicate: str, value: str) -> Account:
        with _pooled_connection(self._pool) as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE {predicate}", (value,))
                row = cur.fetchone()
        if row is None:
            raise NotFound()
        return self._map_record(row)

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            password_hash=row[2],
            role=Role(row[3]),
            profile=Profile(
                name=row[4],
                phone=row[5],
                postal_code=row[6],
                region=row[7],
                address=row[8],
                image_url=row[9],
            ),
            created_at=row[10],
            updated_at=row[11],
        )


class PostgresSessionStore:
    """Session slot kept in the ``refresh_token`` column of the account row."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def set(self, account_id: str, refresh_token: str) -> None:
        self._write("UPDATE accounts SET refresh_token = %s WHERE account_id = %s", (refresh_token, account_id))

    def get(self, account_id: str) -> str | None:
        with _pooled_connection(self._pool) as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT refresh_token FROM accounts WHERE account_id = %s", (account_id,))
                row = cur.fetchone()
        return row[0] if row else None

    def clear(self, account_id: str) -> None:
        self._write("UPDATE accounts SET refresh_token = NULL WHERE account_id = %s", (account_id,))

    def is_current(self, account_id: str, presented: str) -> bool:
        return tokens_match(self.get(account_id), presented)

    def rotate(self, account_id: str, presented: str, replacement: str) -> bool:
        """Compare-and-swap the slot in one conditional ``UPDATE``."""
        rowcount = self._write(
            """
            UPDATE accounts
            SET refresh_token = %s
            WHERE account_id = %s AND refresh_token = %s
            """,
            (replacement, account_id, presented),
        )
        return rowcount == 1

    def _write(self, query: str, params: tuple) -> int:
        with _pooled_connection(self._pool) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rowcount = cur.rowcount
            conn.commit()
        return rowcount
