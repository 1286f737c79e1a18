"""Tests for the Postgres repository against a scripted connection pool."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg
import pytest
from psycopg.errors import UniqueViolation

from profile_service.domain.account import Profile, Role
from profile_service.domain.contracts import CreateAccountInput, ProfileUpdate
from profile_service.domain.errors import DuplicateEmail, NotFound, StorageUnavailable
from profile_service.repository import AccountRepository, PostgresSessionStore

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
ROW = (
    "acct-1", "a@x.com", "$2b$04$hash", "user",
    "A", "1", "00000", "X", "Y", None, NOW, NOW,
)


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self.rowcount = 0

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def execute(self, query, params=None) -> None:
        self._conn.executed.append((query, params))
        if self._conn.error is not None:
            raise self._conn.error
        self.rowcount = self._conn.rowcount

    def fetchone(self):
        return self._conn.rows[0] if self._conn.rows else None

    def fetchall(self):
        return list(self._conn.rows)


class FakeConnection:
    def __init__(self) -> None:
        self.executed: list = []
        self.rows: list[tuple] = []
        self.rowcount = 0
        self.error: Exception | None = None
        self.commits = 0

    def cursor(self, row_factory=None) -> FakeCursor:
        return FakeCursor(self)

    def execute(self, query, params=None) -> None:
        self.executed.append((query, params))

    def commit(self) -> None:
        self.commits += 1


class FakePool:
    """Stand-in for ``psycopg_pool.ConnectionPool`` sharing one scripted connection."""

    def __init__(self) -> None:
        self.conn = FakeConnection()
        self.unavailable = False

    @contextmanager
    def connection(self):
        if self.unavailable:
            raise psycopg.OperationalError("connection refused")
        yield self.conn


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


def _payload() -> CreateAccountInput:
    return CreateAccountInput(
        email=" A@X.com ",
        password_hash="$2b$04$hash",
        profile=Profile(name="A", phone="1", postal_code="00000", region="X", address="Y"),
    )


def test_create_normalises_email_and_maps_row(pool):
    pool.conn.rows = [ROW]
    account = AccountRepository(pool).create(_payload())

    _, params = pool.conn.executed[-1]
    assert params[1] == "a@x.com"
    assert params[3] == "user"
    assert account.account_id == "acct-1"
    assert account.role is Role.USER
    assert account.profile.postal_code == "00000"
    assert pool.conn.commits == 1


def test_create_maps_unique_violation(pool):
    pool.conn.error = UniqueViolation("duplicate key value violates unique constraint")
    with pytest.raises(DuplicateEmail):
        AccountRepository(pool).create(_payload())


def test_outage_is_storage_unavailable(pool):
    pool.unavailable = True
    with pytest.raises(StorageUnavailable):
        AccountRepository(pool).find_by_id("acct-1")
    with pytest.raises(StorageUnavailable):
        PostgresSessionStore(pool).get("acct-1")


def test_find_missing_account_raises_not_found(pool):
    with pytest.raises(NotFound):
        AccountRepository(pool).find_by_email("a@x.com")


def test_update_profile_only_sets_supplied_columns(pool):
    pool.conn.rows = [ROW]
    AccountRepository(pool).update_profile("acct-1", ProfileUpdate(phone="555"))

    _, params = pool.conn.executed[-1]
    assert len(params) == 3
    assert params[0] == "555"
    assert params[-1] == "acct-1"


def test_update_profile_unknown_account(pool):
    with pytest.raises(NotFound):
        AccountRepository(pool).update_profile("missing", ProfileUpdate(name="B"))


def test_session_rotation_uses_conditional_update(pool):
    store = PostgresSessionStore(pool)

    pool.conn.rowcount = 1
    assert store.rotate("acct-1", "old", "new")
    query, params = pool.conn.executed[-1]
    assert "refresh_token = %s" in query
    assert params == ("new", "acct-1", "old")

    pool.conn.rowcount = 0
    assert not store.rotate("acct-1", "old", "newer")


def test_session_slot_reads_column(pool):
    store = PostgresSessionStore(pool)
    pool.conn.rows = [("token",)]

    assert store.get("acct-1") == "token"
    assert store.is_current("acct-1", "token")
    assert not store.is_current("acct-1", "other")
