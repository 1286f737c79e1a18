from __future__ import annotations

import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from profile_service.api import routes
from profile_service.domain.account import Profile
from profile_service.domain.service import AuthService
from profile_service.repository import InMemoryAccountRepository
from profile_service.security.passwords import PasswordHasher
from profile_service.security.sessions import InMemorySessionStore
from profile_service.security.tokens import TokenIssuer, TokenSettings

ACCESS_SECRET = "test-access-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"


class FakeClock:
    """Manually advanced clock used to simulate token expiry."""

    def __init__(self) -> None:
        self.now = float(int(time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_settings() -> TokenSettings:
    return TokenSettings(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def issuer(token_settings, clock) -> TokenIssuer:
    return TokenIssuer(token_settings, clock=clock)


@pytest.fixture
def sessions() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def accounts() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def service(accounts, sessions, issuer) -> AuthService:
    """Auth service over in-memory stores with the cheapest bcrypt cost."""
    return AuthService(accounts, sessions, PasswordHasher(rounds=4), issuer)


@pytest.fixture
def profile() -> Profile:
    return Profile(name="A", phone="1", postal_code="00000", region="X", address="Y")


@pytest.fixture
def api_client(service):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.state.auth_service = service

    with TestClient(app) as client:
        yield client, service
