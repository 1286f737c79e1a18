"""Utilities for issuing and validating access and refresh JWTs."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import jwt

from ..domain.errors import TokenExpired, TokenInvalid, TokenWrongClass

ALGORITHM = "HS256"


class TokenClass(str, Enum):
    """The two token families, each signed with its own secret."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenSettings:
    """Signing configuration injected into :class:`TokenIssuer`."""

    access_secret: str
    refresh_secret: str
    issuer: str = "profile-service"
    access_ttl_seconds: int = 15 * 60
    refresh_ttl_seconds: int = 2 * 24 * 60 * 60


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims extracted from a token."""

    subject: str
    token_class: TokenClass
    issued_at: int
    expires_at: int
    token_id: str
    role: str | None = None


class TokenIssuer:
    """Create and verify signed, time-bounded tokens.

    Access tokens carry the subject and role; refresh tokens carry only the
    subject so that the role is always re-read from the account record.
    Neither carries revocation state.
    """

    def __init__(self, settings: TokenSettings, clock: Callable[[], float] = time.time) -> None:
        if not settings.access_secret or not settings.refresh_secret:
            raise ValueError("token signing secrets must be configured")
        if settings.access_secret == settings.refresh_secret:
            raise ValueError("access and refresh tokens must use distinct signing secrets")
        self._settings = settings
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._settings.access_ttl_seconds

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._settings.refresh_ttl_seconds

    def issue_access(self, account_id: str, role: str) -> str:
        """Create a short-lived access token for ``account_id`` carrying ``role``."""
        return self._encode(TokenClass.ACCESS, account_id, {"role": role})

    def issue_refresh(self, account_id: str) -> str:
        """Create a refresh token for ``account_id``; it never carries a role."""
        return self._encode(TokenClass.REFRESH, account_id, {})

    def verify(self, token: str, expected: TokenClass) -> TokenClaims:
        """Decode ``token`` and check it belongs to the ``expected`` class.

        Raises
        ------
        TokenInvalid
            When the signature or structure cannot be verified.
        TokenWrongClass
            When the token was signed for the other token class.
        TokenExpired
            When the current time has reached the ``exp`` claim.
        """
        try:
            payload = self._decode(token, expected)
        except jwt.InvalidSignatureError as exc:
            other = TokenClass.REFRESH if expected is TokenClass.ACCESS else TokenClass.ACCESS
            if self._verifies_as(token, other):
                raise TokenWrongClass(
                    f"Expected a {expected.value} token, got a {other.value} token"
                ) from exc
            raise TokenInvalid() from exc
        except jwt.PyJWTError as exc:
            raise TokenInvalid() from exc

        if payload.get("typ") != expected.value:
            raise TokenWrongClass(f"Expected a {expected.value} token")

        issued_at, expires_at = payload["iat"], payload["exp"]
        if not isinstance(issued_at, (int, float)) or not isinstance(expires_at, (int, float)):
            raise TokenInvalid()
        if self._clock() >= expires_at:
            raise TokenExpired()

        return TokenClaims(
            subject=str(payload["sub"]),
            token_class=expected,
            issued_at=int(issued_at),
            expires_at=int(expires_at),
            token_id=str(payload.get("jti", "")),
            role=payload.get("role"),
        )

    def _secret_for(self, token_class: TokenClass) -> str:
        if token_class is TokenClass.ACCESS:
            return self._settings.access_secret
        return self._settings.refresh_secret

    def _ttl_for(self, token_class: TokenClass) -> int:
        if token_class is TokenClass.ACCESS:
            return self._settings.access_ttl_seconds
        return self._settings.refresh_ttl_seconds

    def _encode(self, token_class: TokenClass, subject: str, extra: dict[str, Any]) -> str:
        now = int(self._clock())
        payload: dict[str, Any] = {
            "iss": self._settings.issuer,
            "sub": subject,
            "typ": token_class.value,
            "iat": now,
            "exp": now + self._ttl_for(token_class),
            # Distinguishes tokens minted for the same subject within one second.
            "jti": secrets.token_urlsafe(16),
            **extra,
        }
        return jwt.encode(payload, self._secret_for(token_class), algorithm=ALGORITHM)

    def _decode(self, token: str, token_class: TokenClass) -> dict[str, Any]:
        # Expiry is checked against the injected clock rather than wall time.
        return jwt.decode(
            token,
            self._secret_for(token_class),
            algorithms=[ALGORITHM],
            issuer=self._settings.issuer,
            options={
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "require": ["sub", "typ", "iat", "exp"],
            },
        )

    def _verifies_as(self, token: str, token_class: TokenClass) -> bool:
        try:
            self._decode(token, token_class)
        except jwt.PyJWTError:
            return False
        return True
