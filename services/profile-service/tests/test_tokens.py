from __future__ import annotations

import jwt
import pytest

from profile_service.domain.errors import TokenExpired, TokenInvalid, TokenWrongClass
from profile_service.security.tokens import TokenClass, TokenIssuer, TokenSettings


def test_access_token_claims(issuer, clock):
    token = issuer.issue_access("acct-1", "user")
    claims = issuer.verify(token, TokenClass.ACCESS)

    assert claims.subject == "acct-1"
    assert claims.role == "user"
    assert claims.token_class is TokenClass.ACCESS
    assert claims.issued_at == int(clock.now)
    assert claims.expires_at == claims.issued_at + 15 * 60


def test_refresh_token_claims_omit_role(issuer):
    token = issuer.issue_refresh("acct-1")
    claims = issuer.verify(token, TokenClass.REFRESH)

    assert claims.role is None
    assert claims.expires_at - claims.issued_at == 2 * 24 * 60 * 60
    assert "role" not in jwt.decode(token, options={"verify_signature": False})


def test_tokens_issued_in_same_second_differ(issuer):
    assert issuer.issue_refresh("acct-1") != issuer.issue_refresh("acct-1")
    assert issuer.issue_access("acct-1", "user") != issuer.issue_access("acct-1", "user")


def test_verify_detects_wrong_class(issuer):
    with pytest.raises(TokenWrongClass):
        issuer.verify(issuer.issue_access("acct-1", "user"), TokenClass.REFRESH)
    with pytest.raises(TokenWrongClass):
        issuer.verify(issuer.issue_refresh("acct-1"), TokenClass.ACCESS)


def test_verify_detects_type_claim_mismatch(issuer, token_settings, clock):
    forged = jwt.encode(
        {
            "iss": "profile-service",
            "sub": "acct-1",
            "typ": "refresh",
            "iat": int(clock.now),
            "exp": int(clock.now) + 60,
        },
        token_settings.access_secret,
        algorithm="HS256",
    )
    with pytest.raises(TokenWrongClass):
        issuer.verify(forged, TokenClass.ACCESS)


def test_access_token_expires_after_fifteen_minutes(issuer, clock):
    token = issuer.issue_access("acct-1", "user")

    clock.advance(15 * 60 - 1)
    assert issuer.verify(token, TokenClass.ACCESS).subject == "acct-1"

    clock.advance(1)
    with pytest.raises(TokenExpired):
        issuer.verify(token, TokenClass.ACCESS)


@pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c"])
def test_verify_rejects_garbage(issuer, token):
    with pytest.raises(TokenInvalid):
        issuer.verify(token, TokenClass.ACCESS)


def test_verify_rejects_tampered_token(issuer):
    original = issuer.issue_access("acct-1", "user")
    other = issuer.issue_access("acct-2", "admin")
    # Claims from one token paired with the signature of another.
    tampered = other.rsplit(".", 1)[0] + "." + original.rsplit(".", 1)[1]

    with pytest.raises(TokenInvalid):
        issuer.verify(tampered, TokenClass.ACCESS)


def test_verify_rejects_foreign_secret(token_settings, clock):
    foreign = TokenIssuer(
        TokenSettings(
            access_secret="another-access-secret-0123456789abcdef",
            refresh_secret="another-refresh-secret-0123456789abcdef",
        ),
        clock=clock,
    )
    ours = TokenIssuer(token_settings, clock=clock)

    with pytest.raises(TokenInvalid):
        ours.verify(foreign.issue_refresh("acct-1"), TokenClass.REFRESH)


def test_verify_requires_core_claims(issuer, token_settings):
    incomplete = jwt.encode(
        {"iss": "profile-service", "sub": "acct-1"},
        token_settings.refresh_secret,
        algorithm="HS256",
    )
    with pytest.raises(TokenInvalid):
        issuer.verify(incomplete, TokenClass.REFRESH)


def test_issuer_requires_distinct_secrets():
    with pytest.raises(ValueError):
        TokenIssuer(TokenSettings(access_secret="same-secret", refresh_secret="same-secret"))
    with pytest.raises(ValueError):
        TokenIssuer(TokenSettings(access_secret="", refresh_secret="refresh"))
