"""Authentication service orchestrating accounts, passwords, tokens and sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email
from prometheus_client import Counter

from .account import Account, Profile, normalize_email
from .contracts import CreateAccountInput, ProfileUpdate
from .errors import InvalidCredentials, NotFound, TokenInvalid, TokenRevoked, ValidationError
from ..repository import AccountDirectory
from ..security.passwords import PasswordHasher
from ..security.sessions import SessionStore
from ..security.tokens import TokenClass, TokenIssuer

logger = logging.getLogger(__name__)

AUTH_EVENTS = Counter(
    "profile_auth_events_total",
    "Authentication lifecycle events handled by the profile service.",
    ["event"],
)

REQUIRED_REGISTRATION_FIELDS = ("name", "phone", "postal_code", "region", "address")


@dataclass(slots=True)
class TokenBundle:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    refresh_expires_in: int


@dataclass(slots=True)
class LoginResult:
    """Tokens issued by a successful login together with the account."""

    tokens: TokenBundle
    account: Account


class AuthService:
    """Register, Login, Refresh and Logout workflows.

    Each account holds a single session: issuing a refresh token through
    login or rotation replaces whatever the session store held before.
    """

    def __init__(
        self,
        accounts: AccountDirectory,
        sessions: SessionStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        *,
        rotate_refresh_tokens: bool = True,
    ) -> None:
        """Store the collaborators used by every workflow."""
        self._accounts = accounts
        self._sessions = sessions
        self._hasher = hasher
        self._issuer = issuer
        self._rotate_refresh_tokens = rotate_refresh_tokens

    def register(self, email: str, password: str, profile: Profile) -> Account:
        """Validate required fields, hash the password and create the account.

        Raises
        ------
        ValidationError
            When any required field is blank or the email is malformed.
        EncodingError
            When the password cannot be hashed.
        DuplicateEmail
            When the normalised email is already registered.
        """
        required = [email, password, *(getattr(profile, name) for name in REQUIRED_REGISTRATION_FIELDS)]
        if any(not value or not str(value).strip() for value in required):
            raise ValidationError("All fields are required")

        normalized = normalize_email(email)
        try:
            validate_email(normalized, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid email: {exc}") from exc

        password_hash = self._hasher.hash(password)
        account = self._accounts.create(
            CreateAccountInput(email=normalized, password_hash=password_hash, profile=profile)
        )
        AUTH_EVENTS.labels(event="register").inc()
        logger.info("registered account %s", account.account_id)
        return account

    def login(self, email: str, password: str) -> LoginResult:
        """Authenticate credentials and open a new session, revoking any previous one."""
        try:
            account = self._accounts.find_by_email(email)
        except NotFound:
            # Unknown emails cost one bcrypt verification, like a wrong password.
            self._hasher.verify_decoy(password)
            AUTH_EVENTS.labels(event="login_failure").inc()
            logger.info("login rejected: unknown email")
            raise InvalidCredentials() from None

        if not self._hasher.verify(password, account.password_hash):
            AUTH_EVENTS.labels(event="login_failure").inc()
            logger.info("login rejected for account %s: password mismatch", account.account_id)
            raise InvalidCredentials()

        access_token = self._issuer.issue_access(account.account_id, account.role.value)
        refresh_token = self._issuer.issue_refresh(account.account_id)
        self._sessions.set(account.account_id, refresh_token)

        AUTH_EVENTS.labels(event="login_success").inc()
        logger.info("account %s logged in", account.account_id)
        return LoginResult(tokens=self._bundle(access_token, refresh_token), account=account)

    def refresh(self, presented_refresh_token: str) -> TokenBundle:
        """Exchange a live refresh token for a new access token.

        With rotation enabled the refresh token is replaced too, atomically,
        so a token can be redeemed at most once.
        """
        claims = self._issuer.verify(presented_refresh_token, TokenClass.REFRESH)
        account_id = claims.subject

        try:
            account = self._accounts.find_by_id(account_id)
        except NotFound:
            AUTH_EVENTS.labels(event="refresh_rejected").inc()
            raise TokenInvalid("Token subject no longer exists") from None

        if self._rotate_refresh_tokens:
            refresh_token = self._issuer.issue_refresh(account_id)
            accepted = self._sessions.rotate(account_id, presented_refresh_token, refresh_token)
        else:
            refresh_token = presented_refresh_token
            accepted = self._sessions.is_current(account_id, presented_refresh_token)

        if not accepted:
            AUTH_EVENTS.labels(event="refresh_rejected").inc()
            logger.info("refresh rejected for account %s: token superseded", account_id)
            raise TokenRevoked()

        # Role comes from the record, never from the presented token.
        access_token = self._issuer.issue_access(account_id, account.role.value)
        AUTH_EVENTS.labels(event="refresh").inc()
        return self._bundle(access_token, refresh_token)

    def logout(self, account_id: str) -> None:
        """Revoke the account's session; clearing an empty slot is not an error."""
        self._sessions.clear(account_id)
        AUTH_EVENTS.labels(event="logout").inc()
        logger.info("account %s logged out", account_id)

    def authenticate(self, access_token: str) -> str:
        """Return the account id carried by a valid access token."""
        return self._issuer.verify(access_token, TokenClass.ACCESS).subject

    def update_profile(self, account_id: str, update: ProfileUpdate) -> Account:
        """Apply a partial profile update.

        No ownership check happens here: callers must compare the
        authenticated subject with ``account_id`` before invoking this.
        """
        return self._accounts.update_profile(account_id, update)

    def get_account(self, account_id: str) -> Account:
        return self._accounts.find_by_id(account_id)

    def list_accounts(self) -> list[Account]:
        return self._accounts.list()

    def _bundle(self, access_token: str, refresh_token: str) -> TokenBundle:
        return TokenBundle(
            access_token=access_token,
            access_expires_in=self._issuer.access_ttl_seconds,
            refresh_token=refresh_token,
            refresh_expires_in=self._issuer.refresh_ttl_seconds,
        )
