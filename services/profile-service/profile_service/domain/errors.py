"""Error taxonomy raised by the profile service core.

Every component raises one of these types; the HTTP layer maps each family
to a stable status code and never forwards driver-level detail.
"""

from __future__ import annotations


class ProfileServiceError(Exception):
    """Base exception for all profile service failures."""

    default_message = "Profile service error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ProfileServiceError):
    """Raised when required input is missing or malformed."""

    default_message = "All fields are required"


class EncodingError(ValidationError):
    """Raised when a password cannot be encoded for hashing."""

    default_message = "Password could not be encoded"


class DuplicateEmail(ProfileServiceError):
    """Raised when an account with the same normalised email already exists."""

    default_message = "Email already exists"


class InvalidCredentials(ProfileServiceError):
    """Raised for an unknown email or a wrong password, indistinguishably."""

    default_message = "Invalid email or password"


class NotFound(ProfileServiceError):
    """Raised when an account lookup misses."""

    default_message = "User not found"


class TokenError(ProfileServiceError):
    """Base class for token verification and session failures."""

    default_message = "Invalid token"


class TokenExpired(TokenError):
    default_message = "Token has expired"


class TokenInvalid(TokenError):
    default_message = "Invalid token"


class TokenWrongClass(TokenError):
    default_message = "Token is not valid for this operation"


class TokenRevoked(TokenError):
    default_message = "Token has been revoked"


class StorageUnavailable(ProfileServiceError):
    """Raised when the backing store cannot be reached."""

    default_message = "Storage unavailable"
