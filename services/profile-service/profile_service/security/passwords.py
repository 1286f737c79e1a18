"""Salted one-way password hashing backed by bcrypt."""

from __future__ import annotations

import secrets

import bcrypt

from ..domain.errors import EncodingError

# bcrypt only consumes the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Hash and verify account passwords with a tunable bcrypt work factor.

    Emptiness and strength rules belong to the caller; this class only
    rejects input that bcrypt cannot represent faithfully.
    """

    def __init__(self, rounds: int = 12) -> None:
        """Store the bcrypt cost and mint the decoy hash at that cost."""
        self._rounds = rounds
        self._decoy_hash = self.hash(secrets.token_urlsafe(32))

    def hash(self, password: str) -> str:
        """Return a bcrypt hash embedding a fresh random salt.

        Raises
        ------
        EncodingError
            If ``password`` is not a string, contains NUL characters, or
            exceeds 72 bytes once UTF-8 encoded.
        """
        encoded = self._encode(password)
        hashed = bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self._rounds))
        return hashed.decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Return ``True`` when ``password`` matches ``password_hash``.

        The comparison is delegated to ``bcrypt.checkpw`` which runs in
        constant time. Malformed hashes and unencodable passwords simply fail.
        """
        try:
            encoded = self._encode(password)
            return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
        except (EncodingError, ValueError, TypeError, AttributeError):
            return False

    def verify_decoy(self, password: str) -> None:
        """Spend one full verification on a hash no account owns."""
        self.verify(password, self._decoy_hash)

    @staticmethod
    def _encode(password: str) -> bytes:
        if not isinstance(password, str):
            raise EncodingError("Password must be a string")
        if "\x00" in password:
            raise EncodingError("Password must not contain NUL characters")
        try:
            encoded = password.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise EncodingError("Password is not valid UTF-8") from exc
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise EncodingError(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes")
        return encoded
