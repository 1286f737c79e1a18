from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Opaque role tag carried on accounts and access tokens."""

    USER = "user"
    ADMIN = "admin"


@dataclass(slots=True)
class Profile:
    """Mutable personal attributes attached to an account."""

    name: str
    phone: str
    postal_code: str
    region: str
    address: str
    image_url: str | None = None


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered account holder."""

    account_id: str
    email: str
    password_hash: str = field(repr=False)
    profile: Profile
    created_at: datetime
    updated_at: datetime
    role: Role = Role.USER


def normalize_email(email: str) -> str:
    """Return the canonical form used for uniqueness checks and lookups."""
    return email.strip().lower()
