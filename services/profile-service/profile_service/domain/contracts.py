"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, fields

from .account import Profile, Role

PROFILE_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(Profile))


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to persist a new account."""

    email: str
    password_hash: str
    profile: Profile
    role: Role = Role.USER


@dataclass(slots=True)
class ProfileUpdate:
    """Partial profile change; ``None`` means "leave untouched"."""

    name: str | None = None
    phone: str | None = None
    postal_code: str | None = None
    region: str | None = None
    address: str | None = None
    image_url: str | None = None

    @classmethod
    def from_mapping(cls, values: dict[str, object]) -> "ProfileUpdate":
        """Build an update from arbitrary keys, ignoring anything that is not a profile field."""
        return cls(**{key: values[key] for key in PROFILE_FIELDS if values.get(key) is not None})

    def changes(self) -> dict[str, str]:
        """Return only the fields that were supplied."""
        return {
            name: getattr(self, name)
            for name in PROFILE_FIELDS
            if getattr(self, name) is not None
        }

    def apply(self, profile: Profile) -> Profile:
        """Return a new profile with the supplied fields merged over ``profile``."""
        merged = {name: getattr(profile, name) for name in PROFILE_FIELDS}
        merged.update(self.changes())
        return Profile(**merged)
