"""Account-related DTOs shared across services."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class AccountView(BaseModel):
    """Public projection of an account; never carries credentials or session state."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    role: str
    name: str
    phone: str
    postal_code: str
    region: str
    address: str
    image_url: str | None = None
    created_at: datetime
