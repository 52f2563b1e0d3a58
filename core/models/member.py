"""Member domain model (the customer enrolled in plans)."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class Member(BaseModel):
    """Member as stored. Read-only from the billing engine's point of view."""

    id: UUID
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
