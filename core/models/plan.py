"""Chit plan domain models.

Amounts are rupees stored as NUMERIC(12, 2) and surfaced as Decimal.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PlanMonth(BaseModel):
    """One month of a plan's payment schedule."""

    month_number: int = Field(..., ge=1)
    installment_amount: Decimal | None = Field(None, ge=0)
    dividend: Decimal = Field(Decimal("0"), ge=0)
    payable_amount: Decimal | None = Field(None, ge=0)


class Plan(BaseModel):
    """
    Full plan entity as stored.

    monthly_data is the authoritative schedule. monthly_amount is a cache of
    each month's payable amount, index 0 = month 1, and must have exactly
    `duration` entries.
    """

    id: UUID
    plan_name: str
    duration: int = Field(..., ge=1)
    total_amount: Decimal
    monthly_data: list[PlanMonth] = Field(default_factory=list)
    monthly_amount: list[Decimal] = Field(default_factory=list)
    status: str = "active"
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def coerce_null_schedules(cls, data):
        """Stored NULL schedules read as empty lists."""
        if isinstance(data, dict):
            data = dict(data)
            for key in ("monthly_data", "monthly_amount"):
                if data.get(key) is None:
                    data[key] = []
        return data

    @property
    def has_schedule(self) -> bool:
        """Whether any monthly schedule is configured."""
        return bool(self.monthly_data) or bool(self.monthly_amount)
