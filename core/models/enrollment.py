"""Enrollment domain models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEFAULTED = "defaulted"


class Enrollment(BaseModel):
    """
    One member's subscription to one plan.

    start_date starts the billing cycle; enrollment_date is only the signup
    date. current_arrear is a cached arrear snapshot. It is authoritative
    whenever arrear_last_updated is set, including when it is zero.
    """

    id: UUID
    member_id: UUID
    plan_id: UUID
    member_number: int | None = None
    enrollment_date: date | None = None
    start_date: date
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    current_arrear: Decimal | None = None
    arrear_last_updated: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def has_arrear_snapshot(self) -> bool:
        """Whether the cached arrear overrides invoice history."""
        return self.arrear_last_updated is not None


class ArrearUpdate(BaseModel):
    """Operator-supplied arrear for an enrollment."""

    enrollment_id: UUID
    amount: Decimal = Field(..., ge=0)


class ArrearClear(BaseModel):
    """Enrollments a bulk arrear clear applies to: listed ones, or every active one."""

    enrollment_ids: list[UUID] = Field(default_factory=list)
    clear_all: bool = False

    @model_validator(mode="after")
    def require_target(self):
        if not self.clear_all and not self.enrollment_ids:
            raise ValueError("Provide enrollment_ids or set clear_all")
        return self


class ArrearRefreshResult(BaseModel):
    """Outcome of refreshing arrear snapshots across enrollments."""

    updated: list[dict] = Field(default_factory=list)
    skipped: list[dict] = Field(default_factory=list)
    errors: list[dict] = Field(default_factory=list)
