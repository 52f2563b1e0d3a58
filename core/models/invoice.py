"""Invoice domain models.

Amounts are rupees stored as NUMERIC(12, 2) and surfaced as Decimal.
total_amount is what was billed (due + net arrear); balance_amount is what
remains outstanding after this invoice's payment.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class IssuedBy(str, Enum):
    """Which desk raised the invoice."""

    ADMIN = "ADMIN"
    STAFF = "STAFF"


class InvoiceCreate(BaseModel):
    """
    Data required to bill a member for one plan.

    The manual_* fields let an operator override the calculated figures.
    Each override is used verbatim when supplied.
    """

    member_id: UUID
    plan_id: UUID
    invoice_date: date | None = None
    received_amount: Decimal = Field(Decimal("0"), ge=0)
    received_arrear_amount: Decimal = Field(Decimal("0"), ge=0)
    manual_due_number: int | None = Field(None, ge=1)
    manual_arrear_amount: Decimal | None = None
    manual_balance_amount: Decimal | None = None
    notes: str | None = Field(None, max_length=2000)


class InvoicePreview(BaseModel):
    """Calculated figures for a prospective invoice. Nothing is stored."""

    enrollment_id: UUID
    invoice_date: date
    payment_month: str
    due_number: int
    due_amount: Decimal
    arr_amount: Decimal
    arrear_amount: Decimal
    previous_balance: Decimal
    received_amount: Decimal
    received_arrear_amount: Decimal
    balance_amount: Decimal
    total_amount: Decimal
    total_received_amount: Decimal


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    invoice_number: str
    enrollment_id: UUID
    member_id: UUID
    plan_id: UUID
    invoice_date: date
    payment_month: str

    # Snapshot at creation time
    member_name: str
    member_phone: str | None = None
    member_number: int | None = None
    plan_name: str

    due_number: int
    due_amount: Decimal
    arr_amount: Decimal  # Gross arrear, as calculated
    arrear_amount: Decimal  # Net arrear actually billed
    received_amount: Decimal
    received_arrear_amount: Decimal
    balance_amount: Decimal
    total_amount: Decimal
    total_received_amount: Decimal

    issued_by: IssuedBy
    created_by: UUID | None = None
    notes: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
