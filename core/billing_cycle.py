"""
Billing cycle engine.

Pure calculations that place an invoice in a plan's installment schedule and
work out what the member owes:

- due number: which installment an invoice date bills against
- arrear: unpaid amount carried in from earlier cycles
- balance: what remains outstanding after this invoice's payment

Billing periods close on the cut-off day (20th by default). The day after the
cut-off (the 21st) starts a new cycle: the balance is recomputed from this
cycle's figures alone and the arrear is re-based on the previous balance.

Nothing here touches storage. Previous invoices are read through the
PreviousInvoiceLookup protocol so callers decide where history comes from.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from core.exceptions import InvoiceValidationError, PlanCompletedError
from utils.dates import add_months, months_between

logger = logging.getLogger(__name__)

DEFAULT_CUTOFF_DAY = 20
DEFAULT_RESET_DAY = DEFAULT_CUTOFF_DAY + 1


class PreviousInvoiceLookup(Protocol):
    """Anything that can find the invoice preceding a date for an enrollment."""

    def find_previous(self, enrollment_id: UUID, before: date) -> Any | None:
        ...


def calculate_due_number(
    start_date: date,
    invoice_date: date,
    plan_duration: int,
    *,
    cutoff_day: int = DEFAULT_CUTOFF_DAY,
) -> int:
    """
    Installment number an invoice dated invoice_date bills against.

    The first installment runs from the start date through the cut-off of
    the following month. After that each period ends on the cut-off day:
    the 20th still bills the current installment, the 21st bills the next.

    Args:
        start_date: Enrollment billing start date
        invoice_date: Date the invoice is raised for
        plan_duration: Number of installments in the plan
        cutoff_day: Last day of a month that bills the current period

    Returns:
        Due number in [1, plan_duration]

    Raises:
        InvoiceValidationError: If invoice_date is before start_date
        PlanCompletedError: If the installment is past the end of the plan
    """
    if invoice_date < start_date:
        raise InvoiceValidationError(
            f"Invoice date ({invoice_date.isoformat()}) cannot be before "
            f"enrollment start date ({start_date.isoformat()})"
        )

    rolled = 1 if invoice_date.day > cutoff_day else 0
    due_number = max(1, months_between(start_date, invoice_date) + rolled)

    if due_number > plan_duration:
        raise PlanCompletedError(due_number, plan_duration)

    logger.debug(
        "Due number %s for start=%s invoice=%s (cutoff=%s, rolled=%s, duration=%s)",
        due_number, start_date, invoice_date, cutoff_day, bool(rolled), plan_duration,
    )
    return due_number


def format_payment_month(invoice_date: date, *, cutoff_day: int = DEFAULT_CUTOFF_DAY) -> str:
    """
    Month an invoice pays for, e.g. "January 2025".

    Invoices after the cut-off pay for the following month.
    """
    billed = add_months(invoice_date, 1) if invoice_date.day > cutoff_day else invoice_date
    return billed.strftime("%B %Y")


def calculate_arrear_amount(
    enrollment_id: UUID,
    invoices: PreviousInvoiceLookup,
    invoice_date: date,
    enrollment: Any | None = None,
    *,
    reset_day: int = DEFAULT_RESET_DAY,
) -> Decimal:
    """
    Arrear to bill on a new invoice.

    Priority:
    1. The enrollment's arrear snapshot, when arrear_last_updated is set.
       A snapshot of zero is still authoritative.
    2. The previous invoice: its balance on the reset day, otherwise its
       arrear carried forward unchanged.
    3. Zero when there is no previous invoice.

    Manual arrear overrides never reach this function.
    """
    if enrollment is not None and getattr(enrollment, "arrear_last_updated", None) is not None:
        arrear = getattr(enrollment, "current_arrear", None) or Decimal("0")
        logger.debug(
            "Arrear %s for enrollment %s from snapshot updated %s",
            arrear, enrollment_id, enrollment.arrear_last_updated,
        )
        return arrear

    previous = invoices.find_previous(enrollment_id, invoice_date)
    if previous is None:
        logger.debug("Arrear 0 for enrollment %s: no previous invoice", enrollment_id)
        return Decimal("0")

    if invoice_date.day == reset_day:
        arrear = previous.balance_amount or Decimal("0")
        source = "previous balance"
    else:
        arrear = previous.arrear_amount or Decimal("0")
        source = "previous arrear"

    logger.debug(
        "Arrear %s for enrollment %s from %s (invoice %s dated %s)",
        arrear, enrollment_id, source, previous.invoice_number, previous.invoice_date,
    )
    return arrear


def resolve_previous_balance(
    previous_invoice: Any | None,
    due_amount: Decimal,
    invoice_date: date,
    *,
    reset_day: int = DEFAULT_RESET_DAY,
) -> Decimal:
    """
    Balance carried into a new invoice.

    A first invoice raised off the reset day treats the full due amount as
    already outstanding.
    """
    if previous_invoice is None:
        if invoice_date.day != reset_day:
            return due_amount
        return Decimal("0")
    return previous_invoice.balance_amount or Decimal("0")


def calculate_balance_amount(
    due_amount: Decimal,
    arrear_amount: Decimal,
    received_amount: Decimal,
    invoice_date: date,
    previous_balance: Decimal = Decimal("0"),
    received_arrear_amount: Decimal = Decimal("0"),
    *,
    reset_day: int = DEFAULT_RESET_DAY,
) -> Decimal:
    """
    Outstanding amount after this invoice's payment.

    On the reset day:   due + arrear - received - received_arrear
    On any other day:   previous_balance + due + arrear - received - received_arrear

    A negative result is an overpayment credit and is returned as is.
    """
    this_cycle = due_amount + arrear_amount - received_amount - received_arrear_amount

    if invoice_date.day == reset_day:
        balance = this_cycle
        logger.debug("Balance %s on reset day (previous balance ignored)", balance)
    else:
        balance = previous_balance + this_cycle
        logger.debug("Balance %s = previous %s + cycle %s", balance, previous_balance, this_cycle)

    return balance
