"""
Plan monthly schedule access and repair.

monthly_data is the source of truth for what each installment costs.
monthly_amount is a denormalised list of payable amounts that older plans may
have out of step with the plan's duration. needs_rebuild/rebuild_monthly_amount
detect and fix that; get_due_amount reads the installment for a due number.
"""

import logging
from decimal import Decimal

from core.exceptions import MissingScheduleError
from core.models import Plan, PlanMonth

logger = logging.getLogger(__name__)


def _ordered(monthly_data: list[PlanMonth]) -> list[PlanMonth]:
    return sorted(monthly_data, key=lambda month: month.month_number)


def needs_rebuild(plan: Plan) -> bool:
    """
    Whether monthly_amount is out of step and rebuilding would change it.

    A plan whose monthly_data itself has the wrong number of months rebuilds
    to the same list every time, so it only needs rebuilding once.
    """
    if not plan.monthly_data or len(plan.monthly_amount) == plan.duration:
        return False
    return rebuild_monthly_amount(plan.monthly_data) != plan.monthly_amount


def schedule_is_short(plan: Plan) -> bool:
    """Whether monthly_data covers fewer months than the plan runs for."""
    return len(plan.monthly_data) < plan.duration


def rebuild_monthly_amount(monthly_data: list[PlanMonth]) -> list[Decimal]:
    """
    Project monthly_data onto a monthly_amount list.

    Months are ordered by month_number. Each entry is the payable amount,
    falling back to the installment amount, then zero.
    """
    amounts = []
    for month in _ordered(monthly_data):
        if month.payable_amount is not None:
            amounts.append(month.payable_amount)
        elif month.installment_amount is not None:
            amounts.append(month.installment_amount)
        else:
            amounts.append(Decimal("0"))
    return amounts


def heal(plan: Plan) -> Plan:
    """
    Return the plan with a consistent monthly_amount.

    The input is not modified. Returns the same object when nothing changes.
    """
    if not needs_rebuild(plan):
        return plan

    rebuilt = rebuild_monthly_amount(plan.monthly_data)
    logger.info(
        "Rebuilt monthly_amount for plan %s: %s entries -> %s (duration %s)",
        plan.id, len(plan.monthly_amount), len(rebuilt), plan.duration,
    )
    return plan.model_copy(update={"monthly_amount": rebuilt})


def get_due_amount(plan: Plan, due_number: int) -> Decimal:
    """
    Installment amount billed for a due number.

    Reads the installment component of monthly_data (the "Due" column, not
    the payable-after-dividend amount), falling back to monthly_amount.

    Raises:
        MissingScheduleError: If neither source covers the due number
    """
    index = due_number - 1
    months = _ordered(plan.monthly_data)

    if 0 <= index < len(months):
        return months[index].installment_amount or Decimal("0")

    if 0 <= index < len(plan.monthly_amount):
        return plan.monthly_amount[index]

    raise MissingScheduleError(
        f"Plan {plan.plan_name} does not have monthly amount data configured "
        f"for installment {due_number}"
    )
