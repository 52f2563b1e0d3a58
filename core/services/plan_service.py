"""
Plan service: lookups and monthly schedule repair.

Plans are created and edited elsewhere. The billing engine only reads them,
and repairs a plan's monthly_amount cache when it has fallen out of step with
the plan's duration.
"""

import logging
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction, compute_changes
from core.exceptions import PlanNotFoundError
from core.models import Plan
from core.plan_schedule import heal, needs_rebuild, schedule_is_short
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class PlanService:
    """Service for plan reads and schedule repair."""

    def __init__(self, postgres: PostgresClient, audit: AuditLogger):
        self.postgres = postgres
        self.audit = audit

    def get_by_id(self, plan_id: UUID) -> Plan | None:
        """
        Get plan by ID.

        Returns:
            Plan if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM plans WHERE id = %s",
            (plan_id,)
        )

        if row is None:
            return None

        return Plan.model_validate(row)

    def repair(self, plan: Plan) -> Plan:
        """
        Rebuild and persist monthly_amount if it is out of step.

        Safe to call any number of times; a consistent plan is returned
        untouched and nothing is written.

        Returns:
            The consistent plan
        """
        if not needs_rebuild(plan):
            if plan.monthly_data and schedule_is_short(plan):
                logger.warning(
                    "Plan %s has %s months of schedule for a %s-month duration",
                    plan.id, len(plan.monthly_data), plan.duration,
                )
            return plan

        healed = heal(plan)
        now = now_utc()

        self.postgres.execute(
            """
            UPDATE plans
            SET monthly_amount = %s::numeric[], updated_at = %s
            WHERE id = %s
            """,
            (healed.monthly_amount, now, plan.id)
        )

        self.audit.log_change(
            entity_type="plan",
            entity_id=plan.id,
            action=AuditAction.REPAIR,
            changes=compute_changes(
                plan.model_dump(mode="json"),
                healed.model_dump(mode="json"),
            ),
        )

        return healed.model_copy(update={"updated_at": now})

    def ensure_consistent(self, plan_id: UUID) -> Plan:
        """
        Load a plan with a consistent monthly schedule, repairing it first if needed.

        Raises:
            PlanNotFoundError: If the plan does not exist
        """
        plan = self.get_by_id(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")

        return self.repair(plan)

    def repair_all(self) -> list[UUID]:
        """
        Repair every plan whose monthly_amount is out of step.

        Run as a maintenance step so invoice creation rarely has to.

        Returns:
            IDs of the plans that were rewritten
        """
        rows = self.postgres.execute("SELECT * FROM plans ORDER BY created_at")

        repaired = []
        for row in rows:
            plan = Plan.model_validate(row)
            if needs_rebuild(plan):
                self.repair(plan)
                repaired.append(plan.id)

        logger.info("Plan schedule repair: %s of %s plans rewritten", len(repaired), len(rows))
        return repaired
