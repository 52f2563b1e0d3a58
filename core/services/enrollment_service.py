"""
Enrollment service: lookups and arrear snapshot maintenance.

Enrollments are created elsewhere (member numbers are assigned at signup and
never synthesised here). This service reads them and maintains the cached
arrear snapshot that invoice creation treats as authoritative.
"""

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.exceptions import EnrollmentNotFoundError, MissingScheduleError
from core.models import ArrearRefreshResult, Enrollment, EnrollmentStatus, Plan
from core.plan_schedule import get_due_amount
from utils.dates import is_last_day_of_month
from utils.timezone import now_utc, today_local

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Service for enrollment reads and arrear snapshots."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.config = config or BillingConfig()

    def get_by_id(self, enrollment_id: UUID) -> Enrollment | None:
        """
        Get enrollment by ID.

        Returns:
            Enrollment if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM enrollments WHERE id = %s",
            (enrollment_id,)
        )

        if row is None:
            return None

        return Enrollment.model_validate(row)

    def find_for_member_plan(self, member_id: UUID, plan_id: UUID) -> Enrollment | None:
        """
        Get a member's enrollment in a plan.

        Returns:
            Enrollment if the member is enrolled, None otherwise.
        """
        row = self.postgres.execute_single(
            """
            SELECT * FROM enrollments
            WHERE member_id = %s AND plan_id = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (member_id, plan_id)
        )

        if row is None:
            return None

        return Enrollment.model_validate(row)

    def list_active(self) -> list[Enrollment]:
        """List active enrollments, oldest first."""
        rows = self.postgres.execute(
            "SELECT * FROM enrollments WHERE status = %s ORDER BY created_at",
            (EnrollmentStatus.ACTIVE.value,)
        )
        return [Enrollment.model_validate(row) for row in rows]

    def _write_snapshot(
        self,
        enrollment_id: UUID,
        amount: Decimal | None,
        *,
        authoritative: bool,
        tx: Transaction | None = None,
    ) -> Enrollment:
        """Store current_arrear and stamp (or clear) arrear_last_updated."""
        now = now_utc()
        runner = tx if tx is not None else self.postgres

        rows = runner.execute_returning(
            """
            UPDATE enrollments
            SET current_arrear = %s, arrear_last_updated = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (amount, now if authoritative else None, now, enrollment_id)
        )
        if not rows:
            raise EnrollmentNotFoundError(f"Enrollment {enrollment_id} not found")

        return Enrollment.model_validate(rows[0])

    def _audit_snapshot(self, before: Enrollment, after: Enrollment, tx: Transaction | None = None) -> None:
        self.audit.log_change(
            entity_type="enrollment",
            entity_id=after.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(
                before.model_dump(mode="json"),
                after.model_dump(mode="json"),
            ),
            tx=tx,
        )

    def _require(self, enrollment_id: UUID) -> Enrollment:
        enrollment = self.get_by_id(enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFoundError(f"Enrollment {enrollment_id} not found")
        return enrollment

    def set_arrear(self, enrollment_id: UUID, amount: Decimal) -> Enrollment:
        """
        Set the arrear snapshot to an operator-supplied amount.

        From now on invoice creation bills this arrear instead of deriving
        one from invoice history.

        Raises:
            EnrollmentNotFoundError: If the enrollment does not exist
        """
        before = self._require(enrollment_id)
        after = self._write_snapshot(enrollment_id, amount, authoritative=True)
        self._audit_snapshot(before, after)
        logger.info("Arrear for enrollment %s set to %s", enrollment_id, amount)
        return after

    def clear_arrear(self, enrollment_id: UUID) -> Enrollment:
        """
        Set the arrear snapshot to zero.

        The zero stays authoritative: the next invoice bills no arrear.
        """
        return self.set_arrear(enrollment_id, Decimal("0"))

    def release_arrear(self, enrollment_id: UUID) -> Enrollment:
        """
        Drop the snapshot's authority so arrears derive from invoices again.

        current_arrear keeps its last value for reference.
        """
        before = self._require(enrollment_id)
        after = self._write_snapshot(enrollment_id, before.current_arrear, authoritative=False)
        self._audit_snapshot(before, after)
        logger.info("Arrear snapshot released for enrollment %s", enrollment_id)
        return after

    def roll_forward_arrear(self, tx: Transaction, enrollment: Enrollment, remaining: Decimal) -> Enrollment:
        """
        Record the arrear left after an invoice, inside the invoice's transaction.

        Only called when the enrollment's snapshot is authoritative.
        """
        after = self._write_snapshot(enrollment.id, remaining, authoritative=True, tx=tx)
        self._audit_snapshot(enrollment, after, tx=tx)
        return after

    def refresh_arrears(self, as_of: date | None = None, force: bool = False) -> ArrearRefreshResult:
        """
        Re-base every active enrollment's arrear on its latest invoice balance.

        Enrollments still on their first installment (no invoice yet, or the
        latest invoice bills due 1) refresh on the last day of the month.
        All others refresh on the reset day. Other enrollments are skipped
        unless force is set. Enrollments without invoices get a zero arrear.

        Args:
            as_of: The calendar date the refresh runs for (today by default)
            force: Refresh every enrollment regardless of the date

        Returns:
            Updated, skipped and failed enrollments
        """
        if as_of is None:
            as_of = today_local(self.config.business_timezone)

        is_reset_day = as_of.day == self.config.reset_day
        is_month_end = is_last_day_of_month(as_of)

        latest_rows = self.postgres.execute(
            """
            SELECT DISTINCT ON (enrollment_id)
                enrollment_id, invoice_number, due_number, balance_amount, invoice_date
            FROM invoices
            ORDER BY enrollment_id, invoice_date DESC, created_at DESC
            """
        )
        latest_by_enrollment = {UUID(str(row["enrollment_id"])): row for row in latest_rows}

        result = ArrearRefreshResult()

        for enrollment in self.list_active():
            latest = latest_by_enrollment.get(enrollment.id)
            first_installment = latest is None or latest["due_number"] == 1

            if first_installment:
                due_today = is_month_end
                wait_reason = "Due 1 - wait for last day of month"
            else:
                due_today = is_reset_day
                wait_reason = f"Due 2+ - wait for day {self.config.reset_day}"

            if not (due_today or force):
                result.skipped.append({
                    "enrollment_id": str(enrollment.id),
                    "reason": wait_reason,
                })
                continue

            new_arrear = Decimal("0") if latest is None else Decimal(latest["balance_amount"] or 0)

            try:
                after = self._write_snapshot(enrollment.id, new_arrear, authoritative=True)
                self._audit_snapshot(enrollment, after)
            except Exception as e:
                logger.exception("Arrear refresh failed for enrollment %s", enrollment.id)
                result.errors.append({"enrollment_id": str(enrollment.id), "error": str(e)})
                continue

            result.updated.append({
                "enrollment_id": str(enrollment.id),
                "previous_arrear": str(enrollment.current_arrear or Decimal("0")),
                "new_arrear": str(new_arrear),
                "source": "First invoice (no arrear)" if latest is None else latest["invoice_number"],
            })

        logger.info(
            "Arrear refresh for %s: %s updated, %s skipped, %s errors",
            as_of, len(result.updated), len(result.skipped), len(result.errors),
        )
        return result

    def set_initial_arrears(self) -> ArrearRefreshResult:
        """
        Seed the arrear of every not-yet-invoiced active enrollment.

        The arrear becomes the plan's first installment, so the first
        invoice bills it. Enrollments that already have an invoice, or
        whose plan has no first installment, are skipped.

        Returns:
            Updated, skipped and failed enrollments
        """
        enrollments = self.list_active()
        invoiced = {
            UUID(str(row["enrollment_id"]))
            for row in self.postgres.execute("SELECT DISTINCT enrollment_id FROM invoices")
        }
        plans = {}
        plan_ids = list({e.plan_id for e in enrollments})
        if plan_ids:
            rows = self.postgres.execute(
                "SELECT * FROM plans WHERE id = ANY(%s::uuid[])",
                (plan_ids,)
            )
            plans = {plan.id: plan for plan in map(Plan.model_validate, rows)}

        result = ArrearRefreshResult()

        for enrollment in enrollments:
            if enrollment.id in invoiced:
                result.skipped.append({"enrollment_id": str(enrollment.id), "reason": "Already has invoice"})
                continue

            plan = plans.get(enrollment.plan_id)
            try:
                first_installment = get_due_amount(plan, 1) if plan is not None else Decimal("0")
            except MissingScheduleError:
                first_installment = Decimal("0")

            if not first_installment:
                result.skipped.append({"enrollment_id": str(enrollment.id), "reason": "No monthly amount found"})
                continue

            try:
                after = self._write_snapshot(enrollment.id, first_installment, authoritative=True)
                self._audit_snapshot(enrollment, after)
            except Exception as e:
                logger.exception("Initial arrear failed for enrollment %s", enrollment.id)
                result.errors.append({"enrollment_id": str(enrollment.id), "error": str(e)})
                continue

            result.updated.append({
                "enrollment_id": str(enrollment.id),
                "previous_arrear": str(enrollment.current_arrear or Decimal("0")),
                "new_arrear": str(first_installment),
                "source": f"First installment of {plan.plan_name}",
            })

        logger.info(
            "Initial arrears: %s updated, %s skipped, %s errors",
            len(result.updated), len(result.skipped), len(result.errors),
        )
        return result

    def clear_arrears(self, enrollment_ids: list[UUID] | None = None, *, clear_all: bool = False) -> int:
        """
        Zero the arrear snapshot of several enrollments in one transaction.

        Args:
            enrollment_ids: Enrollments to clear; unknown IDs are ignored
            clear_all: Clear every active enrollment instead

        Returns:
            Number of enrollments cleared

        Raises:
            ValueError: If neither enrollment_ids nor clear_all is given
        """
        if clear_all:
            targets = self.list_active()
        elif enrollment_ids:
            rows = self.postgres.execute(
                "SELECT * FROM enrollments WHERE id = ANY(%s::uuid[])",
                (list(enrollment_ids),)
            )
            targets = [Enrollment.model_validate(row) for row in rows]
        else:
            raise ValueError("Provide enrollment_ids or set clear_all")

        with self.postgres.transaction() as tx:
            for enrollment in targets:
                after = self._write_snapshot(enrollment.id, Decimal("0"), authoritative=True, tx=tx)
                self._audit_snapshot(enrollment, after, tx=tx)

        logger.info("Cleared arrears for %s enrollments", len(targets))
        return len(targets)
