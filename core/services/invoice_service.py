"""
Invoice service: assembles, previews and persists installment invoices.

An invoice bills one enrollment (a member in a plan) for one installment.
Creation resolves the enrollment, repairs the plan schedule if needed, places
the invoice date in the billing cycle, works out arrear and balance from the
enrollment's history, and writes the invoice, its number and the arrear
snapshot in a single transaction.

Invoices are immutable once created. Nothing here recalculates later invoices
when an earlier one changes.
"""

import logging
from contextlib import nullcontext
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction
from core.billing_cycle import (
    calculate_arrear_amount,
    calculate_balance_amount,
    calculate_due_number,
    format_payment_month,
    resolve_previous_balance,
)
from core.config import BillingConfig
from core.exceptions import (
    EnrollmentNotFoundError,
    InvoiceValidationError,
    MemberNotFoundError,
    PlanCompletedError,
    PlanNotFoundError,
)
from core.locks import EnrollmentLock
from core.models import Enrollment, Invoice, InvoiceCreate, InvoicePreview, IssuedBy, Member, Plan
from core.plan_schedule import get_due_amount, heal
from core.services.enrollment_service import EnrollmentService
from core.services.member_service import MemberService
from core.services.plan_service import PlanService
from utils.actor_context import get_actor_id
from utils.timezone import now_utc, today_local

logger = logging.getLogger(__name__)

_INSERT_COLUMNS = (
    "id", "invoice_number", "enrollment_id", "member_id", "plan_id",
    "invoice_date", "payment_month",
    "member_name", "member_phone", "member_number", "plan_name",
    "due_number", "due_amount", "arr_amount", "arrear_amount",
    "received_amount", "received_arrear_amount", "balance_amount",
    "total_amount", "total_received_amount",
    "issued_by", "created_by", "notes", "created_at",
)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        plans: PlanService,
        enrollments: EnrollmentService,
        members: MemberService,
        config: BillingConfig | None = None,
        locks: EnrollmentLock | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.plans = plans
        self.enrollments = enrollments
        self.members = members
        self.config = config or BillingConfig()
        self.locks = locks

    # -- Reads --------------------------------------------------------------

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    def list_for_enrollment(self, enrollment_id: UUID) -> list[Invoice]:
        """List an enrollment's invoices in billing order."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE enrollment_id = %s
            ORDER BY invoice_date, created_at
            """,
            (enrollment_id,)
        )
        return [Invoice.model_validate(row) for row in rows]

    def list_recent(self, limit: int = 50) -> list[Invoice]:
        """List the most recently raised invoices, newest first."""
        rows = self.postgres.execute(
            "SELECT * FROM invoices ORDER BY created_at DESC LIMIT %s",
            (limit,)
        )
        return [Invoice.model_validate(row) for row in rows]

    def find_previous(self, enrollment_id: UUID, before: date) -> Invoice | None:
        """
        Latest invoice for the enrollment dated strictly before a date.

        Same-day invoices are not "previous". Ties on invoice_date go to the
        one created last.
        """
        row = self.postgres.execute_single(
            """
            SELECT * FROM invoices
            WHERE enrollment_id = %s AND invoice_date < %s
            ORDER BY invoice_date DESC, created_at DESC
            LIMIT 1
            """,
            (enrollment_id, before)
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    # -- Calculation ----------------------------------------------------------

    def _resolve_enrollment(self, data: InvoiceCreate) -> Enrollment:
        enrollment = self.enrollments.find_for_member_plan(data.member_id, data.plan_id)
        if enrollment is None:
            raise EnrollmentNotFoundError(
                f"Enrollment not found for member {data.member_id} and plan {data.plan_id}"
            )
        return enrollment

    def _resolve_member(self, member_id: UUID) -> Member:
        member = self.members.get_by_id(member_id)
        if member is None:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return member

    def _calculate(
        self,
        data: InvoiceCreate,
        enrollment: Enrollment,
        plan: Plan,
        invoice_date: date,
    ) -> InvoicePreview:
        """Work out every figure on the invoice. Reads history, writes nothing."""
        config = self.config

        if data.manual_due_number is not None:
            if data.manual_due_number > plan.duration:
                raise PlanCompletedError(data.manual_due_number, plan.duration)
            due_number = data.manual_due_number
        else:
            due_number = calculate_due_number(
                enrollment.start_date, invoice_date, plan.duration, cutoff_day=config.cutoff_day
            )

        due_amount = get_due_amount(plan, due_number)

        previous = self.find_previous(enrollment.id, invoice_date)

        arr_amount = calculate_arrear_amount(
            enrollment.id, self, invoice_date, enrollment, reset_day=config.reset_day
        )
        if data.manual_arrear_amount is not None:
            arrear_amount = data.manual_arrear_amount
        else:
            arrear_amount = arr_amount

        previous_balance = resolve_previous_balance(
            previous, due_amount, invoice_date, reset_day=config.reset_day
        )

        if data.manual_balance_amount is not None:
            balance_amount = data.manual_balance_amount
        else:
            balance_amount = calculate_balance_amount(
                due_amount,
                arrear_amount,
                data.received_amount,
                invoice_date,
                previous_balance=previous_balance,
                received_arrear_amount=data.received_arrear_amount,
                reset_day=config.reset_day,
            )

        return InvoicePreview(
            enrollment_id=enrollment.id,
            invoice_date=invoice_date,
            payment_month=format_payment_month(invoice_date, cutoff_day=config.cutoff_day),
            due_number=due_number,
            due_amount=due_amount,
            arr_amount=arr_amount,
            arrear_amount=arrear_amount,
            previous_balance=previous_balance,
            received_amount=data.received_amount,
            received_arrear_amount=data.received_arrear_amount,
            balance_amount=balance_amount,
            total_amount=due_amount + arrear_amount,
            total_received_amount=data.received_amount + data.received_arrear_amount,
        )

    def preview(self, data: InvoiceCreate) -> InvoicePreview:
        """
        Calculate a prospective invoice without saving anything.

        An out-of-step plan schedule is healed in memory only.

        Raises:
            EnrollmentNotFoundError: If the member is not enrolled in the plan
            PlanNotFoundError: If the plan does not exist
            InvoiceValidationError: If the figures cannot be calculated
        """
        enrollment = self._resolve_enrollment(data)

        plan = self.plans.get_by_id(data.plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {data.plan_id} not found")

        invoice_date = data.invoice_date or today_local(self.config.business_timezone)
        return self._calculate(data, enrollment, heal(plan), invoice_date)

    # -- Creation -----------------------------------------------------------

    def _next_invoice_number(self, tx: Transaction) -> str:
        """Increment the invoice counter and format the new number."""
        prefix = self.config.invoice_number_prefix
        rows = tx.execute_returning(
            """
            INSERT INTO invoice_counters (name, value)
            VALUES (%s, 1)
            ON CONFLICT (name) DO UPDATE SET value = invoice_counters.value + 1
            RETURNING value
            """,
            (prefix,)
        )
        sequence = rows[0]["value"]
        return f"{prefix}-{sequence:0{self.config.invoice_number_width}d}"

    def create(self, data: InvoiceCreate, issued_by: IssuedBy = IssuedBy.ADMIN) -> Invoice:
        """
        Create an invoice for a member's enrollment in a plan.

        Admin and staff desks both come through here; only issued_by differs.

        Args:
            data: Member, plan, date, payments and optional overrides
            issued_by: Which desk raised the invoice

        Returns:
            The saved invoice

        Raises:
            EnrollmentNotFoundError: If the member is not enrolled in the plan
            PlanNotFoundError: If the plan does not exist
            MemberNotFoundError: If the member does not exist
            PlanCompletedError: If the installment is past the end of the plan
            InvoiceValidationError: If the figures cannot be calculated
            ConcurrentInvoiceError: If another invoice is being created for
                the same enrollment
        """
        enrollment = self._resolve_enrollment(data)
        plan = self.plans.ensure_consistent(data.plan_id)
        member = self._resolve_member(data.member_id)

        member_name = (member.name or "").strip()
        if not member_name:
            raise InvoiceValidationError(f"Member {member.id} has no name")
        if not plan.plan_name.strip():
            raise InvoiceValidationError(f"Plan {plan.id} has no name")

        invoice_date = data.invoice_date or today_local(self.config.business_timezone)

        hold = self.locks.hold(enrollment.id) if self.locks is not None else nullcontext()
        with hold:
            # The enrollment snapshot may have moved since the first read
            enrollment = self.enrollments.get_by_id(enrollment.id) or enrollment
            figures = self._calculate(data, enrollment, plan, invoice_date)

            with self.postgres.transaction() as tx:
                params = figures.model_dump(exclude={"previous_balance"})
                params.update(
                    id=uuid4(),
                    invoice_number=self._next_invoice_number(tx),
                    member_id=member.id,
                    plan_id=plan.id,
                    member_name=member_name,
                    member_phone=member.phone,
                    member_number=enrollment.member_number,
                    plan_name=plan.plan_name,
                    issued_by=issued_by.value,
                    created_by=get_actor_id(),
                    notes=data.notes,
                    created_at=now_utc(),
                )

                row = tx.execute_returning(
                    f"""
                    INSERT INTO invoices ({", ".join(_INSERT_COLUMNS)})
                    VALUES ({", ".join(f"%({column})s" for column in _INSERT_COLUMNS)})
                    RETURNING *
                    """,
                    params
                )[0]
                invoice = Invoice.model_validate(row)

                if enrollment.has_arrear_snapshot:
                    self.enrollments.roll_forward_arrear(
                        tx, enrollment, figures.arrear_amount - figures.received_arrear_amount
                    )

                self.audit.log_change(
                    entity_type="invoice",
                    entity_id=invoice.id,
                    action=AuditAction.CREATE,
                    changes={"created": invoice.model_dump(mode="json")},
                    tx=tx,
                )

        logger.info(
            "Invoice %s created for enrollment %s: due %s, balance %s (%s)",
            invoice.invoice_number, enrollment.id, invoice.due_number,
            invoice.balance_amount, issued_by.value,
        )
        return invoice
