"""Tests for InvoiceService."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, Mock, patch

import pytest

from clients.valkey_client import ValkeyClient
from core.audit import AuditAction
from core.config import BillingConfig
from core.exceptions import (
    ConcurrentInvoiceError,
    EnrollmentNotFoundError,
    InvoiceValidationError,
    MemberNotFoundError,
    PlanCompletedError,
)
from core.locks import EnrollmentLock
from core.models import InvoiceCreate, IssuedBy
from core.services.enrollment_service import EnrollmentService
from core.services.invoice_service import InvoiceService
from core.services.member_service import MemberService
from core.services.plan_service import PlanService

FIVE_K = Decimal("5000")


@pytest.fixture
def billing_plan(make_plan):
    """Twenty-month plan billing 5000 a month."""
    return make_plan(duration=20)


@pytest.fixture
def plans(billing_plan):
    plans = Mock(spec=PlanService)
    plans.ensure_consistent.return_value = billing_plan
    plans.get_by_id.return_value = billing_plan
    return plans


@pytest.fixture
def enrollments(enrollment):
    enrollments = Mock(spec=EnrollmentService)
    enrollments.find_for_member_plan.return_value = enrollment
    enrollments.get_by_id.return_value = enrollment
    return enrollments


@pytest.fixture
def members(member):
    members = Mock(spec=MemberService)
    members.get_by_id.return_value = member
    return members


@pytest.fixture
def locks():
    locks = MagicMock(spec=EnrollmentLock)
    locks.hold.return_value.__exit__.return_value = False
    return locks


@pytest.fixture
def history(db):
    """Invoice history double: find_previous returns history['previous']."""
    state = {"previous": None}

    def execute_single(query, params=None):
        invoice = state["previous"]
        return invoice.model_dump() if invoice is not None else None

    db.execute_single.side_effect = execute_single
    return state


@pytest.fixture
def invoice_service(db, audit, plans, enrollments, members, locks, history):
    return InvoiceService(
        db, audit, plans, enrollments, members, config=BillingConfig(), locks=locks
    )


def _request(enrollment, invoice_date, **fields):
    return InvoiceCreate(
        member_id=enrollment.member_id,
        plan_id=enrollment.plan_id,
        invoice_date=invoice_date,
        **fields,
    )


class TestCreate:
    """Invoice assembly and persistence."""

    def test_first_invoice(self, invoice_service, enrollment, member):
        invoice = invoice_service.create(_request(enrollment, date(2025, 1, 1)))

        assert invoice.invoice_number == "INV-0001"
        assert invoice.due_number == 1
        assert invoice.due_amount == FIVE_K
        assert invoice.arr_amount == Decimal("0")
        assert invoice.arrear_amount == Decimal("0")
        # First invoice off the reset day is seeded with the due itself
        assert invoice.balance_amount == 2 * FIVE_K
        assert invoice.total_amount == FIVE_K
        assert invoice.payment_month == "January 2025"
        assert invoice.member_name == member.name
        assert invoice.member_phone == member.phone
        assert invoice.member_number == enrollment.member_number
        assert invoice.plan_name == "Gold 1L"
        assert invoice.issued_by == IssuedBy.ADMIN

    def test_second_invoice_on_reset_day(self, invoice_service, history, enrollment):
        first = invoice_service.create(_request(enrollment, date(2025, 1, 1)))
        history["previous"] = first

        second = invoice_service.create(_request(enrollment, date(2025, 2, 21)))

        assert second.invoice_number == "INV-0002"
        assert second.due_number == 2
        assert second.payment_month == "March 2025"
        assert second.arr_amount == first.balance_amount
        # Reset day: this cycle only, previous balance not added again
        assert second.balance_amount == second.due_amount + second.arrear_amount
        assert second.total_amount == FIVE_K + first.balance_amount

    def test_mid_cycle_payment_is_incremental(self, invoice_service, history, enrollment):
        first = invoice_service.create(_request(enrollment, date(2025, 2, 21)))
        history["previous"] = first

        second = invoice_service.create(
            _request(enrollment, date(2025, 3, 5), received_amount=Decimal("3000"))
        )

        assert second.due_number == 2
        assert second.arrear_amount == first.arrear_amount
        assert second.balance_amount == first.balance_amount + FIVE_K - Decimal("3000")
        assert second.total_received_amount == Decimal("3000")

    def test_previous_lookup_is_strictly_before(self, invoice_service, db, enrollment):
        invoice_service.create(_request(enrollment, date(2025, 3, 5)))

        query, params = db.execute_single.call_args[0]
        assert "invoice_date < %s" in query
        assert "ORDER BY invoice_date DESC, created_at DESC" in query
        assert params == (enrollment.id, date(2025, 3, 5))

    def test_manual_overrides_used_verbatim(self, invoice_service, enrollment):
        invoice = invoice_service.create(_request(
            enrollment,
            date(2025, 3, 21),
            manual_due_number=5,
            manual_arrear_amount=Decimal("123.45"),
            manual_balance_amount=Decimal("-50"),
        ))

        assert invoice.due_number == 5
        assert invoice.arr_amount == Decimal("0")
        assert invoice.arrear_amount == Decimal("123.45")
        assert invoice.balance_amount == Decimal("-50")
        assert invoice.total_amount == FIVE_K + Decimal("123.45")

    def test_manual_due_number_past_duration(self, invoice_service, db, enrollment):
        with pytest.raises(PlanCompletedError):
            invoice_service.create(_request(enrollment, date(2025, 3, 21), manual_due_number=21))

        db.transaction.assert_not_called()

    def test_plan_completed(self, invoice_service, db, enrollment):
        with pytest.raises(PlanCompletedError):
            invoice_service.create(_request(enrollment, date(2026, 9, 21)))

        db.transaction.assert_not_called()

    def test_staff_desk(self, invoice_service, enrollment):
        invoice = invoice_service.create(
            _request(enrollment, date(2025, 1, 10)), issued_by=IssuedBy.STAFF
        )
        assert invoice.issued_by == IssuedBy.STAFF

    def test_records_actor(self, invoice_service, enrollment, as_test_actor, test_actor_id):
        invoice = invoice_service.create(_request(enrollment, date(2025, 1, 10)))
        assert invoice.created_by == test_actor_id

    def test_defaults_to_business_today(self, invoice_service, enrollment):
        with patch("core.services.invoice_service.today_local", return_value=date(2025, 2, 21)) as today:
            invoice = invoice_service.create(_request(enrollment, None))

        today.assert_called_once_with("Asia/Kolkata")
        assert invoice.invoice_date == date(2025, 2, 21)
        assert invoice.due_number == 2

    def test_audited_in_transaction(self, invoice_service, audit, tx, enrollment):
        invoice = invoice_service.create(_request(enrollment, date(2025, 1, 10)))

        kwargs = audit.log_change.call_args[1]
        assert kwargs["action"] == AuditAction.CREATE
        assert kwargs["entity_id"] == invoice.id
        assert kwargs["tx"] is tx
        assert kwargs["changes"]["created"]["invoice_number"] == "INV-0001"

    def test_counter_and_insert_share_transaction(self, invoice_service, db, tx, enrollment):
        invoice_service.create(_request(enrollment, date(2025, 1, 10)))

        queries = [c[0][0] for c in tx.execute_returning.call_args_list]
        assert "invoice_counters" in queries[0]
        assert "INSERT INTO invoices" in queries[1]
        db.execute_returning.assert_not_called()

    def test_number_format_from_config(self, db, audit, plans, enrollments, members, history, enrollment):
        config = BillingConfig(invoice_number_prefix="BILL", invoice_number_width=6)
        service = InvoiceService(db, audit, plans, enrollments, members, config=config)

        invoice = service.create(_request(enrollment, date(2025, 1, 10)))

        assert invoice.invoice_number == "BILL-000001"


class TestArrearSnapshot:
    """Enrollment snapshot handling during creation."""

    @pytest.fixture
    def snapshot_enrollment(self, make_enrollment, enrollments):
        enrollment = make_enrollment(
            current_arrear=Decimal("700"),
            arrear_last_updated=datetime(2025, 2, 28, tzinfo=timezone.utc),
        )
        enrollments.find_for_member_plan.return_value = enrollment
        enrollments.get_by_id.return_value = enrollment
        return enrollment

    def test_snapshot_billed_and_rolled_forward(self, invoice_service, enrollments, tx, snapshot_enrollment):
        invoice = invoice_service.create(_request(
            snapshot_enrollment,
            date(2025, 3, 21),
            received_amount=FIVE_K,
            received_arrear_amount=Decimal("200"),
        ))

        assert invoice.arr_amount == Decimal("700")
        assert invoice.arrear_amount == Decimal("700")
        assert invoice.balance_amount == Decimal("500")
        enrollments.roll_forward_arrear.assert_called_once_with(tx, snapshot_enrollment, Decimal("500"))

    def test_no_snapshot_no_roll_forward(self, invoice_service, enrollments, enrollment):
        invoice_service.create(_request(enrollment, date(2025, 3, 21)))
        enrollments.roll_forward_arrear.assert_not_called()

    def test_snapshot_reread_under_lock(self, invoice_service, enrollments, enrollment, snapshot_enrollment):
        """A snapshot written while waiting for the lock is the one billed."""
        enrollments.find_for_member_plan.return_value = enrollment

        invoice = invoice_service.create(_request(enrollment, date(2025, 3, 21)))

        assert invoice.arrear_amount == Decimal("700")


class TestCreateFailures:
    """Lookups fail before anything is written."""

    def test_no_enrollment(self, invoice_service, db, plans, enrollments, enrollment):
        enrollments.find_for_member_plan.return_value = None

        with pytest.raises(EnrollmentNotFoundError, match="Enrollment not found"):
            invoice_service.create(_request(enrollment, date(2025, 1, 10)))

        plans.ensure_consistent.assert_not_called()
        db.transaction.assert_not_called()

    def test_plan_repaired_before_calculation(self, invoice_service, plans, enrollment):
        invoice_service.create(_request(enrollment, date(2025, 1, 10)))
        plans.ensure_consistent.assert_called_once_with(enrollment.plan_id)

    def test_missing_member(self, invoice_service, db, members, enrollment):
        members.get_by_id.return_value = None

        with pytest.raises(MemberNotFoundError):
            invoice_service.create(_request(enrollment, date(2025, 1, 10)))

        db.transaction.assert_not_called()

    def test_blank_member_name(self, invoice_service, db, members, make_member, enrollment):
        members.get_by_id.return_value = make_member(name="  ")

        with pytest.raises(InvoiceValidationError, match="no name"):
            invoice_service.create(_request(enrollment, date(2025, 1, 10)))

        db.transaction.assert_not_called()

    def test_lock_taken_per_enrollment(self, invoice_service, locks, enrollment):
        invoice_service.create(_request(enrollment, date(2025, 1, 10)))
        locks.hold.assert_called_once_with(enrollment.id)

    def test_concurrent_creation_rejected(self, db, audit, plans, enrollments, members, history, enrollment):
        valkey = Mock(spec=ValkeyClient)
        valkey.set_if_absent.return_value = False
        service = InvoiceService(
            db, audit, plans, enrollments, members, locks=EnrollmentLock(valkey, ttl_seconds=30)
        )

        with pytest.raises(ConcurrentInvoiceError):
            service.create(_request(enrollment, date(2025, 1, 10)))

        db.transaction.assert_not_called()

    def test_failed_insert_propagates(self, invoice_service, tx, enrollments, enrollment):
        tx.execute_returning.side_effect = RuntimeError("unique violation")

        with pytest.raises(RuntimeError, match="unique violation"):
            invoice_service.create(_request(enrollment, date(2025, 1, 10)))

        enrollments.roll_forward_arrear.assert_not_called()


class TestPreview:
    """Preview calculates without writing."""

    def test_preview_matches_create(self, invoice_service, enrollment):
        request = _request(enrollment, date(2025, 2, 21), received_amount=Decimal("1000"))

        preview = invoice_service.preview(request)
        invoice = invoice_service.create(request)

        for field in ("due_number", "due_amount", "arrear_amount", "balance_amount", "total_amount"):
            assert getattr(preview, field) == getattr(invoice, field)

    def test_preview_writes_nothing(self, invoice_service, db, audit, plans, locks, enrollment):
        preview = invoice_service.preview(_request(enrollment, date(2025, 1, 1)))

        assert preview.previous_balance == FIVE_K
        db.transaction.assert_not_called()
        audit.log_change.assert_not_called()
        plans.ensure_consistent.assert_not_called()
        locks.hold.assert_not_called()

    def test_preview_heals_in_memory(self, invoice_service, plans, make_plan, enrollment):
        plans.get_by_id.return_value = make_plan(duration=20, monthly_amount=[])

        preview = invoice_service.preview(_request(enrollment, date(2025, 1, 1)))

        assert preview.due_amount == FIVE_K
        plans.repair.assert_not_called()


class TestReads:

    def test_get_by_id_missing(self, invoice_service, enrollment):
        assert invoice_service.get_by_id(enrollment.id) is None

    def test_list_for_enrollment_in_billing_order(self, invoice_service, db, history, enrollment):
        first = invoice_service.create(_request(enrollment, date(2025, 1, 1)))
        db.execute.return_value = [first.model_dump()]

        invoices = invoice_service.list_for_enrollment(enrollment.id)

        assert invoices == [first]
        assert "ORDER BY invoice_date, created_at" in db.execute.call_args[0][0]
