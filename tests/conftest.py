"""Shared test fixtures for the billing test suite."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, Mock
from uuid import UUID

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger
from core.models import Enrollment, Member, Plan, PlanMonth
from utils.actor_context import actor_context, clear_actor_id


# =============================================================================
# TEST CONSTANTS
# =============================================================================

TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")

MEMBER_ID = UUID("10000000-0000-0000-0000-000000000001")
PLAN_ID = UUID("20000000-0000-0000-0000-000000000001")
ENROLLMENT_ID = UUID("30000000-0000-0000-0000-000000000001")

CREATED_AT = datetime(2025, 1, 1, 4, 30, tzinfo=timezone.utc)


# =============================================================================
# ACTOR CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_actor_context():
    """Ensure clean actor context before and after each test."""
    clear_actor_id()
    yield
    clear_actor_id()


@pytest.fixture
def test_actor_id() -> UUID:
    """The operator ID used by tests."""
    return TEST_ACTOR_ID


@pytest.fixture
def as_test_actor(test_actor_id):
    """Run the test as the test operator."""
    with actor_context(test_actor_id):
        yield test_actor_id


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture
def tx():
    """Transaction double. Counter queries get an incrementing value."""
    tx = Mock(spec=Transaction)
    counter = {"value": 0}

    def execute_returning(query, params=None):
        if "invoice_counters" in query:
            counter["value"] += 1
            return [{"value": counter["value"]}]
        if "INSERT INTO invoices" in query:
            return [dict(params)]
        return []

    tx.execute_returning.side_effect = execute_returning
    tx.execute.return_value = []
    return tx


@pytest.fixture
def db(tx):
    """PostgresClient double whose transaction() yields the tx fixture."""
    db = MagicMock(spec=PostgresClient)
    db.transaction.return_value.__enter__.return_value = tx
    db.transaction.return_value.__exit__.return_value = False
    db.execute.return_value = []
    db.execute_single.return_value = None
    return db


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


def _make_plan(duration: int = 3, amounts=None, **overrides) -> Plan:
    """Plan with a consistent schedule of the given installment amounts."""
    amounts = amounts or [Decimal("5000.00")] * duration
    data = {
        "id": PLAN_ID,
        "plan_name": "Gold 1L",
        "duration": duration,
        "total_amount": sum(amounts, Decimal("0")),
        "monthly_data": [
            PlanMonth(month_number=i + 1, installment_amount=amount, payable_amount=amount)
            for i, amount in enumerate(amounts)
        ],
        "monthly_amount": list(amounts),
        "created_at": CREATED_AT,
        "updated_at": CREATED_AT,
    }
    data.update(overrides)
    return Plan(**data)


def _make_enrollment(start_date: date = date(2025, 1, 1), **overrides) -> Enrollment:
    data = {
        "id": ENROLLMENT_ID,
        "member_id": MEMBER_ID,
        "plan_id": PLAN_ID,
        "member_number": 7,
        "enrollment_date": start_date,
        "start_date": start_date,
        "created_at": CREATED_AT,
        "updated_at": CREATED_AT,
    }
    data.update(overrides)
    return Enrollment(**data)


def _make_member(**overrides) -> Member:
    data = {
        "id": MEMBER_ID,
        "name": "Lakshmi R",
        "phone": "9840012345",
        "created_at": CREATED_AT,
        "updated_at": CREATED_AT,
    }
    data.update(overrides)
    return Member(**data)


@pytest.fixture
def make_plan():
    """Factory for plans; keyword overrides replace fields."""
    return _make_plan


@pytest.fixture
def make_enrollment():
    """Factory for enrollments; keyword overrides replace fields."""
    return _make_enrollment


@pytest.fixture
def make_member():
    """Factory for members; keyword overrides replace fields."""
    return _make_member


@pytest.fixture
def plan() -> Plan:
    return _make_plan()


@pytest.fixture
def enrollment() -> Enrollment:
    return _make_enrollment()


@pytest.fixture
def member() -> Member:
    return _make_member()
