"""API test fixtures - TestClient over the real app with mocked services."""

from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from core.audit import AuditLogger
from core.services.enrollment_service import EnrollmentService
from core.services.invoice_service import InvoiceService
from core.services.member_service import MemberService
from core.services.plan_service import PlanService


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def invoice_service():
    return Mock(spec=InvoiceService)


@pytest.fixture
def enrollment_service():
    return Mock(spec=EnrollmentService)


@pytest.fixture
def plan_service():
    return Mock(spec=PlanService)


@pytest.fixture
def audit_logger():
    return Mock(spec=AuditLogger)


@pytest.fixture
def services(invoice_service, enrollment_service, plan_service, audit_logger):
    return {
        "audit": audit_logger,
        "invoice": invoice_service,
        "enrollment": enrollment_service,
        "plan": plan_service,
        "member": Mock(spec=MemberService),
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def health_checks():
    return {}


@pytest.fixture
def app(services, health_checks):
    """FastAPI app with middleware, error handlers, and data/actions routes."""
    return create_app(services, health_checks=health_checks)


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)
