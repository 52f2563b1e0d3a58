"""GET /api/data - unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.exceptions import EnrollmentNotFoundError, InvoiceNotFoundError, PlanNotFoundError


VALID_TYPES = {"invoices", "enrollments", "plans", "audit"}
AUDITED_ENTITIES = {"invoice", "enrollment", "plan"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    enrollment_svc = services["enrollment"]
    plan_svc = services["plan"]
    audit = services["audit"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        enrollment_id: str | None = Query(None),
        entity_type: str | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        if type == "invoices":
            return _handle_invoices(invoice_svc, id, enrollment_id, limit)

        if type == "enrollments":
            return _handle_enrollments(enrollment_svc, id)

        if type == "plans":
            return _handle_plans(plan_svc, id)

        if type == "audit":
            return _handle_audit(audit, entity_type, id)

    return router


def _handle_invoices(invoice_svc, id, enrollment_id, limit):
    if id:
        invoice = invoice_svc.get_by_id(UUID(id))
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {id} not found")
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    if enrollment_id:
        invoices = invoice_svc.list_for_enrollment(UUID(enrollment_id))
    else:
        invoices = invoice_svc.list_recent(limit)

    return success_response(
        [i.model_dump(mode="json") for i in invoices]
    ).model_dump(mode="json")


def _handle_enrollments(enrollment_svc, id):
    if id:
        enrollment = enrollment_svc.get_by_id(UUID(id))
        if enrollment is None:
            raise EnrollmentNotFoundError(f"Enrollment {id} not found")
        return success_response(enrollment.model_dump(mode="json")).model_dump(mode="json")

    enrollments = enrollment_svc.list_active()
    return success_response(
        [e.model_dump(mode="json") for e in enrollments]
    ).model_dump(mode="json")


def _handle_plans(plan_svc, id):
    if not id:
        raise ValueError("'plans' type requires 'id' parameter")

    plan = plan_svc.get_by_id(UUID(id))
    if plan is None:
        raise PlanNotFoundError(f"Plan {id} not found")

    return success_response(plan.model_dump(mode="json")).model_dump(mode="json")


def _handle_audit(audit, entity_type, id):
    """Change history for one invoice, enrollment or plan, newest first."""
    if entity_type not in AUDITED_ENTITIES or not id:
        raise ValueError(
            f"'audit' type requires 'id' and 'entity_type' "
            f"({', '.join(sorted(AUDITED_ENTITIES))})"
        )

    entries = audit.get_entity_history(entity_type, UUID(id))
    return success_response(entries).model_dump(mode="json")
