"""POST /api/actions - unified mutation endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import ArrearClear, ArrearUpdate, InvoiceCreate, IssuedBy


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "invoice": InvoiceHandler(services["invoice"]),
        "enrollment": EnrollmentHandler(services["enrollment"]),
        "plan": PlanHandler(services["plan"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}", None)
        result = method(body.data)
        return success_response(result).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class InvoiceHandler:
    ALLOWED_ACTIONS = {"create", "create_staff", "preview"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        invoice = self.service.create(InvoiceCreate(**data), issued_by=IssuedBy.ADMIN)
        return invoice.model_dump(mode="json")

    def _handle_create_staff(self, data: dict):
        invoice = self.service.create(InvoiceCreate(**data), issued_by=IssuedBy.STAFF)
        return invoice.model_dump(mode="json")

    def _handle_preview(self, data: dict):
        preview = self.service.preview(InvoiceCreate(**data))
        return preview.model_dump(mode="json")


class EnrollmentHandler:
    ALLOWED_ACTIONS = {
        "set_arrear", "clear_arrear", "release_arrear",
        "refresh_arrears", "set_initial_arrears", "clear_arrears",
    }

    def __init__(self, service):
        self.service = service

    def _handle_set_arrear(self, data: dict):
        update = ArrearUpdate(**data)
        enrollment = self.service.set_arrear(update.enrollment_id, update.amount)
        return enrollment.model_dump(mode="json")

    def _handle_clear_arrear(self, data: dict):
        enrollment = self.service.clear_arrear(UUID(data["id"]))
        return enrollment.model_dump(mode="json")

    def _handle_release_arrear(self, data: dict):
        enrollment = self.service.release_arrear(UUID(data["id"]))
        return enrollment.model_dump(mode="json")

    def _handle_refresh_arrears(self, data: dict):
        as_of = date.fromisoformat(data["as_of"]) if data.get("as_of") else None
        result = self.service.refresh_arrears(as_of, force=bool(data.get("force", False)))
        return result.model_dump(mode="json")

    def _handle_set_initial_arrears(self, data: dict):
        return self.service.set_initial_arrears().model_dump(mode="json")

    def _handle_clear_arrears(self, data: dict):
        target = ArrearClear(**data)
        cleared = self.service.clear_arrears(target.enrollment_ids, clear_all=target.clear_all)
        return {"cleared": cleared}


class PlanHandler:
    ALLOWED_ACTIONS = {"repair_schedule", "repair_all"}

    def __init__(self, service):
        self.service = service

    def _handle_repair_schedule(self, data: dict):
        plan = self.service.ensure_consistent(UUID(data["id"]))
        return plan.model_dump(mode="json")

    def _handle_repair_all(self, data: dict):
        repaired = self.service.repair_all()
        return {"repaired": [str(plan_id) for plan_id in repaired]}
