"""
Application assembly.

create_app() wires routers, middleware and error handlers around a services
dict, so tests can pass mocks. app_from_environment() builds the real
services from Vault secrets and CHITFUND_* settings, e.g.:

    uvicorn api.app:app_from_environment --factory
"""

import logging
import os
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from api.actions import create_actions_router
from api.base import success_response, error_response, ErrorCodes
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import ActorMiddleware, RequestIDMiddleware
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from core.audit import AuditLogger
from core.config import BillingConfig
from core.locks import EnrollmentLock
from core.services.enrollment_service import EnrollmentService
from core.services.invoice_service import InvoiceService
from core.services.member_service import MemberService
from core.services.plan_service import PlanService

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    valkey: ValkeyClient,
    config: BillingConfig,
) -> dict:
    """Construct the billing services around shared clients."""
    audit = AuditLogger(postgres)
    plans = PlanService(postgres, audit)
    enrollments = EnrollmentService(postgres, audit, config)
    members = MemberService(postgres)
    invoices = InvoiceService(
        postgres,
        audit,
        plans,
        enrollments,
        members,
        config=config,
        locks=EnrollmentLock(valkey, config.invoice_lock_ttl_seconds),
    )

    return {
        "audit": audit,
        "plan": plans,
        "enrollment": enrollments,
        "member": members,
        "invoice": invoices,
    }


def create_app(
    services: dict,
    health_checks: dict[str, Callable[[], object]] | None = None,
) -> FastAPI:
    """
    FastAPI app with middleware, error handlers, and data/actions routes.

    Args:
        services: Service instances keyed by domain name
        health_checks: Dependency name -> callable that raises when unhealthy
    """
    checks = health_checks or {}

    app = FastAPI(title="Chit fund billing")
    app.add_middleware(ActorMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    @app.get("/health")
    async def health(request: Request):
        failed = []
        for name, check in checks.items():
            try:
                check()
            except Exception:
                logger.exception("Health check failed: %s", name)
                failed.append(name)

        if failed:
            return JSONResponse(
                status_code=503,
                content=error_response(
                    ErrorCodes.SERVICE_UNAVAILABLE,
                    f"Unavailable: {', '.join(failed)}",
                ).model_dump(mode="json"),
            )

        return success_response({"status": "ok", "checks": sorted(checks)}).model_dump(mode="json")

    return app


def app_from_environment() -> FastAPI:
    """Build the production app from .env, Vault and CHITFUND_* settings."""
    from clients.vault_client import get_database_url, get_valkey_url

    load_dotenv(Path(__file__).parent.parent / ".env")
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = BillingConfig.from_env()
    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())

    logger.info(
        "Billing app starting: cutoff day %s, timezone %s",
        config.cutoff_day, config.business_timezone,
    )

    return create_app(
        build_services(postgres, valkey, config),
        health_checks={
            "postgres": lambda: postgres.execute_scalar("SELECT 1"),
            "valkey": valkey.ping,
        },
    )
