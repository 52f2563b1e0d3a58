"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.actor_context import set_actor_id, clear_actor_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class ActorMiddleware(BaseHTTPMiddleware):
    """
    Sets the acting operator from the X-Actor-Id header.

    Authentication happens upstream; this only carries the identity the
    gateway vouched for so invoices and audit entries are attributed.
    Requests without the header run with no actor.
    """

    HEADER = "X-Actor-Id"

    async def dispatch(self, request: Request, call_next):
        raw_actor_id = request.headers.get(self.HEADER)

        if raw_actor_id is None:
            request.state.actor_id = None
            return await call_next(request)

        try:
            actor_id = UUID(raw_actor_id)
        except ValueError:
            return JSONResponse(
                status_code=400,
                content=error_response(
                    ErrorCodes.INVALID_REQUEST,
                    f"{self.HEADER} must be a UUID",
                ).model_dump(mode="json"),
            )

        set_actor_id(actor_id)
        request.state.actor_id = actor_id

        try:
            response = await call_next(request)
            return response
        finally:
            # Always clear context
            clear_actor_id()
