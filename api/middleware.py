"""Request context and request logging.

Every salon request carries an explicit ``RequestContext`` built from the
``X-Salon-ID``, ``X-Actor-Role`` and ``X-Customer-ID`` headers. Routes
receive it through ``Depends(get_request_context)`` and hand its fields to
the services as plain arguments; nothing below the router reads ambient
request state.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from fastapi import Depends, Header
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from core.errors import ForbiddenError, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

class ActorRole(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


@dataclass(frozen=True)
class RequestContext:
    salon_id: UUID
    role: ActorRole = ActorRole.CUSTOMER
    customer_id: UUID | None = None
    request_id: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in (ActorRole.STAFF, ActorRole.ADMIN)


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError({header: "Ungültige ID."}) from None


def get_request_context(
    request: Request,
    x_salon_id: str | None = Header(None),
    x_actor_role: str | None = Header(None),
    x_customer_id: str | None = Header(None),
) -> RequestContext:
    """FastAPI dependency building the context from request headers.

    Usage::

        @router.get("/orders")
        async def list_orders(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    if not x_salon_id:
        raise ValidationError({"X-Salon-ID": "Pflichtfeld."})
    try:
        role = ActorRole(x_actor_role or ActorRole.CUSTOMER.value)
    except ValueError:
        raise ValidationError({"X-Actor-Role": "Unbekannte Rolle."}) from None

    return RequestContext(
        salon_id=_parse_uuid(x_salon_id, "X-Salon-ID"),
        role=role,
        customer_id=_parse_uuid(x_customer_id, "X-Customer-ID") if x_customer_id else None,
        request_id=getattr(request.state, "request_id", None),
    )


def require_staff(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.is_staff:
        raise ForbiddenError()
    return ctx


def require_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if ctx.role != ActorRole.ADMIN:
        raise ForbiddenError()
    return ctx


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log method, path, status and duration.

    An incoming ``X-Request-ID`` is kept; otherwise one is generated. The id
    is echoed back in the response headers.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={"request_id": request_id, "duration_ms": duration_ms},
        )
        response.headers["X-Request-ID"] = request_id
        return response
