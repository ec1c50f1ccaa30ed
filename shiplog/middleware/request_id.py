"""Request ID middleware: one UUID per request, bound to the structlog context."""

import uuid
from contextvars import ContextVar

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind ``request_id`` (and GitHub's delivery id when present) to every log line."""

    async def dispatch(self, request: Request, call_next):
        rid = str(uuid.uuid4())
        request_id_var.set(rid)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=rid)

        delivery_id = request.headers.get("x-github-delivery")
        if delivery_id:
            structlog.contextvars.bind_contextvars(github_delivery=delivery_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
