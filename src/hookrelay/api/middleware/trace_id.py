"""Trace ID middleware for request/response propagation."""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from hookrelay.logging_config import bind_request_context, clear_request_context
from hookrelay.services.id_generator import generate_id


class TraceIdMiddleware(BaseHTTPMiddleware):
    """Take X-Trace-Id from the request (or mint one), bind it for logging, echo it back."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get("x-trace-id") or generate_id("trc_")
        request.state.trace_id = trace_id
        clear_request_context()
        bind_request_context(trace_id)

        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Trace-Id"] = trace_id
        return response
