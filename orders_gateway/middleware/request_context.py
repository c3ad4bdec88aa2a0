# orders_gateway/middleware/request_context.py
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from orders_gateway.logging import bind_request_id, clear_request_context, get_logger

logger = get_logger("orders_gateway.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        clear_request_context()
        request_id = bind_request_id(request.headers.get("x-request-id"))
        request.state.request_id = request_id      # stash for handlers

        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response
