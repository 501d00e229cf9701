# src/core/logging_middleware.py

from time import monotonic
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("http")


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": status,
                    "latency_ms": round((monotonic() - start) * 1000, 2),
                    "client_ip": request.client.host if request.client else "",
                    "content_length": request.headers.get("content-length", ""),
                },
            )
