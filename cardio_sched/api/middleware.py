"""Request logging and API key middleware."""

import hmac
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

UNAUTHORIZED_BODY = '{"error": "Unauthorized", "detail": "Invalid or missing API key"}'


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its editing session and timing."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        session_id = request.headers.get("X-Session-Id", "-")

        logger.info(
            f"Request: {request.method} {request.url.path} "
            f"client={_client(request)} session={session_id}"
        )

        response = await call_next(request)

        elapsed = time.perf_counter() - started
        logger.info(
            f"Response: {request.method} {request.url.path} "
            f"status={response.status_code} duration={elapsed:.3f}s"
        )
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"
        return response


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Require the shared API key on everything but health and docs.

    The key is accepted as ``Authorization: Bearer <key>`` or ``X-API-Key``.
    """

    open_prefixes = ("/health", "/docs", "/openapi.json")

    def __init__(self, app, api_key: str):
        super().__init__(app)
        self.api_key = api_key

    def _provided_key(self, request: Request) -> str | None:
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            return auth[len("Bearer "):]
        return request.headers.get("X-API-Key")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.open_prefixes):
            return await call_next(request)

        provided = self._provided_key(request)
        if not provided or not hmac.compare_digest(provided, self.api_key):
            logger.warning(f"Unauthorized request: {request.method} {request.url.path} client={_client(request)}")
            return Response(content=UNAUTHORIZED_BODY, status_code=401, media_type="application/json")

        return await call_next(request)
