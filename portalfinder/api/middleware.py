"""Middleware for the FastAPI application."""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from portalfinder.core.config import settings
from portalfinder.observability.logging import bind_context, clear_context

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests and responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        start_time = time.time()
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)

        latency = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - Latency: {latency:.3f}s"
        )
        return response


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Register in-flight requests with the lifecycle manager.

    Requests arriving after shutdown was requested get 503 so the drain
    phase can finish.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        manager = getattr(request.app.state, "lifecycle_manager", None)
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        bind_context(request_id=request_id)

        try:
            if manager is None:
                response = await call_next(request)
            else:
                try:
                    manager.track_request_start(request_id)
                except RuntimeError:
                    return JSONResponse(
                        status_code=503,
                        content={"error": "Server is shutting down"},
                    )
                try:
                    response = await call_next(request)
                finally:
                    manager.track_request_end(request_id)
        finally:
            clear_context()

        response.headers["X-Request-ID"] = request_id
        return response


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if not settings.is_production else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware.

    Middleware Order (applied bottom-to-top):
        1. CORS - handles cross-origin requests
        2. Request tracking - feeds shutdown draining
        3. Logging - records request/response
    """
    setup_cors(app)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestTrackingMiddleware)
