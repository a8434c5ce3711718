"""Middleware and exception handlers shared by every route."""

import logging
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from driverelay.core.logging import upload_id_context
from driverelay.drive.session import upload_id_from_session_url

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}


class HTTPErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to ensure all HTTP errors are logged.

    - 4xx responses: logged at WARN level
    - 5xx responses: logged at ERROR level

    Also stamps permissive cross-origin headers on every response, including
    requests that carry no Origin header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        session_url = request.headers.get("x-session-url")
        if session_url:
            upload_id_context.set(upload_id_from_session_url(session_url))

        response = await call_next(request)

        for name, value in CORS_HEADERS.items():
            if name not in response.headers:
                response.headers[name] = value

        duration_ms = (time.time() - start_time) * 1000
        log_extra = {
            "http_status": response.status_code,
            "method": request.method,
            "path": request.url.path,
            "duration_ms": duration_ms,
        }

        if 400 <= response.status_code < 500:
            logger.warning("Client error response", extra=log_extra)
        elif response.status_code >= 500:
            logger.error("Server error response", extra=log_extra)

        return response


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as ``{"error": ...}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as 400 ``{"error": ...}``."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": "; ".join(messages) or "Invalid request"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
