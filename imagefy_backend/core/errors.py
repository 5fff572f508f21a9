"""
Application error taxonomy and the handlers that render it.

Every failure leaves the service as
``{"success": false, "error": <message>, "code": <machine code>, "request_id": <id>}``
with the same id echoed in the ``x-request-id`` header.
"""

import logging
from typing import Mapping, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from imagefy_backend.core.logging import LOGGER_NAME, get_request_id


logger = logging.getLogger(LOGGER_NAME)


class AppError(Exception):
    """Base for errors that map onto a status code and a machine-readable code."""

    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429


class ServiceUnavailableError(AppError):
    code = "service_unavailable"
    status_code = 503


class UpstreamError(AppError):
    """A synchronous call to Stripe or another upstream failed."""
    code = "upstream_error"
    status_code = 502


class UpstreamTimeoutError(UpstreamError):
    code = "upstream_timeout"
    status_code = 504


class StoreError(AppError):
    code = "store_error"
    status_code = 500


def resolve_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(
    request_id: str,
    status_code: int,
    code: str,
    message: str,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": code, "request_id": request_id},
        headers=dict(headers) if headers else None,
    )
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    rid = exc.request_id or resolve_request_id(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "reason": exc.message, "status": exc.status_code},
    )
    return error_response(rid, exc.status_code, exc.code, exc.message)


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    rid = resolve_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return error_response(rid, exc.status_code, code, exc.detail or "HTTP error", getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    rid = resolve_request_id(request)
    # Details stay in the log; the client only sees a generic message
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return error_response(rid, 500, "internal_error", "Unexpected error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
