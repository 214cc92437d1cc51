"""
Critech error taxonomy and the FastAPI handlers that render it.

Every domain error carries its HTTP status and renders as
``{"error": <message>, "details": <optional>}``. Anything else becomes a
bare 500 whose traceback only reaches the logs.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class CritechError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(CritechError):
    status_code = 400
    default_message = "Validation failed"


class InvalidTransition(ValidationError):
    default_message = "Invalid status transition"


class UnsupportedNotification(ValidationError):
    default_message = "Unsupported notification type"


class AuthenticationFailed(CritechError):
    status_code = 401
    default_message = "Authentication failed"


class Forbidden(CritechError):
    status_code = 403
    default_message = "You do not have permission to modify this resource"


class NotFound(CritechError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(CritechError):
    status_code = 409
    default_message = "Resource was modified concurrently, please retry"


class UploadRejected(CritechError):
    status_code = 400
    default_message = "Upload rejected"


class ProviderError(CritechError):
    """Upstream media/transcription/summarization failure."""
    status_code = 500
    default_message = "Upstream provider failure"

    def __init__(self, message: Optional[str] = None, details: Any = None, retryable: bool = True):
        super().__init__(message, details)
        self.retryable = retryable


# ── Handlers ─────────────────────────────────────────────────────────────

async def _critech_error_handler(request: Request, exc: CritechError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        # Upstream detail stays in the logs
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


async def _http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(CritechError, _critech_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
