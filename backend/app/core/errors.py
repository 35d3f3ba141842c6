"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error envelope: {"error": <code>, "message": <text>}
    • Automatic logging of unhandled errors with a correlation id
    • Request context and traceback in error responses (non-production)

Usage:
    from backend.app.core.errors import (
        SafetyAPIError,
        NotFoundError,
        ValidationError,
        NoContactsError,
        register_error_handlers,
    )

    raise NotFoundError("Alert", id=alert_id)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings
from backend.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SafetyAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(SafetyAPIError):
    """Input validation failed (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class AuthError(SafetyAPIError):
    """Missing (401) or invalid / expired (403) credential."""

    def __init__(self, message: str = "Authentication required", *, status_code: int = 401):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code="AUTH_ERROR",
        )


class OwnershipError(SafetyAPIError):
    """Resource exists but belongs to someone else (403)."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"You can only access your own {resource.lower()}s",
            status_code=403,
            error_code="ACCESS_DENIED",
            details={"resource": resource, **identifiers},
        )


class NotFoundError(SafetyAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ConflictError(SafetyAPIError):
    """Duplicate resource (409)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=409,
            error_code="DUPLICATE_CONTACT",
            details=details,
        )


class NoContactsError(SafetyAPIError):
    """Alert or test blocked: the user has no active emergency contacts (400)."""

    def __init__(self, message: str = "You must have at least one active emergency contact to send alerts"):
        super().__init__(
            message=message,
            status_code=400,
            error_code="NO_EMERGENCY_CONTACTS",
        )


class StorageError(SafetyAPIError):
    """Persistence layer failure (500)."""

    def __init__(self, operation: str, message: str = ""):
        super().__init__(
            message=f"Storage operation '{operation}' failed: {message}",
            status_code=500,
            error_code="STORAGE_ERROR",
            details={"operation": operation},
        )


class TransportError(SafetyAPIError):
    """
    A delivery channel failed.

    Raised inside the dispatcher only; converted into a failed
    DeliveryAttempt and never returned to an HTTP caller.
    """

    def __init__(self, channel: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Delivery via '{channel}' failed: {message}",
            status_code=502,
            error_code="TRANSPORT_ERROR",
            details={"channel": channel, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": error_code,
        "message": message,
        "status": status_code,
    }

    if details:
        body["details"] = details

    request_id = get_request_context().get("request_id")
    if request is not None and not request_id:
        request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id

    # Include request path in non-production
    if request and not settings.is_production:
        body["path"] = str(request.url.path)
        body["method"] = request.method

    return JSONResponse(status_code=status_code, content=body, headers=headers)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SafetyAPIError)
    async def handle_safety_error(request: Request, exc: SafetyAPIError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        headers = None
        if isinstance(exc, AuthError):
            headers = {"WWW-Authenticate": "Bearer"}
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request, headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning("Request validation failed: %s", exc.errors())
        fields = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return _build_error_response(
            400, "VALIDATION_ERROR", "Please check your input data",
            {"errors": fields}, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        exposed = not settings.is_production
        message = str(exc) if exposed else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if exposed else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
