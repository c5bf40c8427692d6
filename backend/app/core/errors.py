"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Taxonomy:
    • ValidationError               — structurally invalid input (422),
                                      rejected before any dispatch work
    • NotFoundError                 — unknown emergency / user (404)
    • StateTransitionError          — acting on a resolved emergency or
                                      re-opening an existing id (409)
    • CollaboratorUnavailableError  — geofence / location / realtime
                                      collaborator failed (503); degraded
                                      inside scoring and the SOS path
    • ChannelDeliveryError          — provider rejection, network failure
                                      or timeout; never escapes a dispatch,
                                      it becomes a failed DispatchResult

Usage:
    from backend.app.core.errors import StateTransitionError

    raise StateTransitionError("SOS-1A2B", "resolved", "add_note")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SafetyPlatformError(Exception):
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


class NotFoundError(SafetyPlatformError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"resource": resource, **identifiers},
        )


class ValidationError(SafetyPlatformError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class StateTransitionError(SafetyPlatformError):
    """Operation not allowed in the emergency's current state (409)."""

    def __init__(self, emergency_id: str, status: str, action: str):
        super().__init__(
            message=f"Emergency {emergency_id} is {status}; cannot {action}",
            status_code=409,
            error_code="INVALID_STATE_TRANSITION",
            details={"emergency_id": emergency_id, "status": status, "action": action},
        )


class CollaboratorUnavailableError(SafetyPlatformError):
    """A geofence / location / realtime collaborator failed (503)."""

    def __init__(self, collaborator: str, message: str = ""):
        super().__init__(
            message=f"Collaborator '{collaborator}' unavailable: {message}",
            status_code=503,
            error_code="COLLABORATOR_UNAVAILABLE",
            details={"collaborator": collaborator},
        )
        self.collaborator = collaborator


class ChannelDeliveryError(SafetyPlatformError):
    """A single channel attempt failed (provider, network or timeout)."""

    def __init__(self, channel: str, reason: str, *, recipient_id: str = ""):
        super().__init__(
            message=f"[{channel}] delivery failed: {reason}",
            status_code=502,
            error_code="CHANNEL_DELIVERY_ERROR",
            details={"channel": channel, "recipient_id": recipient_id},
        )
        self.channel = channel
        self.reason = reason


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "success": False,
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        },
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SafetyPlatformError)
    async def handle_platform_error(request: Request, exc: SafetyPlatformError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level, "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(500, "INTERNAL_ERROR", message, request=request)
