"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .clock import utcnow

logger = logging.getLogger(__name__)


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )


class ValidationError(ProblemDetailsException):
    """Exception for validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[List[Dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if violations:
            extensions["violations"] = violations

        super().__init__(
            status_code=422,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://example.com/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_roles: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if required_roles:
            extensions["required_roles"] = required_roles

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri="https://example.com/problems/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "code": "NOT_FOUND",
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://example.com/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


# Business logic exceptions

class InsufficientAvailabilityError(ProblemDetailsException):
    """The room type cannot cover the requested quantity for the date range."""

    def __init__(
        self,
        room_type_id: str,
        requested_quantity: int,
        available_quantity: int,
        detail: Optional[str] = None,
    ):
        if not detail:
            detail = (
                f"Room type {room_type_id} has {available_quantity} unit(s) available "
                f"for the requested dates; {requested_quantity} requested"
            )

        super().__init__(
            status_code=409,
            title="Insufficient Availability",
            detail=detail,
            type_uri="https://example.com/problems/insufficient-availability",
            extensions={
                "code": "INSUFFICIENT_AVAILABILITY",
                "retryable": False,
                "room_type_id": room_type_id,
                "requested_quantity": requested_quantity,
                "available_quantity": available_quantity,
            },
        )


class InvalidTransitionError(ProblemDetailsException):
    """The requested payment event is not allowed from the current state."""

    def __init__(
        self,
        payment_id: str,
        event: str,
        current_status: str,
        verification_status: str,
        detail: Optional[str] = None,
    ):
        if not detail:
            detail = (
                f"Event '{event}' is not allowed for payment {payment_id} "
                f"in state {current_status}/{verification_status}"
            )

        super().__init__(
            status_code=409,
            title="Invalid Transition",
            detail=detail,
            type_uri="https://example.com/problems/invalid-transition",
            extensions={
                "code": "INVALID_TRANSITION",
                "retryable": False,
                "payment_id": payment_id,
                "event": event,
                "status": current_status,
                "verification_status": verification_status,
            },
        )


class AuditWriteFailure(ProblemDetailsException):
    """The audit record could not be written; the enclosing change was rolled back."""

    def __init__(self, entity_type: str, entity_id: str, reason: Optional[str] = None):
        super().__init__(
            status_code=503,
            title="Audit Write Failure",
            detail=f"Could not durably record the audit entry for {entity_type} {entity_id}; "
                   "the change was not applied",
            type_uri="https://example.com/problems/audit-write-failure",
            extensions={
                "code": "AUDIT_WRITE_FAILURE",
                "retryable": True,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )
        self.reason = reason


class WebhookSignatureError(ProblemDetailsException):
    """Provider webhook failed signature verification."""

    def __init__(self, detail: str = "Webhook signature verification failed"):
        super().__init__(
            status_code=401,
            title="Invalid Webhook Signature",
            detail=detail,
            type_uri="https://example.com/problems/invalid-webhook-signature",
            extensions={"code": "INVALID_SIGNATURE", "retryable": False},
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    content = dict(exc.problem_details)
    content.setdefault("instance", request.url.path)
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        content["request_id"] = request_id

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation errors as a Problem Details document with violations."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]

    return JSONResponse(
        status_code=422,
        content={
            "type": "https://example.com/problems/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "The request data failed validation",
            "instance": request.url.path,
            "violations": violations,
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": error_id, "path": request.url.path}
    )

    problem_details = {
        "type": "https://example.com/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": _isoformat(utcnow()),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
    )


def _isoformat(value: datetime) -> str:
    return value.isoformat() + "Z"
