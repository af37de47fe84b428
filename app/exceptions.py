"""
RFC 7807 Problem Details exception handling.

Every error the invoice service raises on purpose is an ``AppException``
subclass, so the HTTP layer renders them all the same way. The invoice
taxonomy (validation, not found, immutable state, invalid status,
allocation, render, delivery) lives here next to the generic auth errors.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel, Field
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

PROBLEM_TYPE_BASE = "https://invoices.example.com/problems"


def _get_trace_id() -> str:
    """Get trace ID from the request context or generate a new one."""
    from app.middleware.correlation import get_request_id

    request_id = get_request_id()
    if request_id:
        return request_id
    return str(uuid.uuid4())[:12]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # Authentication & Authorization
    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"

    # Validation
    VALIDATION_ERROR = "VAL_001"
    INVALID_FORMAT = "VAL_002"

    # Resource
    NOT_FOUND = "RES_001"
    ALREADY_EXISTS = "RES_002"
    CONFLICT = "RES_003"

    # Business Logic
    BUSINESS_RULE_VIOLATION = "BIZ_001"
    OPERATION_NOT_ALLOWED = "BIZ_003"

    # External Services
    EXTERNAL_SERVICE_ERROR = "EXT_001"

    # Server
    INTERNAL_ERROR = "SRV_001"
    SERVICE_UNAVAILABLE = "SRV_002"


class ProblemDetail(BaseModel):
    """
    RFC 7807 Problem Details response schema.

    Attributes:
        type: URI reference identifying the problem type
        title: Short, human-readable summary
        status: HTTP status code
        detail: Human-readable explanation specific to this occurrence
        instance: URI reference identifying this specific occurrence
        code: Machine-readable error code for client handling
        timestamp: ISO 8601 timestamp of when the error occurred
        trace_id: Unique identifier for tracing in logs
        errors: List of field-level validation errors (for 422)
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": f"{PROBLEM_TYPE_BASE}/biz-003",
                "title": "Bad Request",
                "status": 400,
                "detail": "Invoice INV-0007 is Paid and cannot be modified",
                "instance": "/api/v2/invoices/7",
                "code": "BIZ_003",
                "timestamp": "2026-01-29T10:30:00Z",
                "trace_id": "abc123def456",
            }
        }
    }


def _problem_type(code: ErrorCode) -> str:
    return f"{PROBLEM_TYPE_BASE}/{code.value.lower().replace('_', '-')}"


class AppException(HTTPException):
    """
    Base exception for the invoice service with RFC 7807 support.

    Usage:
        raise AppException(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail="Invoice not found",
        )
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        title: Optional[str] = None,
        instance: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.errors = errors
        self.trace_id = _get_trace_id()
        self.timestamp = _utc_timestamp()

        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            422: "Validation Error",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """Convert to RFC 7807 ProblemDetail."""
        return ProblemDetail(
            type=_problem_type(self.code),
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=self.instance or instance,
            code=self.code.value,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
            errors=self.errors,
        )


# Generic errors

class UnauthorizedError(AppException):
    """Authentication required (401)."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=401,
            code=ErrorCode.UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ConflictError(AppException):
    """Resource conflict (409)."""

    def __init__(self, detail: str):
        super().__init__(status_code=409, code=ErrorCode.CONFLICT, detail=detail)


# Invoice lifecycle errors

class ValidationError(AppException):
    """Malformed or out-of-range input (422). The caller can resubmit."""

    def __init__(
        self,
        detail: str,
        errors: Optional[List[Dict[str, Any]]] = None
    ):
        super().__init__(
            status_code=422,
            code=ErrorCode.VALIDATION_ERROR,
            detail=detail,
            errors=errors,
        )


class NotFoundError(AppException):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: Any):
        self.resource_id = resource_id
        super().__init__(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail=f"{resource} with ID {resource_id} was not found",
        )


class InvoiceNotFoundError(NotFoundError):
    """Owner-scoped invoice lookup miss."""

    def __init__(self, invoice_id: Any):
        super().__init__("Invoice", invoice_id)


class ImmutableStateError(AppException):
    """Attempted mutation of a Paid invoice (400). Never retried."""

    def __init__(self, invoice_number: str, action: str = "modified"):
        self.invoice_number = invoice_number
        super().__init__(
            status_code=400,
            code=ErrorCode.OPERATION_NOT_ALLOWED,
            detail=f"Invoice {invoice_number} is Paid and cannot be {action}",
        )


class InvalidStatusError(AppException):
    """Status outside the Pending/Paid state machine (400)."""

    def __init__(self, status: Any, allowed: List[str]):
        super().__init__(
            status_code=400,
            code=ErrorCode.INVALID_FORMAT,
            detail=f"Invalid status {status!r}; expected one of: {', '.join(allowed)}",
        )


class AllocationError(AppException):
    """Invoice numbering failed.

    Corrupt stored numbers are a server fault (500); a number taken by a
    concurrent writer is a conflict (409) the client may retry.
    """

    def __init__(self, detail: str, conflict: bool = False):
        self.conflict = conflict
        super().__init__(
            status_code=409 if conflict else 500,
            code=ErrorCode.CONFLICT,
            detail=detail,
        )


class RenderError(AppException):
    """Invoice document could not be rendered (422)."""

    def __init__(self, detail: str):
        super().__init__(status_code=422, code=ErrorCode.INVALID_FORMAT, detail=detail)


class DeliveryError(AppException):
    """Email transport failure (502)."""

    def __init__(self, detail: str, provider: str = "email"):
        self.provider = provider
        super().__init__(
            status_code=502,
            code=ErrorCode.EXTERNAL_SERVICE_ERROR,
            detail=f"{provider} delivery failed: {detail}",
        )


# Exception handlers for FastAPI

def create_problem_response(
    status_code: int,
    code: ErrorCode,
    detail: str,
    request: Request,
    errors: Optional[List[Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
) -> JSONResponse:
    """Create a RFC 7807 compliant JSON response."""
    problem = ProblemDetail(
        type=_problem_type(code),
        title=AppException._default_title(status_code),
        status=status_code,
        detail=detail,
        instance=str(request.url.path),
        code=code.value,
        timestamp=_utc_timestamp(),
        trace_id=trace_id or _get_trace_id(),
        errors=errors,
    )

    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


def create_exception_handlers(debug: bool = False):
    """
    Build the exception handlers registered by main.py.

    Usage:
        handlers = create_exception_handlers(settings.DEBUG)
        app.add_exception_handler(AppException, handlers["app"])
        app.add_exception_handler(RequestValidationError, handlers["validation"])
    """

    async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"AppException: {exc.code.value} - {exc.detail}",
            extra={
                "trace_id": exc.trace_id,
                "status_code": exc.status_code,
                "path": request.url.path,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_problem_detail(instance=str(request.url.path)).model_dump(exclude_none=True),
            media_type="application/problem+json",
            headers=exc.headers,
        )

    async def handle_http_exception(
        request: Request,
        exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle plain HTTPExceptions (auth, routing) with RFC 7807 response."""
        code_map = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.UNAUTHORIZED,
            403: ErrorCode.FORBIDDEN,
            404: ErrorCode.NOT_FOUND,
            409: ErrorCode.CONFLICT,
            422: ErrorCode.VALIDATION_ERROR,
            500: ErrorCode.INTERNAL_ERROR,
            502: ErrorCode.EXTERNAL_SERVICE_ERROR,
            503: ErrorCode.SERVICE_UNAVAILABLE,
        }
        response = create_problem_response(
            status_code=exc.status_code,
            code=code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            detail=str(exc.detail),
            request=request,
        )
        if getattr(exc, "headers", None):
            response.headers.update(exc.headers)
        return response

    async def handle_validation_exception(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors with field-level details."""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

        return create_problem_response(
            status_code=422,
            code=ErrorCode.VALIDATION_ERROR,
            detail="Request validation failed",
            request=request,
            errors=errors,
        )

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions without leaking internals outside debug."""
        trace_id = _get_trace_id()
        logger.exception(
            f"Unhandled exception: {type(exc).__name__}",
            extra={"trace_id": trace_id, "path": request.url.path},
        )
        detail = str(exc) if debug else "An unexpected error occurred"
        return create_problem_response(
            status_code=500,
            code=ErrorCode.INTERNAL_ERROR,
            detail=detail,
            request=request,
            trace_id=trace_id,
        )

    return {
        "app": handle_app_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
