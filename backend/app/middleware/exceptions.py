"""Exception taxonomy and handlers for consistent error responses.

Ledger errors carry the current authoritative ledger snapshot so the
caller can reconcile its view without re-querying.  None of them leave
partial ledger state: they are raised before any mutation, and the
request session is rolled back when they propagate.
"""

import logging
import traceback
from typing import Any, Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class BillbookException(Exception):
    """Base exception for Billbook application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class BusinessLogicError(BillbookException):
    """Exception for business logic violations."""

    def __init__(
        self,
        message: str,
        error_code: str = "BUSINESS_LOGIC_ERROR",
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
        details: dict | None = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class ResourceNotFoundError(BillbookException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class PermissionDeniedError(BillbookException):
    """Exception for permission denied."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED",
        )


# ── Ledger errors ────────────────────────────────────────────


class LedgerError(BusinessLogicError):
    """A rejected ledger operation.  Carries the unchanged ledger snapshot."""

    error_code = "LEDGER_ERROR"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, ledger: Any = None):
        self.ledger = ledger
        details = None
        if ledger is not None:
            dumped = ledger.model_dump(mode="json") if hasattr(ledger, "model_dump") else ledger
            details = {"ledger": dumped}
        super().__init__(
            message=message,
            error_code=self.error_code,
            status_code=self.http_status,
            details=details,
        )


class InvalidTaxInput(LedgerError):
    error_code = "INVALID_TAX_INPUT"


class OverpaymentError(LedgerError):
    error_code = "OVERPAYMENT"


class InvalidPaymentInput(LedgerError):
    error_code = "INVALID_PAYMENT"


class DuplicateGatewayPayment(LedgerError):
    error_code = "DUPLICATE_GATEWAY_PAYMENT"
    http_status = status.HTTP_409_CONFLICT


class ImmutableEntryError(LedgerError):
    error_code = "IMMUTABLE_ENTRY"
    http_status = status.HTTP_409_CONFLICT


class DuplicateInvoiceNumber(LedgerError):
    error_code = "DUPLICATE_INVOICE_NUMBER"
    http_status = status.HTTP_409_CONFLICT


class InvalidInvoiceNumber(LedgerError):
    error_code = "INVALID_INVOICE_NUMBER"


class SignatureMismatch(LedgerError):
    error_code = "SIGNATURE_MISMATCH"
    http_status = status.HTTP_400_BAD_REQUEST


class GatewayError(LedgerError):
    error_code = "GATEWAY_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY


class InvoiceStateError(LedgerError):
    error_code = "INVALID_INVOICE_STATE"
    http_status = status.HTTP_409_CONFLICT


class LedgerConflict(LedgerError):
    error_code = "LEDGER_CONFLICT"
    http_status = status.HTTP_409_CONFLICT


class SequenceExhaustion(LedgerError):
    """Counter overflow.  Fatal: an operator must intervene."""
    error_code = "SEQUENCE_EXHAUSTED"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "details": {...}  // Optional additional details
        }
    }
    """
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def billbook_exception_handler(
    request: Request,
    exc: BillbookException,
) -> JSONResponse:
    """Handle custom Billbook exceptions."""
    log = logger.critical if isinstance(exc, SequenceExhaustion) else logger.warning
    log(
        f"Billbook exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        },
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Handle database integrity errors (unique violations, foreign key, etc.)."""
    logger.error(
        f"Database integrity error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_msg = str(exc.orig) if hasattr(exc, "orig") else str(exc)

    if "unique" in error_msg.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_RECORD"
    elif "foreign key" in error_msg.lower():
        message = "Referenced record does not exist"
        error_code = "FOREIGN_KEY_VIOLATION"
    elif "not null" in error_msg.lower():
        message = "Required field is missing"
        error_code = "NULL_VALUE_NOT_ALLOWED"
    else:
        message = "Database constraint violation"
        error_code = "INTEGRITY_ERROR"

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message=message,
        error_code=error_code,
    )


async def stale_data_exception_handler(
    request: Request,
    exc: StaleDataError,
) -> JSONResponse:
    """Handle optimistic-lock failures on versioned invoice rows."""
    logger.warning(
        f"Concurrent ledger update on {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_409_CONFLICT,
        message="The invoice was modified concurrently. Reload and retry.",
        error_code=LedgerConflict.error_code,
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Handle database operational errors (connection issues, etc.)."""
    logger.error(
        f"Database operational error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(BillbookException, billbook_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(StaleDataError, stale_data_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
