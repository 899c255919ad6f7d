"""Payment engine exceptions and the handlers that render them.

Taxonomy:
  ValidationError       bad or missing input, rejected before any mutation
  CalculationError      no price record / grower not found; recorded on
                        the receipt or grower, never aborts a run
  PersistenceError      a DB write failed mid-grower; that grower fails,
                        the run continues
  IntegrityViolation    sequence-integrity refusal with a remediation plan
  InvalidTransition     batch lifecycle pre-condition violated
  (critical)            any other failure aborts a run; reported as a
                        RunError, never raised to the caller

Only ValidationError, IntegrityViolation, InvalidTransition and
ResourceNotFoundError escape to HTTP callers; the run engine converts the
others into RunError entries on its result.
A unique-key collision that escapes a request is a retryable 409
WRITE_CONFLICT; a lost connection is a 503.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class PaymentEngineError(Exception):
    """Base exception for payment engine errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class ValidationError(PaymentEngineError):
    """Bad or missing input (unknown payment type, round out of range)."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
        )


class ResourceNotFoundError(PaymentEngineError):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class InvalidTransition(PaymentEngineError):
    """An entity is not in the state an operation requires.

    `entity` is a human label such as "Batch ADV1-2025-001".
    """

    def __init__(self, entity: str, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            message=f"{entity} cannot move from {current} to {target}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="INVALID_TRANSITION",
            details={"current_status": current, "target_status": target},
        )


class IntegrityViolation(PaymentEngineError):
    """Voiding would orphan later-sequence payments.

    `validation` is the VoidValidationResult; its conflicts and
    remediation order are returned to the caller verbatim.
    """

    def __init__(self, message: str, validation=None):
        self.validation = validation
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="SEQUENCE_INTEGRITY_VIOLATION",
            details=validation.as_dict() if validation is not None else None,
        )


class CalculationError(PaymentEngineError):
    """No price record for a receipt, or its grower could not be resolved."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="CALCULATION_ERROR",
        )


class PersistenceError(PaymentEngineError):
    """A database write failed while applying one grower's payments."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="PERSISTENCE_ERROR",
        )


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


async def payment_engine_exception_handler(
    request: Request,
    exc: PaymentEngineError,
) -> JSONResponse:
    """Handle payment engine exceptions."""
    logger.warning(
        f"Payment engine exception: {exc.error_code} - {exc.message}",
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
    exc: Union[RequestValidationError, PydanticValidationError],
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
    """A write lost a race on a unique key (batch, cheque or advance number,
    price lock, receipt round).  Nothing was committed; the caller may retry.
    """
    logger.error(
        f"Conflicting write on {request.url.path}: {exc.orig}",
        extra={"path": request.url.path, "method": request.method},
    )
    return create_error_response(
        status_code=status.HTTP_409_CONFLICT,
        message="Another payment operation changed the same records; retry the request",
        error_code="WRITE_CONFLICT",
        details={"retryable": True},
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
        message="Payment database unavailable",
        error_code="DATABASE_UNAVAILABLE",
        details={"retryable": True},
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
    app.add_exception_handler(PaymentEngineError, payment_engine_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
