import logging
import traceback
from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from orderhub.schemas.response import ErrorDetail, ErrorResponse
from orderhub.services.exceptions import (
    ConflictError,
    NotFoundError,
    OrderServiceError,
    PermissionDenied,
    ValidationError,
)

log = logging.getLogger(__name__)

# Rejection category -> HTTP status
STATUS_BY_CATEGORY = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
)


def status_for(exc: OrderServiceError) -> int:
    for category, code in STATUS_BY_CATEGORY:
        if isinstance(exc, category):
            return code
    return status.HTTP_400_BAD_REQUEST


def _error_body(code: str, message, details=None) -> dict:
    return ErrorResponse(error=ErrorDetail(code=code, message=message, details=details)).model_dump()


# ----------- Exception Handlers (called by FastAPI) -----------

def order_service_exception_handler(request: Request, exc: OrderServiceError):
    """Handles rejections raised by the order core (validation, not found, conflict, forbidden)."""
    code = status_for(exc)
    log.warning(f"Rejected {request.method} {request.url.path}: {exc.reason} ({exc.message})")
    return JSONResponse(status_code=code, content=_error_body(exc.reason, exc.message))


def http_exception_handler(request: Request, exc: HTTPException):
    """Handles exceptions raised by HTTPException (e.g., 401, 404)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("http_error", exc.detail),
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles request body/query validation errors."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("validation_error", "Invalid input data", jsonable_encoder(exc.errors())),
    )


def generic_exception_handler(request: Request, exc: Exception):
    """Handles all unhandled exceptions (500 Internal Server Error)."""
    log.error(f"Unhandled exception on path: {request.url.path}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("server_error", "Internal Server Error"),
    )


# ----------- Registration Function -----------

def setup_exception_handlers(app: FastAPI):
    """Registers all custom exception handlers with the FastAPI application."""
    app.add_exception_handler(OrderServiceError, order_service_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    return app
