"""Application exceptions and the handlers that render them.

Every error leaves the service in the same envelope:

    {"error": {"code": "ERROR_CODE", "message": "...", "details": {...}}}

Internal details (SQL, tracebacks) are logged, never returned.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class HRPortalException(Exception):
    """Base exception for HR portal application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class InvalidArgumentError(HRPortalException):
    """A required argument is missing or malformed."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_ARGUMENT",
        )


class NotFoundError(HRPortalException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class ForbiddenError(HRPortalException):
    """The operation is not allowed on this target (system role, foreign override)."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="FORBIDDEN",
        )


class ConflictError(HRPortalException):
    """The change would violate a uniqueness or reference constraint."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT",
        )


class StoreUnavailableError(HRPortalException):
    """The permission store could not be queried."""

    def __init__(self, message: str = "Permission store unavailable"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="STORE_UNAVAILABLE",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str,
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    content = {"error": {"code": error_code, "message": message}}
    if details:
        content["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def hrportal_exception_handler(
    request: Request,
    exc: HRPortalException,
) -> JSONResponse:
    """Render a domain error; store outages are logged as errors, the rest as warnings."""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        f"{request.method} {request.url.path} -> {exc.error_code}: {exc.message}",
    )
    return create_error_response(exc.status_code, exc.message, exc.error_code)


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """401 from authentication and 403 from the `require_*` gates land here."""
    return create_error_response(
        exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}"
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    logger.info(f"Rejected request body on {request.url.path}: {len(errors)} error(s)")
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        details={"errors": errors},
    )


async def integrity_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Constraint violations raised at commit time, outside the store's own mapping.

    Rendered exactly like `ConflictError` so clients see one conflict shape.
    """
    logger.warning(f"Integrity error on {request.url.path}: {exc.orig}")
    return await hrportal_exception_handler(
        request, ConflictError("Change conflicts with existing roles, overrides or catalog entries")
    )


async def store_exception_handler(
    request: Request,
    exc: DBAPIError,
) -> JSONResponse:
    """Driver failures at commit time are reported as `StoreUnavailableError`."""
    logger.error(f"Database error on {request.url.path}: {exc}")
    return await hrportal_exception_handler(request, StoreUnavailableError())


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(HRPortalException, hrportal_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(DBAPIError, store_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
