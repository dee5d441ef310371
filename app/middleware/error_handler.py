import traceback
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.errors import ServiceException, ValidationError, create_error_response
from app.core.logging import get_logger

logger = get_logger(__name__)


async def service_exception_handler(request: Request, exc: ServiceException) -> JSONResponse:
    """Typed service failures: validation, authorization, policy, not found, conflict"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies, paths and query parameters"""
    validation_errors = [
        ValidationError(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            value=error.get("input"),
        )
        for error in exc.errors()
    ]
    error_response = create_error_response(
        "validation_error",
        "Request validation failed",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        validation_errors=validation_errors,
    )
    return JSONResponse(
        status_code=error_response.status_code,
        content=error_response.model_dump(mode="json"),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_response = create_error_response(
        "http_error",
        exc.detail if isinstance(exc.detail, str) else "HTTP error occurred",
        exc.status_code,
        {"detail": exc.detail} if not isinstance(exc.detail, str) else None,
    )
    return JSONResponse(status_code=exc.status_code, content=error_response.model_dump())


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Durable store failures. The unit of work has already rolled back; the
    caller only learns that the operation failed.
    """
    logger.error(
        f"Database error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}",
        extra={"event_type": "database_error", "path": request.url.path},
        exc_info=True,
    )

    details = None
    if settings.debug:
        details = {
            "exception": str(exc),
            "type": type(exc).__name__,
            "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }

    if isinstance(exc, IntegrityError):
        error_response = create_error_response(
            "database_constraint", "Database constraint violation", status.HTTP_409_CONFLICT, details
        )
    else:
        error_response = create_error_response(
            "internal_server_error", "An unexpected error occurred",
            status.HTTP_500_INTERNAL_SERVER_ERROR, details
        )
    return JSONResponse(status_code=error_response.status_code, content=error_response.model_dump())


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(ServiceException, service_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
