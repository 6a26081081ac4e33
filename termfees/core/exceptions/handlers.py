import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from termfees.core.config import settings
from termfees.core.exceptions import AppException
from termfees.shared.schemas import ErrorResponse, ErrorDetail

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, errors: list[ErrorDetail]) -> JSONResponse:
    response = ErrorResponse(message=message, errors=errors)
    return JSONResponse(status_code=status_code, content=response.model_dump())


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions (not found, validation, state conflicts)."""
    field = exc.details.get("field")
    return _error_response(
        exc.status_code,
        exc.message,
        [ErrorDetail(field=field, message=exc.message)],
    )


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    details: list[ErrorDetail] = []
    for error in errors:
        loc = error.get("loc", ())
        # Drop top-level "body" for cleaner field paths
        if loc and loc[0] == "body":
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) if loc else None
        details.append(ErrorDetail(field=field, message=error.get("msg", "Invalid value")))
    return details


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request body/query validation errors."""
    return _error_response(422, "Validation error", _format_validation_errors(exc.errors()))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTP exceptions."""
    message = str(exc.detail) if exc.detail else "HTTP error"
    return _error_response(exc.status_code, message, [ErrorDetail(field=None, message=message)])


def _friendly_db_error(exc: Exception) -> tuple[str, int]:
    """
    Convert database errors to a stable, user-facing message.

    Raw driver messages are only exposed when debug is enabled.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()

    if isinstance(exc, IntegrityError) and ("unique" in lower or "duplicate" in lower):
        return ("Record conflicts with an existing one", 409)

    if "does not exist" in lower and ("column" in lower or "relation" in lower):
        return (
            "Database schema is out of date. Run the latest migrations and try again.",
            500,
        )

    if settings.debug:
        return (raw, 500)

    return ("Database error", 500)


async def sqlalchemy_db_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    message, status_code = _friendly_db_error(exc)
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(status_code, message, [ErrorDetail(field=None, message=message)])
