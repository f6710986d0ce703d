"""Translate ledger and database errors into JSON responses for FastAPI hosts."""

import logging
import re
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import LedgerError

logger = logging.getLogger(__name__)

# Regex to detect internal paths (Unix/Linux focus for container env)
_PATH_PATTERN = re.compile(r"(\/(?:app|home|var|tmp|usr|etc|opt|root|srv)\/[\w\-\.\/]+)")


def sanitize_message(msg: str) -> str:
    """
    Sanitize string messages to prevent leaking internal details.
    """
    if _PATH_PATTERN.search(msg):
        return _PATH_PATTERN.sub("[INTERNAL_PATH]", msg)
    return msg


def create_error_response(
    status_code: int,
    message: str,
    error_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"detail": message}
    if error_code:
        content["code"] = error_code
    if extra:
        for key, value in extra.items():
            content.setdefault(key, value)
    return JSONResponse(status_code=status_code, content=content)


async def ledger_exception_handler(request: Request, exc: LedgerError):
    """
    Expected business outcomes: status and fields come from the error itself.
    """
    logger.info(
        "Ledger request rejected",
        extra={"data": {"path": request.url.path, "code": exc.code, **exc.details()}},
    )
    return create_error_response(exc.status_code, sanitize_message(exc.message), exc.code, exc.details())


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return create_error_response(exc.status_code, sanitize_message(str(exc.detail)))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle Pydantic validation errors.
    """
    sanitized_errors = []
    for err in exc.errors():
        loc = ".".join([str(x) for x in err.get("loc", [])])
        msg = err.get("msg", "Invalid input")
        sanitized_errors.append(f"{loc}: {msg}")

    error_msg = "; ".join(sanitized_errors)
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        f"Validation Error: {sanitize_message(error_msg)}",
        "VALIDATION_ERROR",
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """
    Handle database errors. Log the full error, return generic message.
    """
    logger.exception("Database error occurred", extra={"data": {"path": request.url.path}})
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "A database error occurred. Please try again later.",
        "DB_ERROR",
    )


async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", extra={"data": {"path": request.url.path}})
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An internal server error occurred.",
        "INTERNAL_ERROR",
    )


def register_exception_handlers(app: FastAPI):
    """
    Registrar for all exception handlers.
    """
    app.add_exception_handler(LedgerError, ledger_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
