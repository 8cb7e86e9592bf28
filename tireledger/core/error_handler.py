"""
Error handling and sanitization

- Domain errors → status code from the exception class, body {error, code, details}
- Request validation errors → 400 with field details
- Anything else → logged with traceback, generic message returned
"""
import logging
import traceback
import uuid
from typing import Union

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tireledger.core.config import settings
from tireledger.core.exceptions import TireLedgerError, InternalError

logger = logging.getLogger(__name__)

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "psycopg",
    "postgresql",
    "sqlite",
    "traceback",
    "file \"",
]


def is_sensitive_error(message: str) -> bool:
    """Check if error message contains sensitive information."""
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Sanitize an error message for safe client exposure."""
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message

    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."

    if len(message) > 200:
        return message[:200] + "..."

    return message


async def tire_ledger_error_handler(request: Request, exc: TireLedgerError) -> JSONResponse:
    """Map domain exceptions to their HTTP status."""
    if isinstance(exc, InternalError) or exc.status_code >= 500:
        logger.error(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
            exc_info=exc.__cause__ or exc,
        )
        message = exc.message if not isinstance(exc, InternalError) else InternalError().message
        content = {"error": sanitize_error_message(message), "code": exc.code}
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        content = {"error": exc.message, "code": exc.code}
        if exc.details:
            content["details"] = jsonable_encoder(exc.details)

    return JSONResponse(status_code=exc.status_code, content=content)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a 400, not FastAPI's default 422."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request data",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
    )


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence for exceptions no handler claimed.

    Responds 500 in the same {error, code, details} shape as domain errors.
    The error_id in details ties the response to the logged traceback.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = uuid.uuid4().hex[:12]
            logger.error(
                f"Unhandled {type(e).__name__} [{error_id}] on {request.method} {request.url.path}: {e}\n"
                f"{traceback.format_exc()}"
            )

            details = {"error_id": error_id}
            if settings.DEBUG:
                details["type"] = type(e).__name__
                details["message"] = str(e)

            return JSONResponse(
                status_code=500,
                content={
                    "error": sanitize_error_message(InternalError().message),
                    "code": InternalError.default_code,
                    "details": details,
                },
            )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TireLedgerError, tire_ledger_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_middleware(ErrorSanitizationMiddleware)
