"""
Exception handlers for Tabulary applications.

Every error leaves the API in the same envelope::

    {"success": false, "error": {"message": ..., "type": ..., "details": ...}}

Storage failures and unexpected exceptions are logged in full and answered
with a generic 500 body.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tabulary.runtime.errors import (
    ConstraintViolationError,
    ErrorType,
    StorageError,
    TabularyError,
    validation_details,
)
from tabulary.runtime.logging import get_logger, log_with_context

_STATUS_TYPES: dict[int, ErrorType] = {
    400: ErrorType.VALIDATION_ERROR,
    401: ErrorType.AUTHENTICATION_ERROR,
    403: ErrorType.AUTHORIZATION_ERROR,
    404: ErrorType.NOT_FOUND_ERROR,
    409: ErrorType.CONFLICT_ERROR,
}


def error_response(
    status_code: int,
    message: str,
    error_type: ErrorType | str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build the error envelope response."""
    error: dict[str, Any] = {"message": message, "type": str(error_type)}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _request_context(request: Request) -> dict[str, Any]:
    return {"method": request.method, "path": request.url.path}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the envelope handlers on a FastAPI application.

    Handles:
    - TabularyError and subclasses: their own status and type tag
    - StorageError: generic 500 (constraint violations keep their 400/409)
    - RequestValidationError: malformed request bodies, 400
    - HTTPException: routing errors such as unknown paths and methods
    - Exception: generic 500
    """
    log = get_logger("api")

    @app.exception_handler(TabularyError)
    async def tabulary_error_handler(request: Request, exc: TabularyError) -> JSONResponse:
        if isinstance(exc, StorageError) and not isinstance(exc, ConstraintViolationError):
            log_with_context(
                log,
                logging.ERROR,
                f"Storage error: {exc.message}",
                _request_context(request),
                exc_info=exc,
            )
            return error_response(500, StorageError.default_message, ErrorType.DATABASE_ERROR)
        if exc.status_code >= 500:
            log_with_context(
                log, logging.ERROR, exc.message, _request_context(request), exc_info=exc
            )
            return error_response(
                exc.status_code, TabularyError.default_message, exc.error_type
            )
        return error_response(exc.status_code, exc.message, exc.error_type, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [{**err, "loc": tuple(err.get("loc", ()))[1:]} for err in exc.errors()]
        return error_response(
            400, "Validation failed", ErrorType.VALIDATION_ERROR, validation_details(errors)
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        error_type = _STATUS_TYPES.get(exc.status_code, ErrorType.INTERNAL_SERVER_ERROR)
        return error_response(exc.status_code, str(exc.detail), error_type)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log_with_context(
            log,
            logging.ERROR,
            f"Unhandled {type(exc).__name__}",
            _request_context(request),
            exc_info=exc,
        )
        return error_response(
            500, TabularyError.default_message, ErrorType.INTERNAL_SERVER_ERROR
        )
