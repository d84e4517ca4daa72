"""Standardized error responses for the REST API.

Error Response Format:
    All errors return JSON with this structure:
    {
        "error": "Human-readable description",
        "code": "NOT_FOUND",
        "details": {"resource": "camera", "id": 7}
    }

Status Mapping:
    ValidationError                     → 400
    NotFoundError                       → 404
    RequestValidationError (schema)     → 422
    PersistenceError / other FleetError → 500
    Anything else                       → 500 (generic message)

Logging Strategy:
    DEBUG - Full schema validation errors
    INFO  - Client errors (4xx)
    WARN  - Request schema failures
    ERROR - Server errors (5xx), unexpected exceptions
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..errors import FleetError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error body for all API errors."""

    error: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Error code for programmatic handling")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": "Camera not found",
                    "code": "NOT_FOUND",
                    "details": {"resource": "camera", "id": 7}
                }
            ]
        }
    }


class ErrorCode(str, Enum):
    """Error codes not carried by a domain exception."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    REQUEST_ERROR = "REQUEST_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    code_str = code.value if isinstance(code, ErrorCode) else code
    return ErrorResponse(error=message, code=code_str, details=details)


def status_for(exc: FleetError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# ============================================================================
# Exception Handlers
# ============================================================================

async def fleet_exception_handler(request: Request, exc: FleetError) -> JSONResponse:
    """Map domain errors raised by the services to HTTP responses."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(
            f"Server error: {request.method} {request.url.path} -> {status_code}: {exc.message}",
            exc_info=exc
        )
    else:
        logger.info(f"Client error: {request.method} {request.url.path} -> {status_code}: {exc.message}")

    error = create_error_response(exc.code, exc.message, exc.details)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(error))


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Request body/path/query schema failures (422)."""
    errors = jsonable_encoder(exc.errors())
    logger.warning(
        f"Validation failed: {request.method} {request.url.path} "
        f"({len(errors)} error(s))"
    )
    logger.debug(f"Validation errors: {errors}")

    error = create_error_response(
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        {"errors": errors}
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder(error)
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 route, 405 method) in the standard body."""
    if exc.status_code >= 500:
        logger.error(f"Server error: {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    else:
        logger.info(f"Client error: {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")

    error = create_error_response(
        ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.REQUEST_ERROR,
        str(exc.detail) if exc.detail else "An error occurred"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error),
        headers=getattr(exc, "headers", None)
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled exceptions: full trace in the log, generic message to clients."""
    logger.error(
        f"Unhandled exception: {request.method} {request.url.path} "
        f"-> {type(exc).__name__}: {exc}",
        exc_info=exc
    )
    error = create_error_response(ErrorCode.INTERNAL_ERROR, "An internal server error occurred")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=jsonable_encoder(error)
    )


logger.debug("Error handling module initialized")
