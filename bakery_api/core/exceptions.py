import logging
from datetime import datetime, timezone
from typing import Any, Optional
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

class APIError(Exception):
    """Base error for everything the API reports with its own status code"""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

class BadRequestError(APIError):
    status_code = 400

class ValidationError(BadRequestError):
    """Structural validation failure of a request payload"""

class AuthenticationError(APIError):
    status_code = 401

class ForbiddenError(APIError):
    status_code = 403

class NotFoundError(APIError):
    status_code = 404

class TransactionConflictError(APIError):
    """Concurrent transactions kept colliding and the retry budget ran out"""
    status_code = 409

class TransactionOrderError(RuntimeError):
    """A read was issued after a write inside the same transaction"""

def validation_error_from(exc: PydanticValidationError, message: str) -> ValidationError:
    details = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return ValidationError(message, details=details)

async def api_exception_handler(request: Request, exc: APIError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

    content = {"success": False, "error": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)

async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request", "details": details}
    )

async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )
