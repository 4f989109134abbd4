"""
Error taxonomy and the centralized FastAPI exception handlers.

Services raise these errors; only the handlers registered by
`register_exception_handlers` turn them into HTTP responses. Every error
response has the shape {"message": ...}, validation failures add "errors".
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_body(self) -> Dict[str, Any]:
        return {"message": self.message}


class ValidationError(AppError):
    status_code = 400
    message = "Validation failed"

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.message = "Validation failed"
        self.field = field
        self.reason = reason

    def to_body(self) -> Dict[str, Any]:
        return {"message": self.message, "errors": [{"field": self.field, "reason": self.reason}]}


class AuthError(AppError):
    status_code = 401
    message = "Authentication required"


class ForbiddenError(AppError):
    status_code = 403
    message = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = 404
    message = "Not found"


class ConflictError(AppError):
    status_code = 409
    message = "Conflict"


class NotImplementedFeature(AppError):
    status_code = 501
    message = "Not implemented"


class StoreError(AppError):
    status_code = 503
    message = "Database unavailable"


def _field_path(loc) -> str:
    # drop the "body"/"query" prefix FastAPI puts in front of the field path
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def _reason(err: Dict[str, Any]) -> str:
    msg = err.get("msg", "invalid")
    return msg[len("Value error, "):] if msg.startswith("Value error, ") else msg


def from_pydantic(exc: PydanticValidationError) -> ValidationError:
    """First failure of a pydantic model as a ValidationError."""
    err = exc.errors()[0]
    return ValidationError(_field_path(err.get("loc", ())), _reason(err))


def request_validation_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    return [{"field": _field_path(err.get("loc", ())), "reason": _reason(err)} for err in exc.errors()]


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Validation failed", "errors": request_validation_errors(exc)},
    )


async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=StoreError.status_code, content={"message": StoreError.message})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PyMongoError, store_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
