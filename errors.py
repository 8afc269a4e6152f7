"""
Error taxonomy and the centralized error responder.

Handlers raise `ErrorResponse` (or let store errors propagate); everything is
turned into the same `{success, status, error}` envelope here.
"""
import logging
from typing import Any, List

from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorResponse(Exception):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidObjectId(ErrorResponse):
    """Malformed identifier; it cannot reference any entity so it is a 404."""

    def __init__(self, value: Any):
        super().__init__(f"Resource not found with id of {value}", 404)
        self.value = value


def error_body(message: str) -> dict:
    return {"success": False, "status": False, "error": message}


def _validation_messages(errors: List[dict]) -> str:
    messages = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc)
        msg = err.get("msg", "Invalid value")
        messages.append(f"{field}: {msg}" if field else msg)
    return ", ".join(messages) or "Invalid request"


def _respond(request: Request, status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(message))


async def error_response_handler(request: Request, exc: ErrorResponse):
    logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    return _respond(request, exc.status_code, exc.message)


async def invalid_id_handler(request: Request, exc: InvalidId):
    logger.warning("%s %s -> invalid id: %s", request.method, request.url.path, exc)
    return _respond(request, 404, "Resource not found")


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("%s %s -> duplicate key: %s", request.method, request.url.path, exc)
    return _respond(request, 400, "Duplicate field value entered")


async def request_validation_handler(request: Request, exc: RequestValidationError):
    message = _validation_messages(exc.errors())
    logger.warning("%s %s -> validation failed: %s", request.method, request.url.path, message)
    return _respond(request, 400, message)


async def model_validation_handler(request: Request, exc: ValidationError):
    message = _validation_messages(exc.errors())
    logger.warning("%s %s -> validation failed: %s", request.method, request.url.path, message)
    return _respond(request, 400, message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.detail)
    return _respond(request, exc.status_code, str(exc.detail))


# SlowAPIMiddleware can only call a synchronous handler
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("%s %s -> rate limited: %s", request.method, request.url.path, exc.detail)
    response = _respond(request, 429, "Too many requests, please try again later")
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("%s %s -> unhandled error", request.method, request.url.path)
    return _respond(request, 500, "Server Error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ErrorResponse, error_response_handler)
    app.add_exception_handler(InvalidId, invalid_id_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, model_validation_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
