"""
API error types and the handlers that render them.

Every error is returned to the client as {"success": false, "message": ...}
plus any extra keyword fields the error was raised with.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

log = logging.getLogger("coast2cart.errors")


class APIError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message, **self.extra}


class BadRequestError(APIError):
    status_code = 400


class UnauthenticatedError(APIError):
    status_code = 401


class UnauthorizedError(APIError):
    status_code = 403


class NotFoundError(APIError):
    status_code = 404


class ConflictError(APIError):
    status_code = 409


class PayloadTooLargeError(APIError):
    status_code = 413


class UnsupportedMediaTypeError(APIError):
    status_code = 415


class TooManyRequestsError(APIError):
    status_code = 429


class ServiceUnavailableError(APIError):
    status_code = 503


def _validation_message(error: dict) -> str:
    # pydantic prefixes custom ValueError messages with "Value error, "
    message = error.get("msg", "Invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    field = ".".join(str(p) for p in error.get("loc", ()) if p not in ("body", "query", "path", "form"))
    if field and error.get("type") != "value_error":
        return f"{field}: {message}"
    return message


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        headers = None
        if isinstance(exc, TooManyRequestsError) and "retryAfter" in exc.extra:
            headers = {"Retry-After": str(exc.extra["retryAfter"])}
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = [_validation_message(e) for e in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": ", ".join(messages) or "Invalid request"},
        )

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        field = next(iter((exc.details or {}).get("keyValue", {}) or {}), None)
        message = f"{field} already exists" if field else "Duplicate value"
        return JSONResponse(status_code=409, content={"success": False, "message": message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal Server Error"},
        )
