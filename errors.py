"""
Error taxonomy for the storefront service.

Domain code raises one of the StoreError subclasses below; the handlers
installed by install_error_handlers() turn them (and anything else that
escapes a route) into a JSON body of the form {"error": "<message>"}.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class StoreError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(StoreError):
    status_code = 400
    default_message = "Invalid request"


class AuthError(StoreError):
    status_code = 401
    default_message = "Access token required"


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "Invalid token"


class NotFoundError(StoreError):
    status_code = 404
    default_message = "Not found"


class ServerError(StoreError):
    status_code = 500
    default_message = "Something went wrong!"


def error_response(status_code: int, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationError.default_message
    first = errors[0]
    # loc looks like ("body", "price") or ("query", "page")
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    if first.get("type") == "extra_forbidden":
        return f"Unknown field: {field}"
    if field:
        return f"Invalid value for {field}: {first.get('msg')}"
    return first.get("msg") or ValidationError.default_message


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return error_response(400, describe_validation_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return error_response(404, "Route not found")
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, ServerError.default_message)
