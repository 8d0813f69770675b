"""
API error types and the JSON envelope they are rendered into.

Every failure leaves the service as {"success": false, "error": "..."}.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(HTTPException):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)

    @property
    def message(self) -> str:
        return self.detail


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid input"


class DuplicateKey(ApiError):
    status_code = 400
    default_message = "Already exists"


class AccountConflict(ApiError):
    status_code = 400
    default_message = "Account already registered with another sign-in method"


class InvalidId(ApiError):
    status_code = 400
    default_message = "Invalid id"


class InsufficientStock(ApiError):
    status_code = 400
    default_message = "Insufficient stock"


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Authentication required"


class InvalidCredentials(Unauthenticated):
    default_message = "Invalid email or password"


class InvalidToken(Unauthenticated):
    default_message = "Invalid token"


class UpstreamVerificationFailure(ApiError):
    status_code = 401
    default_message = "Social token verification failed"


class StoreUnavailable(ApiError):
    status_code = 503
    default_message = "Database not available"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Not allowed"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class Internal(ApiError):
    status_code = 500


def error_response(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        details.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return error_response(400, "Invalid input", details=details)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error", message=str(exc))


def install_error_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
