"""
Exception handlers that turn order-entry failures into JSON error bodies.

Every body carries `error` (exception class), `message` and `path`; blocked
submissions and malformed requests add `details`.
"""
import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .exceptions import OrderEntryException, SubmissionValidationError

logger = logging.getLogger(__name__)


def _body(request: Request, error: str, message: str, **extra) -> dict:
    return {"error": error, "message": message, "path": request.url.path, **extra}


async def order_entry_exception_handler(request: Request, exc: OrderEntryException) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"{request.method} {request.url.path} failed with {exc.__class__.__name__}: {exc.message}")

    extra = {}
    if isinstance(exc, SubmissionValidationError):
        # One line per blocked field, in form order
        extra["details"] = exc.messages
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(request, exc.__class__.__name__, exc.message, **extra)
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed payloads: report each offending field by its dotted location."""
    details = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    logger.warning(f"Rejected {request.method} {request.url.path} payload: {len(details)} invalid field(s)")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_body(request, "ValidationError", "Request validation failed", details=details)
    )


async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_body(request, "InternalServerError", "The order could not be processed. Please try again.")
    )


def register_error_handlers(app) -> None:
    app.add_exception_handler(OrderEntryException, order_entry_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_exception_handler)
