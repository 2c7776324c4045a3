"""
Centralized exception handlers for the FastAPI application.

A single handler covers every BaseAppError subclass: the status code comes
from the exception, the full details go to the log, and the client only sees
`to_safe_dict()` plus the request id for support lookups.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from paylink.core.exceptions import BaseAppError
import logging

logger = logging.getLogger(__name__)


async def app_exception_handler(request: Request, exc: BaseAppError) -> JSONResponse:
    """Log `exc.to_dict()` and return `exc.to_safe_dict()`."""
    request_id = getattr(request.state, "request_id", None)

    if exc.http_status_code >= 500:
        level = logging.ERROR
    elif exc.http_status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    logger.log(
        level,
        f"[{exc.__class__.__name__}] {request.method} {request.url.path}: {exc.message}",
        extra={"error_details": exc.to_dict(), "request_id": request_id},
    )

    content = exc.to_safe_dict()
    if request_id:
        content["request_id"] = request_id

    return JSONResponse(status_code=exc.http_status_code, content=content)


def setup_exception_handlers(app: FastAPI):
    app.add_exception_handler(BaseAppError, app_exception_handler)
