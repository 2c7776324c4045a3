"""
Request logging middleware.

Reads the raw body once and stores it on `request.state.body`, where the
webhook HMAC dependency expects the exact bytes that were signed. Signatures,
signed payloads and secrets are redacted before a body is logged, and webhook
bodies are never logged at all.
"""

import json
import logging
import time
import uuid
from typing import Any, Callable, FrozenSet, Mapping

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from paylink.core.monitoring import error_monitor

REDACTED = "[REDACTED]"

REDACTED_KEYS: FrozenSet[str] = frozenset({
    "signature", "sig", "hmac", "payload",
    "secret", "signing_secret", "secret_key", "merchant_secret",
    "password", "token", "api_key", "authorization", "cookie",
    "upi_pin", "pin", "otp",
})

REDACTED_HEADERS: FrozenSet[str] = frozenset({
    "authorization", "cookie", "set-cookie", "x-signature", "x-monitoring-key",
})

SILENT_BODY_PATHS = ("/payments/webhook",)

MAX_LOGGED_BODY_BYTES = 10_000
MAX_REDACT_DEPTH = 10


def redact(data: Any, depth: int = 0) -> Any:
    """Copy of `data` with values under sensitive keys replaced, at any nesting level."""
    if depth > MAX_REDACT_DEPTH:
        return "[TRUNCATED]"
    if isinstance(data, dict):
        return {
            key: REDACTED if str(key).lower() in REDACTED_KEYS else redact(value, depth + 1)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item, depth + 1) for item in data]
    return data


def redact_headers(headers: Mapping[str, str]) -> dict:
    return {name: REDACTED if name.lower() in REDACTED_HEADERS else value for name, value in headers.items()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request and per response, correlated by X-Request-ID."""

    def __init__(self, app, logger_name: str = "paylink.requests", log_bodies: bool = True):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)
        self.log_bodies = log_bodies

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        request.state.body = await request.body()

        client_ip = request.client.host if request.client else "unknown"
        self.logger.info(
            f"[{request_id}] {request.method} {request.url.path} from {client_ip}",
            extra={"request_id": request_id, "client_ip": client_ip},
        )
        self._log_body(request, request_id)

        try:
            response = await call_next(request)
        except Exception as e:
            error_monitor.log_error(e, {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "context": "unhandled_in_middleware",
            })
            raise

        elapsed = time.perf_counter() - started
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        self.logger.log(
            level,
            f"[{request_id}] {response.status_code} {request.method} {request.url.path} in {elapsed:.3f}s",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "process_time": elapsed,
                "response_headers": redact_headers(response.headers),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response

    def _log_body(self, request: Request, request_id: str):
        body = request.state.body
        if not self.log_bodies or request.method != "POST" or not body:
            return
        if request.url.path.startswith(SILENT_BODY_PATHS) or len(body) > MAX_LOGGED_BODY_BYTES:
            return
        try:
            parsed = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return
        self.logger.debug(f"[{request_id}] body {json.dumps(redact(parsed))}")
