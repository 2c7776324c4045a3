"""
Structured event logging for the PayLink service.

Events are single JSON lines on the `paylink.monitor` logger:
    error        failures, with a stack trace unless it is a 4xx app error
    performance  call durations recorded by @monitor_errors
    payment      one audit line per transaction lifecycle step
"""

import asyncio
import json
import logging
import time
import traceback
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional

from paylink.core.exceptions import BaseAppError

SLOW_OPERATION_SECONDS = 2.0


class ErrorMonitor:
    """Counts errors per type in memory and writes JSON events"""

    def __init__(self, logger_name: str = "paylink.monitor"):
        self.logger = logging.getLogger(logger_name)
        self.error_counts: Counter = Counter()

    def _emit(self, level: int, event: str, **fields: Any):
        record = {"event": event, **fields, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.log(level, json.dumps(record, default=str))

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None):
        error_type = type(error).__name__
        self.error_counts[error_type] += 1

        fields = {
            "error_type": error_type,
            "error_message": str(error),
            "context": context or {},
            "count": self.error_counts[error_type],
        }
        if isinstance(error, BaseAppError) and error.http_status_code < 500:
            self._emit(logging.WARNING, "error", **fields)
        else:
            self._emit(logging.ERROR, "error", stack_trace=traceback.format_exc(), **fields)

    def log_performance(self, operation: str, duration: float, context: Optional[Dict[str, Any]] = None):
        level = logging.WARNING if duration > SLOW_OPERATION_SECONDS else logging.DEBUG
        self._emit(level, "performance", operation=operation, duration=round(duration, 4), context=context or {})

    def log_payment_event(self, action: str, tx_id: str, **fields: Any):
        self._emit(logging.INFO, "payment", action=action, tx_id=tx_id, **fields)

    def get_error_summary(self) -> Dict[str, Any]:
        return {
            "error_counts": dict(self.error_counts),
            "total_errors": sum(self.error_counts.values()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


error_monitor = ErrorMonitor()


@contextmanager
def _timed(operation: str):
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        error_monitor.log_error(e, {"operation": operation, "duration": time.perf_counter() - started})
        raise
    error_monitor.log_performance(operation, time.perf_counter() - started)


def monitor_errors(operation_name: Optional[str] = None):
    """Record duration and failures of the wrapped call (sync or async)."""

    def decorator(func):
        operation = operation_name or f"{func.__module__}.{func.__qualname__}"

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with _timed(operation):
                    return await func(*args, **kwargs)

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with _timed(operation):
                return func(*args, **kwargs)

        return sync_wrapper

    return decorator


def setup_monitoring(level: str = "INFO"):
    """Send all logging to stdout as bare messages."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    error_monitor._emit(logging.INFO, "system_startup", message="Monitoring initialized")
