"""
Shared rate limiter.

Route limits are callables so they follow the loaded configuration rather
than values frozen at import time.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from paylink.core.config import get_config

limiter = Limiter(key_func=get_remote_address, default_limits=["100 per minute"])


def create_rate_limit() -> str:
    return get_config().rate_limit.create_rate_limit


def webhook_rate_limit() -> str:
    return get_config().rate_limit.webhook_rate_limit


def api_rate_limit() -> str:
    return get_config().rate_limit.api_rate_limit
