"""
HMAC signing for payment payloads and webhook request authentication.

Two separate concerns share HMAC SHA-256 here:
    - Payload signatures: every payment payload is signed with the merchant
      secret active at creation time, and verify/webhook calls may present
      that signature back for tamper detection.
    - Webhook transport authentication: deliveries carry X-Signature and
      X-Timestamp headers computed over timestamp + "." + raw_body with the
      webhook secret, which also bounds replay to a time window.
"""

import hmac
import hashlib
import time
from fastapi import Depends, Request, Header
from paylink.core.config import AppConfig, get_config
from paylink.core.exceptions import SecurityError
import logging

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def sign_payload(secret: str, payload: str) -> str:
    """Return the hex HMAC-SHA256 of the exact payload bytes."""
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def verify_payload_signature(secret: str, payload: str, signature: str) -> bool:
    """Constant-time comparison of a presented signature against the payload."""
    if not signature:
        return False
    return _digests_match(sign_payload(secret, payload), signature)


def _strip_prefix(signature: str) -> str:
    if signature.startswith(SIGNATURE_PREFIX):
        return signature[len(SIGNATURE_PREFIX):]
    return signature


def _digests_match(expected: str, presented: str) -> bool:
    # Bytes comparison: compare_digest rejects non-ASCII str arguments
    provided = _strip_prefix(presented.strip().lower())
    return hmac.compare_digest(expected.encode(), provided.encode("utf-8", "replace"))


MAX_CLOCK_SKEW_SECONDS = 5

_WEBHOOK = "webhook_authentication"


def webhook_signature(secret: str, timestamp: str, body: bytes) -> str:
    """Hex HMAC-SHA256 over `timestamp + "." + body`."""
    return hmac.new(secret.encode(), timestamp.encode() + b"." + body, hashlib.sha256).hexdigest()


def _check_timestamp(raw: str, max_age: int, now: int) -> None:
    try:
        sent_at = int(raw)
    except (TypeError, ValueError):
        raise SecurityError("Invalid timestamp format", _WEBHOOK)

    if sent_at > now + MAX_CLOCK_SKEW_SECONDS:
        raise SecurityError("Request timestamp is in the future", _WEBHOOK)
    if now - sent_at > max_age:
        logger.warning(f"Webhook timestamp {now - sent_at}s old exceeds {max_age}s window")
        raise SecurityError("Request timestamp expired", _WEBHOOK)


async def verify_hmac_signature(
    request: Request,
    x_signature: str = Header(None),
    x_timestamp: str = Header(None),
    config: AppConfig = Depends(get_config),
):
    """
    FastAPI dependency authenticating webhook deliveries.

    Fails closed when no webhook secret is configured. The timestamp bounds
    replays to `max_webhook_age_seconds`.

    Raises:
        SecurityError: On a missing, stale or mismatched signature
    """
    secret = config.security.webhook_secret_key
    if not secret:
        logger.error("Rejecting webhook: WEBHOOK_SECRET_KEY is not configured")
        raise SecurityError("Webhook verification not configured", _WEBHOOK)

    for header, value in (("signature", x_signature), ("timestamp", x_timestamp)):
        if not value:
            logger.warning(f"Webhook rejected: no {header} header")
            raise SecurityError(f"Missing {header} header", _WEBHOOK)

    _check_timestamp(x_timestamp, config.security.max_webhook_age_seconds, int(time.time()))

    body = getattr(request.state, "body", None)
    if body is None:
        body = await request.body()

    expected = webhook_signature(secret, x_timestamp, body)
    if not _digests_match(expected, x_signature):
        logger.warning("Webhook rejected: signature mismatch")
        raise SecurityError("Invalid signature", _WEBHOOK)

    return True
