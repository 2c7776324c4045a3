"""
Transaction state machine rules.

pending -> success | failed | expired. Terminal states never change again.
Everything here is pure: callers apply the returned `Transition` with a
conditional write so that concurrent requests cannot both win.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from paylink.core.exceptions import AlreadyResolvedError, InvalidStatusError
from paylink.schemas.payment import TransactionStatus
from paylink.schemas.records import TransactionRecord

TRANSACTION_TTL = timedelta(seconds=600)

REPORTABLE_STATUSES = frozenset({TransactionStatus.SUCCESS, TransactionStatus.FAILED})


@dataclass(frozen=True)
class Transition:
    """A single pending -> terminal move, applied at most once per transaction."""

    status: TransactionStatus
    completed_at: datetime
    provider_reference: Optional[str] = None


def is_expired(record: TransactionRecord, now: datetime) -> bool:
    return record.status is TransactionStatus.PENDING and now > record.expires_at


def maybe_expire(record: TransactionRecord, now: datetime) -> Optional[Transition]:
    """Return the expiry transition for a pending record past its deadline, else None."""
    if not is_expired(record, now):
        return None
    return Transition(status=TransactionStatus.EXPIRED, completed_at=now)


def parse_reported_status(value) -> TransactionStatus:
    try:
        status = TransactionStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidStatusError(value)
    if status not in REPORTABLE_STATUSES:
        raise InvalidStatusError(value)
    return status


def resolution_for(
    record: TransactionRecord,
    reported_status,
    now: datetime,
    provider_reference: Optional[str] = None,
) -> Transition:
    """
    Build the transition for an externally reported outcome.

    Raises:
        AlreadyResolvedError: If the record is no longer pending
        InvalidStatusError: If the reported status is not success or failed
    """
    if record.status.is_terminal:
        raise AlreadyResolvedError(record.tx_id, record.status.value, record)
    return Transition(
        status=parse_reported_status(reported_status),
        completed_at=now,
        provider_reference=provider_reference,
    )

