"""
Storage-independent records handled by the transaction store.

Repositories translate these to and from Beanie documents, which keeps the
state machine free of ODM initialization and easy to exercise in tests.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional
from datetime import datetime, timezone
from decimal import Decimal

from paylink.schemas.payment import Provider, TransactionStatus


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive datetimes unless the client is tz-aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TransactionRecord(BaseModel):
    tx_id: str
    user_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Decimal
    provider: Provider
    receive_address: str
    status: TransactionStatus = TransactionStatus.PENDING
    payload: str
    signature: str
    secret_version: Optional[int] = None
    redirect_url: str
    alternate_url: str
    note: str
    device: str
    provider_reference: Optional[str] = None
    expires_at: datetime
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("expires_at", "completed_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v):
        return _as_utc(v)


class MerchantSettingsRecord(BaseModel):
    receive_address: str
    signing_secret: str
    version: int = 1
    secret_history: Dict[str, str] = Field(default_factory=dict)
