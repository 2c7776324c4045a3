from beanie import Document, Indexed
from pydantic import Field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from paylink.schemas.payment import Provider, TransactionStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


MERCHANT_SETTINGS_KEY = "merchant"


# Payment transaction issued by this service, keyed by the generated tx_id
class Transaction(Document):
    """Signed payment request and its lifecycle state"""

    tx_id: Indexed(str, unique=True)  # Unique index turns id collisions into DuplicateKeyError
    user_id: Optional[str] = None
    order_id: Optional[Indexed(str)] = None
    amount: Decimal
    provider: Provider
    receive_address: str  # Snapshot of the merchant address at creation
    status: Indexed(str) = TransactionStatus.PENDING.value
    payload: str
    signature: str
    secret_version: Optional[int] = None  # None for records signed before secrets were versioned
    redirect_url: str
    alternate_url: str
    note: str
    device: str
    provider_reference: Optional[str] = None
    expires_at: Indexed(datetime)
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "transactions"
        bson_encoders = {Decimal: str}


# Singleton merchant settings record, created with defaults on first read
class MerchantSettings(Document):
    """Merchant receive address and signing secret"""

    key: Indexed(str, unique=True) = MERCHANT_SETTINGS_KEY
    receive_address: str
    signing_secret: str
    version: int = 1
    secret_history: Dict[str, str] = Field(default_factory=dict)  # str(version) -> secret
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "merchant_settings"


# Only the payment-related fields of the externally owned order record
class Order(Document):
    """Order record as seen by reconciliation"""

    payment_status: str = "pending"
    status: str = "pending"
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "orders"
