"""
Pydantic schemas for payment requests and provider payloads.

Provider payloads are a tagged union discriminated on `provider`, with
explicit fields for each deep-link dialect so that serialization (and
therefore signing) is deterministic.
"""

from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Annotated, Literal, Optional, Union
from decimal import Decimal


class Provider(str, Enum):
    """Supported payment apps"""

    PHONEPE = "phonepe"
    PAYTM = "paytm"


class TransactionStatus(str, Enum):
    """Transaction lifecycle states. Only PENDING is non-terminal."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class DeviceClass(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    DESKTOP = "desktop"


# Minor-unit JSON payload understood by the PhonePe native intent
class PhonePeContact(BaseModel):
    cbsName: str = ""
    nickName: str = ""
    vpa: str
    type: Literal["VPA"] = "VPA"


class PhonePeCheckoutParams(BaseModel):
    note: str
    isByDefaultKnownContact: bool = True
    initialAmount: int
    currency: str = "INR"
    checkoutType: str = "DEFAULT"
    transactionContext: str = "p2p"


class PhonePeIntent(BaseModel):
    contact: PhonePeContact
    p2pPaymentCheckoutParams: PhonePeCheckoutParams


# Wrapper signed for Paytm links
class PaytmEnvelope(BaseModel):
    redirect: str
    tid: str
    exp: int


class PhonePePayload(BaseModel):
    """PhonePe output: base64 intent JSON plus the two device links."""

    provider: Literal[Provider.PHONEPE] = Provider.PHONEPE
    intent: PhonePeIntent
    encoded: str
    intent_url: str
    generic_url: str
    note: str


class PaytmPayload(BaseModel):
    """Paytm output: canonical transfer link, scheme variant and signed envelope."""

    provider: Literal[Provider.PAYTM] = Provider.PAYTM
    envelope: PaytmEnvelope
    encoded: str
    canonical_url: str
    app_url: str
    note: str


ProviderPayload = Annotated[
    Union[PhonePePayload, PaytmPayload], Field(discriminator="provider")
]


class CreatePaymentRequest(BaseModel):
    """Payment initiation request."""

    # Positivity and paise precision are enforced by the transaction store
    # so that they surface as InvalidAmountError
    amount: Decimal = Field(
        ...,
        le=1000000,
        max_digits=12,
        description="Payment amount in rupees (must be positive)",
    )
    pay_type: str = Field(
        ...,
        min_length=1,
        max_length=20,
        description="Payment app: 'phonepe' or 'paytm'",
    )
    order_id: Optional[str] = Field(None, max_length=64)
    user_id: Optional[str] = Field(None, max_length=64)

    @field_validator("pay_type")
    @classmethod
    def normalize_pay_type(cls, v):
        """Provider names are matched case-insensitively."""
        return v.strip().lower()


class BaseResolveRequest(BaseModel):
    """Shared fields for verify, simulate and webhook calls."""

    tx_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r"^[a-zA-Z0-9_-]+$",
        description="Transaction identifier",
    )
    status: str = Field(
        ...,
        min_length=1,
        max_length=20,
        description="Reported outcome: 'success' or 'failed'",
    )

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v):
        return v.strip().lower()


class VerifyRequest(BaseResolveRequest):
    signature: Optional[str] = Field(None, max_length=128)


class SimulateRequest(BaseResolveRequest):
    pass


class WebhookPayload(BaseResolveRequest):
    """Provider or relay callback reporting a payment outcome."""

    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12)
    provider_reference: Optional[str] = Field(
        None,
        max_length=100,
        pattern=r"^[a-zA-Z0-9_-]+$",
        description="Provider's own reference (e.g. UPI ref number)",
    )
    signature: Optional[str] = Field(None, max_length=128)
