"""
Pydantic response models for service layer.

Provides clean separation between service logic and HTTP concerns.
Service layer returns these models, FastAPI handles JSON serialization.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal


class ServiceResult(BaseModel):
    """Generic base class for all service responses."""

    success: bool = Field(..., description="Whether the operation was successful")
    message: str = Field(..., description="Human-readable result message")


class PaymentBundle(BaseModel):
    """Everything the client needs to open the payment app."""

    tx_id: str = Field(..., description="Transaction identifier")
    redirect_url: str = Field(..., description="Deep link preferred for the caller's device")
    alternate_url: str = Field(..., description="Generic-scheme deep link")
    payload: str = Field(..., description="Base64 payload covered by the signature")
    signature: str = Field(..., description="HMAC-SHA256 of payload, hex")
    expires_at: datetime = Field(..., description="Absolute expiry of the payment request")
    amount: Decimal = Field(..., description="Payment amount")
    provider: str = Field(..., description="Payment app")
    device: str = Field(..., description="Detected device class")
    note: str = Field(..., description="Payment memo shown in the app")


class TransactionStatusResponse(BaseModel):
    """Current state of a transaction."""

    tx_id: str
    status: str
    amount: Decimal
    provider: str
    receive_address: str
    created_at: datetime
    completed_at: Optional[datetime] = None


class ResolveResponse(ServiceResult):
    """Result of a verify or simulate call."""

    tx_id: str = Field(..., description="Transaction identifier")
    status: str = Field(..., description="Transaction status after the call")
    amount: Decimal = Field(..., description="Transaction amount")
    resolved: bool = Field(
        ..., description="False when the transaction was already in a terminal state"
    )


class WebhookAck(ServiceResult):
    """Acknowledgment returned to webhook senders."""

    tx_id: str = Field(..., description="Transaction identifier")
    status: str = Field(
        ...,
        description="Processing outcome: 'processed' or 'already_resolved'",
    )
    transaction_status: str = Field(..., description="Transaction status after the call")


class MerchantAddressResponse(BaseModel):
    receive_address: str
