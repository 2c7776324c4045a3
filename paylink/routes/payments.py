"""
Payment routes.

Errors raised by the service propagate as BaseAppError subclasses and are
turned into JSON responses by the generic exception handler.
"""

from fastapi import APIRouter, Depends, Header, Request
from paylink.core.limiter import api_rate_limit, create_rate_limit, limiter, webhook_rate_limit
from paylink.dependencies import get_payment_service
from paylink.schemas.payment import (
    CreatePaymentRequest,
    SimulateRequest,
    VerifyRequest,
    WebhookPayload,
)
from paylink.schemas.responses import (
    MerchantAddressResponse,
    PaymentBundle,
    ResolveResponse,
    TransactionStatusResponse,
    WebhookAck,
)
from paylink.security import verify_hmac_signature
from paylink.services.payment_service import PaymentService

router = APIRouter()


@router.post("/create", response_model=PaymentBundle)
@limiter.limit(create_rate_limit)
async def create_payment(
    request: Request,
    body: CreatePaymentRequest,
    user_agent: str = Header(None),
    service: PaymentService = Depends(get_payment_service),
):
    """Create a signed payment deep link for the caller's device."""
    return await service.create_payment(body, user_agent=user_agent)


@router.get("/status/{tx_id}", response_model=TransactionStatusResponse)
@limiter.limit(api_rate_limit)
async def get_payment_status(
    request: Request,
    tx_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.get_status(tx_id)


@router.post("/verify", response_model=ResolveResponse)
@limiter.limit(api_rate_limit)
async def verify_payment(
    request: Request,
    body: VerifyRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """Client-reported outcome, optionally carrying the payload signature."""
    return await service.verify_payment(body)


@router.post(
    "/webhook",
    response_model=WebhookAck,
    dependencies=[Depends(verify_hmac_signature)],
)
@limiter.limit(webhook_rate_limit)
async def payment_webhook(
    request: Request,
    body: WebhookPayload,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.process_webhook(body)


@router.post("/simulate", response_model=ResolveResponse)
async def simulate_payment(
    request: Request,
    body: SimulateRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """Testing only; responds 404 in production."""
    return await service.simulate_payment(body)


@router.get("/merchant-address", response_model=MerchantAddressResponse)
@limiter.limit(api_rate_limit)
async def get_merchant_address(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.get_merchant_address()
