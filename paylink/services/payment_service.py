"""
Payment service layer.

Translates HTTP-shaped requests into transaction store operations and the
store's records into response models. AlreadyResolvedError is caught here:
a repeated verify or webhook for a finished transaction is a normal outcome
that reports the existing status, not a failure.
"""

import time

from paylink.core.config import AppConfig
from paylink.core.exceptions import AlreadyResolvedError, NotFoundError
from paylink.core.monitoring import error_monitor, monitor_errors
from paylink.schemas.payment import (
    CreatePaymentRequest,
    SimulateRequest,
    VerifyRequest,
    WebhookPayload,
)
from paylink.schemas.records import TransactionRecord
from paylink.schemas.responses import (
    MerchantAddressResponse,
    PaymentBundle,
    ResolveResponse,
    TransactionStatusResponse,
    WebhookAck,
)
from paylink.services.transaction_store import TransactionStore
import logging

logger = logging.getLogger(__name__)


class PaymentService:
    """Service layer for the payment endpoints"""

    def __init__(self, store: TransactionStore, config: AppConfig):
        self.store = store
        self.config = config

    @monitor_errors("payment_create")
    async def create_payment(self, request: CreatePaymentRequest, user_agent: str = None) -> PaymentBundle:
        """
        Issue a signed payment request.

        Raises:
            InvalidAmountError, UnsupportedProviderError, ConfigurationUnavailableError
        """
        record = await self.store.create(
            amount=request.amount,
            provider=request.pay_type,
            device_hint=user_agent,
            user_id=request.user_id,
            order_id=request.order_id,
        )
        error_monitor.log_payment_event(
            "created",
            record.tx_id,
            provider=record.provider.value,
            amount=record.amount,
            device=record.device,
            order_id=record.order_id,
        )

        return PaymentBundle(
            tx_id=record.tx_id,
            redirect_url=record.redirect_url,
            alternate_url=record.alternate_url,
            payload=record.payload,
            signature=record.signature,
            expires_at=record.expires_at,
            amount=record.amount,
            provider=record.provider.value,
            device=record.device,
            note=record.note,
        )

    @monitor_errors("payment_status")
    async def get_status(self, tx_id: str) -> TransactionStatusResponse:
        """
        Raises:
            NotFoundError: If the transaction does not exist
        """
        record = await self.store.get_status(tx_id)
        return TransactionStatusResponse(
            tx_id=record.tx_id,
            status=record.status.value,
            amount=record.amount,
            provider=record.provider.value,
            receive_address=record.receive_address,
            created_at=record.created_at,
            completed_at=record.completed_at,
        )

    @monitor_errors("payment_verify")
    async def verify_payment(self, request: VerifyRequest) -> ResolveResponse:
        try:
            record = await self.store.resolve(
                request.tx_id, request.status, signature=request.signature
            )
        except AlreadyResolvedError as e:
            return self._already_resolved_response(e)

        error_monitor.log_payment_event("verified", record.tx_id, status=record.status.value)
        return self._resolved_response(record, f"Payment {record.status.value}")

    @monitor_errors("payment_webhook")
    async def process_webhook(self, payload: WebhookPayload) -> WebhookAck:
        """
        Apply a provider callback. Redeliveries are acknowledged without
        changing anything.
        """
        try:
            record = await self.store.resolve(
                payload.tx_id,
                payload.status,
                signature=payload.signature,
                provider_reference=payload.provider_reference,
                expected_amount=payload.amount,
            )
        except AlreadyResolvedError as e:
            logger.info(f"Webhook for {e.tx_id} ignored, transaction already {e.status}")
            return WebhookAck(
                success=True,
                message="Transaction was previously resolved",
                tx_id=e.tx_id,
                status="already_resolved",
                transaction_status=e.status,
            )

        error_monitor.log_payment_event(
            "webhook",
            record.tx_id,
            status=record.status.value,
            provider_reference=record.provider_reference,
        )
        return WebhookAck(
            success=True,
            message="Webhook processed successfully",
            tx_id=record.tx_id,
            status="processed",
            transaction_status=record.status.value,
        )

    @monitor_errors("payment_simulate")
    async def simulate_payment(self, request: SimulateRequest) -> ResolveResponse:
        """
        Test-only outcome injection. Unavailable in production.

        Raises:
            NotFoundError: When running in production
        """
        if self.config.is_production:
            raise NotFoundError("Endpoint", "simulate")

        try:
            record = await self.store.resolve(
                request.tx_id,
                request.status,
                provider_reference=f"SIM{int(time.time() * 1000)}",
            )
        except AlreadyResolvedError as e:
            return self._already_resolved_response(e)

        logger.info(f"SIMULATION: Transaction {record.tx_id} -> {record.status.value.upper()}")
        return self._resolved_response(record, f"Payment simulated as {record.status.value}")

    async def get_merchant_address(self) -> MerchantAddressResponse:
        snapshot = await self.store.merchant_config.get_snapshot()
        return MerchantAddressResponse(receive_address=snapshot.receive_address)

    @staticmethod
    def _resolved_response(record: TransactionRecord, message: str) -> ResolveResponse:
        return ResolveResponse(
            success=True,
            message=message,
            tx_id=record.tx_id,
            status=record.status.value,
            amount=record.amount,
            resolved=True,
        )

    @staticmethod
    def _already_resolved_response(error: AlreadyResolvedError) -> ResolveResponse:
        return ResolveResponse(
            success=True,
            message=error.message,
            tx_id=error.tx_id,
            status=error.status,
            amount=error.transaction.amount,
            resolved=False,
        )
