"""
Transaction store and lifecycle operations.

Every state change goes through `TransactionRepository.transition`, a
conditional write on (tx_id, status == pending). That single write is what
guarantees at most one terminal outcome per transaction, whether the caller
is a verify request, a webhook, a simulation or a lazy expiry.
"""

import secrets
import string
from datetime import datetime
from typing import Callable, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt

from paylink.core.exceptions import (
    AlreadyResolvedError,
    DuplicateIdError,
    InvalidSignatureError,
    NotFoundError,
    PaymentValidationError,
)
from paylink.core.monitoring import error_monitor
from paylink.models import utc_now
from paylink.schemas.payment import DeviceClass, Provider
from paylink.schemas.records import TransactionRecord
from paylink.security import sign_payload, verify_payload_signature
from paylink.services.lifecycle import (
    TRANSACTION_TTL,
    maybe_expire,
    resolution_for,
)
from paylink.services.merchant_config import MerchantConfigProvider, MerchantConfigSnapshot
from paylink.services.payload_builder import (
    PayloadBuilder,
    detect_device,
    parse_provider,
    validate_amount,
)
from paylink.services.reconciliation import OrderReconciler
import logging

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_PREFIX = "cw"
_ID_RANDOM_LENGTH = 11


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ID_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_transaction_id(now: datetime) -> str:
    """'cw' + base36 millisecond timestamp + random base36 suffix."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_RANDOM_LENGTH))
    return f"{_ID_PREFIX}{_base36(millis)}{suffix}"


class TransactionStore:
    """Creates signed payment transactions and drives them to a terminal state."""

    def __init__(
        self,
        repository,
        merchant_config: MerchantConfigProvider,
        reconciler: OrderReconciler,
        payload_builder: Optional[PayloadBuilder] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[datetime], str] = generate_transaction_id,
        merchant_display_name: str = "Merchant",
    ):
        self._repository = repository
        self.merchant_config = merchant_config
        self._reconciler = reconciler
        self._builder = payload_builder or PayloadBuilder(
            merchant_display_name=merchant_display_name
        )
        self._clock = clock
        self._id_factory = id_factory

    async def create(
        self,
        amount,
        provider,
        device_hint: Optional[str] = None,
        user_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> TransactionRecord:
        """
        Build, sign and persist a new pending transaction.

        Raises:
            InvalidAmountError: If amount is not positive
            UnsupportedProviderError: If provider is not phonepe or paytm
            ConfigurationUnavailableError: If merchant settings cannot be read
            DuplicateIdError: If two generated ids in a row collide
        """
        amount = validate_amount(amount)
        provider = parse_provider(provider)
        device = detect_device(device_hint)
        merchant = await self.merchant_config.get_snapshot()

        record = await self._insert_new(amount, provider, device, merchant, user_id, order_id)
        logger.info(
            f"Transaction created: {record.tx_id} for {record.amount} via {provider.value} "
            f"({device.value})"
        )
        return record

    @retry(
        retry=retry_if_exception_type(DuplicateIdError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    async def _insert_new(
        self,
        amount,
        provider: Provider,
        device: DeviceClass,
        merchant: MerchantConfigSnapshot,
        user_id: Optional[str],
        order_id: Optional[str],
    ) -> TransactionRecord:
        # The Paytm envelope embeds the id, so a retry rebuilds everything
        now = self._clock()
        tx_id = self._id_factory(now)
        expires_at = now + TRANSACTION_TTL

        built = self._builder.build(
            amount=amount,
            provider=provider,
            device=device,
            receive_address=merchant.receive_address,
            tx_id=tx_id,
            expires_at=expires_at,
        )

        record = TransactionRecord(
            tx_id=tx_id,
            user_id=user_id,
            order_id=order_id,
            amount=amount,
            provider=provider,
            receive_address=merchant.receive_address,
            payload=built.encoded,
            signature=sign_payload(merchant.signing_secret, built.encoded),
            secret_version=merchant.version,
            redirect_url=built.redirect_url,
            alternate_url=built.alternate_url,
            note=built.note,
            device=built.device.value,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        return await self._repository.insert(record)

    async def get_status(self, tx_id: str) -> TransactionRecord:
        """
        Fetch a transaction, expiring it first if its deadline has passed.

        Raises:
            NotFoundError: If no transaction has this id
        """
        record = await self._require(tx_id)
        return await self._expire_if_due(record)

    async def resolve(
        self,
        tx_id: str,
        reported_status,
        signature: Optional[str] = None,
        provider_reference: Optional[str] = None,
        expected_amount=None,
    ) -> TransactionRecord:
        """
        Apply an externally reported outcome to a pending transaction.

        Raises:
            NotFoundError: If no transaction has this id
            InvalidSignatureError: If a signature is given and does not match
            PaymentValidationError: If an expected amount is given and differs
            AlreadyResolvedError: If the transaction is already terminal,
                including when a concurrent caller won the race
            InvalidStatusError: If the reported status is not success or failed
        """
        record = await self._require(tx_id)

        if signature:
            merchant = await self.merchant_config.get_snapshot()
            secret = merchant.secret_for(record.secret_version)
            if not verify_payload_signature(secret, record.payload, signature):
                logger.warning(f"Signature mismatch for transaction {tx_id}")
                raise InvalidSignatureError(tx_id)

        record = await self._expire_if_due(record)
        if record.status.is_terminal:
            raise AlreadyResolvedError(tx_id, record.status.value, record)

        if expected_amount is not None and validate_amount(expected_amount) != record.amount:
            logger.warning(
                f"Amount mismatch for transaction {tx_id}: reported {expected_amount}, "
                f"stored {record.amount}"
            )
            raise PaymentValidationError(
                "Reported amount does not match transaction", "amount", expected_amount
            )

        transition = resolution_for(record, reported_status, self._clock(), provider_reference)

        updated = await self._repository.transition(tx_id, transition)
        if updated is None:
            current = await self._require(tx_id)
            logger.info(f"Transaction {tx_id} resolved concurrently as {current.status.value}")
            raise AlreadyResolvedError(tx_id, current.status.value, current)

        logger.info(f"Transaction {tx_id} marked as {updated.status.value.upper()}")
        await self._notify(updated)
        return updated

    async def _require(self, tx_id: str) -> TransactionRecord:
        record = await self._repository.get(tx_id)
        if record is None:
            raise NotFoundError("Transaction", tx_id)
        return record

    async def _expire_if_due(self, record: TransactionRecord) -> TransactionRecord:
        transition = maybe_expire(record, self._clock())
        if transition is None:
            return record

        updated = await self._repository.transition(record.tx_id, transition)
        if updated is None:
            # Lost to a concurrent resolve; report whatever won
            return await self._require(record.tx_id)

        logger.info(f"Transaction {record.tx_id} expired")
        await self._notify(updated)
        return updated

    async def _notify(self, record: TransactionRecord) -> None:
        """Push the outcome to the order. Failures never undo the transition."""
        if not record.order_id:
            return
        try:
            await self._reconciler.on_transaction_resolved(record.order_id, record.status)
        except Exception as e:
            error_monitor.log_error(
                e,
                {
                    "operation": "order_reconciliation",
                    "tx_id": record.tx_id,
                    "order_id": record.order_id,
                    "status": record.status.value,
                },
            )
            logger.error(
                f"Reconciliation failed for order {record.order_id} "
                f"(transaction {record.tx_id} is {record.status.value})"
            )
