"""
Order reconciliation.

When a transaction reaches a terminal state its order's payment fields are
updated. The order store is owned elsewhere; this module only defines the
callback contract and a Beanie implementation of it.
"""

from typing import Protocol, Tuple

from beanie import PydanticObjectId
from beanie.operators import Set
from bson import ObjectId
from pymongo.errors import AutoReconnect, ConnectionFailure, NetworkTimeout
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from paylink.models import Order, utc_now
from paylink.schemas.payment import TransactionStatus
import logging

logger = logging.getLogger(__name__)

_PAID = ("paid", "confirmed")
_NOT_PAID = ("failed", "cancelled")


def order_fields_for(final_status: TransactionStatus) -> Tuple[str, str]:
    """Map a terminal transaction status to (payment_status, order_status)."""
    if final_status is TransactionStatus.SUCCESS:
        return _PAID
    if final_status in (TransactionStatus.FAILED, TransactionStatus.EXPIRED):
        return _NOT_PAID
    raise ValueError(f"{final_status.value} is not a terminal status")


class OrderReconciler(Protocol):
    async def on_transaction_resolved(self, order_id: str, final_status: TransactionStatus) -> None:
        ...


class BeanieOrderReconciler:
    """Writes payment outcomes onto documents in the orders collection."""

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((AutoReconnect, ConnectionFailure, NetworkTimeout)),
        reraise=True,
    )
    async def on_transaction_resolved(self, order_id: str, final_status: TransactionStatus) -> None:
        if not ObjectId.is_valid(order_id):
            logger.warning(f"Skipping reconciliation, invalid order id: {order_id}")
            return

        payment_status, order_status = order_fields_for(final_status)
        result = await Order.find_one(Order.id == PydanticObjectId(order_id)).update(
            Set(
                {
                    Order.payment_status: payment_status,
                    Order.status: order_status,
                    Order.updated_at: utc_now(),
                }
            )
        )

        if result is not None and getattr(result, "matched_count", 1) == 0:
            logger.warning(f"Order {order_id} not found during reconciliation")
            return

        logger.info(f"Order {order_id} marked {payment_status}/{order_status}")
