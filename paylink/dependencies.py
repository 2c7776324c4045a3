"""
FastAPI dependency providers.

Route handlers receive services through these functions so tests can swap
them with `app.dependency_overrides`.
"""

from functools import lru_cache

from paylink.core.config import get_config
from paylink.repositories import MerchantSettingsRepository, TransactionRepository
from paylink.services.merchant_config import MerchantConfigProvider
from paylink.services.payment_service import PaymentService
from paylink.services.reconciliation import BeanieOrderReconciler
from paylink.services.transaction_store import TransactionStore


@lru_cache(maxsize=1)
def _build_payment_service() -> PaymentService:
    config = get_config()
    merchant_config = MerchantConfigProvider(
        MerchantSettingsRepository(), defaults=config.payment
    )
    store = TransactionStore(
        repository=TransactionRepository(),
        merchant_config=merchant_config,
        reconciler=BeanieOrderReconciler(),
        merchant_display_name=config.payment.merchant_display_name,
    )
    return PaymentService(store, config)


def get_payment_service() -> PaymentService:
    return _build_payment_service()
