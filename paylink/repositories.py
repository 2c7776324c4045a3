"""
Beanie-backed repositories.

The transaction store and merchant config provider talk to these classes
only, so they never touch ODM documents directly. Driver failures are mapped
to DatabaseError without leaking driver messages to callers.
"""

from typing import Any, Dict, Optional

from beanie import UpdateResponse
from beanie.operators import Set
from pymongo.errors import DuplicateKeyError, PyMongoError

from paylink.core.exceptions import DatabaseError, DuplicateIdError
from paylink.models import MERCHANT_SETTINGS_KEY, MerchantSettings, Transaction
from paylink.schemas.payment import TransactionStatus
from paylink.schemas.records import MerchantSettingsRecord, TransactionRecord
from paylink.services.lifecycle import Transition
import logging

logger = logging.getLogger(__name__)

_DOCUMENT_ONLY_FIELDS = {"id", "revision_id"}


def _to_record(document: Transaction) -> TransactionRecord:
    return TransactionRecord.model_validate(
        document.model_dump(exclude=_DOCUMENT_ONLY_FIELDS)
    )


class TransactionRepository:
    """Data access for payment transactions."""

    async def insert(self, record: TransactionRecord) -> TransactionRecord:
        """
        Persist a new transaction.

        Raises:
            DuplicateIdError: If the tx_id already exists
            DatabaseError: For any other driver failure
        """
        document = Transaction(**{**record.model_dump(), "status": record.status.value})
        try:
            await document.insert()
        except DuplicateKeyError:
            logger.warning(f"Transaction id collision on insert: {record.tx_id}")
            raise DuplicateIdError(record.tx_id)
        except PyMongoError:
            logger.error(f"Database error inserting transaction {record.tx_id}", exc_info=True)
            raise DatabaseError("Failed to create transaction", operation="insert_transaction")
        return _to_record(document)

    async def get(self, tx_id: str) -> Optional[TransactionRecord]:
        try:
            document = await Transaction.find_one(Transaction.tx_id == tx_id)
        except PyMongoError:
            logger.error(f"Database error retrieving transaction {tx_id}", exc_info=True)
            raise DatabaseError("Failed to retrieve transaction", operation="find_transaction")
        return _to_record(document) if document else None

    async def transition(self, tx_id: str, transition: Transition) -> Optional[TransactionRecord]:
        """
        Atomically move a pending transaction into a terminal state.

        The update only matches while the stored status is still pending, so
        of several concurrent callers exactly one gets the updated record back;
        the others get None.
        """
        fields: Dict[str, Any] = {
            "status": transition.status.value,
            "completed_at": transition.completed_at,
            "updated_at": transition.completed_at,
        }
        if transition.provider_reference:
            fields["provider_reference"] = transition.provider_reference

        try:
            document = await Transaction.find_one(
                Transaction.tx_id == tx_id,
                Transaction.status == TransactionStatus.PENDING.value,
            ).update(Set(fields), response_type=UpdateResponse.NEW_DOCUMENT)
        except PyMongoError:
            logger.error(f"Database error updating transaction {tx_id}", exc_info=True)
            raise DatabaseError("Failed to update transaction", operation="transition_transaction")
        return _to_record(document) if document else None


class MerchantSettingsRepository:
    """Data access for the singleton merchant settings record."""

    async def get(self) -> Optional[MerchantSettingsRecord]:
        try:
            document = await MerchantSettings.find_one(
                MerchantSettings.key == MERCHANT_SETTINGS_KEY
            )
        except PyMongoError:
            logger.error("Database error reading merchant settings", exc_info=True)
            raise DatabaseError("Failed to read merchant settings", operation="find_settings")
        return self._to_record(document) if document else None

    async def create(self, record: MerchantSettingsRecord) -> MerchantSettingsRecord:
        """Insert the settings record, or return the one a concurrent caller inserted first."""
        document = MerchantSettings(key=MERCHANT_SETTINGS_KEY, **record.model_dump())
        try:
            await document.insert()
        except DuplicateKeyError:
            existing = await self.get()
            if existing is None:
                raise DatabaseError("Merchant settings vanished after insert conflict", operation="create_settings")
            return existing
        except PyMongoError:
            logger.error("Database error creating merchant settings", exc_info=True)
            raise DatabaseError("Failed to create merchant settings", operation="create_settings")
        return self._to_record(document)

    async def update(self, expected_version: int, fields: Dict[str, Any]) -> Optional[MerchantSettingsRecord]:
        """Apply `fields` only if the stored version still equals `expected_version`."""
        try:
            document = await MerchantSettings.find_one(
                MerchantSettings.key == MERCHANT_SETTINGS_KEY,
                MerchantSettings.version == expected_version,
            ).update(Set(fields), response_type=UpdateResponse.NEW_DOCUMENT)
        except PyMongoError:
            logger.error("Database error updating merchant settings", exc_info=True)
            raise DatabaseError("Failed to update merchant settings", operation="update_settings")
        return self._to_record(document) if document else None

    @staticmethod
    def _to_record(document: MerchantSettings) -> MerchantSettingsRecord:
        return MerchantSettingsRecord(
            receive_address=document.receive_address,
            signing_secret=document.signing_secret,
            version=document.version,
            secret_history=dict(document.secret_history),
        )
