"""
Merchant configuration access.

The merchant record (receive address, signing secret, version) is read on
every transaction creation and handed around as an immutable snapshot.
Secrets are versioned so that rotating the secret does not break
verification of transactions signed under an earlier one.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt

from paylink.core.config import PaymentConfig
from paylink.core.exceptions import (
    BaseAppError,
    ConfigurationUnavailableError,
    PaymentValidationError,
)
from paylink.models import utc_now
from paylink.schemas.records import MerchantSettingsRecord
import logging

logger = logging.getLogger(__name__)

UPI_ID_PATTERN = re.compile(r"^[\w.-]+@[\w.-]+$")


@dataclass(frozen=True)
class MerchantConfigSnapshot:
    receive_address: str
    signing_secret: str
    version: int
    secret_history: Mapping[str, str] = field(default_factory=dict)

    def secret_for(self, version: Optional[int]) -> str:
        """
        Secret that was active at `version`.

        Uses the newest history entry at or below `version`; unversioned
        records and versions missing from history fall back to the current
        secret.
        """
        if version is None:
            return self.signing_secret
        candidates = [int(v) for v in self.secret_history if int(v) <= version]
        if not candidates:
            return self.signing_secret
        return self.secret_history[str(max(candidates))]


class SettingsVersionConflict(Exception):
    """Another writer updated the settings between our read and write."""


class MerchantConfigProvider:
    """Reads and updates the singleton merchant settings record."""

    def __init__(self, repository, defaults: PaymentConfig):
        self._repository = repository
        self._defaults = defaults

    async def get_snapshot(self) -> MerchantConfigSnapshot:
        """
        Current merchant configuration, creating the defaults record if absent.

        Raises:
            ConfigurationUnavailableError: If the record cannot be read or is incomplete
        """
        try:
            record = await self._repository.get()
            if record is None:
                logger.info("Creating default merchant settings record")
                record = await self._repository.create(
                    MerchantSettingsRecord(
                        receive_address=self._defaults.default_merchant_upi,
                        signing_secret=self._defaults.default_merchant_secret,
                        version=1,
                        secret_history={"1": self._defaults.default_merchant_secret},
                    )
                )
        except BaseAppError as e:
            logger.error(f"Merchant settings unavailable: {e.message}")
            raise ConfigurationUnavailableError() from e

        if not record.receive_address or not record.signing_secret:
            raise ConfigurationUnavailableError(
                "Merchant receive address or signing secret is empty",
                config_key="merchant_settings",
            )

        return MerchantConfigSnapshot(
            receive_address=record.receive_address,
            signing_secret=record.signing_secret,
            version=record.version,
            secret_history=dict(record.secret_history),
        )

    @retry(
        retry=retry_if_exception_type(SettingsVersionConflict),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def update(
        self,
        receive_address: Optional[str] = None,
        signing_secret: Optional[str] = None,
    ) -> MerchantConfigSnapshot:
        """
        Administrative update; bumps the version on every call.

        Raises:
            PaymentValidationError: If the UPI id is malformed or the secret is empty
        """
        fields: Dict[str, object] = {}
        if receive_address is not None:
            receive_address = receive_address.strip()
            if not UPI_ID_PATTERN.match(receive_address):
                raise PaymentValidationError(
                    "Invalid UPI ID format. Example: yourname@upi",
                    "receive_address",
                    receive_address,
                )
            fields["receive_address"] = receive_address

        if signing_secret is not None and not signing_secret:
            raise PaymentValidationError("Signing secret cannot be empty", "signing_secret")

        current = await self.get_snapshot()
        new_version = current.version + 1
        fields["version"] = new_version
        fields["updated_at"] = utc_now()
        if signing_secret is not None:
            fields["signing_secret"] = signing_secret
            fields[f"secret_history.{new_version}"] = signing_secret

        updated = await self._repository.update(current.version, fields)
        if updated is None:
            logger.info("Merchant settings changed concurrently, retrying update")
            raise SettingsVersionConflict()

        logger.info(f"Merchant settings updated to version {updated.version}")
        return MerchantConfigSnapshot(
            receive_address=updated.receive_address,
            signing_secret=updated.signing_secret,
            version=updated.version,
            secret_history=dict(updated.secret_history),
        )
