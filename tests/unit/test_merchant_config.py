import pytest

from paylink.core.exceptions import (
    ConfigurationUnavailableError,
    DatabaseError,
    PaymentValidationError,
)
from paylink.schemas.records import MerchantSettingsRecord
from paylink.services.merchant_config import (
    MerchantConfigSnapshot,
    SettingsVersionConflict,
)


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_creates_defaults_on_first_read(self, merchant_config, settings_repository, merchant_secret):
        snapshot = await merchant_config.get_snapshot()

        assert snapshot.receive_address == "shop@okaxis"
        assert snapshot.signing_secret == merchant_secret
        assert snapshot.version == 1
        assert snapshot.secret_history == {"1": merchant_secret}
        assert settings_repository.create_calls == 1

    @pytest.mark.asyncio
    async def test_existing_record_is_not_recreated(self, merchant_config, settings_repository):
        await merchant_config.get_snapshot()
        await merchant_config.get_snapshot()

        assert settings_repository.create_calls == 1

    @pytest.mark.asyncio
    async def test_empty_address_is_unavailable(self, merchant_config, settings_repository):
        settings_repository.record = MerchantSettingsRecord(receive_address="", signing_secret="x")

        with pytest.raises(ConfigurationUnavailableError):
            await merchant_config.get_snapshot()

    @pytest.mark.asyncio
    async def test_storage_failure_is_unavailable(self, merchant_config, settings_repository):
        async def broken_get():
            raise DatabaseError("down", operation="find_settings")

        settings_repository.get = broken_get

        with pytest.raises(ConfigurationUnavailableError) as exc_info:
            await merchant_config.get_snapshot()

        assert exc_info.value.http_status_code == 503


class TestSecretFor:
    def test_uses_newest_entry_at_or_below_version(self):
        snapshot = MerchantConfigSnapshot(
            receive_address="shop@okaxis",
            signing_secret="third",
            version=4,
            secret_history={"1": "first", "2": "second", "4": "third"},
        )

        assert snapshot.secret_for(1) == "first"
        assert snapshot.secret_for(2) == "second"
        assert snapshot.secret_for(3) == "second"
        assert snapshot.secret_for(4) == "third"

    def test_falls_back_to_current_secret(self):
        snapshot = MerchantConfigSnapshot("shop@okaxis", "current", 2, {"2": "current"})

        assert snapshot.secret_for(None) == "current"
        assert snapshot.secret_for(1) == "current"


class TestUpdate:
    @pytest.mark.asyncio
    async def test_address_update_bumps_version(self, merchant_config, merchant_secret):
        updated = await merchant_config.update(receive_address="  newshop@ybl ")

        assert updated.receive_address == "newshop@ybl"
        assert updated.version == 2
        assert updated.signing_secret == merchant_secret
        assert updated.secret_history == {"1": merchant_secret}

    @pytest.mark.asyncio
    async def test_secret_rotation_records_history(self, merchant_config, merchant_secret):
        updated = await merchant_config.update(signing_secret="rotated_secret")

        assert updated.signing_secret == "rotated_secret"
        assert updated.secret_history == {"1": merchant_secret, "2": "rotated_secret"}
        assert updated.secret_for(1) == merchant_secret

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", ["no-at-sign", "two@@signs", "space in@upi", "@upi"])
    async def test_rejects_malformed_upi_id(self, merchant_config, settings_repository, address):
        with pytest.raises(PaymentValidationError) as exc_info:
            await merchant_config.update(receive_address=address)

        assert exc_info.value.field == "receive_address"
        assert settings_repository.record is None

    @pytest.mark.asyncio
    async def test_rejects_empty_secret(self, merchant_config):
        with pytest.raises(PaymentValidationError):
            await merchant_config.update(signing_secret="")

    @pytest.mark.asyncio
    async def test_retries_on_version_conflict(self, merchant_config, settings_repository):
        await merchant_config.get_snapshot()
        original_update = settings_repository.update
        attempts = []

        async def racing_update(expected_version, fields):
            attempts.append(expected_version)
            if len(attempts) == 1:
                # Another writer lands first
                await original_update(expected_version, {"version": expected_version + 1})
                return None
            return await original_update(expected_version, fields)

        settings_repository.update = racing_update

        updated = await merchant_config.update(receive_address="newshop@ybl")

        assert attempts == [1, 2]
        assert updated.version == 3
        assert updated.receive_address == "newshop@ybl"

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(self, merchant_config, settings_repository):
        await merchant_config.get_snapshot()

        async def always_conflicts(expected_version, fields):
            return None

        settings_repository.update = always_conflicts

        with pytest.raises(SettingsVersionConflict):
            await merchant_config.update(receive_address="newshop@ybl")
