from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from beanie import UpdateResponse
from pymongo.errors import DuplicateKeyError, PyMongoError, ServerSelectionTimeoutError

from paylink import repositories
from paylink.core.exceptions import DatabaseError, DuplicateIdError
from paylink.models import MERCHANT_SETTINGS_KEY
from paylink.repositories import MerchantSettingsRepository, TransactionRepository
from paylink.schemas.payment import Provider, TransactionStatus
from paylink.schemas.records import MerchantSettingsRecord, TransactionRecord
from paylink.services.lifecycle import Transition

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class QueryField:
    """Stands in for a Beanie field so the filters passed to find_one can be asserted."""

    def __init__(self, name):
        self.name = name

    def __eq__(self, other):
        return (self.name, other)


def make_record(**overrides) -> TransactionRecord:
    data = dict(
        tx_id="cwrepo123",
        order_id="o1",
        amount=Decimal("250.00"),
        provider=Provider.PHONEPE,
        receive_address="shop@okaxis",
        payload="eyJ9",
        signature="ab" * 32,
        secret_version=1,
        redirect_url="phonepe://native?data=eyJ9&id=p2ppayment",
        alternate_url="phonepe://pay?pa=shop%40okaxis",
        note="s123",
        device="android",
        expires_at=NOW,
        created_at=NOW,
        updated_at=NOW,
    )
    data.update(overrides)
    return TransactionRecord(**data)


def as_document(record) -> MagicMock:
    document = MagicMock()
    document.model_dump.return_value = record.model_dump()
    return document


@pytest.fixture
def mock_transaction(monkeypatch):
    transaction = MagicMock()
    transaction.tx_id = QueryField("tx_id")
    transaction.status = QueryField("status")
    transaction.return_value.insert = AsyncMock()
    monkeypatch.setattr(repositories, "Transaction", transaction)
    return transaction


@pytest.fixture
def mock_settings(monkeypatch):
    settings = MagicMock()
    settings.key = QueryField("key")
    settings.version = QueryField("version")
    settings.return_value.insert = AsyncMock()
    monkeypatch.setattr(repositories, "MerchantSettings", settings)
    return settings


def settings_document(**fields) -> MagicMock:
    values = dict(receive_address="shop@okaxis", signing_secret="s1", version=1, secret_history={"1": "s1"})
    values.update(fields)
    return MagicMock(**values)


class TestTransactionRepository:
    @pytest.mark.asyncio
    async def test_insert_stores_status_value(self, mock_transaction):
        record = make_record()
        mock_transaction.return_value.model_dump.return_value = record.model_dump()

        stored = await TransactionRepository().insert(record)

        assert stored == record
        assert mock_transaction.call_args.kwargs["status"] == "pending"
        mock_transaction.return_value.insert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_insert_duplicate_key_is_duplicate_id(self, mock_transaction):
        mock_transaction.return_value.insert.side_effect = DuplicateKeyError("E11000 duplicate key")

        with pytest.raises(DuplicateIdError) as exc_info:
            await TransactionRepository().insert(make_record())

        assert exc_info.value.tx_id == "cwrepo123"

    @pytest.mark.asyncio
    async def test_insert_driver_failure_is_database_error(self, mock_transaction):
        mock_transaction.return_value.insert.side_effect = PyMongoError("connection reset")

        with pytest.raises(DatabaseError) as exc_info:
            await TransactionRepository().insert(make_record())

        assert exc_info.value.operation == "insert_transaction"
        assert "connection reset" not in exc_info.value.to_safe_dict()["message"]

    @pytest.mark.asyncio
    async def test_get_found_and_missing(self, mock_transaction):
        record = make_record()
        mock_transaction.find_one = AsyncMock(side_effect=[as_document(record), None])
        repository = TransactionRepository()

        assert await repository.get("cwrepo123") == record
        assert await repository.get("cwmissing") is None
        mock_transaction.find_one.assert_any_await(("tx_id", "cwmissing"))

    @pytest.mark.asyncio
    async def test_get_timeout_is_database_error(self, mock_transaction):
        mock_transaction.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("timed out"))

        with pytest.raises(DatabaseError) as exc_info:
            await TransactionRepository().get("cwrepo123")

        assert exc_info.value.operation == "find_transaction"

    @pytest.mark.asyncio
    async def test_transition_only_matches_pending(self, mock_transaction):
        resolved = make_record(
            status=TransactionStatus.SUCCESS, completed_at=NOW, provider_reference="UPI42"
        )
        query = mock_transaction.find_one.return_value
        query.update = AsyncMock(return_value=as_document(resolved))

        result = await TransactionRepository().transition(
            "cwrepo123", Transition(TransactionStatus.SUCCESS, NOW, "UPI42")
        )

        assert result == resolved
        mock_transaction.find_one.assert_called_once_with(("tx_id", "cwrepo123"), ("status", "pending"))
        update_op = query.update.call_args.args[0]
        assert update_op.query == {
            "$set": {
                "status": "success",
                "completed_at": NOW,
                "updated_at": NOW,
                "provider_reference": "UPI42",
            }
        }
        assert query.update.call_args.kwargs["response_type"] is UpdateResponse.NEW_DOCUMENT

    @pytest.mark.asyncio
    async def test_transition_without_reference_leaves_it_unset(self, mock_transaction):
        query = mock_transaction.find_one.return_value
        query.update = AsyncMock(return_value=None)

        await TransactionRepository().transition("cwrepo123", Transition(TransactionStatus.EXPIRED, NOW))

        assert "provider_reference" not in query.update.call_args.args[0].query["$set"]

    @pytest.mark.asyncio
    async def test_transition_no_match_returns_none(self, mock_transaction):
        mock_transaction.find_one.return_value.update = AsyncMock(return_value=None)

        result = await TransactionRepository().transition(
            "cwrepo123", Transition(TransactionStatus.FAILED, NOW)
        )

        assert result is None

    @pytest.mark.asyncio
    async def test_transition_driver_failure_is_database_error(self, mock_transaction):
        mock_transaction.find_one.return_value.update = AsyncMock(side_effect=PyMongoError("boom"))

        with pytest.raises(DatabaseError) as exc_info:
            await TransactionRepository().transition("cwrepo123", Transition(TransactionStatus.FAILED, NOW))

        assert exc_info.value.operation == "transition_transaction"


class TestMerchantSettingsRepository:
    @pytest.mark.asyncio
    async def test_get_maps_document(self, mock_settings):
        mock_settings.find_one = AsyncMock(
            return_value=settings_document(version=2, secret_history={"1": "a", "2": "b"})
        )

        record = await MerchantSettingsRepository().get()

        assert record == MerchantSettingsRecord(
            receive_address="shop@okaxis", signing_secret="s1", version=2, secret_history={"1": "a", "2": "b"}
        )
        mock_settings.find_one.assert_awaited_once_with(("key", MERCHANT_SETTINGS_KEY))

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_settings):
        mock_settings.find_one = AsyncMock(return_value=None)

        assert await MerchantSettingsRepository().get() is None

    @pytest.mark.asyncio
    async def test_create_inserts_singleton(self, mock_settings):
        mock_settings.return_value = settings_document()
        mock_settings.return_value.insert = AsyncMock()

        record = await MerchantSettingsRepository().create(
            MerchantSettingsRecord(
                receive_address="shop@okaxis", signing_secret="s1", secret_history={"1": "s1"}
            )
        )

        assert record.receive_address == "shop@okaxis"
        assert mock_settings.call_args.kwargs["key"] == MERCHANT_SETTINGS_KEY
        mock_settings.return_value.insert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_race_returns_existing(self, mock_settings):
        mock_settings.return_value.insert.side_effect = DuplicateKeyError("E11000 duplicate key")
        mock_settings.find_one = AsyncMock(return_value=settings_document(receive_address="first@ybl"))

        record = await MerchantSettingsRepository().create(
            MerchantSettingsRecord(receive_address="second@ybl", signing_secret="s2")
        )

        assert record.receive_address == "first@ybl"

    @pytest.mark.asyncio
    async def test_create_race_with_vanished_record(self, mock_settings):
        mock_settings.return_value.insert.side_effect = DuplicateKeyError("E11000 duplicate key")
        mock_settings.find_one = AsyncMock(return_value=None)

        with pytest.raises(DatabaseError) as exc_info:
            await MerchantSettingsRepository().create(
                MerchantSettingsRecord(receive_address="shop@okaxis", signing_secret="s1")
            )

        assert exc_info.value.operation == "create_settings"

    @pytest.mark.asyncio
    async def test_update_is_conditional_on_version(self, mock_settings):
        query = mock_settings.find_one.return_value
        query.update = AsyncMock(return_value=settings_document(version=4, signing_secret="s4"))
        fields = {"signing_secret": "s4", "version": 4, "secret_history.4": "s4"}

        record = await MerchantSettingsRepository().update(3, fields)

        assert record.version == 4
        mock_settings.find_one.assert_called_once_with(("key", MERCHANT_SETTINGS_KEY), ("version", 3))
        assert query.update.call_args.args[0].query == {"$set": fields}
        assert query.update.call_args.kwargs["response_type"] is UpdateResponse.NEW_DOCUMENT

    @pytest.mark.asyncio
    async def test_update_version_conflict_returns_none(self, mock_settings):
        mock_settings.find_one.return_value.update = AsyncMock(return_value=None)

        assert await MerchantSettingsRepository().update(1, {"version": 2}) is None

    @pytest.mark.asyncio
    async def test_update_driver_failure_is_database_error(self, mock_settings):
        mock_settings.find_one.return_value.update = AsyncMock(side_effect=PyMongoError("boom"))

        with pytest.raises(DatabaseError):
            await MerchantSettingsRepository().update(1, {"version": 2})
