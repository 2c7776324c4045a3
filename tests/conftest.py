import asyncio
import hashlib
import hmac
import json
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from paylink.core import config as config_module
from paylink.core.config import (
    AppConfig,
    DatabaseConfig,
    LoggingConfig,
    PaymentConfig,
    RateLimitConfig,
    SecurityConfig,
)
from paylink.core.exceptions import DuplicateIdError
from paylink.core.limiter import limiter
from paylink.dependencies import get_payment_service
from paylink.main import app
from paylink.schemas.payment import TransactionStatus
from paylink.schemas.records import MerchantSettingsRecord, TransactionRecord
from paylink.services.lifecycle import Transition
from paylink.services.merchant_config import MerchantConfigProvider
from paylink.services.payload_builder import PayloadBuilder, generate_note
from paylink.services.payment_service import PaymentService
from paylink.services.transaction_store import TransactionStore

WEBHOOK_SECRET = "test_webhook_secret"
MERCHANT_UPI = "shop@okaxis"
MERCHANT_SECRET = "test_merchant_secret"
START_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

ANDROID_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Mobile Safari/537.36"
IOS_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148"
DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/124.0"


class InMemoryTransactionRepository:
    """Dict-backed stand-in honouring the conditional-write contract."""

    def __init__(self):
        self.records: Dict[str, TransactionRecord] = {}
        self.fail_inserts_with_duplicate = 0

    async def insert(self, record: TransactionRecord) -> TransactionRecord:
        await asyncio.sleep(0)
        if self.fail_inserts_with_duplicate > 0:
            self.fail_inserts_with_duplicate -= 1
            raise DuplicateIdError(record.tx_id)
        if record.tx_id in self.records:
            raise DuplicateIdError(record.tx_id)
        self.records[record.tx_id] = record
        return record

    async def get(self, tx_id: str) -> Optional[TransactionRecord]:
        # Yield so concurrent callers interleave between read and write
        await asyncio.sleep(0)
        return self.records.get(tx_id)

    async def transition(self, tx_id: str, transition: Transition) -> Optional[TransactionRecord]:
        await asyncio.sleep(0)
        record = self.records.get(tx_id)
        if record is None or record.status is not TransactionStatus.PENDING:
            return None
        update = {
            "status": transition.status,
            "completed_at": transition.completed_at,
            "updated_at": transition.completed_at,
        }
        if transition.provider_reference:
            update["provider_reference"] = transition.provider_reference
        updated = record.model_copy(update=update)
        self.records[tx_id] = updated
        return updated


class InMemoryMerchantSettingsRepository:
    def __init__(self, record: Optional[MerchantSettingsRecord] = None):
        self.record = record
        self.create_calls = 0

    async def get(self) -> Optional[MerchantSettingsRecord]:
        return self.record

    async def create(self, record: MerchantSettingsRecord) -> MerchantSettingsRecord:
        self.create_calls += 1
        if self.record is None:
            self.record = record
        return self.record

    async def update(self, expected_version: int, fields) -> Optional[MerchantSettingsRecord]:
        if self.record is None or self.record.version != expected_version:
            return None
        data = self.record.model_dump()
        history = dict(data["secret_history"])
        for key, value in fields.items():
            if key.startswith("secret_history."):
                history[key.split(".", 1)[1]] = value
            elif key in data:
                data[key] = value
        data["secret_history"] = history
        self.record = MerchantSettingsRecord(**data)
        return self.record


class RecordingReconciler:
    def __init__(self, fail: bool = False):
        self.calls: List[Tuple[str, TransactionStatus]] = []
        self.fail = fail

    async def on_transaction_resolved(self, order_id: str, final_status: TransactionStatus) -> None:
        self.calls.append((order_id, final_status))
        if self.fail:
            raise ConnectionError("order store unavailable")


class FakeClock:
    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


def make_app_config(environment: str = "test") -> AppConfig:
    return AppConfig(
        database=DatabaseConfig(url="mongodb://localhost:27017/paylink_test"),
        security=SecurityConfig(
            webhook_secret_key=WEBHOOK_SECRET,
            max_webhook_age_seconds=300,
            monitoring_api_key="test_monitoring_key",
        ),
        payment=PaymentConfig(
            default_merchant_upi=MERCHANT_UPI,
            default_merchant_secret=MERCHANT_SECRET,
        ),
        rate_limit=RateLimitConfig(
            create_rate_limit="1000/minute",
            webhook_rate_limit="1000/minute",
            api_rate_limit="1000/minute",
        ),
        logging=LoggingConfig(level="DEBUG"),
        environment=environment,
    )


@pytest.fixture
def app_config(monkeypatch):
    config = make_app_config()
    monkeypatch.setattr(config_module, "_app_config", config)
    return config


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transaction_repository():
    return InMemoryTransactionRepository()


@pytest.fixture
def settings_repository():
    return InMemoryMerchantSettingsRepository()


@pytest.fixture
def reconciler():
    return RecordingReconciler()


@pytest.fixture
def merchant_config(settings_repository, app_config):
    return MerchantConfigProvider(settings_repository, defaults=app_config.payment)


@pytest.fixture
def note_factory():
    rng = random.Random(42)
    return lambda: generate_note(rng)


@pytest.fixture
def store(transaction_repository, merchant_config, reconciler, clock, note_factory):
    return TransactionStore(
        repository=transaction_repository,
        merchant_config=merchant_config,
        reconciler=reconciler,
        payload_builder=PayloadBuilder(note_factory=note_factory),
        clock=clock,
    )


@pytest.fixture
def payment_service(store, app_config):
    return PaymentService(store, app_config)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def client(payment_service):
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def webhook_headers(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> dict:
    """X-Signature/X-Timestamp headers for a raw webhook body."""
    if timestamp is None:
        timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256
    ).hexdigest()
    return {
        "X-Signature": signature,
        "X-Timestamp": str(timestamp),
        "Content-Type": "application/json",
    }


def encode_body(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode()


@pytest.fixture
def signed_webhook():
    """Return a helper producing (raw_body, headers) for a webhook payload."""

    def _sign(payload: dict, secret: str = WEBHOOK_SECRET, timestamp: int = None):
        body = encode_body(payload)
        return body, webhook_headers(body, secret=secret, timestamp=timestamp)

    return _sign


@pytest.fixture
def user_agents():
    return {"android": ANDROID_UA, "ios": IOS_UA, "desktop": DESKTOP_UA}


@pytest.fixture
def merchant_secret():
    return MERCHANT_SECRET


@pytest.fixture
def production_config(monkeypatch):
    config = make_app_config(environment="production")
    monkeypatch.setattr(config_module, "_app_config", config)
    return config
