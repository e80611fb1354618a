"""
Shared fixtures for payment and entitlement tests.
"""
import time
from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import settings
from app.services.store import DatasetStore, close_store
from app.x402.ratelimit import reset_rate_limiter

WALLET = "0x" + "A" * 40
SPENDER = "0x" + "b" * 40
USDC_ARBITRUM = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
RECIPIENT = "0x1234567890123456789012345678901234567890"


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep audit logs and the process-wide store inside the test's tmp dir."""
    monkeypatch.setattr(settings, "AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
    monkeypatch.setattr(settings, "DATABASE_PATH", str(tmp_path / "paywall.db"))
    close_store()
    reset_rate_limiter()
    yield
    close_store()
    reset_rate_limiter()


@pytest.fixture
def store(tmp_path):
    dataset_store = DatasetStore(str(tmp_path / "store.db"))
    dataset_store.initialize()
    return dataset_store


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def active_dataset(store, now):
    return store.insert_dataset(
        items=[{"id": "event-1", "spreadPercent": 4.5}, {"id": "event-2", "spreadPercent": 3.1}],
        expires_at=now + timedelta(hours=1),
        created_at=now - timedelta(minutes=5),
    )


def make_requirements(**overrides):
    requirements = {
        "network": "arbitrum",
        "token": USDC_ARBITRUM,
        "recipient": RECIPIENT,
        "amount": "1004500",
        "nonce": "0x" + "1" * 64,
        "deadline": int(time.time()) + 3600,
    }
    requirements.update(overrides)
    return requirements


def make_permit(**overrides):
    permit = {
        "owner": WALLET,
        "spender": SPENDER,
        "value": "1004500",
        "deadline": int(time.time()) + 3600,
        "nonce": "0x" + "2" * 64,
        "sig": "0x" + "ab" * 32 + "cd" * 32 + "1b",
    }
    permit.update(overrides)
    return permit
