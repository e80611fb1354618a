# tests/test_x402_audit.py
"""
Unit tests for x402 audit logging.
"""
import json
import pytest
from unittest.mock import patch

from app.core.config import settings
from app.x402.audit import (
    AuditEventType,
    generate_request_id,
    get_audit_log_path,
    create_audit_event,
    log_audit_event,
    log_requirements_issued,
    log_settlement_retry,
    log_payment_settled,
    log_payment_failed,
    log_entitlement_granted,
    log_reconciliation_required,
    log_error,
    read_audit_log,
)

from conftest import WALLET


class TestAuditEventType:
    """Test audit event type enumeration."""

    def test_event_types_exist(self):
        """All expected event types exist."""
        assert AuditEventType.REQUIREMENTS_ISSUED.value == "requirements_issued"
        assert AuditEventType.SETTLEMENT_RETRY.value == "settlement_retry"
        assert AuditEventType.PAYMENT_SETTLED.value == "payment_settled"
        assert AuditEventType.PAYMENT_FAILED.value == "payment_failed"
        assert AuditEventType.ENTITLEMENT_GRANTED.value == "entitlement_granted"
        assert AuditEventType.RECONCILIATION_REQUIRED.value == "reconciliation_required"
        assert AuditEventType.ERROR.value == "error"


class TestGenerateRequestId:
    """Test request ID generation."""

    def test_correct_length(self):
        assert len(generate_request_id()) == 8

    def test_unique_ids(self):
        ids = [generate_request_id() for _ in range(100)]
        assert len(set(ids)) == 100


class TestCreateAuditEvent:
    """Test audit event creation."""

    def test_creates_event_structure(self):
        event = create_audit_event(
            event_type=AuditEventType.PAYMENT_SETTLED,
            data={"tx_hash": "0xabc"},
            wallet_address=WALLET,
            request_id="req12345",
        )

        assert event["event_type"] == "payment_settled"
        assert event["request_id"] == "req12345"
        assert event["wallet_address"] == WALLET
        assert event["data"] == {"tx_hash": "0xabc"}
        assert "timestamp" in event

    def test_generates_request_id(self):
        event = create_audit_event(AuditEventType.ERROR, {})
        assert len(event["request_id"]) == 8


class TestLogAuditEvent:
    """Test writing events to the JSON-lines log."""

    def test_path_follows_config(self):
        assert str(get_audit_log_path()) == settings.AUDIT_LOG_PATH

    def test_appends_json_lines(self):
        log_audit_event(AuditEventType.ERROR, {"n": 1})
        log_audit_event(AuditEventType.ERROR, {"n": 2})

        lines = get_audit_log_path().read_text().strip().splitlines()
        assert [json.loads(line)["data"]["n"] for line in lines] == [1, 2]

    def test_creates_parent_directory(self, tmp_path, monkeypatch):
        nested = tmp_path / "deep" / "er" / "audit.jsonl"
        monkeypatch.setattr(settings, "AUDIT_LOG_PATH", str(nested))

        assert log_audit_event(AuditEventType.ERROR, {}, request_id="abcd1234") == "abcd1234"
        assert nested.exists()

    def test_write_failure_returns_none(self):
        """Audit failures never raise into the payment flow."""
        with patch("builtins.open", side_effect=OSError("read-only filesystem")):
            assert log_audit_event(AuditEventType.ERROR, {}) is None


class TestConvenienceLoggers:
    """Test the typed event helpers."""

    def test_requirements_issued(self):
        log_requirements_issued(WALLET, mode="live", amount="1004500", network="arbitrum", deadline=123)

        event = read_audit_log()[0]
        assert event["event_type"] == "requirements_issued"
        assert event["data"] == {"mode": "live", "amount": "1004500", "network": "arbitrum", "deadline": 123}

    def test_settlement_retry(self):
        log_settlement_retry(WALLET, attempt=2, delay_seconds=2.0, reason="503")

        assert read_audit_log()[0]["data"] == {"attempt": 2, "delay_seconds": 2.0, "reason": "503"}

    def test_payment_settled(self):
        log_payment_settled(WALLET, tx_hash="0xabc", mode="live", attempts=1)

        assert read_audit_log()[0]["data"]["tx_hash"] == "0xabc"

    def test_payment_failed(self):
        log_payment_failed(WALLET, stage="settlement", reason="insufficient funds")

        assert read_audit_log()[0]["data"] == {"stage": "settlement", "reason": "insufficient funds"}

    def test_entitlement_granted(self):
        log_entitlement_granted(
            WALLET, entitlement_id="e1", shared_dataset_id="d1", tx_hash="0xabc",
            valid_until="2025-01-01T00:00:00+00:00",
        )

        assert read_audit_log()[0]["data"]["entitlement_id"] == "e1"

    def test_reconciliation_required(self):
        log_reconciliation_required(WALLET, tx_hash="0xabc", shared_dataset_id=None, reason="locked")

        event = read_audit_log()[0]
        assert event["event_type"] == "reconciliation_required"
        assert event["data"]["shared_dataset_id"] is None

    def test_error(self):
        log_error("StoreError", "disk full", context={"op": "insert"})

        assert read_audit_log()[0]["data"]["context"] == {"op": "insert"}


class TestReadAuditLog:
    """Test reading events back."""

    def test_missing_file(self):
        assert read_audit_log() == []

    def test_most_recent_first(self):
        for n in range(3):
            log_error("E", str(n))

        messages = [e["data"]["error_message"] for e in read_audit_log()]
        assert messages == ["2", "1", "0"]

    def test_max_entries(self):
        for n in range(5):
            log_error("E", str(n))

        assert len(read_audit_log(max_entries=2)) == 2

    def test_filter_by_event_type(self):
        log_error("E", "x")
        log_payment_failed(WALLET, stage="settlement", reason="y")

        events = read_audit_log(event_type=AuditEventType.PAYMENT_FAILED)
        assert [e["event_type"] for e in events] == ["payment_failed"]

    def test_filter_by_wallet_is_case_insensitive(self):
        log_payment_failed(WALLET, stage="settlement", reason="y")
        log_payment_failed("0x" + "c" * 40, stage="settlement", reason="z")

        events = read_audit_log(wallet_address=WALLET.lower())
        assert len(events) == 1
        assert events[0]["data"]["reason"] == "y"

    def test_skips_corrupt_lines(self):
        log_error("E", "ok")
        with open(get_audit_log_path(), "a") as f:
            f.write("{not json\n\n")

        assert len(read_audit_log()) == 1
