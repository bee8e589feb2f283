"""
Observability and Security Tests

Validates the ambient stack the banking services rely on:
1. Correlation context flows into structured and human-readable log lines
2. Sync metrics counters and timing summaries
3. Provider credentials are sealed at rest and scope-bound
4. Settings are read from the environment
"""

import json
import logging
import sqlite3
from unittest.mock import patch

import pytest

from core.config import BankingSettings, Psd2ProviderSettings
from core.observability import CorrelationContext, SyncMetrics, get_logger, with_correlation
from core.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    get_correlation_context,
)
from core.security.credential_store import ProviderCredentialStore
from core.security.encryption import SecretEncryption, generate_encryption_key


def _record(msg="Account synced", **extra_fields):
    record = logging.LogRecord("banking.sync", logging.INFO, __file__, 1, msg, (), None)
    record.extra_fields = extra_fields
    return record


class TestCorrelationContext:

    def test_to_dict_drops_unset_ids(self):
        ctx = CorrelationContext(company_id=1, connection_id=7)

        assert ctx.to_dict() == {"company_id": 1, "connection_id": 7}

    def test_merge_keeps_existing_values(self):
        ctx = CorrelationContext(company_id=1).merge(connection_id=7, account_id=None)

        assert ctx.to_dict() == {"company_id": 1, "connection_id": 7}

    def test_with_correlation_nests_and_restores(self):
        with with_correlation(company_id=1):
            with with_correlation(connection_id=7) as inner:
                assert inner.company_id == 1
                assert get_correlation_context().connection_id == 7
            assert get_correlation_context().connection_id is None

        assert get_correlation_context().to_dict() == {}


class TestFormatters:

    def test_structured_formatter_includes_context_and_extra_fields(self):
        with with_correlation(company_id=1, connection_id=7, sync_id="a1b2c3d4e5"):
            line = StructuredFormatter().format(_record(new_transactions=12))

        data = json.loads(line)
        assert data["message"] == "Account synced"
        assert data["level"] == "INFO"
        assert data["logger"] == "banking.sync"
        assert data["connection_id"] == 7
        assert data["sync_id"] == "a1b2c3d4e5"
        assert data["new_transactions"] == 12

    def test_human_readable_formatter(self):
        with with_correlation(company_id=1, connection_id=7, sync_id="a1b2c3d4e5"):
            line = HumanReadableFormatter().format(_record(inserted=3))

        assert "[co:1/conn:7/sync:a1b2c3d4]" in line
        assert line.endswith("Account synced inserted=3")

    def test_human_readable_without_context(self):
        line = HumanReadableFormatter().format(_record())

        assert "banking.sync [-]: Account synced" in line


class TestCorrelatedLogger:

    def test_loggers_are_cached_by_name(self):
        assert get_logger("banking.test") is get_logger("banking.test")

    def test_extra_fields_reach_handlers(self):
        captured = []

        class _Capture(logging.Handler):
            def emit(self, record):
                captured.append(record)

        handler = _Capture()
        underlying = logging.getLogger("banking.test.capture")
        underlying.addHandler(handler)
        underlying.setLevel(logging.DEBUG)
        try:
            get_logger("banking.test.capture").info("Synced %s", "acc-1", extra_fields={"inserted": 2})
        finally:
            underlying.removeHandler(handler)

        [record] = captured
        assert record.getMessage() == "Synced acc-1"
        assert record.extra_fields == {"inserted": 2}


class TestSyncMetrics:

    def test_counters(self):
        metrics = SyncMetrics()
        metrics.record_sync_started(7)
        metrics.record_sync_completed(7, duration_ms=120.0)
        metrics.record_sync_started(8)
        metrics.record_sync_failed(8)
        metrics.record_rate_limited()
        metrics.record_consent_expired()
        metrics.record_transactions(inserted=5, skipped=2, categorized=3)
        metrics.record_bank_retry()

        summary = metrics.get_summary()

        assert summary["syncs"]["started"] == 2
        assert summary["syncs"]["completed"] == 1
        assert summary["syncs"]["failed"] == 1
        assert summary["syncs"]["rate_limited"] == 1
        assert summary["syncs"]["consent_expired"] == 1
        assert summary["syncs"]["by_connection"]["8"] == {"started": 1, "completed": 0, "failed": 1}
        assert summary["transactions"] == {
            "inserted": 5, "duplicates_skipped": 2, "categorized": 3, "uncategorized": 2,
        }
        assert summary["bank_retries"] == 1
        assert summary["last_sync_at"] is not None

    def test_timings(self):
        metrics = SyncMetrics()
        for duration in range(1, 101):
            metrics.record_sync_completed(1, duration_ms=float(duration))

        timings = metrics.get_summary()["timings"]

        assert timings["samples"] == 100
        assert timings["avg_ms"] == 50.5
        assert timings["p95_ms"] == 96.0

    def test_empty_summary_is_serializable(self):
        summary = SyncMetrics().get_summary()

        assert summary["timings"] == {"avg_ms": 0.0, "p95_ms": 0.0, "samples": 0}
        assert summary["last_sync_at"] is None
        json.dumps(summary)


class TestSecretEncryption:

    def test_round_trip(self):
        enc = SecretEncryption(generate_encryption_key())

        sealed = enc.encrypt({"client_secret": "tpp-secret"}, scope="psd2")

        assert "tpp-secret" not in sealed.ciphertext
        assert enc.decrypt(sealed) == {"client_secret": "tpp-secret"}

    def test_scope_is_authenticated(self):
        enc = SecretEncryption(generate_encryption_key())
        sealed = enc.encrypt({"client_secret": "tpp-secret"}, scope="psd2")
        sealed.scope = "other"

        with pytest.raises(ValueError):
            enc.decrypt(sealed)

    def test_wrong_key(self):
        sealed = SecretEncryption(generate_encryption_key()).encrypt({"k": "v"}, scope="psd2")

        with pytest.raises(ValueError):
            SecretEncryption(generate_encryption_key()).decrypt(sealed)

    def test_short_key_rejected(self):
        with pytest.raises(ValueError):
            SecretEncryption("c2hvcnQ=")


class TestProviderCredentialStore:

    @pytest.fixture
    def credential_store(self, tmp_path):
        return ProviderCredentialStore(tmp_path / "creds.db", SecretEncryption(generate_encryption_key()))

    def test_save_and_load(self, credential_store):
        settings = Psd2ProviderSettings(
            api_url="https://bank.example",
            client_id="tpp-client",
            client_secret="tpp-secret",
            redirect_uri="https://app.example/sca-done",
        )

        credential_store.save("psd2", settings)

        assert credential_store.load("psd2") == settings

    def test_secret_not_stored_in_clear(self, credential_store):
        credential_store.save("psd2", Psd2ProviderSettings("https://bank.example", "tpp-client", "tpp-secret"))

        conn = sqlite3.connect(credential_store.db_path)
        try:
            [raw] = conn.execute("SELECT encrypted_secret FROM provider_config").fetchone()
        finally:
            conn.close()
        assert "tpp-secret" not in raw

    def test_missing_and_delete(self, credential_store):
        assert credential_store.load("psd2") is None
        assert credential_store.delete("psd2") is False

        credential_store.save("psd2", Psd2ProviderSettings("https://bank.example", "tpp-client", "tpp-secret"))

        assert credential_store.delete("psd2") is True
        assert credential_store.load("psd2") is None


class TestSettings:

    def test_from_env(self):
        env = {
            "PSD2_API_URL": "https://bank.example",
            "PSD2_CLIENT_ID": "tpp-client",
            "PSD2_CLIENT_SECRET": "tpp-secret",
            "SYNC_LOOKBACK_DAYS": "30",
            "LOG_JSON": "yes",
            "LOG_LEVEL": "debug",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = BankingSettings.from_env()

        assert settings.provider.client_id == "tpp-client"
        assert settings.sync_lookback_days == 30
        assert settings.log_json is True
        assert settings.log_level == "DEBUG"

    def test_incomplete_provider_is_ignored(self):
        with patch.dict("os.environ", {"PSD2_API_URL": "https://bank.example"}, clear=True):
            settings = BankingSettings.from_env()

        assert settings.provider is None
        assert settings.max_retries == 3
