import pytest
from pydantic import ValidationError

from batchsend.config import Settings


def test_database_url_legacy_alias(monkeypatch):
    """DSN should load from the legacy alias when database_url is unset."""

    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DSN", "sqlite:///legacy.db")

    settings = Settings()

    assert settings.database_url == "sqlite:///legacy.db"


def test_postgres_scheme_normalized(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db/transfers")

    settings = Settings()

    assert settings.database_url == "postgresql://user:pw@db/transfers"


def test_timing_defaults(monkeypatch):
    for name in ("NONCE_WAIT_SECONDS", "RECEIPT_POLL_SECONDS", "MONITOR_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.nonce_wait_seconds == 5.0
    assert settings.receipt_poll_seconds == 15.0
    assert settings.monitor_timeout_seconds == 600.0


def test_token_transfers_use_token_gas_limit(monkeypatch):
    monkeypatch.setenv("TRANSFER_KIND", "Alternate_Asset")
    monkeypatch.setenv("TOKEN_GAS_LIMIT", "90000")

    settings = Settings()

    assert settings.transfer_kind == "alternate_asset"
    assert settings.effective_gas_limit == 90000


def test_unknown_transfer_kind_rejected(monkeypatch):
    monkeypatch.setenv("TRANSFER_KIND", "wrapped")

    with pytest.raises(ValidationError):
        Settings()


def test_log_format_normalized_and_checked(monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", " JSON ")
    assert Settings().log_format == "json"

    monkeypatch.setenv("LOG_FORMAT", "xml")
    with pytest.raises(ValidationError):
        Settings()
