"""Tests for environment configuration."""

import pytest

from statement_sync.config import Config
from statement_sync.errors import ConfigError

REQUIRED = {
    "DATABASE_URL": "postgresql://localhost/ledger",
    "IMAP_HOST": "imap.example.com",
    "IMAP_USER": "reports@example.com",
    "IMAP_PASSWORD": "secret",
}

OPTIONAL = [
    "IMAP_PORT", "IMAP_MAILBOX", "IMAP_TIMEOUT_SEC", "FETCH_TIMEOUT_SEC",
    "STATEMENT_SENDER", "STATEMENT_SUBJECT", "SMTP_HOST", "SMTP_PORT",
    "SMTP_USER", "SMTP_PASSWORD", "NOTIFY_FROM", "NOTIFY_TO",
    "SELECT_CHUNK_SIZE", "INSERT_BATCH_SIZE",
]


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env):
    config = Config.from_env()

    assert config.imap_port == 993
    assert config.imap_mailbox == "INBOX"
    assert config.statement_sender == "9910013@riyadbank.com"
    assert config.statement_subject == "Merchant Report"
    assert config.select_chunk_size == 500
    assert config.insert_batch_size == 200
    assert config.notify_to == []
    assert not config.notifications_enabled


def test_missing_required_variables_are_all_listed(env):
    env.delenv("IMAP_HOST")
    env.delenv("DATABASE_URL")

    with pytest.raises(ConfigError) as exc_info:
        Config.from_env()

    assert "DATABASE_URL" in str(exc_info.value)
    assert "IMAP_HOST" in str(exc_info.value)


def test_notifications_enabled_with_smtp_settings(env):
    env.setenv("SMTP_HOST", "smtp.example.com")
    env.setenv("SMTP_USER", "bot@example.com")
    env.setenv("SMTP_PASSWORD", "pw")
    env.setenv("NOTIFY_TO", "a@example.com, b@example.com ,")

    config = Config.from_env()

    assert config.notifications_enabled
    assert config.notify_to == ["a@example.com", "b@example.com"]
    assert config.notify_from == "bot@example.com"
