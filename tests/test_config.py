"""Tests for environment-driven configuration."""
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from config.settings import DEFAULT_AMOY_USDC, PayoutConfig, PotConfig, load_config


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("POT_DATABASE_URL", "COMMUNITY_POT_PAYOUT_SECRET", "POT_MAX_PARTICIPANTS",
                 "COMMUNITY_POT_TRANSFER_BACKEND", "PAYOUT_MAX_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)

    config = load_config()

    assert config.database.url == "sqlite+aiosqlite:///community_pot.db"
    assert config.pot.default_amount == Decimal("100.00")
    assert config.pot.default_max_participants == 10
    assert config.payout.secret is None
    assert config.payout.max_attempts == 5
    assert config.transfer.backend == "erc20"
    assert config.transfer.testnet_token_contract == DEFAULT_AMOY_USDC


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("POT_DATABASE_URL", "sqlite+aiosqlite:///other.db")
    monkeypatch.setenv("POT_DEFAULT_AMOUNT", "250.50")
    monkeypatch.setenv("POT_TEST_MODE", "false")
    monkeypatch.setenv("COMMUNITY_POT_PAYOUT_SECRET", "s3cret")
    monkeypatch.setenv("PAYOUT_TRANSFER_TIMEOUT", "30")
    monkeypatch.setenv("COMMUNITY_POT_TRANSFER_BACKEND", "relay")
    monkeypatch.setenv("COMMUNITY_POT_RELAY_URL", "https://relay.example")

    config = load_config()

    assert config.database.url == "sqlite+aiosqlite:///other.db"
    assert config.pot.default_amount == Decimal("250.50")
    assert config.pot.default_test_mode is False
    assert config.payout.secret == "s3cret"
    assert config.payout.transfer_timeout_seconds == 30.0
    assert config.transfer.backend == "relay"
    assert config.transfer.relay_url == "https://relay.example"


def test_unknown_backend_is_rejected(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("COMMUNITY_POT_TRANSFER_BACKEND", "carrier-pigeon")
    with pytest.raises(PydanticValidationError):
        load_config()


@pytest.mark.parametrize("kwargs", [
    {"default_amount": Decimal("0")},
    {"default_max_participants": 0},
    {"distribution_weekday": 8},
])
def test_pot_config_bounds(kwargs):
    with pytest.raises(PydanticValidationError):
        PotConfig(**kwargs)


def test_payout_config_requires_positive_budget():
    with pytest.raises(PydanticValidationError):
        PayoutConfig(max_attempts=0)


def test_lease_must_outlive_transfer_timeout():
    with pytest.raises(PydanticValidationError):
        PayoutConfig(lease_seconds=60, transfer_timeout_seconds=60)

    config = PayoutConfig(lease_seconds=61, transfer_timeout_seconds=60)
    assert config.lease_seconds == 61
