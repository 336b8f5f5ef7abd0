"""Tests for environment-driven configuration."""

import pydantic
import pytest

from core.config import HeartbeatConfig, MonitorConfig, NotificationConfig, Thresholds


def test_threshold_defaults():
    t = Thresholds()
    assert t.consecutive_blocks_missed == 3
    assert t.consecutive_heartbeats_missed == 2
    assert t.sign_rate == pytest.approx(98.5)
    assert t.heartbeat_rate == pytest.approx(98.0)
    assert t.cooldown_seconds == pytest.approx(300.0)
    assert t.check_interval_seconds == pytest.approx(5.0)
    assert t.evm_vote_grace_seconds == pytest.approx(300.0)
    assert t.ampd_vote_grace_seconds == pytest.approx(60.0)


def test_thresholds_are_immutable():
    t = Thresholds()
    with pytest.raises(pydantic.ValidationError):
        t.sign_rate = 50.0


def test_monitor_config_from_env(monkeypatch):
    monkeypatch.setenv("VALIDATOR_ADDRESS", "ABCDEF")
    monkeypatch.setenv("BROADCASTER_ADDRESS", "axelar1xyz")
    monkeypatch.setenv("VALIDATOR_MONIKER", "val-one")
    monkeypatch.setenv("HEARTBEAT_PERIOD", "100")
    monkeypatch.setenv("ALERT_CONSECUTIVE_BLOCKS_THRESHOLD", "5")
    monkeypatch.setenv("ALERT_COOLDOWN_SECONDS", "60")
    monkeypatch.setenv("DISCORD_ALERTS_ENABLED", "true")
    monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.test/hook")
    monkeypatch.setenv("NATS_URL", "nats://localhost:4222")

    config = MonitorConfig.from_env()

    assert config.validator_address == "ABCDEF"
    assert config.moniker == "val-one"
    assert config.heartbeat.target_address == "axelar1xyz"
    assert config.heartbeat.period_length == 100
    assert config.thresholds.consecutive_blocks_missed == 5
    assert config.thresholds.cooldown_seconds == pytest.approx(60.0)
    assert config.notifications.discord.active
    assert not config.notifications.telegram.active
    assert config.nats_url == "nats://localhost:4222"


def test_heartbeat_target_falls_back_to_validator_address(monkeypatch):
    monkeypatch.setenv("VALIDATOR_ADDRESS", "ABCDEF")
    monkeypatch.delenv("BROADCASTER_ADDRESS", raising=False)

    assert HeartbeatConfig.from_env().target_address == "ABCDEF"


def test_missing_validator_address_fails_fast(monkeypatch):
    monkeypatch.delenv("VALIDATOR_ADDRESS", raising=False)
    monkeypatch.delenv("BROADCASTER_ADDRESS", raising=False)

    with pytest.raises(pydantic.ValidationError):
        MonitorConfig.from_env()


def test_invalid_threshold_rejected():
    with pytest.raises(pydantic.ValidationError):
        Thresholds(sign_rate=120.0)
    with pytest.raises(pydantic.ValidationError):
        Thresholds(check_interval_seconds=0)


def test_telegram_requires_token_and_chat(monkeypatch):
    monkeypatch.setenv("TELEGRAM_ALERTS_ENABLED", "1")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)

    assert not NotificationConfig.from_env().telegram.active
