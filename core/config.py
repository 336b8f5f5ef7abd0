"""Environment-driven configuration for the validator sentinel."""

from __future__ import annotations

import os

import pydantic
from pydantic import BaseModel, ConfigDict, Field


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Thresholds(BaseModel):
    """Alert thresholds, read-only for the process lifetime."""

    model_config = ConfigDict(frozen=True)

    consecutive_blocks_missed: int = Field(default=3, ge=1)
    consecutive_heartbeats_missed: int = Field(default=2, ge=1)
    sign_rate: float = Field(default=98.5, ge=0.0, le=100.0)
    heartbeat_rate: float = Field(default=98.0, ge=0.0, le=100.0)
    consecutive_evm_votes_missed: int = Field(default=3, ge=1)
    consecutive_ampd_votes_missed: int = Field(default=3, ge=1)
    consecutive_ampd_signings_missed: int = Field(default=3, ge=1)
    evm_vote_grace_seconds: float = Field(default=300.0, ge=0.0)
    ampd_vote_grace_seconds: float = Field(default=60.0, ge=0.0)
    ampd_signing_grace_seconds: float = Field(default=60.0, ge=0.0)
    cooldown_seconds: float = Field(default=300.0, ge=0.0)
    check_interval_seconds: float = Field(default=5.0, gt=0.0)

    @classmethod
    def from_env(cls) -> "Thresholds":
        return cls(
            consecutive_blocks_missed=int(
                os.getenv("ALERT_CONSECUTIVE_BLOCKS_THRESHOLD", "3")
            ),
            consecutive_heartbeats_missed=int(
                os.getenv("ALERT_CONSECUTIVE_HEARTBEATS_THRESHOLD", "2")
            ),
            sign_rate=float(os.getenv("ALERT_SIGN_RATE_THRESHOLD", "98.5")),
            heartbeat_rate=float(os.getenv("ALERT_HEARTBEAT_RATE_THRESHOLD", "98.0")),
            consecutive_evm_votes_missed=int(
                os.getenv("ALERT_CONSECUTIVE_EVM_VOTES_THRESHOLD", "3")
            ),
            consecutive_ampd_votes_missed=int(
                os.getenv("ALERT_CONSECUTIVE_AMPD_VOTES_THRESHOLD", "3")
            ),
            consecutive_ampd_signings_missed=int(
                os.getenv("ALERT_CONSECUTIVE_AMPD_SIGNINGS_THRESHOLD", "3")
            ),
            evm_vote_grace_seconds=float(os.getenv("EVM_VOTE_GRACE_SECONDS", "300")),
            ampd_vote_grace_seconds=float(os.getenv("AMPD_VOTE_GRACE_SECONDS", "60")),
            ampd_signing_grace_seconds=float(
                os.getenv("AMPD_SIGNING_GRACE_SECONDS", "60")
            ),
            cooldown_seconds=float(os.getenv("ALERT_COOLDOWN_SECONDS", "300")),
            check_interval_seconds=float(
                os.getenv("ALERT_CHECK_INTERVAL_SECONDS", "5")
            ),
        )


class DiscordConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    webhook_url: str = ""

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.webhook_url)


class TelegramConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.bot_token) and bool(self.chat_id)


class NotificationConfig(BaseModel):
    """Per-channel enable flags and credentials."""

    model_config = ConfigDict(frozen=True)

    discord: DiscordConfig = DiscordConfig()
    telegram: TelegramConfig = TelegramConfig()
    timeout_seconds: float = Field(default=10.0, gt=0.0)

    @classmethod
    def from_env(cls) -> "NotificationConfig":
        return cls(
            discord=DiscordConfig(
                enabled=_env_flag("DISCORD_ALERTS_ENABLED"),
                webhook_url=os.getenv("DISCORD_WEBHOOK_URL", ""),
            ),
            telegram=TelegramConfig(
                enabled=_env_flag("TELEGRAM_ALERTS_ENABLED"),
                bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
                chat_id=os.getenv("TELEGRAM_CHAT_ID", ""),
            ),
            timeout_seconds=float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10")),
        )


class HeartbeatConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_address: str
    period_length: int = Field(default=50, ge=1)
    history_size: int = Field(default=700, ge=1)
    detection_window: int = Field(default=10, ge=0)

    @pydantic.field_validator("target_address")
    @classmethod
    def validate_target_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("heartbeat target address must not be empty")
        return v.strip()

    @classmethod
    def from_env(cls) -> "HeartbeatConfig":
        validator_address = os.getenv("VALIDATOR_ADDRESS", "")
        return cls(
            target_address=os.getenv("BROADCASTER_ADDRESS") or validator_address,
            period_length=int(os.getenv("HEARTBEAT_PERIOD", "50")),
            history_size=int(os.getenv("HEARTBEAT_HISTORY_SIZE", "700")),
            detection_window=int(os.getenv("HEARTBEAT_DETECTION_WINDOW", "10")),
        )


class MonitorConfig(BaseModel):
    """Top-level service configuration."""

    model_config = ConfigDict(frozen=True)

    validator_address: str
    moniker: str = "My Validator"
    chain_id: str = "axelar"
    blocks_history_size: int = Field(default=35000, ge=1)
    block_stale_seconds: float = Field(default=60.0, gt=0.0)
    nats_url: str | None = None
    nats_subject_prefix: str = "validator"
    heartbeat: HeartbeatConfig
    thresholds: Thresholds = Thresholds()
    notifications: NotificationConfig = NotificationConfig()

    @pydantic.field_validator("validator_address")
    @classmethod
    def validate_validator_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("VALIDATOR_ADDRESS must be set")
        return v.strip()

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        return cls(
            validator_address=os.getenv("VALIDATOR_ADDRESS", ""),
            moniker=os.getenv("VALIDATOR_MONIKER", "My Validator"),
            chain_id=os.getenv("CHAIN_ID", "axelar"),
            blocks_history_size=int(os.getenv("BLOCKS_HISTORY_SIZE", "35000")),
            block_stale_seconds=float(os.getenv("BLOCK_STALE_SECONDS", "60")),
            nats_url=os.getenv("NATS_URL") or None,
            nats_subject_prefix=os.getenv("NATS_SUBJECT_PREFIX", "validator"),
            heartbeat=HeartbeatConfig.from_env(),
            thresholds=Thresholds.from_env(),
            notifications=NotificationConfig.from_env(),
        )


__all__ = [
    "DiscordConfig",
    "HeartbeatConfig",
    "MonitorConfig",
    "NotificationConfig",
    "TelegramConfig",
    "Thresholds",
]
