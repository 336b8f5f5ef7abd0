"""Read-only metric snapshot types shared by the aggregator and alert engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any

from apps.heartbeat.period import HeartbeatStatus


class BlockSignStatus(IntEnum):
    """Per-block participation of the validator."""

    UNKNOWN = -1
    MISSED = 0
    PREVOTE = 1
    PRECOMMIT = 2
    SIGNED = 3
    PROPOSED = 4

    @property
    def is_signed(self) -> bool:
        return self in (BlockSignStatus.SIGNED, BlockSignStatus.PROPOSED)

    @property
    def is_missed(self) -> bool:
        return self in (
            BlockSignStatus.MISSED,
            BlockSignStatus.PREVOTE,
            BlockSignStatus.PRECOMMIT,
        )


class OutcomeStatus(StrEnum):
    """Normalized result of an EVM/AMPD poll vote or signing session."""

    VALID = "valid"
    INVALID = "invalid"
    UNSUBMITTED = "unsubmitted"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "OutcomeStatus":
        value = str(raw or "").strip().lower()
        if value in _VALID_RESULTS:
            return cls.VALID
        if value in _INVALID_RESULTS:
            return cls.INVALID
        if value in _UNSUBMITTED_RESULTS:
            return cls.UNSUBMITTED
        return cls.UNKNOWN


_VALID_RESULTS = {"valid", "validated", "signed", "succeeded", "succeeded_on_chain"}
_INVALID_RESULTS = {"invalid", "failed", "failed_on_chain", "not_found", "missed"}
_UNSUBMITTED_RESULTS = {"unsubmitted", "unsubmit", "pending"}
_ID_KEYS = ("id", "poll_id", "pollId", "signing_id", "signingId")


@dataclass(slots=True, frozen=True)
class PollOutcome:
    """One vote or signing obligation, with the time it was first observed."""

    id: str
    status: OutcomeStatus
    timestamp: float | None = None
    raw_result: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PollOutcome":
        raw = payload.get("result", payload.get("status", ""))
        identifier = next(
            (payload[key] for key in _ID_KEYS if payload.get(key) is not None),
            "unknown",
        )
        timestamp = payload.get("timestamp")
        return cls(
            id=str(identifier),
            status=OutcomeStatus.parse(raw),
            timestamp=float(timestamp) if timestamp is not None else None,
            raw_result=str(raw),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "raw_result": self.raw_result,
        }


@dataclass(slots=True, frozen=True)
class MetricsSnapshot:
    """
    Point-in-time view of validator health.

    Sequences are ordered most-recent-first, as stored by the aggregator.
    A ``None`` dimension means no data was ever supplied for it.
    """

    chain_id: str = "axelar"
    moniker: str = "My Validator"
    last_block: int = 0
    last_block_time: float | None = None
    block_statuses: tuple[BlockSignStatus, ...] | None = None
    total_signed: int = 0
    total_missed: int = 0
    total_proposed: int = 0
    prevote_missed: int = 0
    precommit_missed: int = 0
    heartbeat_statuses: tuple[HeartbeatStatus, ...] | None = None
    heartbeat_found_at: tuple[int | None, ...] = ()
    heartbeats_signed: int = 0
    heartbeats_missed: int = 0
    last_heartbeat_period: int = 0
    last_heartbeat_time: float | None = None
    connected: bool | None = None
    last_error: str = ""
    evm_votes: dict[str, tuple[PollOutcome, ...]] | None = None
    ampd_votes: dict[str, tuple[PollOutcome, ...]] | None = None
    ampd_signings: dict[str, tuple[PollOutcome, ...]] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self, *, sample_size: int | None = None) -> dict[str, Any]:
        def _trim(values):
            if values is None:
                return None
            items = list(values)
            return items if sample_size is None else items[:sample_size]

        def _chains(data):
            if data is None:
                return None
            return {
                chain: [outcome.as_dict() for outcome in _trim(outcomes)]
                for chain, outcomes in data.items()
            }

        block_statuses = _trim(self.block_statuses)
        heartbeat_statuses = _trim(self.heartbeat_statuses)
        return {
            "chain_id": self.chain_id,
            "moniker": self.moniker,
            "last_block": self.last_block,
            "last_block_time": self.last_block_time,
            "block_statuses": (
                [int(s) for s in block_statuses] if block_statuses is not None else None
            ),
            "total_signed": self.total_signed,
            "total_missed": self.total_missed,
            "total_proposed": self.total_proposed,
            "prevote_missed": self.prevote_missed,
            "precommit_missed": self.precommit_missed,
            "heartbeat_statuses": (
                [int(s) for s in heartbeat_statuses]
                if heartbeat_statuses is not None
                else None
            ),
            "heartbeat_found_at": _trim(self.heartbeat_found_at),
            "heartbeats_signed": self.heartbeats_signed,
            "heartbeats_missed": self.heartbeats_missed,
            "last_heartbeat_period": self.last_heartbeat_period,
            "last_heartbeat_time": self.last_heartbeat_time,
            "connected": self.connected,
            "last_error": self.last_error,
            "evm_votes": _chains(self.evm_votes),
            "ampd_votes": _chains(self.ampd_votes),
            "ampd_signings": _chains(self.ampd_signings),
        }
