"""NATS chain-event ingestion into typed events for the monitor service."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from core.metrics.snapshot import PollOutcome

logger = logging.getLogger(__name__)

POLL_KINDS = ("evm_votes", "ampd_votes", "ampd_signings")


@dataclass(slots=True, frozen=True)
class BlockEvent:
    payload: dict[str, Any]


@dataclass(slots=True, frozen=True)
class TxEvent:
    height: int
    tx: str
    log: str = ""


@dataclass(slots=True, frozen=True)
class PollUpdate:
    kind: str
    chain: str
    outcomes: tuple[PollOutcome, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class ConnectionEvent:
    connected: bool
    error: str = ""


ChainEvent = BlockEvent | TxEvent | PollUpdate | ConnectionEvent
EventSink = Callable[[ChainEvent], Awaitable[None]]


class ChainEventIngest:
    """Subscribes to `<prefix>.>` and forwards decoded events to ``sink``."""

    def __init__(
        self, nats_client: Any, sink: EventSink, subject_prefix: str = "validator"
    ):
        self.nats_client = nats_client
        self.sink = sink
        self.subject_prefix = subject_prefix.rstrip(".")
        self._subscription: Any = None

    async def start(self) -> None:
        self._subscription = await self.nats_client.subscribe(
            f"{self.subject_prefix}.>", cb=self._on_message
        )
        logger.info(f"Chain event ingest subscribed to {self.subject_prefix}.>")

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None

    async def _on_message(self, msg: Any) -> None:
        await self.handle_message(msg.subject, msg.data)

    async def handle_message(
        self, subject: str, data: bytes | str
    ) -> ChainEvent | None:
        """Decode one message; undecodable messages are logged and dropped."""
        kind = subject.removeprefix(f"{self.subject_prefix}.")
        try:
            payload = self._decode_payload(data)
            event = self.parse_event(kind, payload)
        except (
            json.JSONDecodeError,
            UnicodeDecodeError,
            TypeError,
            ValueError,
            KeyError,
            AttributeError,
        ) as exc:
            logger.warning(f"Dropping undecodable message on {subject}: {exc}")
            return None

        if event is None:
            logger.debug(f"Ignoring message on unhandled subject {subject}")
            return None
        await self.sink(event)
        return event

    @staticmethod
    def parse_event(kind: str, payload: dict[str, Any]) -> ChainEvent | None:
        if kind == "block":
            return BlockEvent(payload=payload)

        if kind == "tx":
            # Accepts the flat form and the Tendermint `Tx` event form.
            tx_result = payload.get("TxResult") or payload.get("tx_result")
            if tx_result is not None:
                result = tx_result.get("result") or {}
                return TxEvent(
                    height=int(tx_result["height"]),
                    tx=str(tx_result["tx"]),
                    log=str(result.get("log") or ""),
                )
            return TxEvent(
                height=int(payload["height"]),
                tx=str(payload["tx"]),
                log=str(payload.get("log") or ""),
            )

        if kind in POLL_KINDS:
            entries = payload.get("outcomes")
            if entries is None:
                entries = payload.get("signings" if kind == "ampd_signings" else "polls")
            if not isinstance(entries, list):
                raise TypeError(f"{kind} payload has no outcome list")
            return PollUpdate(
                kind=kind,
                chain=str(payload["chain"]).lower(),
                outcomes=tuple(PollOutcome.from_payload(entry) for entry in entries),
            )

        if kind == "connection":
            return ConnectionEvent(
                connected=bool(payload["connected"]),
                error=str(payload.get("error") or ""),
            )

        return None

    @staticmethod
    def _decode_payload(data: bytes | str) -> dict[str, Any]:
        if isinstance(data, bytes):
            payload = json.loads(data.decode())
        elif isinstance(data, str):
            payload = json.loads(data)
        else:
            raise TypeError("Event payload must be bytes or JSON string")
        if not isinstance(payload, dict):
            raise TypeError("Event payload must be a JSON object")
        return payload
