"""Classify a committed block by the validator's participation."""

from __future__ import annotations

from typing import Any

from core.metrics.snapshot import BlockSignStatus


class MalformedBlockError(ValueError):
    """Raised when a block payload lacks the fields needed for classification."""


def block_height(block_payload: dict[str, Any]) -> int:
    block = block_payload.get("block", block_payload)
    try:
        return int(block["header"]["height"])
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedBlockError(f"block header height missing or invalid: {exc}")


def commit_signers(block_payload: dict[str, Any]) -> set[str]:
    block = block_payload.get("block", block_payload)
    last_commit = block.get("last_commit") or {}
    if not isinstance(last_commit, dict):
        raise MalformedBlockError("block last_commit is not an object")
    signatures = last_commit.get("signatures") or []
    return {
        str(sig["validator_address"]).upper()
        for sig in signatures
        if isinstance(sig, dict) and sig.get("validator_address")
    }


def classify_block(
    block_payload: dict[str, Any], validator_address: str
) -> tuple[int, BlockSignStatus]:
    """Return ``(height, status)`` for the validator in a NewBlock payload."""
    height = block_height(block_payload)
    block = block_payload.get("block", block_payload)
    address = validator_address.upper()

    proposer = str(block["header"].get("proposer_address") or "").upper()
    if proposer == address:
        return height, BlockSignStatus.PROPOSED
    if address in commit_signers(block_payload):
        return height, BlockSignStatus.SIGNED
    return height, BlockSignStatus.MISSED
