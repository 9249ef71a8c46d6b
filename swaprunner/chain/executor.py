"""Swap executor protocol and the dry-run implementation.

The transaction builder itself (routing, approvals, signing) lives outside
this package; the engine only depends on the protocol below and never
inspects a submission beyond its hash.
"""

from __future__ import annotations

import logging
import time
import uuid
from decimal import Decimal
from typing import Protocol, runtime_checkable

from swaprunner.chain.models import ResolvedAsset, SwapDirection, TxHandle

logger = logging.getLogger("swaprunner")


@runtime_checkable
class SwapExecutor(Protocol):
    """Interface that every swap submitter must satisfy."""

    @property
    def owner_address(self) -> str:
        """Address whose balances the runner observes."""
        ...

    async def submit_swap(
        self,
        from_asset: ResolvedAsset,
        to_asset: ResolvedAsset,
        amount: Decimal,
        direction: SwapDirection,
    ) -> TxHandle:
        """Submit a swap and return its handle.

        Must raise ``SubmissionError`` if no transaction hash was produced.
        """
        ...


class DryRunSwapExecutor:
    """Logs swap intents and returns synthetic hashes.

    Nothing is sent to the chain, so balances never move: every dry-run
    entry ends in a pending timeout, which exercises the fail-safe path.
    """

    def __init__(self, owner_address: str) -> None:
        self._owner = owner_address
        self.submitted: list[TxHandle] = []

    @property
    def owner_address(self) -> str:
        return self._owner

    async def submit_swap(
        self,
        from_asset: ResolvedAsset,
        to_asset: ResolvedAsset,
        amount: Decimal,
        direction: SwapDirection,
    ) -> TxHandle:
        handle = TxHandle(
            hash=f"dryrun-{uuid.uuid4().hex}",
            direction=direction,
            amount=str(amount),
            submitted_at_ms=int(time.time() * 1000),
        )
        self.submitted.append(handle)
        logger.info(
            "[dry-run] %s %s %s → %s (tx %s)",
            direction.value, amount,
            from_asset.symbol or from_asset.address,
            to_asset.symbol or to_asset.address,
            handle.hash,
        )
        return handle
