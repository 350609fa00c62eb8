"""
Atomic multi-call submission backends.

A bundle of calls is submitted as one transaction. With allow_failure False
on every call, any failing call reverts the whole transaction, which is the
property the executor relies on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, Sequence, Tuple

from .abi import AGGREGATE3
from .base import ChainClient, TxReceipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Call3:
    target: str
    allow_failure: bool
    data: bytes

    def as_tuple(self) -> Tuple[str, bool, bytes]:
        return (self.target, self.allow_failure, self.data)


@dataclass(frozen=True)
class CallResult:
    success: bool
    return_data: bytes


class MulticallSubmitter(Protocol):
    """
    Protocol for multi-call backends.

    simulate() runs the bundle read-only with failures allowed, so the
    result of every call (including the revert data of the one that failed)
    is observable. submit() sends the bundle as given.
    """

    @property
    def address(self) -> str:
        ...

    async def simulate(self, calls: Sequence[Call3]) -> List[CallResult]:
        ...

    async def submit(self, calls: Sequence[Call3], *, gas: Optional[int] = None) -> TxReceipt:
        ...


class Multicall3Submitter:
    """Multicall3 `aggregate3` backend."""

    def __init__(self, chain: ChainClient, address: str, *, confirmations: int = 1) -> None:
        self._chain = chain
        self._address = address
        self._confirmations = confirmations

    @property
    def address(self) -> str:
        return self._address

    @staticmethod
    def encode(calls: Sequence[Call3]) -> bytes:
        return AGGREGATE3.encode([c.as_tuple() for c in calls])

    async def simulate(self, calls: Sequence[Call3]) -> List[CallResult]:
        relaxed = [replace(c, allow_failure=True) for c in calls]
        raw = await self._chain.call(self._address, self.encode(relaxed))
        (results,) = AGGREGATE3.decode_output(raw)
        return [CallResult(success=bool(ok), return_data=bytes(data)) for ok, data in results]

    async def submit(self, calls: Sequence[Call3], *, gas: Optional[int] = None) -> TxReceipt:
        tx_hash = await self._chain.send_transaction(self._address, self.encode(calls), gas=gas)
        logger.info("aggregate3 submitted: %s (%d calls)", tx_hash, len(calls))
        return await self._chain.wait_for_receipt(tx_hash, confirmations=self._confirmations)
