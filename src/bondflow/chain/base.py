"""
Chain client interface.

This defines the boundary between the protocol core and the node:

    core  -> call(to, data)              -> bytes          (read-only)
    core  -> send_transaction(to, data)  -> tx hash        (state-changing)
    core  -> wait_for_receipt(tx hash)   -> TxReceipt      (confirmed)

Clients DO NOT:
  - build calldata (chain.abi does that)
  - interpret revert reasons (the executor does that)
  - resend or retry state-changing requests

Clients ONLY:
  - move bytes to and from the node
  - sign transactions through their key custody backend
  - wait for the configured confirmation depth
  - turn transport failures into DependencyError and reverts into CallReverted
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .abi import decode_revert


class CallReverted(Exception):
    """An eth_call or gas estimation reverted. Carries the raw revert data."""

    def __init__(self, reason: Optional[str] = None, data: Optional[bytes] = None):
        self.data = data or b""
        self.reason = reason or decode_revert(self.data)
        super().__init__(self.reason)


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int
    block_hash: str
    gas_used: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient(ABC):
    """
    Abstract base class for chain access.

    Implicit contract:
        - every method is a coroutine performing at most one logical request
        - send_transaction() signs with the client's sender key
        - wait_for_receipt() returns only once the receipt is at least
          `confirmations` blocks deep and still canonical
    """

    @property
    @abstractmethod
    def sender(self) -> str:
        """Address transactions are sent from."""
        raise NotImplementedError

    @abstractmethod
    async def chain_id(self) -> int:
        raise NotImplementedError

    @abstractmethod
    async def get_code(self, address: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    async def call(self, to: str, data: bytes) -> bytes:
        """eth_call against the latest block. Raises CallReverted on revert."""
        raise NotImplementedError

    @abstractmethod
    async def send_transaction(self, to: str, data: bytes, *, gas: Optional[int] = None) -> str:
        """Sign and broadcast. Returns the 0x-prefixed transaction hash."""
        raise NotImplementedError

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, *, confirmations: int = 1) -> TxReceipt:
        raise NotImplementedError

    async def has_code(self, address: str) -> bool:
        return len(await self.get_code(address)) > 0

    async def close(self) -> None:
        """Release transport resources. Default: nothing to release."""
        return None

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
