"""
JSON-RPC chain client over web3.py (async)

- Reads via eth_call / eth_getCode
- Sends legacy-priced transactions signed by a KeyCustody backend
- Waits for a minimum confirmation depth and re-checks the receipt block
  hash, so a reorged inclusion is never trusted
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from bondflow.protocol.errors import DependencyError
from bondflow.signing.keys import KeyCustody

from .base import CallReverted, ChainClient, TxReceipt

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (Web3Exception, OSError, asyncio.TimeoutError)


def _revert_data(error: ContractLogicError) -> bytes:
    data = getattr(error, "data", None)
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str) and data.startswith("0x"):
        try:
            return bytes.fromhex(data[2:])
        except ValueError:
            return b""
    return b""


def _reverted(error: ContractLogicError) -> CallReverted:
    data = _revert_data(error)
    if data:
        return CallReverted(data=data)
    return CallReverted(reason=str(getattr(error, "message", None) or error))


class Web3ChainClient(ChainClient):
    """
    ChainClient backed by web3.AsyncWeb3 and an HTTP provider.

    Usage:
        async with Web3ChainClient(rpc_url, custody) as chain:
            code = await chain.get_code(address)
    """

    def __init__(
        self,
        rpc_url: str,
        custody: KeyCustody,
        *,
        receipt_timeout: float = 120.0,
        poll_interval: float = 2.0,
        w3: Optional[AsyncWeb3] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._custody = custody
        self._receipt_timeout = receipt_timeout
        self._poll_interval = poll_interval
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._chain_id: Optional[int] = None

    @property
    def sender(self) -> str:
        return self._custody.address

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def chain_id(self) -> int:
        if self._chain_id is None:
            try:
                self._chain_id = int(await self._w3.eth.chain_id)
            except _TRANSPORT_ERRORS as e:
                raise DependencyError(f"eth_chainId failed on {self._rpc_url}: {e}") from e
        return self._chain_id

    async def get_code(self, address: str) -> bytes:
        try:
            code = await self._w3.eth.get_code(to_checksum_address(address))
        except _TRANSPORT_ERRORS as e:
            raise DependencyError(f"eth_getCode({address}) failed: {e}") from e
        return bytes(code)

    async def call(self, to: str, data: bytes) -> bytes:
        tx = {"to": to_checksum_address(to), "from": self.sender, "data": HexBytes(data)}
        try:
            result = await self._w3.eth.call(tx)
        except ContractLogicError as e:
            raise _reverted(e) from e
        except _TRANSPORT_ERRORS as e:
            raise DependencyError(f"eth_call to {to} failed: {e}") from e
        return bytes(result)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def send_transaction(self, to: str, data: bytes, *, gas: Optional[int] = None) -> str:
        tx: Dict[str, Any] = {
            "to": to_checksum_address(to),
            "from": self.sender,
            "data": HexBytes(data),
            "value": 0,
        }
        try:
            tx["chainId"] = await self.chain_id()
            tx["nonce"] = await self._w3.eth.get_transaction_count(self.sender, "pending")
            tx["gasPrice"] = await self._w3.eth.gas_price
            if gas is None:
                gas = await self._w3.eth.estimate_gas(tx)
            tx["gas"] = gas
        except ContractLogicError as e:
            raise _reverted(e) from e
        except _TRANSPORT_ERRORS as e:
            raise DependencyError(f"Preparing transaction to {to} failed: {e}") from e

        raw = self._custody.sign_transaction(tx)
        try:
            tx_hash = await self._w3.eth.send_raw_transaction(raw)
        except _TRANSPORT_ERRORS as e:
            raise DependencyError(f"eth_sendRawTransaction failed: {e}") from e

        tx_hash_hex = HexBytes(tx_hash).to_0x_hex()
        logger.debug("Sent tx %s to=%s nonce=%s gas=%s", tx_hash_hex, to, tx["nonce"], gas)
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, *, confirmations: int = 1) -> TxReceipt:
        """
        Block until the receipt is `confirmations` deep and still canonical.

        There is no deadline once a transaction is in flight: each exhausted
        wait round is logged and waiting continues.
        """
        receipt = await self._await_inclusion(tx_hash)
        while True:
            try:
                head = await self._w3.eth.block_number
            except _TRANSPORT_ERRORS as e:
                logger.warning("block_number failed while confirming %s: %s", tx_hash, e)
                await asyncio.sleep(self._poll_interval)
                continue

            depth = head - receipt["blockNumber"] + 1
            if depth >= confirmations:
                try:
                    fresh = await self._w3.eth.get_transaction_receipt(tx_hash)
                except TransactionNotFound:
                    logger.warning("Receipt for %s vanished (reorg); waiting for re-inclusion", tx_hash)
                    receipt = await self._await_inclusion(tx_hash)
                    continue
                if fresh["blockHash"] == receipt["blockHash"]:
                    return self._to_receipt(fresh)
                logger.warning("Receipt for %s moved blocks (reorg); re-confirming", tx_hash)
                receipt = fresh
                continue

            await asyncio.sleep(self._poll_interval)

    async def _await_inclusion(self, tx_hash: str):
        while True:
            try:
                return await self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self._receipt_timeout, poll_latency=self._poll_interval
                )
            except TimeExhausted:
                logger.warning(
                    "Transaction %s not mined after %.0fs; still waiting",
                    tx_hash, self._receipt_timeout,
                )
            except _TRANSPORT_ERRORS as e:
                logger.warning("Receipt lookup for %s failed: %s; retrying", tx_hash, e)
                await asyncio.sleep(self._poll_interval)

    @staticmethod
    def _to_receipt(receipt) -> TxReceipt:
        return TxReceipt(
            tx_hash=HexBytes(receipt["transactionHash"]).to_0x_hex(),
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
            block_hash=HexBytes(receipt["blockHash"]).to_0x_hex(),
            gas_used=int(receipt["gasUsed"]),
        )

    async def close(self) -> None:
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
