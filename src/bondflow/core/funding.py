"""
Pre-funding of the precomputed address.

Minting is not part of the attested protocol; it only moves the account
from Undeployed to Funded. The balance poll after it is the one bounded
retry in a run: it absorbs read-after-write lag on the node, nothing else.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from bondflow.chain import abi
from bondflow.chain.base import CallReverted, ChainClient, TxReceipt
from bondflow.protocol.enums import Step
from bondflow.protocol.errors import DependencyError, StateSyncError
from bondflow.protocol.validators import checksum

logger = logging.getLogger(__name__)


class TokenFunder:
    def __init__(
        self,
        chain: ChainClient,
        token: str,
        *,
        confirmations: int = 1,
        poll_attempts: int = 10,
        poll_interval: float = 1.0,
    ) -> None:
        self._chain = chain
        self._token = checksum(token)
        self._confirmations = confirmations
        self._poll_attempts = max(1, poll_attempts)
        self._poll_interval = poll_interval

    async def balance_of(self, account: str) -> int:
        try:
            raw = await self._chain.call(self._token, abi.BALANCE_OF.encode(checksum(account)))
        except CallReverted as e:
            raise DependencyError(f"balanceOf reverted: {e.reason}", account=account) from e
        (balance,) = abi.BALANCE_OF.decode_output(raw)
        return int(balance)

    async def mint(self, to: str, amount: int) -> TxReceipt:
        try:
            tx_hash = await self._chain.send_transaction(
                self._token, abi.MINT.encode(checksum(to), amount)
            )
        except CallReverted as e:
            raise DependencyError(
                f"mint rejected by token {self._token}: {e.reason}", step=Step.MINT, account=to
            ) from e

        receipt = await self._chain.wait_for_receipt(tx_hash, confirmations=self._confirmations)
        if not receipt.succeeded:
            raise DependencyError(
                f"mint transaction {receipt.tx_hash} reverted", step=Step.MINT, account=to
            )
        logger.info("Minted %d to %s (tx %s)", amount, to, receipt.tx_hash)
        return receipt

    async def wait_for_balance(self, account: str, *, minimum: int = 1) -> int:
        """
        Poll balanceOf until it reaches `minimum`, with a fixed interval.

        Raises:
            StateSyncError: if every attempt saw a lower balance or failed
        """
        last_error: Optional[Exception] = None
        balance = 0
        for attempt in range(1, self._poll_attempts + 1):
            try:
                balance = await self.balance_of(account)
                last_error = None
            except DependencyError as e:
                last_error = e

            if last_error is None and balance >= minimum:
                logger.info("Balance of %s is %d (attempt %d)", account, balance, attempt)
                return balance

            logger.warning(
                "Balance of %s not yet visible (attempt %d/%d): %s",
                account, attempt, self._poll_attempts,
                last_error or f"balance={balance}",
            )
            if attempt < self._poll_attempts:
                await asyncio.sleep(self._poll_interval)

        raise StateSyncError(
            f"Balance of {account} still below {minimum} after {self._poll_attempts} attempts",
            step=Step.BALANCE_SYNC,
            account=account,
        ) from last_error
