"""
Atomic deploy + distribute.

One multi-call transaction with exactly two calls, both allow_failure=False:

    1. metaFactory.deployWithFactory(factory, createAccount(initData, salt))
    2. bondModule.executeBatchWithAttestation(account, batch, token, capBps, nonce, sig)

Either both take effect or neither does. A non-atomic sequence could leave
a deployed account whose distribution never ran, which this design treats
as unrecoverable.

CRITICAL INVARIANTS:
1. An account that already holds code is never redeployed or redistributed
2. Intermediate "deployed but not distributed" state is never observable
3. On any failure the account stays Funded and may be retried with a
   fresh nonce (and a fresh salt if the address must not be reused)
"""

from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional

from bondflow.chain import abi
from bondflow.chain.base import CallReverted, ChainClient
from bondflow.chain.multicall import Call3, CallResult, MulticallSubmitter
from bondflow.ledger.store import DeploymentLedger
from bondflow.protocol.enums import DeploymentStatus, Step
from bondflow.protocol.errors import (
    AtomicExecutionFailure,
    CapExceededError,
    ReplayError,
    ValidationError,
)
from bondflow.protocol.models import Attestation, DeploymentRecord, ExecutionBatch
from bondflow.protocol.validators import checksum
from bondflow.utils.timestamps import now_iso

from .addresses import ContractAddresses

logger = logging.getLogger(__name__)

_REPLAY_MARKERS = ("nonce", "replay")
_CAP_MARKERS = ("percentage", "capexceeded", "exceedscap", "exceedsallowed", "allowancecap")


def classify_revert(reason: str) -> type:
    """Map a verifier revert reason to the error type it represents."""
    normalized = reason.lower().replace(" ", "").replace("_", "")
    if any(marker in normalized for marker in _REPLAY_MARKERS):
        return ReplayError
    if any(marker in normalized for marker in _CAP_MARKERS):
        return CapExceededError
    return AtomicExecutionFailure


class AtomicExecutor:
    def __init__(
        self,
        chain: ChainClient,
        submitter: MulticallSubmitter,
        addresses: ContractAddresses,
        *,
        ledger: Optional[DeploymentLedger] = None,
        gas_limit: Optional[int] = 5_000_000,
        preflight: bool = True,
    ) -> None:
        self._chain = chain
        self._submitter = submitter
        self._addresses = addresses
        self._ledger = ledger
        self._gas_limit = gas_limit
        self._preflight = preflight

    # ------------------------------------------------------------------
    def build_calls(
        self,
        account: str,
        init_payload: bytes,
        salt: bytes,
        attestation: Attestation,
        batch: ExecutionBatch,
    ) -> List[Call3]:
        a = self._addresses
        create_call = abi.CREATE_ACCOUNT.encode(init_payload, salt)
        deploy = abi.DEPLOY_WITH_FACTORY.encode(a.account_factory, create_call)
        execute = abi.EXECUTE_BATCH_WITH_ATTESTATION.encode(
            checksum(account),
            batch.encode(),
            attestation.token,
            attestation.cap_bps,
            attestation.nonce,
            attestation.signature,
        )
        return [
            Call3(target=a.meta_factory, allow_failure=False, data=deploy),
            Call3(target=a.bond_module, allow_failure=False, data=execute),
        ]

    def existing_record(self, account: str, chain_id: Optional[int] = None) -> DeploymentRecord:
        """
        Outcome of a run that found code at the address.

        Carries the ledger's details for the account when it has them; the
        status always says this run deployed nothing.
        """
        if self._ledger is not None:
            record = self._ledger.get(account)
            if record is not None:
                return dataclasses.replace(record, status=DeploymentStatus.ALREADY_DEPLOYED)
        return DeploymentRecord(
            account=checksum(account),
            status=DeploymentStatus.ALREADY_DEPLOYED,
            timestamp=now_iso(),
            chain_id=chain_id,
            contracts=self._addresses.core_contracts(),
        )

    async def execute(
        self,
        account: str,
        init_payload: bytes,
        salt: bytes,
        attestation: Attestation,
        batch: ExecutionBatch,
    ) -> DeploymentRecord:
        account = checksum(account)
        nonce = attestation.nonce

        if attestation.account != account:
            raise ValidationError(
                f"Attestation is for {attestation.account}, not {account}",
                step=Step.EXECUTE, account=account, nonce=nonce,
            )
        if attestation.batch_digest != batch.digest():
            raise ValidationError(
                "Attestation does not cover this batch",
                step=Step.EXECUTE, account=account, nonce=nonce,
            )

        if await self._chain.has_code(account):
            logger.warning("Account %s already deployed; skipping execution", account)
            return self.existing_record(account, attestation.chain_id)

        calls = self.build_calls(account, init_payload, salt, attestation, batch)

        if self._preflight:
            await self._simulate(calls, account, nonce)

        logger.info(
            "[execute] submitting deploy + %d-call distribution for %s (nonce=%d)",
            len(batch.calls), account, nonce,
        )
        try:
            receipt = await self._submitter.submit(calls, gas=self._gas_limit)
        except CallReverted as e:
            raise classify_revert(e.reason)(
                f"Atomic bundle rejected: {e.reason}", step=Step.EXECUTE, account=account, nonce=nonce
            ) from e

        if not receipt.succeeded:
            raise AtomicExecutionFailure(
                f"Atomic bundle {receipt.tx_hash} reverted; deployment and distribution rolled back",
                step=Step.EXECUTE, account=account, nonce=nonce,
            )

        if not await self._chain.has_code(account):
            raise AtomicExecutionFailure(
                f"Bundle {receipt.tx_hash} succeeded but {account} has no code",
                step=Step.EXECUTE, account=account, nonce=nonce,
            )

        logger.info(
            "[execute] %s deployed and distributed in tx %s (gas %d)",
            account, receipt.tx_hash, receipt.gas_used,
        )
        await self._log_module_status(account)

        return DeploymentRecord(
            account=account,
            status=DeploymentStatus.DEPLOYED,
            timestamp=now_iso(),
            chain_id=attestation.chain_id,
            distribution=batch.distribution(),
            contracts=self._addresses.core_contracts(),
            salt="0x" + salt.hex(),
            nonce=nonce,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
        )

    # ------------------------------------------------------------------
    async def _simulate(self, calls: List[Call3], account: str, nonce: int) -> None:
        """Dry-run the bundle; raise the classified error of the first failing call."""
        try:
            results: List[CallResult] = await self._submitter.simulate(calls)
        except CallReverted as e:
            raise AtomicExecutionFailure(
                f"Preflight of atomic bundle reverted: {e.reason}",
                step=Step.EXECUTE, account=account, nonce=nonce,
            ) from e

        deploy_result, execute_result = results
        if not deploy_result.success:
            reason = abi.decode_revert(deploy_result.return_data)
            raise AtomicExecutionFailure(
                f"Preflight: account deployment would fail: {reason}",
                step=Step.EXECUTE, account=account, nonce=nonce,
            )
        if not execute_result.success:
            reason = abi.decode_revert(execute_result.return_data)
            raise classify_revert(reason)(
                f"Preflight: attested batch would be rejected: {reason}",
                step=Step.EXECUTE, account=account, nonce=nonce,
            )
        logger.debug("Preflight of atomic bundle for %s passed", account)

    async def _log_module_status(self, account: str) -> None:
        module = self._addresses.bond_module
        for fn in (abi.IS_INITIALIZED, abi.IS_AGENT_MODE_ACTIVATED):
            try:
                (value,) = fn.decode_output(await self._chain.call(module, fn.encode(account)))
            except CallReverted as e:
                logger.warning("%s(%s) reverted: %s", fn.name, account, e.reason)
                continue
            logger.info("%s(%s) = %s", fn.name, account, value)
