# bondflow/core/orchestrator.py

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional
import logging

from bondflow.chain.base import ChainClient
from bondflow.chain.multicall import Multicall3Submitter, MulticallSubmitter
from bondflow.ledger.store import DeploymentLedger
from bondflow.protocol.enums import AccountStatus, DeploymentStatus, Step
from bondflow.protocol.errors import (
    BondFlowError,
    CapExceededError,
    ConfigurationError,
)
from bondflow.protocol.models import Account, AllocationPlan, DeploymentRecord
from bondflow.protocol.validators import validate_cap, validate_plan
from bondflow.signing.attestation import AttestationSigner, recover_signer
from bondflow.utils.timestamps import monotonic_ms, today_iso, unix_seconds

from .addresses import ContractAddresses
from .batch import BatchBuilder
from .executor import AtomicExecutor
from .funding import TokenFunder
from .precompute import AddressPrecomputer, build_init_payload, derive_salt
from .settings import BondFlowSettings

logger = logging.getLogger(__name__)

LEDGER_MODULE_NAME = "bondModule"


# ----------------------------------------------------------------------
# RUN CONFIGURATION
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class FlowConfig:
    """
    Immutable configuration for one run.

    Everything a component needs from the outside world is here; nothing
    is read from module-level state during the run.
    """
    addresses: ContractAddresses
    plan: AllocationPlan
    cap_bps: int
    initial_balance: int
    allowance_cap: int
    salt_prefix: str = "nexus-bondmodule"
    gas_limit: Optional[int] = 5_000_000
    min_confirmations: int = 1
    preflight: bool = True
    poll_attempts: int = 10
    poll_interval: float = 1.0
    network_name: str = "baseSepolia"
    expected_chain_id: Optional[int] = None
    explorer_url: Optional[str] = None
    token_name: str = "Test USDC"
    token_symbol: str = "USDC"
    token_decimals: int = 6

    @classmethod
    def from_settings(
        cls, settings: BondFlowSettings, addresses: Optional[ContractAddresses] = None
    ) -> "FlowConfig":
        addresses = addresses or ContractAddresses.load(settings.runtime.addresses_file)
        dist = settings.distribution
        try:
            plan = AllocationPlan.parse(dist.plan, addresses.vault_map)
        except KeyError as e:
            raise ConfigurationError(f"Allocation plan names unknown vault {e}") from None
        except ValueError as e:
            raise ConfigurationError(f"Malformed allocation plan {dist.plan!r}: {e}") from None
        return cls(
            addresses=addresses,
            plan=plan,
            cap_bps=dist.cap_bps,
            initial_balance=dist.initial_balance,
            allowance_cap=dist.allowance_cap,
            salt_prefix=dist.salt_prefix,
            gas_limit=settings.network.gas_limit,
            min_confirmations=settings.network.min_confirmations,
            preflight=dist.preflight,
            poll_attempts=settings.polling.balance_poll_attempts,
            poll_interval=settings.polling.balance_poll_interval,
            network_name=settings.network.network_name,
            expected_chain_id=settings.network.expected_chain_id,
            explorer_url=settings.network.explorer_url,
            token_name=dist.token_name,
            token_symbol=dist.token_symbol,
            token_decimals=dist.token_decimals,
        )

    def explorer_link(self, address: str) -> Optional[str]:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url.rstrip('/')}/address/{address}"


# ----------------------------------------------------------------------
# ORCHESTRATOR
# ----------------------------------------------------------------------

class Orchestrator:
    """
    Runs one funding + activation flow end to end:

        precompute -> check deployed -> mint -> poll balance
                   -> build batch -> sign -> atomic execute -> record

    - Strictly sequential; one account per run
    - Stops on the first error, which names the step, account and nonce
    - An already-deployed account short-circuits to its existing record
      with no mint, deployment or transfer
    """

    def __init__(
        self,
        config: FlowConfig,
        chain: ChainClient,
        signer: AttestationSigner,
        ledger: DeploymentLedger,
        *,
        submitter: Optional[MulticallSubmitter] = None,
    ):
        self._config = config
        self._chain = chain
        self._signer = signer
        self._ledger = ledger

        a = config.addresses
        self._precomputer = AddressPrecomputer(chain, a.account_factory)
        self._builder = BatchBuilder(a.token)
        self._funder = TokenFunder(
            chain,
            a.token,
            confirmations=config.min_confirmations,
            poll_attempts=config.poll_attempts,
            poll_interval=config.poll_interval,
        )
        self._executor = AtomicExecutor(
            chain,
            submitter or Multicall3Submitter(chain, a.multicall3, confirmations=config.min_confirmations),
            a,
            ledger=ledger,
            gas_limit=config.gas_limit,
            preflight=config.preflight,
        )

    # ------------------------------------------------------------------
    @contextmanager
    def _step(
        self, step: Step, account: Optional[str] = None, nonce: Optional[int] = None
    ) -> Iterator[None]:
        started = monotonic_ms()
        logger.info("[%s] account=%s", step.value, account or "-")
        try:
            yield
        except BondFlowError as e:
            e.step = e.step or step
            e.account = e.account or account
            if e.nonce is None:
                e.nonce = nonce
            logger.error("[%s] failed: %s", step.value, e.describe())
            raise
        logger.debug("[%s] done in %d ms", step.value, monotonic_ms() - started)

    # ------------------------------------------------------------------
    async def connect(self) -> int:
        with self._step(Step.CONNECT):
            chain_id = await self._chain.chain_id()
            expected = self._config.expected_chain_id
            if expected is not None and chain_id != expected:
                raise ConfigurationError(
                    f"Connected to chain {chain_id}, expected {expected}"
                )
            logger.info("Connected: chain_id=%d sender=%s", chain_id, self._chain.sender)
        return chain_id

    async def prepare_account(self, salt_label: Optional[str] = None) -> Account:
        """Build the init payload, derive the salt and precompute the address."""
        label = salt_label or f"{self._config.salt_prefix}-{unix_seconds()}"
        with self._step(Step.PRECOMPUTE):
            init_payload = build_init_payload(
                self._config.addresses,
                self._chain.sender,
                allowance_cap=self._config.allowance_cap,
            )
            account = await self._precomputer.precompute(init_payload, derive_salt(label))
        logger.info("Precomputed account %s (salt label %r)", account.address, label)
        return account

    async def run(
        self, *, salt_label: Optional[str] = None, nonce: Optional[int] = None
    ) -> DeploymentRecord:
        cfg = self._config
        validate_plan(cfg.plan)
        validate_cap(cfg.cap_bps)
        if cfg.plan.total_bps > cfg.cap_bps:
            raise CapExceededError(
                f"Plan distributes {cfg.plan.total_bps} bps but the cap is {cfg.cap_bps} bps",
                step=Step.BUILD_BATCH,
            )

        chain_id = await self.connect()
        account = await self.prepare_account(salt_label)
        address = account.address

        with self._step(Step.CHECK_DEPLOYED, address):
            deployed = await self._chain.has_code(address)
        if deployed:
            logger.warning("Account %s already deployed; use a different salt for a new account", address)
            account.status = AccountStatus.DEPLOYED
            return self._record_existing(self._executor.existing_record(address, chain_id))

        with self._step(Step.MINT, address):
            await self._funder.mint(address, cfg.initial_balance)

        with self._step(Step.BALANCE_SYNC, address):
            balance = await self._funder.wait_for_balance(address)
        account.status = AccountStatus.FUNDED

        with self._step(Step.BUILD_BATCH, address):
            batch = self._builder.build(balance, cfg.plan)
        for label, amount in batch.amounts:
            logger.info("  %-8s %d", label, amount)
        if batch.distributed_total < balance:
            logger.info(
                "Rounding leaves %d units undistributed in %s",
                balance - batch.distributed_total, address,
            )

        nonce = unix_seconds() if nonce is None else nonce
        with self._step(Step.SIGN, address, nonce):
            attestation = self._signer.sign(
                chain_id, address, cfg.addresses.token, cfg.cap_bps, nonce, batch
            )
            if recover_signer(attestation) != self._signer.address:
                raise ConfigurationError("Attestation signature does not recover to the attester key")

        with self._step(Step.EXECUTE, address, nonce):
            record = await self._executor.execute(
                address, account.init_payload, account.salt, attestation, batch
            )
        account.status = AccountStatus.DEPLOYED
        if record.status == DeploymentStatus.ALREADY_DEPLOYED:
            return self._record_existing(record)

        with self._step(Step.RECORD, address, nonce):
            link = cfg.explorer_link(address)
            if link:
                record.links["account"] = link
            record = self._ledger.upsert(record)
            self._ledger.record_module(LEDGER_MODULE_NAME, self.module_info(address))

        return record

    def _record_existing(self, record: DeploymentRecord) -> DeploymentRecord:
        # a stored outcome is kept as is
        if self._ledger.get(record.account) is not None:
            return record
        with self._step(Step.RECORD, record.account):
            self._ledger.upsert(record)
        return record

    # ------------------------------------------------------------------
    def module_info(self, demo_account: str) -> dict:
        """Deployment metadata for the ledger's modules section."""
        cfg = self._config
        a = cfg.addresses
        info = {
            "address": a.bond_module,
            "deploymentDate": today_iso(),
            "features": {
                "agentMode": True,
                "percentageBasedLimits": True,
                "teeAttestation": True,
                "replayProtection": True,
                "yieldProtocolIntegration": True,
                "atomicMulticall3Deployment": True,
            },
            "demoAccount": {"preComputedAddress": demo_account},
            "escrowVaults": {
                label: {
                    "address": entry["vault"],
                    "allocation": entry["allocation"],
                }
                for label, entry in cfg.plan.to_dict().items()
            },
            "token": {
                "address": a.token,
                "name": cfg.token_name,
                "symbol": cfg.token_symbol,
                "decimals": cfg.token_decimals,
            },
            "coreContracts": a.core_contracts(),
        }
        if cfg.explorer_url:
            info["explorerLink"] = cfg.explorer_link(a.bond_module)
            info["demoAccount"]["explorerLink"] = cfg.explorer_link(demo_account)
            for vault in info["escrowVaults"].values():
                vault["explorerLink"] = cfg.explorer_link(vault["address"])
            info["token"]["explorerLink"] = cfg.explorer_link(a.token)
        return info
