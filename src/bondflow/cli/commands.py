"""
CLI commands for bondflow.

Commands:
    bondflow deploy [--salt-label L] [--nonce N]    Fund, deploy and activate one account
    bondflow address [--salt-label L]               Print the precomputed account address
    bondflow ledger [--output table|json]           List recorded deployments

Each command returns a process exit status. Flow errors propagate to the
entry point, which reports them and exits 1.
"""

from __future__ import annotations

import dataclasses
import json
from typing import Any, Dict, List

from bondflow.chain.web3_client import Web3ChainClient
from bondflow.core.orchestrator import FlowConfig, Orchestrator
from bondflow.core.settings import BondFlowSettings
from bondflow.ledger.store import DeploymentLedger
from bondflow.protocol.enums import DeploymentStatus
from bondflow.protocol.models import DeploymentRecord
from bondflow.signing.attestation import AttestationSigner
from bondflow.signing.keys import LocalKeyCustody, load_custody


def _deployer(settings: BondFlowSettings) -> LocalKeyCustody:
    return load_custody(settings.signing.private_key, settings.signing.key_file)


def _attester(settings: BondFlowSettings, deployer: LocalKeyCustody) -> LocalKeyCustody:
    if settings.signing.attester_key:
        return load_custody(settings.signing.attester_key, role="attester")
    return deployer


def _ledger(args, settings: BondFlowSettings) -> DeploymentLedger:
    path = getattr(args, "ledger", None) or settings.ledger.ledger_path
    return DeploymentLedger(path, network=settings.network.network_name)


def _client(settings: BondFlowSettings, custody: LocalKeyCustody) -> Web3ChainClient:
    return Web3ChainClient(
        settings.network.rpc_url,
        custody,
        receipt_timeout=settings.network.receipt_timeout,
    )


# ----------------------------------------------------------------------
# deploy
# ----------------------------------------------------------------------

async def cmd_deploy(args, settings: BondFlowSettings) -> int:
    """Run the full funding + activation flow for one account."""
    config = FlowConfig.from_settings(settings)
    if getattr(args, "no_preflight", False):
        config = dataclasses.replace(config, preflight=False)

    deployer = _deployer(settings)
    signer = AttestationSigner(_attester(settings, deployer))
    ledger = _ledger(args, settings)

    async with _client(settings, deployer) as chain:
        flow = Orchestrator(config, chain, signer, ledger)
        record = await flow.run(salt_label=args.salt_label, nonce=args.nonce)

    _print_record(record, ledger)
    return 0


# ----------------------------------------------------------------------
# address
# ----------------------------------------------------------------------

async def cmd_address(args, settings: BondFlowSettings) -> int:
    """Print the address the account would be (or was) deployed at."""
    config = FlowConfig.from_settings(settings)
    deployer = _deployer(settings)

    async with _client(settings, deployer) as chain:
        flow = Orchestrator(config, chain, AttestationSigner(deployer), _ledger(args, settings))
        account = await flow.prepare_account(args.salt_label)
        deployed = await chain.has_code(account.address)

    print(account.address)
    print(f"  salt:     0x{account.salt.hex()}")
    print(f"  owner:    {deployer.address}")
    print(f"  deployed: {'yes' if deployed else 'no'}")
    return 0


# ----------------------------------------------------------------------
# ledger
# ----------------------------------------------------------------------

def cmd_ledger(args, settings: BondFlowSettings) -> int:
    """List recorded deployments for the configured network."""
    ledger = _ledger(args, settings)
    records = ledger.list_all()
    output_format = getattr(args, "output", "table")

    if output_format == "json":
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return 0

    if not records:
        print(f"No deployments recorded in {ledger.path} ({ledger.network}).")
        return 0

    print(f"{'ACCOUNT':<44} {'STATUS':<18} {'NONCE':<12} {'BLOCK':<10} {'TIMESTAMP'}")
    print("-" * 110)
    for r in records:
        nonce = str(r.nonce) if r.nonce is not None else "-"
        block = str(r.block_number) if r.block_number is not None else "-"
        print(f"{r.account:<44} {r.status.value:<18} {nonce:<12} {block:<10} {r.timestamp[:19]}")

    print(f"\nTotal: {len(records)} deployments")
    return 0


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------

def _print_record(record: DeploymentRecord, ledger: DeploymentLedger) -> None:
    if record.status == DeploymentStatus.ALREADY_DEPLOYED:
        print(f"Account {record.account} is already deployed; nothing was sent.")
        print("Use a different --salt-label to deploy a new account.")
        return

    print("Deployment complete")
    print("=" * 50)
    print(f"Account:            {record.account}")
    print(f"Transaction:        {record.tx_hash}")
    print(f"Block:              {record.block_number}")
    print(f"Gas used:           {record.gas_used}")
    print(f"Nonce:              {record.nonce}")
    print()
    print("Distribution:")
    for line in _distribution_lines(record.distribution):
        print(f"  {line}")
    if record.links:
        print()
        for name, link in record.links.items():
            print(f"{name}: {link}")
    print()
    print(f"Recorded in {ledger.path}")


def _distribution_lines(distribution: Dict[str, Any]) -> List[str]:
    width = max((len(label) for label in distribution), default=0)
    return [f"{label:<{width}}  {amount}" for label, amount in distribution.items()]
