import shutil
import tempfile

import pytest

from bondflow.core.addresses import ContractAddresses
from bondflow.core.orchestrator import FlowConfig, Orchestrator
from bondflow.ledger.store import DeploymentLedger
from bondflow.protocol.models import AllocationPlan
from bondflow.signing.attestation import AttestationSigner
from bondflow.signing.keys import LocalKeyCustody

from fakes import FakeChain

INITIAL_BALANCE = 10_000_000_000


@pytest.fixture
def tmp_dir():
    """Create a temporary directory for test data."""
    d = tempfile.mkdtemp(prefix="bondflow_test_")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def addresses():
    return ContractAddresses.load()


@pytest.fixture
def custody():
    return LocalKeyCustody.generate()


@pytest.fixture
def chain(addresses, custody):
    return FakeChain(addresses, custody=custody)


@pytest.fixture
def plan(addresses):
    return AllocationPlan.parse("zyfai=3000,giza=3000,cod3x=4000", addresses.vault_map)


@pytest.fixture
def ledger(tmp_dir):
    return DeploymentLedger(f"{tmp_dir}/deployments.json")


@pytest.fixture
def flow_config(addresses, plan):
    return FlowConfig(
        addresses=addresses,
        plan=plan,
        cap_bps=10_000,
        initial_balance=INITIAL_BALANCE,
        allowance_cap=INITIAL_BALANCE,
        poll_interval=0.0,
        expected_chain_id=84532,
        explorer_url="https://sepolia.basescan.org",
    )


@pytest.fixture
def orchestrator(flow_config, chain, custody, ledger):
    return Orchestrator(flow_config, chain, AttestationSigner(custody), ledger)
