"""
bondflow: atomic funding and activation of modular smart accounts.

One transaction deploys a counterfactual account and runs an attested
vault distribution from it; either both happen or neither does.
"""

from .core.addresses import ContractAddresses
from .core.orchestrator import FlowConfig, Orchestrator
from .core.settings import BondFlowSettings, get_settings
from .ledger.store import DeploymentLedger
from .protocol import (
    AllocationPlan,
    Attestation,
    BondFlowError,
    DeploymentRecord,
    ExecutionBatch,
)
from .signing import AttestationSigner, LocalKeyCustody

__version__ = "0.1.0"

__all__ = [
    "ContractAddresses",
    "FlowConfig",
    "Orchestrator",
    "BondFlowSettings",
    "get_settings",
    "DeploymentLedger",
    "AllocationPlan",
    "Attestation",
    "BondFlowError",
    "DeploymentRecord",
    "ExecutionBatch",
    "AttestationSigner",
    "LocalKeyCustody",
]
