from .addresses import DEFAULT_DEPLOYMENT, ContractAddresses
from .batch import BatchBuilder, allocate
from .executor import AtomicExecutor, classify_revert
from .funding import TokenFunder
from .orchestrator import FlowConfig, Orchestrator
from .precompute import (
    AddressPrecomputer,
    build_executor_install_data,
    build_init_payload,
    derive_salt,
)
from .settings import BondFlowSettings, get_settings

__all__ = [
    "DEFAULT_DEPLOYMENT",
    "ContractAddresses",
    "BatchBuilder",
    "allocate",
    "AtomicExecutor",
    "classify_revert",
    "TokenFunder",
    "FlowConfig",
    "Orchestrator",
    "AddressPrecomputer",
    "build_executor_install_data",
    "build_init_payload",
    "derive_salt",
    "BondFlowSettings",
    "get_settings",
]
