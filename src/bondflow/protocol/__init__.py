from .enums import AccountStatus, DeploymentStatus, ErrorCode, Step
from .errors import (
    BondFlowError,
    ConfigurationError,
    ValidationError,
    DependencyError,
    StateSyncError,
    AlreadyDeployedError,
    AtomicExecutionFailure,
    ReplayError,
    CapExceededError,
)
from .models import (
    BPS_DENOMINATOR,
    Account,
    AllocationEntry,
    AllocationPlan,
    SubCall,
    ExecutionBatch,
    Attestation,
    DeploymentRecord,
)

__all__ = [
    "AccountStatus",
    "DeploymentStatus",
    "ErrorCode",
    "Step",
    "BondFlowError",
    "ConfigurationError",
    "ValidationError",
    "DependencyError",
    "StateSyncError",
    "AlreadyDeployedError",
    "AtomicExecutionFailure",
    "ReplayError",
    "CapExceededError",
    "BPS_DENOMINATOR",
    "Account",
    "AllocationEntry",
    "AllocationPlan",
    "SubCall",
    "ExecutionBatch",
    "Attestation",
    "DeploymentRecord",
]
