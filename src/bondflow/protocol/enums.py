from enum import Enum


class ErrorCode(str, Enum):
    CONFIGURATION_ERROR = "configuration_error"
    VALIDATION_ERROR = "validation_error"
    DEPENDENCY_ERROR = "dependency_error"
    STATE_SYNC_ERROR = "state_sync_error"
    REPLAY_ERROR = "replay_error"
    CAP_EXCEEDED = "cap_exceeded"
    ALREADY_DEPLOYED = "already_deployed"
    ATOMIC_EXECUTION_FAILED = "atomic_execution_failed"
    INTERNAL_ERROR = "internal_error"


class AccountStatus(str, Enum):
    UNDEPLOYED = "undeployed"
    FUNDED = "funded"
    DEPLOYED = "deployed"


class DeploymentStatus(str, Enum):
    DEPLOYED = "deployed"  # deployed + distributed by this run
    ALREADY_DEPLOYED = "already_deployed"  # code found before submission


class Step(str, Enum):
    """Orchestration steps, used to name the failing step in errors and logs."""

    CONFIGURE = "configure"
    CONNECT = "connect"
    PRECOMPUTE = "precompute"
    CHECK_DEPLOYED = "check_deployed"
    MINT = "mint"
    BALANCE_SYNC = "balance_sync"
    BUILD_BATCH = "build_batch"
    SIGN = "sign"
    EXECUTE = "execute"
    RECORD = "record"
