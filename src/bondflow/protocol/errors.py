from typing import Optional
from .enums import ErrorCode, Step


class BondFlowError(Exception):
    """
    Base error for the funding/activation flow.

    Carries the failing step, the account address and the attestation
    nonce (when known) so a failed run can be diagnosed and retried.
    """

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        *,
        step: Optional[Step] = None,
        account: Optional[str] = None,
        nonce: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.step = step
        self.account = account
        self.nonce = nonce

    def describe(self) -> str:
        parts = [f"[{self.step.value if self.step else 'unknown'}] {self.message}"]
        if self.account:
            parts.append(f"account={self.account}")
        if self.nonce is not None:
            parts.append(f"nonce={self.nonce}")
        return " ".join(parts)


class ConfigurationError(BondFlowError):
    """Raised when a signing credential or required parameter is missing."""

    default_code = ErrorCode.CONFIGURATION_ERROR


class ValidationError(BondFlowError):
    """Raised when a plan, address or batch is malformed."""

    default_code = ErrorCode.VALIDATION_ERROR


class DependencyError(BondFlowError):
    """Raised when an external read/query cannot be completed."""

    default_code = ErrorCode.DEPENDENCY_ERROR


class StateSyncError(BondFlowError):
    """Raised when balance propagation polling is exhausted."""

    default_code = ErrorCode.STATE_SYNC_ERROR


class AlreadyDeployedError(BondFlowError):
    """Account already holds code. Non-fatal at the executor layer."""

    default_code = ErrorCode.ALREADY_DEPLOYED


class AtomicExecutionFailure(BondFlowError):
    """The bundled deploy + distribute transaction reverted as a whole."""

    default_code = ErrorCode.ATOMIC_EXECUTION_FAILED


class ReplayError(AtomicExecutionFailure):
    """The verifier rejected the nonce as already used."""

    default_code = ErrorCode.REPLAY_ERROR


class CapExceededError(AtomicExecutionFailure):
    """Requested distribution exceeds the authorized percentage."""

    default_code = ErrorCode.CAP_EXCEEDED
