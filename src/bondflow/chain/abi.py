"""
Function and error signatures of the external contracts.

Calldata is built from canonical signatures with eth_abi rather than from
compiled artifacts, so the encodings here are the whole interface surface
this package depends on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from bondflow.protocol.models import BATCH_ABI_TYPE


@dataclass(frozen=True)
class Function:
    name: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode(self, *args: Any) -> bytes:
        return self.selector + abi_encode(list(self.inputs), list(args))

    def decode_input(self, data: bytes) -> Tuple[Any, ...]:
        if data[:4] != self.selector:
            raise ValueError(f"Calldata is not a {self.signature} call")
        return tuple(abi_decode(list(self.inputs), data[4:]))

    def decode_output(self, data: bytes) -> Tuple[Any, ...]:
        return tuple(abi_decode(list(self.outputs), data))


# ---------------------------------------------------------------------------
# Account factory / meta factory / bootstrap
# ---------------------------------------------------------------------------

COMPUTE_ACCOUNT_ADDRESS = Function("computeAccountAddress", ("bytes", "bytes32"), ("address",))
CREATE_ACCOUNT = Function("createAccount", ("bytes", "bytes32"), ("address",))
DEPLOY_WITH_FACTORY = Function("deployWithFactory", ("address", "bytes"), ("address",))

BOOTSTRAP_CONFIG = "(address,bytes)"
PRE_VALIDATION_HOOK_CONFIG = "(uint256,address,bytes)"
REGISTRY_CONFIG = "(address,address[],uint8)"

INIT_NEXUS = Function(
    "initNexusWithDefaultValidatorAndOtherModules",
    (
        "bytes",
        f"{BOOTSTRAP_CONFIG}[]",
        f"{BOOTSTRAP_CONFIG}[]",
        BOOTSTRAP_CONFIG,
        f"{BOOTSTRAP_CONFIG}[]",
        f"{PRE_VALIDATION_HOOK_CONFIG}[]",
        REGISTRY_CONFIG,
    ),
)

# ---------------------------------------------------------------------------
# Attestation module (verifier)
# ---------------------------------------------------------------------------

EXECUTE_BATCH_WITH_ATTESTATION = Function(
    "executeBatchWithAttestation",
    ("address", "bytes", "address", "uint256", "uint256", "bytes"),
)
IS_INITIALIZED = Function("isInitialized", ("address",), ("bool",))
IS_AGENT_MODE_ACTIVATED = Function("isAgentModeActivated", ("address",), ("bool",))

# ---------------------------------------------------------------------------
# Token / vault
# ---------------------------------------------------------------------------

MINT = Function("mint", ("address", "uint256"))
BALANCE_OF = Function("balanceOf", ("address",), ("uint256",))
APPROVE = Function("approve", ("address", "uint256"), ("bool",))
DEPOSIT = Function("deposit", ("uint256",))

# ---------------------------------------------------------------------------
# Multicall3
# ---------------------------------------------------------------------------

AGGREGATE3 = Function("aggregate3", ("(address,bool,bytes)[]",), ("(bool,bytes)[]",))


def decode_batch(data: bytes) -> Sequence[Tuple[str, int, bytes]]:
    (calls,) = abi_decode([BATCH_ABI_TYPE], data)
    return calls


# ---------------------------------------------------------------------------
# Revert data
# ---------------------------------------------------------------------------

ERROR_STRING_SELECTOR = function_signature_to_4byte_selector("Error(string)")
PANIC_SELECTOR = function_signature_to_4byte_selector("Panic(uint256)")

# Custom errors the verifier is known to raise, by selector
KNOWN_CUSTOM_ERRORS = {
    function_signature_to_4byte_selector(sig): sig
    for sig in (
        "NonceAlreadyUsed()",
        "InvalidNonce()",
        "InvalidAttestation()",
        "InvalidSignature()",
        "ExceedsAllowedPercentage()",
        "AllowanceCapExceeded()",
        "ModuleNotInitialized()",
    )
}


def decode_revert(data: Optional[bytes]) -> str:
    """Human-readable reason for raw revert data."""
    if not data:
        return "reverted without reason"
    selector, body = data[:4], data[4:]
    try:
        if selector == ERROR_STRING_SELECTOR:
            (reason,) = abi_decode(["string"], body)
            return reason
        if selector == PANIC_SELECTOR:
            (code,) = abi_decode(["uint256"], body)
            return f"panic 0x{code:02x}"
    except DecodingError:
        pass
    if selector in KNOWN_CUSTOM_ERRORS:
        return KNOWN_CUSTOM_ERRORS[selector]
    return f"custom error 0x{data.hex()}"
