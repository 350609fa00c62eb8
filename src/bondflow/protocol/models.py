# FILE: src/bondflow/protocol/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from eth_abi import encode as abi_encode
from eth_utils import keccak

from .enums import AccountStatus, DeploymentStatus

BPS_DENOMINATOR = 10_000

# ABI type of the canonical batch serialization shared with the verifier
BATCH_ABI_TYPE = "(address,uint256,bytes)[]"


# -------------------------
# ACCOUNTS
# -------------------------

@dataclass
class Account:
    """
    A modular account identified by its precomputed address.

    The address is a pure function of (factory, init_payload, salt) and
    exists before any code is deployed there.
    """
    address: str
    init_payload: bytes
    salt: bytes
    status: AccountStatus = AccountStatus.UNDEPLOYED


# -------------------------
# ALLOCATION
# -------------------------

@dataclass(frozen=True)
class AllocationEntry:
    label: str
    vault: str
    bps: int


@dataclass(frozen=True)
class AllocationPlan:
    """
    Ordered vault shares in basis points. Order is part of the signed batch.
    """
    entries: Tuple[AllocationEntry, ...]

    @property
    def total_bps(self) -> int:
        return sum(e.bps for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @classmethod
    def parse(cls, text: str, vaults: Mapping[str, str]) -> "AllocationPlan":
        """
        Parse "label=bps,label=bps" against a label -> vault address map.

        Validation (sum == 10000, unique labels) is done by
        validators.validate_plan so callers get a ValidationError.
        """
        entries = []
        for part in text.split(","):
            part = part.strip()
            if not part:
                continue
            label, _, bps = part.partition("=")
            label = label.strip().lower()
            if label not in vaults:
                raise KeyError(label)
            entries.append(AllocationEntry(label=label, vault=vaults[label], bps=int(bps)))
        return cls(entries=tuple(entries))

    def to_dict(self) -> Dict[str, Any]:
        return {
            e.label: {"vault": e.vault, "bps": e.bps, "allocation": f"{e.bps / 100:g}%"}
            for e in self.entries
        }


# -------------------------
# EXECUTION BATCH
# -------------------------

@dataclass(frozen=True)
class SubCall:
    target: str
    value: int
    data: bytes

    def as_tuple(self) -> Tuple[str, int, bytes]:
        return (self.target, self.value, self.data)


@dataclass(frozen=True)
class ExecutionBatch:
    """
    Ordered approve/deposit sub-calls executed by the account.

    `amounts` keeps the per-entry amounts the batch was built from, in plan
    order. It is bookkeeping only and is not part of the serialization.
    """
    calls: Tuple[SubCall, ...]
    amounts: Tuple[Tuple[str, int], ...] = ()

    def encode(self) -> bytes:
        """Canonical ABI encoding of (address target, uint256 value, bytes callData)[]."""
        return abi_encode([BATCH_ABI_TYPE], [[c.as_tuple() for c in self.calls]])

    def digest(self) -> bytes:
        return keccak(self.encode())

    @property
    def distributed_total(self) -> int:
        return sum(amount for _, amount in self.amounts)

    def distribution(self) -> Dict[str, int]:
        return dict(self.amounts)


# -------------------------
# ATTESTATION
# -------------------------

@dataclass(frozen=True)
class Attestation:
    """
    Signed authorization for exactly one batch, account and nonce.

    digest        keccak256 of the packed fields (what the verifier rebuilds)
    signed_digest digest wrapped with the personal-message prefix
    """
    chain_id: int
    account: str
    token: str
    cap_bps: int
    nonce: int
    batch_digest: bytes
    digest: bytes
    signed_digest: bytes
    signature: bytes
    signer: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "account": self.account,
            "token": self.token,
            "capBps": self.cap_bps,
            "nonce": self.nonce,
            "batchDigest": "0x" + self.batch_digest.hex(),
            "digest": "0x" + self.digest.hex(),
            "signedDigest": "0x" + self.signed_digest.hex(),
            "signature": "0x" + self.signature.hex(),
            "signer": self.signer,
        }


# -------------------------
# DEPLOYMENT RECORD
# -------------------------

@dataclass
class DeploymentRecord:
    """
    Local record of a run's outcome, keyed by account address.

    Amounts are serialized as decimal strings since token units overflow
    JSON number precision in most consumers.
    """
    account: str
    status: DeploymentStatus
    timestamp: str
    chain_id: Optional[int] = None
    distribution: Dict[str, int] = field(default_factory=dict)
    contracts: Dict[str, str] = field(default_factory=dict)
    salt: Optional[str] = None
    nonce: Optional[int] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    links: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "chain_id": self.chain_id,
            "distribution": {k: str(v) for k, v in self.distribution.items()},
            "contracts": dict(self.contracts),
            "salt": self.salt,
            "nonce": self.nonce,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "gas_used": self.gas_used,
            "links": dict(self.links),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DeploymentRecord:
        return cls(
            account=data["account"],
            status=DeploymentStatus(data["status"]),
            timestamp=data.get("timestamp", ""),
            chain_id=data.get("chain_id"),
            distribution={k: int(v) for k, v in (data.get("distribution") or {}).items()},
            contracts=dict(data.get("contracts") or {}),
            salt=data.get("salt"),
            nonce=data.get("nonce"),
            tx_hash=data.get("tx_hash"),
            block_number=data.get("block_number"),
            gas_used=data.get("gas_used"),
            links=dict(data.get("links") or {}),
        )
