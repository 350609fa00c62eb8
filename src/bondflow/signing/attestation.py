"""
Attestation signing.

An attestation authorizes one exact batch for one (account, token, nonce).
The digest layout is a wire contract with the on-chain verifier module and
must match its `abi.encodePacked` byte for byte:

    keccak256(
        uint256 chainId      32 bytes, big-endian
        address account      20 bytes
        address token        20 bytes
        uint256 capBps       32 bytes
        uint256 nonce        32 bytes
        bytes   batch        raw ABI-encoded batch, no length prefix
    )

The verifier recovers the signer from the personal-message form of that
digest:

    keccak256("\\x19Ethereum Signed Message:\\n32" || digest)

CRITICAL INVARIANTS:
1. Field order and widths never change independently of the verifier
2. The batch bytes signed are the bytes submitted
3. The signer does not enforce the cap; the verifier does
"""

from __future__ import annotations

import logging

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from bondflow.protocol.errors import ValidationError
from bondflow.protocol.models import Attestation, ExecutionBatch
from bondflow.protocol.validators import checksum, validate_cap

from .keys import KeyCustody

logger = logging.getLogger(__name__)

ATTESTATION_PACKED_TYPES = ["uint256", "address", "address", "uint256", "uint256", "bytes"]

PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"


def pack_attestation(
    chain_id: int, account: str, token: str, cap_bps: int, nonce: int, batch_bytes: bytes
) -> bytes:
    """Positionally packed attestation fields (no length prefixes, no padding of addresses)."""
    return encode_packed(
        ATTESTATION_PACKED_TYPES,
        [chain_id, checksum(account), checksum(token), cap_bps, nonce, batch_bytes],
    )


def attestation_digest(
    chain_id: int, account: str, token: str, cap_bps: int, nonce: int, batch_bytes: bytes
) -> bytes:
    return keccak(pack_attestation(chain_id, account, token, cap_bps, nonce, batch_bytes))


def personal_digest(digest: bytes) -> bytes:
    """The hash the verifier actually recovers against."""
    return keccak(PERSONAL_MESSAGE_PREFIX + digest)


def sign_attestation(
    chain_id: int,
    account: str,
    token: str,
    cap_bps: int,
    nonce: int,
    batch: ExecutionBatch,
    key: KeyCustody,
) -> Attestation:
    """
    Sign the exact batch for (chain, account, token, cap, nonce).

    `cap_bps` must be the cap the batch's plan was built against and `nonce`
    must never have been presented for this (account, token) before.
    """
    validate_cap(cap_bps)
    if nonce < 0:
        raise ValidationError(f"Nonce must be non-negative, got {nonce}")

    batch_bytes = batch.encode()
    digest = attestation_digest(chain_id, account, token, cap_bps, nonce, batch_bytes)
    signature = key.sign_digest(digest)

    logger.debug(
        "Signed attestation account=%s nonce=%d digest=0x%s signer=%s",
        account, nonce, digest.hex(), key.address,
    )

    return Attestation(
        chain_id=chain_id,
        account=checksum(account),
        token=checksum(token),
        cap_bps=cap_bps,
        nonce=nonce,
        batch_digest=keccak(batch_bytes),
        digest=digest,
        signed_digest=personal_digest(digest),
        signature=signature,
        signer=key.address,
    )


def recover_signer(attestation: Attestation) -> str:
    """Recover the signing address the way the verifier does."""
    return Account.recover_message(
        encode_defunct(primitive=attestation.digest),
        signature=attestation.signature,
    )


def verify_attestation(attestation: Attestation, batch: ExecutionBatch, authorizer: str) -> bool:
    """
    Offline check: the attestation covers `batch` and was signed by `authorizer`.
    """
    expected = attestation_digest(
        attestation.chain_id,
        attestation.account,
        attestation.token,
        attestation.cap_bps,
        attestation.nonce,
        batch.encode(),
    )
    if expected != attestation.digest:
        return False
    return recover_signer(attestation) == checksum(authorizer)


class AttestationSigner:
    """
    Binds a key custody backend to sign_attestation().

    Usage:
        signer = AttestationSigner(LocalKeyCustody.from_hex(key))
        attestation = signer.sign(chain_id, account, token, 10000, nonce, batch)
    """

    def __init__(self, key: KeyCustody):
        self._key = key

    @property
    def address(self) -> str:
        return self._key.address

    def sign(
        self,
        chain_id: int,
        account: str,
        token: str,
        cap_bps: int,
        nonce: int,
        batch: ExecutionBatch,
    ) -> Attestation:
        return sign_attestation(chain_id, account, token, cap_bps, nonce, batch, self._key)
