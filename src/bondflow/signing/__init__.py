"""
Attestation signing and key custody.

Attestations are single-signer, single-use-per-nonce authorizations of one
exact execution batch. Verification of cap and nonce happens on-chain.
"""

from .keys import KeyCustody, LocalKeyCustody, load_custody
from .attestation import (
    AttestationSigner,
    attestation_digest,
    pack_attestation,
    personal_digest,
    recover_signer,
    sign_attestation,
    verify_attestation,
)

__all__ = [
    "KeyCustody",
    "LocalKeyCustody",
    "load_custody",
    "AttestationSigner",
    "attestation_digest",
    "pack_attestation",
    "personal_digest",
    "recover_signer",
    "sign_attestation",
    "verify_attestation",
]
