"""
Key custody backends.

Two keys take part in a run:
- the deployer key sends transactions (mint, atomic bundle)
- the attester key signs attestations; the verifier module recovers it
  and compares against the single designated authorizer

Both go through the KeyCustody protocol so an HSM or KMS backend can be
dropped in without touching the signer or the chain client.

KEY MANAGEMENT ASSUMPTIONS:
- Private keys are provided at startup (env, .env, or PEM file)
- PEM files hold a secp256k1 EC key (PKCS8 or traditional OpenSSL)
- generate() is for tests only
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from bondflow.protocol.errors import ConfigurationError


class KeyCustody(Protocol):
    """
    Protocol for key custody.

    Implementations MUST:
    - sign 32-byte digests as personal messages (EIP-191 version 0x45)
    - return 65-byte r || s || v signatures with v in {27, 28}
    - sign transactions and return the raw RLP bytes
    """

    @property
    def address(self) -> str:
        """Checksummed address of the key."""
        ...

    def sign_digest(self, digest: bytes) -> bytes:
        ...

    def sign_transaction(self, tx: Dict[str, Any]) -> bytes:
        ...


class LocalKeyCustody:
    """
    In-process key held by eth_account.

    Usage:
        # From hex (env var, .env)
        custody = LocalKeyCustody.from_hex("0x...")

        # From PEM file
        custody = LocalKeyCustody.from_pem_file("/path/to/key.pem")

        # Generate new key (for testing only)
        custody = LocalKeyCustody.generate()
    """

    def __init__(self, account: LocalAccount):
        self._account = account

    @property
    def address(self) -> str:
        return self._account.address

    def sign_digest(self, digest: bytes) -> bytes:
        """Sign keccak256("\\x19Ethereum Signed Message:\\n32" || digest)."""
        if len(digest) != 32:
            raise ValueError(f"Expected a 32-byte digest, got {len(digest)} bytes")
        signed = self._account.sign_message(encode_defunct(primitive=digest))
        return bytes(signed.signature)

    def sign_transaction(self, tx: Dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)

    @classmethod
    def generate(cls) -> "LocalKeyCustody":
        """
        Generate a new key.

        WARNING: Use only for testing.
        """
        return cls(Account.create())

    @classmethod
    def from_hex(cls, key: str) -> "LocalKeyCustody":
        key = key.strip()
        if not key.startswith("0x"):
            key = "0x" + key
        try:
            return cls(Account.from_key(key))
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid private key: {e}") from None

    @classmethod
    def from_private_bytes(cls, key_bytes: bytes) -> "LocalKeyCustody":
        """Create custody from a raw 32-byte private key."""
        return cls(Account.from_key(key_bytes))

    @classmethod
    def from_pem_file(cls, path: str, password: Optional[bytes] = None) -> "LocalKeyCustody":
        """Load a secp256k1 key from a PEM-encoded private key file."""
        with open(path, "rb") as f:
            private_key = serialization.load_pem_private_key(f.read(), password=password)
        if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not isinstance(
            private_key.curve, ec.SECP256K1
        ):
            raise ConfigurationError(f"Expected a secp256k1 private key in {path}")
        value = private_key.private_numbers().private_value
        return cls.from_private_bytes(value.to_bytes(32, "big"))

    def export_pem(self) -> bytes:
        """Export the key as unencrypted PKCS8 PEM (tests, key migration)."""
        value = int.from_bytes(bytes(self._account.key), "big")
        private_key = ec.derive_private_key(value, ec.SECP256K1())
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )


def load_custody(
    key: Optional[str],
    key_file: Optional[str] = None,
    *,
    role: str = "deployer",
) -> LocalKeyCustody:
    """
    Resolve a key from settings. A hex key wins over a PEM file.

    Raises:
        ConfigurationError: if neither is configured
    """
    if key:
        return LocalKeyCustody.from_hex(key)
    if key_file:
        try:
            return LocalKeyCustody.from_pem_file(key_file)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot load {role} key from {key_file}: {e}") from e
    raise ConfigurationError(
        f"No {role} key configured. Set BONDFLOW_PRIVATE_KEY (or PRIVATE_KEY) "
        "or BONDFLOW_KEY_FILE."
    )
