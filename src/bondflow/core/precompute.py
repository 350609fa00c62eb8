"""
Pre-deployment address derivation.

The factory's computeAccountAddress(initData, salt) is a pure view over
(factory, initData, salt). Its result is where createAccount() will put
code, which is what lets tokens be minted to an account before it exists.
"""

from __future__ import annotations

import logging
from typing import Sequence

from eth_abi import encode as abi_encode
from eth_utils import keccak

from bondflow.chain import abi
from bondflow.chain.base import CallReverted, ChainClient
from bondflow.protocol.errors import DependencyError, ValidationError
from bondflow.protocol.enums import Step
from bondflow.protocol.models import Account
from bondflow.protocol.validators import checksum

from .addresses import ContractAddresses

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20


def derive_salt(label: str) -> bytes:
    """keccak256 of the UTF-8 label."""
    return keccak(text=label)


def build_executor_install_data(tokens: Sequence[str], caps: Sequence[int]) -> bytes:
    """abi.encode(address[] tokens, uint256[] totalAmounts) consumed by the module's onInstall."""
    if len(tokens) != len(caps):
        raise ValidationError("tokens and caps must have the same length")
    return abi_encode(["address[]", "uint256[]"], [[checksum(t) for t in tokens], list(caps)])


def build_init_payload(
    addresses: ContractAddresses,
    owner: str,
    *,
    allowance_cap: int,
) -> bytes:
    """
    Initialization payload for the account factory.

    The bootstrap installs the default validator for `owner`, the
    attestation module as the only executor (with the token cap), no hook,
    no fallbacks, and a registry trusting `owner` with threshold 1.
    """
    owner = checksum(owner)
    executor_data = build_executor_install_data([addresses.token], [allowance_cap])

    init_call = abi.INIT_NEXUS.encode(
        bytes.fromhex(owner[2:]),
        [],
        [(addresses.bond_module, executor_data)],
        (ZERO_ADDRESS, b""),
        [],
        [],
        (addresses.registry, [owner], 1),
    )
    return abi_encode(["address", "bytes"], [addresses.bootstrap, init_call])


class AddressPrecomputer:
    """
    Side-effect-free address query against the account factory.

    Not retried internally: an unreachable node or a reverting factory is a
    DependencyError for the caller.
    """

    def __init__(self, chain: ChainClient, factory: str) -> None:
        self._chain = chain
        self._factory = checksum(factory)

    async def compute_address(self, init_payload: bytes, salt: bytes) -> str:
        if len(salt) != 32:
            raise ValidationError(f"Salt must be 32 bytes, got {len(salt)}")
        data = abi.COMPUTE_ACCOUNT_ADDRESS.encode(init_payload, salt)
        try:
            raw = await self._chain.call(self._factory, data)
        except CallReverted as e:
            raise DependencyError(
                f"computeAccountAddress reverted on {self._factory}: {e.reason}",
                step=Step.PRECOMPUTE,
            ) from e
        (address,) = abi.COMPUTE_ACCOUNT_ADDRESS.decode_output(raw)
        address = checksum(address)
        logger.debug("Precomputed %s for salt 0x%s", address, salt.hex())
        return address

    async def precompute(self, init_payload: bytes, salt: bytes) -> Account:
        address = await self.compute_address(init_payload, salt)
        return Account(address=address, init_payload=init_payload, salt=salt)
