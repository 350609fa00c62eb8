"""
Address book of the well-known contracts the flow talks to.

Immutable for the duration of a run and threaded explicitly through the
orchestrator, never read from module state by the components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from bondflow.protocol.errors import ConfigurationError
from bondflow.protocol.validators import checksum
from bondflow.utils.json import load_json_file

# Base Sepolia deployment
DEFAULT_DEPLOYMENT: Dict[str, str] = {
    "K1Validator": "0xaCEeEa78b9E1ACc06F5B6Cc527a3FE71A722CedB",
    "MockRegistry": "0x6feaFAbB6ba2a46A62eBb8A39354C73A6e1c283e",
    "NexusBootstrap": "0x7B5DED478B61C7Cb54F980A4FFcbEf4CC03B65Ef",
    "NexusImplementation": "0x2BF411df5165A1F41D9a5a78b5Fc1Cf1ce83C2E6",
    "NexusAccountFactory": "0x123221fd520687f78e556c0F594aaA7030e09F6C",
    "BiconomyMetaFactory": "0x74e32771e3dc456D18797df513A1181e166940C2",
    "BondModule": "0x29195B26D9C4253C7e956e8ac4556697F7718C6D",
    "MockToken": "0x0B1Cddc846C5b1aC1293F943aFd8F642418D6f48",
    "EntryPoint": "0x0000000071727De22E5E9d8BAf0edAc6f37da032",
    "Multicall3": "0xcA11bde05977b3631167028862bE2a173976CA11",
    "EscrowZyFAI": "0x87aadB3aC964d1E50Be5025f08f4AF876DA81d10",
    "EscrowGiza": "0x4ad7da42761456f701d44322D25165629F5d795B",
    "EscrowCod3x": "0xA15bD240D25721687A90e70C193a7d42e8C5FF6c",
}

_VAULT_PREFIX = "Escrow"

_FIELDS = {
    "k1_validator": "K1Validator",
    "registry": "MockRegistry",
    "bootstrap": "NexusBootstrap",
    "implementation": "NexusImplementation",
    "account_factory": "NexusAccountFactory",
    "meta_factory": "BiconomyMetaFactory",
    "bond_module": "BondModule",
    "token": "MockToken",
    "entrypoint": "EntryPoint",
    "multicall3": "Multicall3",
}


@dataclass(frozen=True)
class ContractAddresses:
    """
    Checksummed addresses of every external contract.

    vaults: (label, address) pairs; labels are the lower-cased suffix of
    the "Escrow<Name>" keys, e.g. "zyfai".
    """

    k1_validator: str
    registry: str
    bootstrap: str
    implementation: str
    account_factory: str
    meta_factory: str
    bond_module: str
    token: str
    entrypoint: str
    multicall3: str
    vaults: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def vault_map(self) -> Dict[str, str]:
        return dict(self.vaults)

    def vault(self, label: str) -> str:
        try:
            return self.vault_map[label]
        except KeyError:
            raise ConfigurationError(f"Unknown vault label: {label!r}") from None

    def core_contracts(self) -> Dict[str, str]:
        """Addresses of the dependent contracts, as recorded in the ledger."""
        return {
            "k1Validator": self.k1_validator,
            "registry": self.registry,
            "nexusBootstrap": self.bootstrap,
            "nexusImplementation": self.implementation,
            "nexusAccountFactory": self.account_factory,
            "metaFactory": self.meta_factory,
            "bondModule": self.bond_module,
            "token": self.token,
            "multicall3": self.multicall3,
        }

    def to_dict(self) -> Dict[str, str]:
        data = {name: getattr(self, attr) for attr, name in _FIELDS.items()}
        for label, address in self.vaults:
            data[_VAULT_PREFIX + label] = address
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContractAddresses":
        """
        Build from a name -> address mapping (the deployment JSON layout).
        Vault keys ("Escrow...") keep their insertion order.
        """
        missing = [name for name in _FIELDS.values() if name not in data]
        if missing:
            raise ConfigurationError(f"Address book is missing: {', '.join(missing)}")

        kwargs = {attr: checksum(data[name]) for attr, name in _FIELDS.items()}
        vaults = tuple(
            (key[len(_VAULT_PREFIX):].lower(), checksum(value))
            for key, value in data.items()
            if key.startswith(_VAULT_PREFIX)
        )
        return cls(vaults=vaults, **kwargs)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "ContractAddresses":
        """Defaults, overlaid with a JSON file when given."""
        data: Dict[str, Any] = dict(DEFAULT_DEPLOYMENT)
        if path:
            try:
                overrides = load_json_file(path)
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Cannot read address book {path}: {e}") from e
            data.update(overrides)
        return cls.from_dict(data)

