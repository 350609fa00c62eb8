"""
Central configuration for bondflow.

This module provides a single, typed configuration object that reads from
environment variables (12-factor style) and an optional `.env` file using
pydantic-settings.

Usage:

    from bondflow.core.settings import get_settings

    settings = get_settings()
    plan = settings.distribution.plan
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bondflow.protocol.enums import Step
from bondflow.protocol.errors import ConfigurationError
from bondflow.protocol.models import BPS_DENOMINATOR


def _config(**extra) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix="BONDFLOW_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
        **extra,
    )


class NetworkSettings(BaseSettings):
    model_config = _config(env_parse_none_str="none")

    rpc_url: str = Field(
        default="https://sepolia.base.org",
        validation_alias=AliasChoices("BONDFLOW_RPC_URL", "RPC_URL"),
        description="JSON-RPC endpoint.",
    )
    network_name: str = Field(
        default="baseSepolia",
        description="Key under which the ledger groups records.",
    )
    expected_chain_id: Optional[int] = Field(
        default=84532,
        description="Abort if the node reports a different chain id; \"none\" skips the check.",
    )
    explorer_url: str = Field(
        default="https://sepolia.basescan.org",
        description="Block explorer base URL for ledger links.",
    )
    min_confirmations: int = Field(
        default=1,
        description="Blocks a receipt must be buried under before it is trusted.",
    )
    receipt_timeout: float = Field(
        default=120.0,
        description="Seconds between \"still waiting\" warnings while a receipt is pending.",
    )
    gas_limit: int = Field(
        default=5_000_000,
        description="Gas limit for the atomic deploy + distribute transaction.",
    )

    @field_validator("min_confirmations")
    @classmethod
    def _validate_confirmations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_confirmations must be >= 1")
        return v


class SigningSettings(BaseSettings):
    model_config = _config()

    private_key: Optional[str] = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices("BONDFLOW_PRIVATE_KEY", "PRIVATE_KEY"),
        description="Hex private key of the deployer (sends transactions).",
    )
    attester_key: Optional[str] = Field(
        default=None,
        repr=False,
        description="Hex private key of the attestation authorizer; defaults to the deployer key.",
    )
    key_file: Optional[str] = Field(
        default=None,
        description="PEM-encoded secp256k1 key used when no hex key is set.",
    )


class DistributionSettings(BaseSettings):
    model_config = _config()

    initial_balance: int = Field(
        default=10_000_000_000,
        description="Token units minted to the precomputed address.",
    )
    allowance_cap: int = Field(
        default=10_000_000_000,
        description="Per-token total installed into the module at account init.",
    )
    plan: str = Field(
        default="zyfai=3000,giza=3000,cod3x=4000",
        description="Comma-separated label=bps shares; labels name address book vaults.",
    )
    cap_bps: int = Field(
        default=BPS_DENOMINATOR,
        description="Allowed percentage cap carried in the attestation.",
    )
    salt_prefix: str = Field(
        default="nexus-bondmodule",
        description="Prefix of the salt label; a timestamp is appended per run.",
    )
    preflight: bool = Field(
        default=True,
        description="Simulate the atomic bundle with eth_call before sending it.",
    )
    token_name: str = "Test USDC"
    token_symbol: str = "USDC"
    token_decimals: int = 6


class PollingSettings(BaseSettings):
    model_config = _config()

    balance_poll_attempts: int = Field(
        default=10,
        description="Reads of balanceOf before giving up on a freshly minted balance.",
    )
    balance_poll_interval: float = Field(
        default=1.0,
        description="Fixed seconds between balance reads.",
    )


class LedgerSettings(BaseSettings):
    model_config = _config()

    ledger_path: str = Field(
        default="deployments.json",
        description="JSON document recording deployment outcomes.",
    )


class RuntimeSettings(BaseSettings):
    model_config = _config()

    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG/INFO/WARNING/ERROR).",
    )
    addresses_file: Optional[str] = Field(
        default=None,
        description="JSON file overriding the default address book.",
    )


class BondFlowSettings(BaseSettings):
    """
    Root configuration object.

    Aggregates:
      - Network
      - Signing
      - Distribution
      - Polling
      - Ledger
      - Runtime
    """

    model_config = _config()

    network: NetworkSettings = Field(default_factory=NetworkSettings)
    signing: SigningSettings = Field(default_factory=SigningSettings)
    distribution: DistributionSettings = Field(default_factory=DistributionSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)


@lru_cache(maxsize=1)
def get_settings() -> BondFlowSettings:
    """
    Cached accessor for BondFlowSettings.

    Usage:
        from bondflow.core.settings import get_settings
        settings = get_settings()

    Raises ConfigurationError when the environment holds an invalid value.
    """
    try:
        return BondFlowSettings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}", step=Step.CONFIGURE) from e
