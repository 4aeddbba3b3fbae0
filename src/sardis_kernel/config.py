"""
Configuration management for sardis-kernel.

Provides centralized configuration for:
- Canonical Kernel contract addresses (factory, entry points, MultiSend)
- Validator and policy plugin contracts
- Per-account construction parameters
- Signing timeouts
- Logging configuration

Account construction never reads the global instance implicitly: callers
pass an ``AccountConfig`` (usually ``get_config().account_config(...)``).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# ============ Canonical Addresses ============
# Same on all EVM chains (CREATE2 deterministic deployment)

ENTRYPOINT_V06 = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
ENTRYPOINT_V07 = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"


@dataclass(frozen=True)
class KernelAddresses:
    """Contract addresses the client encodes against."""
    factory: str = "0x4e4946298614fc299b50c947289f4ad0572cb9ce"
    entry_point: str = ENTRYPOINT_V06
    multi_send: str = "0x8ae01fcf7c655655ff2c6ef907b8b4718ab4e17c"

    # Validator plugins
    ecdsa_validator: str = "0xd9ab5096a832b9ce79914329daee236f8eea0390"
    multi_chain_validator: str = "0x02d32f9c668c92a60b44825c4f79b501c0f685da"
    # No canonical deployment; must be supplied by the caller.
    permission_validator: Optional[str] = None

    # Permission building blocks
    ecdsa_signer: str = "0x6a6f069e2a08c2468e7724ab3250cdbfba14d4ff"
    sudo_policy: str = "0x67b436cad8a6d025df6c82c5bb43fbf11fc5b9b7"
    call_policy: str = "0xe4fec84b7b002273ecc86baa65a831ddb92d30a8"
    value_limit_policy: Optional[str] = None


@dataclass(frozen=True)
class FactoryConfig:
    """Factory parameters that determine the account address.

    ``init_code_hash`` is keccak256 of the proxy creation code the factory
    deploys. When it is unset the address is resolved once through the entry
    point's ``getSenderAddress`` at construction time.
    """
    address: str
    init_code_hash: Optional[str] = None


@dataclass(frozen=True)
class SigningConfig:
    """Bounds applied to every call into key material."""
    timeout_seconds: float = 120.0
    kernel_name: str = "Kernel"
    kernel_version: str = "0.2.2"


@dataclass(frozen=True)
class AccountConfig:
    """Explicit construction parameters for one Kernel account."""
    factory: FactoryConfig
    entry_point: str
    multi_send: str
    expected_chain_id: Optional[int] = None
    signing: SigningConfig = field(default_factory=SigningConfig)
    addresses: KernelAddresses = field(default_factory=KernelAddresses)

    def with_chain(self, chain_id: int) -> "AccountConfig":
        return replace(self, expected_chain_id=chain_id)


@dataclass
class LoggingConfig:
    """Configuration for signing-flow logging."""
    # Log levels for different operations
    signing_level: str = "INFO"
    probe_level: str = "DEBUG"
    error_level: str = "ERROR"

    # Sensitive data handling
    mask_addresses: bool = False
    log_signatures: bool = False  # Signature bytes are never logged unless asked

    # Audit logging
    audit_log_enabled: bool = True
    audit_log_path: Optional[str] = None  # None = use default logger


@dataclass
class SardisKernelConfig:
    """
    Master configuration for sardis-kernel.

    Supports loading from environment variables with prefix SARDIS_KERNEL_.
    """
    addresses: KernelAddresses = field(default_factory=KernelAddresses)
    factory_init_code_hash: Optional[str] = None
    signing: SigningConfig = field(default_factory=SigningConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Global settings
    default_chain: str = "ethereum_sepolia"
    http_timeout_seconds: float = 30.0

    def account_config(
        self,
        chain: Optional[str] = None,
        *,
        factory_address: Optional[str] = None,
        entry_point: Optional[str] = None,
    ) -> AccountConfig:
        """Build the explicit per-account configuration for a chain."""
        chain = chain or self.default_chain
        return AccountConfig(
            factory=FactoryConfig(
                address=factory_address or self.addresses.factory,
                init_code_hash=self.factory_init_code_hash,
            ),
            entry_point=entry_point or self.addresses.entry_point,
            multi_send=self.addresses.multi_send,
            expected_chain_id=CHAIN_ID_MAP.get(chain),
            signing=self.signing,
            addresses=self.addresses,
        )


def _get_env(key: str, default: Any = None, prefix: str = "SARDIS_KERNEL_") -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def build_default_config() -> SardisKernelConfig:
    """Build default configuration with environment variable overrides."""
    defaults = KernelAddresses()
    addresses = KernelAddresses(
        factory=_get_env("FACTORY_ADDRESS", defaults.factory),
        entry_point=_get_env("ENTRY_POINT", defaults.entry_point),
        multi_send=_get_env("MULTI_SEND_ADDRESS", defaults.multi_send),
        ecdsa_validator=_get_env("ECDSA_VALIDATOR", defaults.ecdsa_validator),
        multi_chain_validator=_get_env(
            "MULTI_CHAIN_VALIDATOR", defaults.multi_chain_validator
        ),
        permission_validator=_get_env(
            "PERMISSION_VALIDATOR", defaults.permission_validator
        ),
        ecdsa_signer=defaults.ecdsa_signer,
        sudo_policy=defaults.sudo_policy,
        call_policy=defaults.call_policy,
        value_limit_policy=_get_env("VALUE_LIMIT_POLICY", defaults.value_limit_policy),
    )

    signing = SigningConfig(
        timeout_seconds=float(_get_env("SIGNING_TIMEOUT_SECONDS", 120.0)),
    )

    return SardisKernelConfig(
        addresses=addresses,
        factory_init_code_hash=_get_env("FACTORY_INIT_CODE_HASH"),
        signing=signing,
        logging=LoggingConfig(
            audit_log_path=_get_env("AUDIT_LOG_PATH"),
        ),
        default_chain=_get_env("DEFAULT_CHAIN", "ethereum_sepolia"),
        http_timeout_seconds=float(_get_env("HTTP_TIMEOUT_SECONDS", 30.0)),
    )


# Global configuration instance
_global_config: Optional[SardisKernelConfig] = None


def get_config() -> SardisKernelConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: SardisKernelConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


# Export chain ID mapping for validation
CHAIN_ID_MAP: Dict[str, int] = {
    "ethereum": 1,
    "base": 8453,
    "polygon": 137,
    "arbitrum": 42161,
    "optimism": 10,
    "ethereum_sepolia": 11155111,
    "base_sepolia": 84532,
    "polygon_amoy": 80002,
    "arbitrum_sepolia": 421614,
    "optimism_sepolia": 11155420,
}


def validate_chain_id(expected: Optional[int], received_chain_id: int) -> bool:
    """
    Validate that the chain the client talks to is the one configured.

    SECURITY: a signature is bound to its chain id; signing against the
    wrong network produces an operation that is valid somewhere else.
    """
    if expected is None:
        return True

    if received_chain_id != expected:
        logger.error(
            f"SECURITY: Chain ID mismatch! Expected {expected}, "
            f"got {received_chain_id}."
        )
        return False

    return True
