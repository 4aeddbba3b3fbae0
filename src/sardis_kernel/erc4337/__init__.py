"""ERC-4337 helpers for Kernel smart accounts."""

from .entrypoint import (
    KERNEL_ENTRY_POINTS,
    SUPPORTED_ENTRY_POINTS,
    EntryPointVersion,
    entry_point_version,
    require_kernel_entry_point,
)
from .user_operation import UserOperation, get_user_operation_hash, zero_hex
from .bundler_client import BundlerClient, BundlerConfig
from .paymaster_client import (
    PaymasterClient,
    PaymasterConfig,
    PaymasterProvider,
    SponsoredUserOperation,
)

__all__ = [
    "KERNEL_ENTRY_POINTS",
    "SUPPORTED_ENTRY_POINTS",
    "EntryPointVersion",
    "entry_point_version",
    "require_kernel_entry_point",
    "UserOperation",
    "get_user_operation_hash",
    "zero_hex",
    "BundlerClient",
    "BundlerConfig",
    "PaymasterClient",
    "PaymasterConfig",
    "PaymasterProvider",
    "SponsoredUserOperation",
]
