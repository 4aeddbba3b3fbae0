"""EntryPoint addresses and version detection for ERC-4337."""

from __future__ import annotations

from enum import Enum

from ..config import ENTRYPOINT_V06, ENTRYPOINT_V07
from ..exceptions import ConfigurationError


class EntryPointVersion(str, Enum):
    V06 = "v0.6"
    V07 = "v0.7"


SUPPORTED_ENTRY_POINTS: dict[str, EntryPointVersion] = {
    ENTRYPOINT_V06.lower(): EntryPointVersion.V06,
    ENTRYPOINT_V07.lower(): EntryPointVersion.V07,
}

# Kernel accounts created through the createAccount(owner, index) factory
# validate through the v0.6 entry point only.
KERNEL_ENTRY_POINTS: frozenset[str] = frozenset({ENTRYPOINT_V06.lower()})


def entry_point_version(entry_point: str) -> EntryPointVersion:
    version = SUPPORTED_ENTRY_POINTS.get(entry_point.lower())
    if version is None:
        raise ConfigurationError(
            f"Unsupported entry point {entry_point}",
            field="entry_point",
        )
    return version


def require_kernel_entry_point(entry_point: str) -> None:
    entry_point_version(entry_point)
    if entry_point.lower() not in KERNEL_ENTRY_POINTS:
        raise ConfigurationError(
            f"Only EntryPoint {EntryPointVersion.V06.value} is supported "
            f"by this account (got {entry_point})",
            field="entry_point",
        )
