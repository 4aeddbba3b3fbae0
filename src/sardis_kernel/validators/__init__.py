"""Validator plugins and session-key policies."""

from .base import DUMMY_ECDSA_SIGNATURE, ValidatorMode, ValidatorPlugin
from .ecdsa import ECDSAValidator
from .multichain import MultiChainValidator
from .permission import (
    PermissionValidator,
    compute_permission_id,
    signer_descriptor,
    to_permission_validator,
)
from .policies import (
    CallPermission,
    CallPolicy,
    Policy,
    PolicyDecision,
    PolicyDescriptor,
    PolicySet,
    SudoPolicy,
    ValueLimitPolicy,
    policy_from_descriptor,
    to_sudo_policy,
)

__all__ = [
    "DUMMY_ECDSA_SIGNATURE",
    "ValidatorMode",
    "ValidatorPlugin",
    "ECDSAValidator",
    "MultiChainValidator",
    "PermissionValidator",
    "compute_permission_id",
    "signer_descriptor",
    "to_permission_validator",
    "CallPermission",
    "CallPolicy",
    "Policy",
    "PolicyDecision",
    "PolicyDescriptor",
    "PolicySet",
    "SudoPolicy",
    "ValueLimitPolicy",
    "policy_from_descriptor",
    "to_sudo_policy",
]
