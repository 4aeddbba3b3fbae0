"""
Permission validator: a session signer scoped by a policy set.

permission id = keccak256(policy descriptors ++ signer descriptor)[:4]

Each descriptor is the contract address followed by its parameters, so a
different session key or a different policy set yields a different id.
"""
from __future__ import annotations

from typing import Optional, Sequence

from eth_abi import encode

from ..call_encoder import Call
from ..config import KernelAddresses
from ..exceptions import ConfigurationError
from ..signers import SmartAccountSigner
from ..utils import address_bytes, checksum, keccak
from .base import ValidatorPlugin
from .policies import PolicyDescriptor, PolicySet


def signer_descriptor(signer_contract: str, signer_address: str) -> bytes:
    return address_bytes(signer_contract) + address_bytes(signer_address)


def compute_permission_id(
    descriptors: Sequence[PolicyDescriptor],
    signer_contract: str,
    signer_address: str,
) -> bytes:
    packed = b"".join(d.packed() for d in descriptors)
    return keccak(packed + signer_descriptor(signer_contract, signer_address))[:4]


class PermissionValidator(ValidatorPlugin):
    """Regular validator backed by a session key and policies."""

    kind = "permission"

    def __init__(
        self,
        signer: SmartAccountSigner,
        policies: PolicySet,
        address: Optional[str] = None,
        signer_contract: Optional[str] = None,
    ):
        defaults = KernelAddresses()
        address = address or defaults.permission_validator
        if not address:
            raise ConfigurationError(
                "Permission validator address is not configured",
                field="permission_validator",
            )
        super().__init__(signer, address)
        self.policies = policies
        self.signer_contract = checksum(signer_contract or defaults.ecdsa_signer)

    @property
    def validator_id(self) -> bytes:
        return compute_permission_id(
            self.policies.descriptors(), self.signer_contract, self.signer.address
        )

    def get_enable_data(self) -> bytes:
        """permissionId ++ abi.encode(bytes[] policies, bytes signer)"""
        return self.validator_id + encode(
            ["bytes[]", "bytes"],
            [
                [d.packed() for d in self.policies.descriptors()],
                signer_descriptor(self.signer_contract, self.signer.address),
            ],
        )

    def check_calls(self, account: str, calls: Sequence[Call]) -> None:
        self.policies.enforce(account, calls)


def to_permission_validator(
    signer: SmartAccountSigner,
    policies: Sequence,
    addresses: Optional[KernelAddresses] = None,
) -> PermissionValidator:
    addresses = addresses or KernelAddresses()
    return PermissionValidator(
        signer,
        PolicySet(tuple(policies)),
        address=addresses.permission_validator,
        signer_contract=addresses.ecdsa_signer,
    )
