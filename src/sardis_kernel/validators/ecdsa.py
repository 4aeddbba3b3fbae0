"""Single-owner ECDSA validator."""
from __future__ import annotations

from typing import Optional

from ..config import KernelAddresses
from ..signers import SmartAccountSigner
from ..utils import address_bytes
from .base import ValidatorPlugin


class ECDSAValidator(ValidatorPlugin):
    """Owner key validated with ecrecover; enable data is the owner address."""

    kind = "ecdsa"

    def __init__(self, signer: SmartAccountSigner, address: Optional[str] = None):
        super().__init__(signer, address or KernelAddresses().ecdsa_validator)

    @property
    def validator_id(self) -> bytes:
        return address_bytes(self.address)[:4]

    def get_enable_data(self) -> bytes:
        return address_bytes(self.signer.address)
