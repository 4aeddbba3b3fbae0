"""Validator plugin capability shared by the Sudo and Regular roles."""
from __future__ import annotations

from abc import ABC, abstractmethod

from ..signers import SmartAccountSigner, is_signed_by
from ..utils import HexLike, as_bytes, checksum


class ValidatorMode:
    """4-byte prefix selecting the Regular validation path.

    Sudo signatures are plain 65-byte ECDSA signatures and carry no prefix;
    ``SUDO`` is reserved so no Regular signature can start with it.
    """
    SUDO = bytes.fromhex("00000000")
    PLUGIN = bytes.fromhex("00000001")
    ENABLE = bytes.fromhex("00000002")

    ALL = (SUDO, PLUGIN, ENABLE)


# r | s | v with r and s at the curve limits; only its length matters to estimators.
DUMMY_ECDSA_SIGNATURE = bytes.fromhex(
    "fffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)


class ValidatorPlugin(ABC):
    """A validator contract paired with the key that signs for it."""

    kind: str = "validator"

    def __init__(self, signer: SmartAccountSigner, address: str):
        self._signer = signer
        self._address = checksum(address)

    @property
    def address(self) -> str:
        """Validator contract address."""
        return self._address

    @property
    def signer(self) -> SmartAccountSigner:
        return self._signer

    @property
    @abstractmethod
    def validator_id(self) -> bytes:
        """Identifier the account stores for this validator configuration."""
        pass

    @abstractmethod
    def get_enable_data(self) -> bytes:
        """Data passed to the validator's ``enable`` when it is installed."""
        pass

    async def sign_hash(self, message_hash: bytes) -> bytes:
        """Sign a 32-byte hash (user operation hash or Merkle root)."""
        return await self._signer.sign_message(message_hash)

    def validate_signature(self, message_hash: HexLike, signature: HexLike) -> bool:
        return is_signed_by(as_bytes(message_hash), signature, self._signer.address)

    def get_dummy_signature(self) -> bytes:
        return DUMMY_ECDSA_SIGNATURE
