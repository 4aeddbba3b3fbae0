"""Owner validator that also accepts Merkle-committed multi-chain signatures."""
from __future__ import annotations

import logging
from typing import Optional

from ..config import KernelAddresses
from ..exceptions import InvalidSignatureEnvelope
from ..merkle import (
    ECDSA_SIGNATURE_LENGTH,
    MultiChainLeaf,
    decode_multi_chain_payload,
    verify_multi_chain_proof,
)
from ..signers import SmartAccountSigner, is_signed_by
from ..utils import HexLike, address_bytes, as_bytes
from .base import ValidatorPlugin

logger = logging.getLogger(__name__)


class MultiChainValidator(ValidatorPlugin):
    """
    Sudo validator for accounts that sign once for several chains.

    A 65-byte signature is checked as a plain ECDSA signature over the hash.
    Anything longer is a multi-chain payload: the root signature must come
    from the owner and the proof must connect (chain id, hash) to the root.
    """

    kind = "multi_chain"

    def __init__(self, signer: SmartAccountSigner, address: Optional[str] = None):
        super().__init__(signer, address or KernelAddresses().multi_chain_validator)

    @property
    def validator_id(self) -> bytes:
        return address_bytes(self.address)[:4]

    def get_enable_data(self) -> bytes:
        return address_bytes(self.signer.address)

    def validate_signature(
        self,
        message_hash: HexLike,
        signature: HexLike,
        chain_id: Optional[int] = None,
    ) -> bool:
        raw = as_bytes(signature)
        if len(raw) == ECDSA_SIGNATURE_LENGTH:
            return super().validate_signature(message_hash, raw)
        if chain_id is None:
            return False

        try:
            proof = decode_multi_chain_payload(raw)
        except InvalidSignatureEnvelope as e:
            logger.debug(f"Rejected multi-chain payload: {e}")
            return False

        leaf = MultiChainLeaf(chain_id=chain_id, user_op_hash=as_bytes(message_hash))
        if not verify_multi_chain_proof(leaf, proof):
            return False
        return is_signed_by(proof.merkle_root, proof.root_signature, self.signer.address)
