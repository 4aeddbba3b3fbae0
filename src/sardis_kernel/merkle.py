"""
Merkle commitment over (chain id, hash) leaves.

leaf = keccak256(uint256 chainId ++ bytes32 hash)
node = keccak256(min(a, b) ++ max(a, b))

Pairs are hashed in sorted order, so proofs verify with OpenZeppelin's
``MerkleProof.verify``. A node without a sibling is promoted unchanged. A
single leaf is its own root with an empty proof.

Multi-chain signature payload:
    rootSignature (65) | root (32) | abi.encode(uint256 leafIndex, bytes32[] proof)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from .exceptions import DuplicateChainInBatch, EncodingError, InvalidSignatureEnvelope
from .utils import HexLike, as_bytes, keccak, uint_bytes

ECDSA_SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class MultiChainLeaf:
    chain_id: int
    user_op_hash: bytes

    def __post_init__(self) -> None:
        if isinstance(self.chain_id, bool) or not isinstance(self.chain_id, int):
            raise EncodingError(f"Chain id must be an integer, got {self.chain_id!r}")
        if not 0 <= self.chain_id < 2**256:
            raise EncodingError(f"Chain id out of uint256 range: {self.chain_id}")
        digest = as_bytes(self.user_op_hash)
        if len(digest) != 32:
            raise EncodingError("Multi-chain leaf hash must be 32 bytes")
        object.__setattr__(self, "user_op_hash", digest)

    def sort_key(self) -> Tuple[int, bytes]:
        return (self.chain_id, self.user_op_hash)

    def hash(self) -> bytes:
        return keccak(uint_bytes(self.chain_id, 32) + self.user_op_hash)


@dataclass(frozen=True)
class MultiChainProof:
    merkle_root: bytes
    root_signature: bytes
    leaf_index: int
    sibling_path: Tuple[bytes, ...] = field(default_factory=tuple)


def canonical_leaves(leaves: Iterable[MultiChainLeaf]) -> List[MultiChainLeaf]:
    """Reject duplicate chains, then order by (chain id, hash)."""
    seen: set[int] = set()
    result: List[MultiChainLeaf] = []
    for leaf in leaves:
        if leaf.chain_id in seen:
            raise DuplicateChainInBatch(leaf.chain_id)
        seen.add(leaf.chain_id)
        result.append(leaf)
    return sorted(result, key=MultiChainLeaf.sort_key)


def hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak(a + b) if a <= b else keccak(b + a)


def build_tree(leaf_hashes: Sequence[bytes]) -> List[List[bytes]]:
    """All tree levels, leaves first and the root level last."""
    if not leaf_hashes:
        raise EncodingError("Cannot build a Merkle tree without leaves")

    levels = [list(leaf_hashes)]
    while len(levels[-1]) > 1:
        current = levels[-1]
        parents = []
        for i in range(0, len(current), 2):
            if i + 1 < len(current):
                parents.append(hash_pair(current[i], current[i + 1]))
            else:
                parents.append(current[i])
        levels.append(parents)
    return levels


def merkle_root(levels: Sequence[Sequence[bytes]]) -> bytes:
    return levels[-1][0]


def merkle_proof(levels: Sequence[Sequence[bytes]], index: int) -> Tuple[bytes, ...]:
    path = []
    for level in levels[:-1]:
        sibling = index ^ 1
        if sibling < len(level):
            path.append(level[sibling])
        index //= 2
    return tuple(path)


def compute_root(leaf_hash: bytes, sibling_path: Sequence[bytes]) -> bytes:
    node = leaf_hash
    for sibling in sibling_path:
        node = hash_pair(node, sibling)
    return node


def verify_multi_chain_proof(leaf: MultiChainLeaf, proof: MultiChainProof) -> bool:
    """True when walking the proof from ``leaf`` ends at the committed root."""
    return compute_root(leaf.hash(), proof.sibling_path) == proof.merkle_root


def encode_multi_chain_payload(proof: MultiChainProof) -> bytes:
    if len(proof.root_signature) != ECDSA_SIGNATURE_LENGTH:
        raise EncodingError("Root signature must be 65 bytes")
    return (
        proof.root_signature
        + proof.merkle_root
        + encode(["uint256", "bytes32[]"], [proof.leaf_index, list(proof.sibling_path)])
    )


def decode_multi_chain_payload(payload: HexLike) -> MultiChainProof:
    raw = as_bytes(payload)
    if len(raw) < ECDSA_SIGNATURE_LENGTH + 32 + 96:
        raise InvalidSignatureEnvelope("Multi-chain payload is too short")
    root_signature = raw[:ECDSA_SIGNATURE_LENGTH]
    root = raw[ECDSA_SIGNATURE_LENGTH:ECDSA_SIGNATURE_LENGTH + 32]
    try:
        leaf_index, path = decode(["uint256", "bytes32[]"], raw[ECDSA_SIGNATURE_LENGTH + 32:])
    except DecodingError as e:
        raise InvalidSignatureEnvelope(f"Malformed multi-chain proof: {e}") from e
    return MultiChainProof(
        merkle_root=root,
        root_signature=root_signature,
        leaf_index=leaf_index,
        sibling_path=tuple(bytes(node) for node in path),
    )


def build_proofs(
    leaves: Iterable[MultiChainLeaf],
) -> Tuple[bytes, List[Tuple[MultiChainLeaf, int, Tuple[bytes, ...]]]]:
    """Root plus (leaf, index, path) for every leaf, in canonical order."""
    ordered = canonical_leaves(leaves)
    levels = build_tree([leaf.hash() for leaf in ordered])
    return merkle_root(levels), [
        (leaf, index, merkle_proof(levels, index)) for index, leaf in enumerate(ordered)
    ]
