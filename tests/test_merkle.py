"""Multi-chain commitments and payload codec (merkle.py)."""

import pytest
from web3 import Web3

from sardis_kernel.exceptions import DuplicateChainInBatch, EncodingError, InvalidSignatureEnvelope
from sardis_kernel.merkle import (
    MultiChainLeaf,
    MultiChainProof,
    build_proofs,
    build_tree,
    canonical_leaves,
    compute_root,
    decode_multi_chain_payload,
    encode_multi_chain_payload,
    hash_pair,
    merkle_root,
    verify_multi_chain_proof,
)

H1 = b"\x11" * 32
H2 = b"\x22" * 32
H3 = b"\x33" * 32


def _leaf_hash(chain_id: int, user_op_hash: bytes) -> bytes:
    return bytes(Web3.keccak(chain_id.to_bytes(32, "big") + user_op_hash))


# ============ Leaves ============


class TestLeaves:
    def test_leaf_hash(self):
        assert MultiChainLeaf(1, H1).hash() == _leaf_hash(1, H1)

    def test_leaf_accepts_hex(self):
        assert MultiChainLeaf(1, "0x" + H1.hex()).user_op_hash == H1

    def test_leaf_requires_32_bytes(self):
        with pytest.raises(EncodingError):
            MultiChainLeaf(1, b"\x01" * 31)

    @pytest.mark.parametrize("chain_id", [-1, 2**256, "1"])
    def test_leaf_chain_id_must_fit_uint256(self, chain_id):
        with pytest.raises(EncodingError):
            MultiChainLeaf(chain_id, H1)

    def test_canonical_order_by_chain_id(self):
        leaves = [MultiChainLeaf(10, H1), MultiChainLeaf(1, H2), MultiChainLeaf(5, H3)]
        assert [leaf.chain_id for leaf in canonical_leaves(leaves)] == [1, 5, 10]

    def test_duplicate_chain_rejected(self):
        with pytest.raises(DuplicateChainInBatch) as exc_info:
            canonical_leaves([MultiChainLeaf(1, H1), MultiChainLeaf(1, H2)])
        assert exc_info.value.chain_id == 1


# ============ Tree ============


class TestTree:
    def test_two_leaf_root(self):
        a, b = _leaf_hash(1, H1), _leaf_hash(10, H2)
        expected = bytes(Web3.keccak(min(a, b) + max(a, b)))

        root, proofs = build_proofs([MultiChainLeaf(10, H2), MultiChainLeaf(1, H1)])
        assert root == expected
        assert proofs[0][0].chain_id == 1
        assert proofs[0][2] == (b,)
        assert proofs[1][2] == (a,)

    def test_hash_pair_is_order_independent(self):
        assert hash_pair(H1, H2) == hash_pair(H2, H1)

    def test_single_leaf_is_root(self):
        root, proofs = build_proofs([MultiChainLeaf(1, H1)])
        assert root == _leaf_hash(1, H1)
        assert proofs == [(MultiChainLeaf(1, H1), 0, ())]

    def test_odd_node_promoted(self):
        hashes = [_leaf_hash(i, H1) for i in (1, 2, 3)]
        levels = build_tree(hashes)
        assert levels[1] == [hash_pair(hashes[0], hashes[1]), hashes[2]]
        assert merkle_root(levels) == hash_pair(levels[1][0], hashes[2])

    @pytest.mark.parametrize("size", [2, 3, 4, 5, 7])
    def test_every_proof_verifies(self, size):
        leaves = [MultiChainLeaf(chain_id, bytes([chain_id]) * 32) for chain_id in range(1, size + 1)]
        root, proofs = build_proofs(leaves)
        for leaf, index, path in proofs:
            proof = MultiChainProof(root, b"\x00" * 65, index, path)
            assert compute_root(leaf.hash(), path) == root
            assert verify_multi_chain_proof(leaf, proof)

    def test_proof_rejects_other_leaf(self):
        root, proofs = build_proofs([MultiChainLeaf(1, H1), MultiChainLeaf(2, H2)])
        _, index, path = proofs[0]
        proof = MultiChainProof(root, b"\x00" * 65, index, path)
        assert not verify_multi_chain_proof(MultiChainLeaf(1, H3), proof)
        assert not verify_multi_chain_proof(MultiChainLeaf(3, H1), proof)

    def test_empty_tree_rejected(self):
        with pytest.raises(EncodingError):
            build_tree([])

    def test_root_independent_of_input_order(self):
        leaves = [MultiChainLeaf(1, H1), MultiChainLeaf(2, H2), MultiChainLeaf(3, H3)]
        assert build_proofs(leaves)[0] == build_proofs(list(reversed(leaves)))[0]


# ============ Payload codec ============


class TestPayload:
    def test_round_trip(self):
        proof = MultiChainProof(H1, b"\x05" * 65, 2, (H2, H3))
        payload = encode_multi_chain_payload(proof)
        assert payload[:65] == b"\x05" * 65
        assert payload[65:97] == H1
        assert decode_multi_chain_payload(payload) == proof

    def test_empty_path_round_trip(self):
        proof = MultiChainProof(H1, b"\x05" * 65, 0, ())
        assert decode_multi_chain_payload(encode_multi_chain_payload(proof)) == proof

    def test_short_payload_rejected(self):
        with pytest.raises(InvalidSignatureEnvelope):
            decode_multi_chain_payload(b"\x00" * 100)

    def test_root_signature_length_checked(self):
        with pytest.raises(EncodingError):
            encode_multi_chain_payload(MultiChainProof(H1, b"\x05" * 64, 0, ()))
