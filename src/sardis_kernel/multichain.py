"""
Multi-chain signing: one Sudo signature for operations on several chains.

The (chain id, hash) pairs are committed to a Merkle root (see ``merkle``),
the root is signed once, and every operation carries the root, the root
signature and its own inclusion proof. The same commitment is used to
approve a Regular validator on several chains with one signature.

Usage:
    signed = await sign_user_ops([
        ChainUserOperation(sepolia_account, sepolia_op),
        ChainUserOperation(op_sepolia_account, op_sepolia_op),
    ])
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .erc4337.user_operation import UserOperation
from .exceptions import ConfigurationError, EncodingError
from .kernel_account import KernelAccount
from .logging_utils import OperationType, get_kernel_logger
from .merkle import MultiChainLeaf, MultiChainProof, build_proofs, encode_multi_chain_payload
from .plugin_manager import EnableApproval, enable_digest
from .signers import sign_within
from .utils import same_address, to_hex
from .validators.multichain import MultiChainValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainUserOperation:
    """A user operation paired with the account (and so the chain) it is for."""
    account: KernelAccount
    user_op: UserOperation


def _shared_sudo(accounts: Sequence[KernelAccount]) -> MultiChainValidator:
    if not accounts:
        raise EncodingError("No accounts to sign for")

    sudo = accounts[0].sudo
    for account in accounts:
        if not isinstance(account.sudo, MultiChainValidator):
            raise ConfigurationError(
                f"Account {account.address} needs a MultiChainValidator as sudo",
                field="sudo",
            )
        if not same_address(account.sudo.signer.address, sudo.signer.address):
            raise ConfigurationError(
                f"Account {account.address} has a different sudo signer",
                field="sudo",
            )
    return sudo


async def _commit_and_sign(
    accounts: Sequence[KernelAccount],
    leaves: Sequence[MultiChainLeaf],
) -> Dict[int, MultiChainProof]:
    """Build the tree, sign its root once and return each chain's proof."""
    root, entries = build_proofs(leaves)
    sudo = _shared_sudo(accounts)
    timeout = accounts[0].config.signing.timeout_seconds

    async with get_kernel_logger().operation_context(
        OperationType.MULTI_CHAIN_SIGN,
        sudo.signer.address,
        chains=[leaf.chain_id for leaf, _, _ in entries],
        root=to_hex(root),
    ):
        root_signature = await sign_within(sudo.sign_hash(root), timeout, sudo.signer)

    return {
        leaf.chain_id: MultiChainProof(
            merkle_root=root,
            root_signature=root_signature,
            leaf_index=index,
            sibling_path=path,
        )
        for leaf, index, path in entries
    }


async def sign_user_ops(operations: Sequence[ChainUserOperation]) -> List[UserOperation]:
    """
    Sign user operations for several chains with one Sudo signature.

    Returns the signed operations in input order.

    Raises:
        DuplicateChainInBatch: two operations target the same chain
        ConfigurationError: accounts do not share a multi-chain sudo
    """
    for op in operations:
        if not same_address(op.user_op.sender, op.account.address):
            raise ConfigurationError(
                f"User operation sender {op.user_op.sender} is not {op.account.address}",
                field="sender",
            )

    leaves = [
        MultiChainLeaf(
            chain_id=op.account.chain_id,
            user_op_hash=op.account.get_user_operation_hash(op.user_op),
        )
        for op in operations
    ]
    proofs = await _commit_and_sign([op.account for op in operations], leaves)

    signed = []
    for op in operations:
        payload = encode_multi_chain_payload(proofs[op.account.chain_id])
        signed.append(op.user_op.with_signature(payload))
    return signed


async def sign_enable_approvals(accounts: Sequence[KernelAccount]) -> List[EnableApproval]:
    """Approve each account's Regular validator with one Sudo signature.

    Every approval's enable signature is a multi-chain payload over that
    chain's enable digest.
    """
    enable_entries: List[Tuple[KernelAccount, MultiChainLeaf]] = []
    for account in accounts:
        if account.regular is None:
            raise ConfigurationError(
                f"Account {account.address} has no regular validator", field="regular"
            )
        digest = enable_digest(
            account.address,
            account.chain_id,
            account.plugins.enable_data(),
            account.config.signing,
        )
        enable_entries.append((account, MultiChainLeaf(account.chain_id, digest)))

    proofs = await _commit_and_sign(list(accounts), [leaf for _, leaf in enable_entries])

    approvals = []
    for account, _ in enable_entries:
        enable_data = account.plugins.enable_data()
        approvals.append(
            EnableApproval(
                account=account.address,
                chain_id=account.chain_id,
                enable_data=enable_data,
                enable_signature=encode_multi_chain_payload(proofs[account.chain_id]),
            )
        )
        get_kernel_logger().log_enable(
            account.address, enable_data.validator_address, to_hex(enable_data.validator_id)
        )
    return approvals


async def sign_user_ops_with_enable(
    operations: Sequence[ChainUserOperation],
) -> List[UserOperation]:
    """
    Enable Regular on every chain and sign each operation with it.

    Sudo signs once (the Merkle root of the per-chain enable digests); each
    operation then carries its chain's approval ahead of the Regular
    signature.
    """
    approvals = await sign_enable_approvals([op.account for op in operations])

    signed = []
    for op, approval in zip(operations, approvals):
        account = op.account.with_enable_approval(approval)
        signed.append(await account.sign_user_operation(op.user_op))
    logger.info(f"Signed {len(signed)} user operations with multi-chain enable")
    return signed
