"""
Kernel smart account handle.

A ``KernelAccount`` is an immutable value: the account address, its
validator roles and the chain it was resolved on. Operations that change
what the account can sign with (``enable_regular``) return a new handle.

Usage:
    account = await create_kernel_account(
        chain_client,
        get_config().account_config("base_sepolia"),
        sudo=ECDSAValidator(LocalAccountSigner(owner_key)),
    )
    call_data = account.encode_call_data(Call(target=token, data=transfer))
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Union

from .account import AccountInitArgs, AccountModel, resolve_account
from .call_encoder import CallInput, decode_call_data, encode_call_data
from .chain_client import ChainClientPort
from .config import AccountConfig, validate_chain_id
from .erc4337.entrypoint import require_kernel_entry_point
from .erc4337.user_operation import UserOperation, get_user_operation_hash
from .exceptions import ApprovalMismatch, ConfigurationError, SignTransactionNotSupported
from .logging_utils import OperationType, get_kernel_logger, log_operation
from .plugin_manager import EnableApproval, KernelPluginManager, PluginState
from .signature_6492 import wrap_signature_6492
from .signers import sign_within
from .utils import same_address
from .validators.base import ValidatorPlugin
from .validators.permission import PermissionValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KernelAccount:
    model: AccountModel
    plugins: KernelPluginManager
    chain_client: ChainClientPort
    chain_id: int
    config: AccountConfig

    @property
    def address(self) -> str:
        return self.model.address

    @property
    def entry_point(self) -> str:
        return self.config.entry_point

    @property
    def sudo(self) -> ValidatorPlugin:
        return self.plugins.sudo

    @property
    def regular(self) -> Optional[ValidatorPlugin]:
        return self.plugins.regular

    @property
    def enable_approval(self) -> Optional[EnableApproval]:
        return self.plugins.enable_approval

    # ============ Account state ============

    async def is_deployed(self) -> bool:
        return len(await self.get_init_code()) == 0

    async def get_init_code(self) -> bytes:
        return await self.model.get_init_code(self.chain_client)

    async def get_nonce(self, key: int = 0) -> int:
        return await self.chain_client.get_nonce(self.address, key, self.entry_point)

    async def get_plugin_state(self) -> PluginState:
        return await self.plugins.get_plugin_state(
            self.chain_client, self.address, await self.is_deployed()
        )

    # ============ Encoding ============

    def encode_call_data(self, calls: CallInput) -> bytes:
        return encode_call_data(self.address, calls, self.config.multi_send)

    def get_user_operation_hash(self, user_op: UserOperation) -> bytes:
        return get_user_operation_hash(user_op, self.entry_point, self.chain_id)

    def get_dummy_signature(self) -> bytes:
        return self.plugins.get_dummy_signature()

    # ============ Signing ============

    @log_operation(OperationType.SIGN_USER_OPERATION)
    async def sign_user_operation(self, user_op: UserOperation) -> UserOperation:
        """Sign with Regular when one is configured, otherwise with Sudo.

        The first Regular-signed operation carries the enable approval; once
        the account reports Regular as installed it is no longer attached.
        """
        if not same_address(user_op.sender, self.address):
            raise ConfigurationError(
                f"User operation sender {user_op.sender} is not {self.address}",
                field="sender",
            )

        calls = ()
        if isinstance(self.regular, PermissionValidator):
            calls = tuple(
                decode_call_data(self.address, user_op.call_data, self.config.multi_send)
            )

        signature = await self.plugins.sign_user_op_hash(
            self.get_user_operation_hash(user_op),
            account=self.address,
            chain_id=self.chain_id,
            chain_client=self.chain_client,
            deployed=await self.is_deployed(),
            calls=calls,
        )
        get_kernel_logger().log_signature(
            self.address, "user_operation", signature, chain_id=self.chain_id
        )
        return user_op.with_signature(signature)

    @log_operation(OperationType.SIGN_MESSAGE)
    async def sign_message(self, message: Union[str, bytes]) -> bytes:
        """ERC-1271 signature by Sudo, 6492-wrapped while undeployed.

        ``str`` is signed as UTF-8 text, ``bytes`` as raw data.
        """
        raw = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        signer = self.sudo.signer
        signature = await sign_within(
            signer.sign_message(raw), self.config.signing.timeout_seconds, signer
        )
        return await self._wrap_for_deploy_state(signature)

    @log_operation(OperationType.SIGN_MESSAGE)
    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> bytes:
        signer = self.sudo.signer
        signature = await sign_within(
            signer.sign_typed_data(typed_data), self.config.signing.timeout_seconds, signer
        )
        return await self._wrap_for_deploy_state(signature)

    async def _wrap_for_deploy_state(self, signature: bytes) -> bytes:
        # Deploy state is probed again for every signature.
        deployed = await self.is_deployed()
        return wrap_signature_6492(signature, deployed, self.model.init_code)

    def sign_transaction(self, *args: Any, **kwargs: Any) -> bytes:
        raise SignTransactionNotSupported()

    # ============ Regular validator ============

    @log_operation(OperationType.ENABLE_VALIDATOR)
    async def enable_regular(self) -> "KernelAccount":
        """Have Sudo approve the Regular validator; returns a handle carrying the approval."""
        if self.regular is None:
            raise ConfigurationError("Account has no regular validator", field="regular")
        approval = await self.plugins.sign_enable(self.address, self.chain_id)
        return self.with_enable_approval(approval)

    def with_enable_approval(self, approval: EnableApproval) -> "KernelAccount":
        if not same_address(approval.account, self.address):
            raise ApprovalMismatch(
                f"Approval is for {approval.account}, not {self.address}", field="account"
            )
        if approval.chain_id != self.chain_id:
            raise ApprovalMismatch(
                f"Approval is for chain {approval.chain_id}, not {self.chain_id}",
                field="chain_id",
            )
        return replace(self, plugins=self.plugins.with_enable_approval(approval))


async def create_kernel_account(
    chain_client: ChainClientPort,
    config: AccountConfig,
    *,
    sudo: ValidatorPlugin,
    regular: Optional[ValidatorPlugin] = None,
    index: int = 0,
    deployed_account_address: Optional[str] = None,
    enable_approval: Optional[EnableApproval] = None,
) -> KernelAccount:
    """
    Build a Kernel account handle.

    The factory owner is the Sudo signer's address; (owner, index) fixes the
    account address, which is resolved once here.

    Raises:
        ConfigurationError: unsupported entry point, bad index or factory,
            or the chain client is connected to a different chain
    """
    require_kernel_entry_point(config.entry_point)
    init_args = AccountInitArgs(owner=sudo.signer.address, index=index)

    kernel_logger = get_kernel_logger()
    async with kernel_logger.operation_context(
        OperationType.ADDRESS_RESOLUTION, sudo.signer.address, index=index
    ) as ctx:
        chain_id = await chain_client.get_chain_id()
        if not validate_chain_id(config.expected_chain_id, chain_id):
            raise ConfigurationError(
                f"Chain client is connected to chain {chain_id}, "
                f"expected {config.expected_chain_id}",
                field="expected_chain_id",
            )
        model = await resolve_account(chain_client, config, init_args, deployed_account_address)
        ctx.metadata["address"] = model.address

    account = KernelAccount(
        model=model,
        plugins=KernelPluginManager(sudo=sudo, regular=regular, signing=config.signing),
        chain_client=chain_client,
        chain_id=chain_id,
        config=config,
    )
    if enable_approval is not None:
        account = account.with_enable_approval(enable_approval)
    logger.info(f"Kernel account {account.address} ready on chain {chain_id}")
    return account
