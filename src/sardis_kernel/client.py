"""
Kernel account client: prepare, sponsor, sign and submit user operations.

Usage:
    client = KernelAccountClient(account, BundlerClient(BundlerConfig(url)))
    user_op_hash = await client.send_transaction(Call(target=to, value=amount))
    receipt = await client.wait_for_receipt(user_op_hash)
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence

from .call_encoder import Call, CallInput
from .erc4337.bundler_client import BundlerClient
from .erc4337.paymaster_client import PaymasterClient
from .erc4337.user_operation import UserOperation
from .kernel_account import KernelAccount
from .logging_utils import OperationType, get_kernel_logger
from .utils import to_hex

logger = logging.getLogger(__name__)


class KernelAccountClient:
    """Drives one ``KernelAccount`` against a bundler and optional paymaster."""

    def __init__(
        self,
        account: KernelAccount,
        bundler: BundlerClient,
        paymaster: Optional[PaymasterClient] = None,
    ):
        self.account = account
        self._bundler = bundler
        self._paymaster = paymaster

    async def prepare_user_operation(
        self,
        calls: CallInput,
        *,
        nonce_key: int = 0,
        gas_overrides: Optional[Dict[str, int]] = None,
    ) -> UserOperation:
        """
        Build an unsigned user operation for ``calls``.

        Gas values come from the bundler estimate (or ``gas_overrides``) and
        fees from the chain; paymaster sponsorship is merged verbatim.
        """
        account = self.account
        call_data = account.encode_call_data(calls)
        max_fee, priority_fee = await account.chain_client.get_fee_data()

        user_op = UserOperation(
            sender=account.address,
            nonce=await account.get_nonce(nonce_key),
            init_code=to_hex(await account.get_init_code()),
            call_data=to_hex(call_data),
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
            signature=to_hex(account.get_dummy_signature()),
        )

        if gas_overrides:
            user_op = replace(user_op, **gas_overrides)
        else:
            estimate = await self._bundler.estimate_user_operation_gas(
                user_op, account.entry_point
            )
            user_op = user_op.with_gas(estimate)

        if self._paymaster is not None:
            sponsorship = await self._paymaster.sponsor_user_operation(
                user_op, account.entry_point
            )
            user_op = sponsorship.apply_to(user_op)

        return user_op

    async def sign_user_operation(self, user_op: UserOperation) -> UserOperation:
        return await self.account.sign_user_operation(user_op)

    async def send_signed_user_operation(self, user_op: UserOperation) -> str:
        kernel_logger = get_kernel_logger()
        async with kernel_logger.operation_context(
            OperationType.SEND_USER_OPERATION,
            self.account.address,
            nonce=user_op.nonce,
        ) as ctx:
            user_op_hash = await self._bundler.send_user_operation(
                user_op, self.account.entry_point
            )
            ctx.metadata["user_op_hash"] = user_op_hash
        return user_op_hash

    async def send_user_operation(
        self,
        calls: CallInput,
        *,
        nonce_key: int = 0,
        gas_overrides: Optional[Dict[str, int]] = None,
    ) -> str:
        user_op = await self.prepare_user_operation(
            calls, nonce_key=nonce_key, gas_overrides=gas_overrides
        )
        signed = await self.sign_user_operation(user_op)
        return await self.send_signed_user_operation(signed)

    async def send_transaction(self, call: Call, *, nonce_key: int = 0) -> str:
        return await self.send_user_operation(call, nonce_key=nonce_key)

    async def send_transactions(self, calls: Sequence[Call], *, nonce_key: int = 0) -> str:
        """Submit calls as one atomic batch, executed in the given order."""
        return await self.send_user_operation(list(calls), nonce_key=nonce_key)

    async def wait_for_receipt(
        self,
        user_op_hash: str,
        timeout_seconds: int = 180,
        poll_seconds: float = 2.0,
    ) -> Dict[str, Any]:
        return await self._bundler.wait_for_receipt(
            user_op_hash, timeout_seconds=timeout_seconds, poll_seconds=poll_seconds
        )
