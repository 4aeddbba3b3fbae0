"""
Pytest configuration for sardis-kernel tests.
"""
from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, Optional, Tuple

import pytest

from sardis_kernel.call_encoder import Call
from sardis_kernel.chain_client import ChainClientPort, ExecutionDetail
from sardis_kernel.config import (
    ENTRYPOINT_V06,
    AccountConfig,
    FactoryConfig,
    KernelAddresses,
    SigningConfig,
)
from sardis_kernel.erc4337.user_operation import UserOperation
from sardis_kernel.exceptions import RPCError
from sardis_kernel.kernel_account import KernelAccount, create_kernel_account
from sardis_kernel.signers import LocalAccountSigner, SmartAccountSigner
from sardis_kernel.utils import ZERO_ADDRESS, to_hex
from sardis_kernel.validators import ECDSAValidator

# Keep audit entries on the logger during tests
os.environ.pop("SARDIS_KERNEL_AUDIT_LOG_PATH", None)

# Anvil / Foundry default accounts
OWNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcbc1b4b41c6f2ff80"
OWNER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
SESSION_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
SESSION_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
OTHER_KEY = "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a"
OTHER_ADDRESS = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

SEPOLIA = 11155111
OP_SEPOLIA = 11155420
BASE_SEPOLIA = 84532

INIT_CODE_HASH = "0x" + "ab" * 32

# Permission contracts have no canonical deployment; tests use fixed local ones.
PERMISSION_VALIDATOR = "0x" + "a1" * 20
VALUE_LIMIT_POLICY = "0x" + "b2" * 20
ADDRESSES = KernelAddresses(
    permission_validator=PERMISSION_VALIDATOR,
    value_limit_policy=VALUE_LIMIT_POLICY,
)


class FakeChainClient(ChainClientPort):
    """In-memory chain: bytecode, nonces and installed validators."""

    def __init__(self, chain_id: int = SEPOLIA, sender_address: Optional[str] = None):
        self.chain_id = chain_id
        self.sender_address = sender_address
        self.code: Dict[str, bytes] = {}
        self.nonces: Dict[Tuple[str, int], int] = {}
        self.executions: Dict[str, ExecutionDetail] = {}
        self.fee_data = (2_000_000_000, 1_000_000_000)
        self.fail_code_reads = False
        self.code_reads = 0

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_code(self, address: str) -> bytes:
        self.code_reads += 1
        if self.fail_code_reads:
            raise RPCError("eth_getCode failed", method="eth_getCode")
        return self.code.get(address.lower(), b"")

    async def call(self, to: str, data: bytes) -> bytes:
        raise RPCError("Unexpected eth_call in test", method="eth_call")

    async def get_sender_address(self, init_code: bytes, entry_point: str) -> str:
        if self.sender_address is None:
            raise RPCError("getSenderAddress unavailable", method="eth_call")
        return self.sender_address

    async def get_fee_data(self) -> Tuple[int, int]:
        return self.fee_data

    async def get_nonce(self, sender: str, key: int, entry_point: str) -> int:
        return self.nonces.get((sender.lower(), key), 0)

    async def get_execution(self, account: str, function_selector: bytes) -> ExecutionDetail:
        return self.executions.get(
            account.lower(),
            ExecutionDetail(valid_after=0, valid_until=0, executor=ZERO_ADDRESS, validator=ZERO_ADDRESS),
        )

    def deploy(self, address: str) -> None:
        self.code[address.lower()] = bytes.fromhex("6080604052")

    def install_validator(self, account: str, validator: str) -> None:
        self.executions[account.lower()] = ExecutionDetail(
            valid_after=0, valid_until=0, executor=ZERO_ADDRESS, validator=validator
        )


class CountingSigner(LocalAccountSigner):
    """Local key that records how often it was asked to sign."""

    def __init__(self, private_key: str):
        super().__init__(private_key)
        self.message_count = 0
        self.typed_data_count = 0

    async def sign_message(self, message: bytes) -> bytes:
        self.message_count += 1
        return await super().sign_message(message)

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> bytes:
        self.typed_data_count += 1
        return await super().sign_typed_data(typed_data)

    @property
    def total(self) -> int:
        return self.message_count + self.typed_data_count


class SlowSigner(SmartAccountSigner):
    """Signer that never answers in time."""

    def __init__(self, address: str = OWNER_ADDRESS, delay: float = 5.0):
        self._address = address
        self._delay = delay

    @property
    def address(self) -> str:
        return self._address

    async def sign_message(self, message: bytes) -> bytes:
        await asyncio.sleep(self._delay)
        return b"\x00" * 65

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> bytes:
        await asyncio.sleep(self._delay)
        return b"\x00" * 65


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def addresses():
    return ADDRESSES


@pytest.fixture
def account_config(addresses):
    """Sepolia account configuration with a known proxy init code hash."""
    return AccountConfig(
        factory=FactoryConfig(address=addresses.factory, init_code_hash=INIT_CODE_HASH),
        entry_point=ENTRYPOINT_V06,
        multi_send=addresses.multi_send,
        expected_chain_id=SEPOLIA,
        signing=SigningConfig(timeout_seconds=2.0),
        addresses=addresses,
    )


@pytest.fixture
def chain_client():
    return FakeChainClient(SEPOLIA)


@pytest.fixture
def owner_signer():
    return CountingSigner(OWNER_KEY)


@pytest.fixture
def session_signer():
    return CountingSigner(SESSION_KEY)


@pytest.fixture
def make_account(account_config, owner_signer):
    """Factory for accounts bound to a fake chain client."""

    async def _make(
        chain_client: FakeChainClient,
        *,
        sudo=None,
        regular=None,
        index: int = 0,
        config: Optional[AccountConfig] = None,
        **kwargs: Any,
    ) -> KernelAccount:
        return await create_kernel_account(
            chain_client,
            config or account_config.with_chain(chain_client.chain_id),
            sudo=sudo or ECDSAValidator(owner_signer),
            regular=regular,
            index=index,
            **kwargs,
        )

    return _make


def build_user_op(account: KernelAccount, *calls: Call, nonce: int = 0) -> UserOperation:
    """Unsigned user operation for ``calls`` on ``account``.

    One call is encoded on its own; several go through MultiSend.
    """
    intent = calls[0] if len(calls) == 1 else list(calls)
    return UserOperation(
        sender=account.address,
        nonce=nonce,
        init_code=to_hex(account.model.init_code),
        call_data=to_hex(account.encode_call_data(intent)),
        call_gas_limit=100_000,
        verification_gas_limit=200_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=2_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    )


@pytest.fixture
def user_op_builder():
    return build_user_op
