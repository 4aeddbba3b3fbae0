"""Kernel account model: address prediction, init code and deploy state.

The account address is fixed the first time it is computed and never
re-derived. Deploy state is probed on demand through the chain client and is
only ever a hint for the current operation.

References:
- CREATE2 address: keccak256(0xff ++ factory ++ salt ++ keccak256(initCode))[12:]
- Kernel factory: createAccount(address owner, uint256 index)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from eth_abi import encode
from eth_utils import is_address

from .chain_client import ChainClientPort
from .config import AccountConfig
from .exceptions import ConfigurationError, EncodingError
from .logging_utils import get_kernel_logger
from .utils import address_bytes, as_bytes, checksum, keccak, selector, uint_bytes

logger = logging.getLogger(__name__)

CREATE_ACCOUNT_SELECTOR = selector("createAccount(address,uint256)")

MAX_UINT256 = 2**256 - 1
NONCE_KEY_BITS = 192


class DeployState(str, Enum):
    UNDEPLOYED = "undeployed"
    DEPLOYED = "deployed"


@dataclass(frozen=True)
class AccountInitArgs:
    """Arguments the factory receives; together with the factory they fix the address."""
    owner: str
    index: int = 0

    def __post_init__(self) -> None:
        if not is_address(self.owner):
            raise ConfigurationError(f"Invalid owner address: {self.owner}", field="owner")
        if not 0 <= int(self.index) <= MAX_UINT256:
            raise ConfigurationError(f"Account index out of range: {self.index}", field="index")


def _require_factory(factory: str) -> None:
    if not is_address(factory):
        raise ConfigurationError(f"Invalid factory address: {factory}", field="factory")


def account_salt(init_args: AccountInitArgs) -> bytes:
    """salt = keccak256(abi.encodePacked(owner, index))"""
    return keccak(address_bytes(init_args.owner) + uint_bytes(init_args.index, 32))


def derive_address(factory: str, init_args: AccountInitArgs, init_code_hash: str) -> str:
    """Predict the CREATE2 address of a Kernel proxy before deployment.

    Pure: the same (factory, init_args, init_code_hash) always yields the
    same checksummed address, whether or not the account exists yet.
    """
    _require_factory(factory)
    code_hash = as_bytes(init_code_hash)
    if len(code_hash) != 32:
        raise ConfigurationError(
            "Factory init code hash must be 32 bytes",
            field="init_code_hash",
        )

    create2_input = b"\xff" + address_bytes(factory) + account_salt(init_args) + code_hash
    return checksum(keccak(create2_input)[12:])


def generate_init_code(factory: str, init_args: AccountInitArgs) -> bytes:
    """initCode = factory ++ createAccount(owner, index)"""
    _require_factory(factory)
    call_data = CREATE_ACCOUNT_SELECTOR + encode(
        ["address", "uint256"],
        [checksum(init_args.owner), init_args.index],
    )
    return address_bytes(factory) + call_data


def parse_factory_init_code(init_code: bytes | str) -> Tuple[str, bytes]:
    """Split initCode into (factory address, factory calldata)."""
    raw = as_bytes(init_code)
    if len(raw) < 20:
        raise EncodingError("Init code is shorter than a factory address")
    return checksum(raw[:20]), raw[20:]


def custom_nonce_key_from_string(text: str) -> int:
    """Derive a 192-bit nonce key so unrelated flows use separate nonce lanes."""
    digest = keccak(text.encode("utf-8"))
    return int.from_bytes(digest[: NONCE_KEY_BITS // 8], "big")


async def is_deployed(chain_client: ChainClientPort, address: str) -> bool:
    """Bytecode presence check. Failures propagate; there is no fallback."""
    code = await chain_client.get_code(address)
    deployed = len(code) > 0
    get_kernel_logger().log_deploy_probe(address, deployed)
    return deployed


@dataclass(frozen=True)
class AccountModel:
    """Immutable identity of one (owner, index) Kernel account."""
    address: str
    factory: str
    init_args: AccountInitArgs
    init_code: bytes

    @property
    def owner(self) -> str:
        return self.init_args.owner

    async def deploy_state(self, chain_client: ChainClientPort) -> DeployState:
        if await is_deployed(chain_client, self.address):
            return DeployState.DEPLOYED
        return DeployState.UNDEPLOYED

    async def get_init_code(self, chain_client: ChainClientPort) -> bytes:
        """Deploy payload while undeployed, empty once the code exists."""
        if await is_deployed(chain_client, self.address):
            return b""
        return self.init_code


async def resolve_account(
    chain_client: ChainClientPort,
    config: AccountConfig,
    init_args: AccountInitArgs,
    deployed_account_address: Optional[str] = None,
) -> AccountModel:
    """Fix the account address once, at construction time."""
    factory = config.factory.address
    init_code = generate_init_code(factory, init_args)

    if deployed_account_address is not None:
        if not is_address(deployed_account_address):
            raise ConfigurationError(
                f"Invalid account address: {deployed_account_address}",
                field="deployed_account_address",
            )
        address = checksum(deployed_account_address)
    elif config.factory.init_code_hash:
        address = derive_address(factory, init_args, config.factory.init_code_hash)
    else:
        address = await chain_client.get_sender_address(init_code, config.entry_point)
        logger.debug("Resolved sender address %s through entry point", address)

    return AccountModel(
        address=address,
        factory=checksum(factory),
        init_args=init_args,
        init_code=init_code,
    )
