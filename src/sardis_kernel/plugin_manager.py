"""
Validator plugin manager for Kernel accounts.

Every account has one Sudo validator, fixed at construction, and at most one
Regular validator. Regular signs nothing until Sudo has approved it: the
first operation carries the approval in front of the Regular signature and
the account installs the validator while validating it. Later operations
are signed by Regular alone.

Signature shapes:
    r | s | v (65)         sudo, recovered to the account owner
    0x00000001 | sig       regular, already enabled on the account
    0x00000002 | ...       enable + regular

The Regular shapes are longer than 65 bytes, so a verifier tells them apart
from a Sudo signature by length and prefix alone.

Enable-mode layout:
    mode (4) | validUntil (6) | validAfter (6) | validator (20) | executor (20)
    | len(enableData) (32) | enableData | len(enableSig) (32) | enableSig
    | regularSig
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Sequence

from eth_account.messages import encode_typed_data

from .call_encoder import EXECUTE_SELECTOR, Call
from .chain_client import ChainClientPort
from .config import SigningConfig
from .exceptions import ConfigurationError, InvalidSignatureEnvelope, ValidatorNotEnabled
from .logging_utils import get_kernel_logger
from .signers import sign_within
from .utils import (
    ZERO_ADDRESS,
    HexLike,
    address_bytes,
    as_bytes,
    checksum,
    keccak,
    same_address,
    to_hex,
    uint_bytes,
)
from .validators.base import ValidatorMode, ValidatorPlugin
from .validators.permission import PermissionValidator

logger = logging.getLogger(__name__)

MAX_UINT48 = 2**48 - 1


class PluginState(str, Enum):
    SUDO_ONLY = "sudo_only"
    REGULAR_ACTIVE = "regular_active"


@dataclass(frozen=True)
class EnableData:
    """What Sudo approves when it authorizes a Regular validator."""
    validator_address: str
    validator_id: bytes
    enable_data: bytes
    valid_until: int = 0
    valid_after: int = 0
    executor: str = ZERO_ADDRESS
    selector: bytes = EXECUTE_SELECTOR

    def __post_init__(self) -> None:
        for name in ("valid_until", "valid_after"):
            if not 0 <= getattr(self, name) <= MAX_UINT48:
                raise ConfigurationError(f"{name} must fit in 48 bits", field=name)
        object.__setattr__(self, "validator_address", checksum(self.validator_address))
        object.__setattr__(self, "executor", checksum(self.executor))
        object.__setattr__(self, "enable_data", as_bytes(self.enable_data))
        object.__setattr__(self, "validator_id", as_bytes(self.validator_id))
        object.__setattr__(self, "selector", as_bytes(self.selector))

    @property
    def validator_data(self) -> int:
        """validUntil << 208 | validAfter << 160 | validator"""
        return (
            (self.valid_until << 208)
            | (self.valid_after << 160)
            | int.from_bytes(address_bytes(self.validator_address), "big")
        )


@dataclass(frozen=True)
class EnableApproval:
    """A Sudo signature over one account's EnableData on one chain."""
    account: str
    chain_id: int
    enable_data: EnableData
    enable_signature: bytes


class DecodedEnableSignature(NamedTuple):
    valid_until: int
    valid_after: int
    validator_address: str
    executor: str
    enable_data: bytes
    enable_signature: bytes
    regular_signature: bytes


def enable_typed_data(
    account: str,
    chain_id: int,
    enable_data: EnableData,
    signing: SigningConfig = SigningConfig(),
) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "ValidatorApproved": [
                {"name": "sig", "type": "bytes4"},
                {"name": "validatorData", "type": "uint256"},
                {"name": "executor", "type": "address"},
                {"name": "enableData", "type": "bytes"},
            ],
        },
        "primaryType": "ValidatorApproved",
        "domain": {
            "name": signing.kernel_name,
            "version": signing.kernel_version,
            "chainId": chain_id,
            "verifyingContract": checksum(account),
        },
        "message": {
            "sig": enable_data.selector,
            "validatorData": enable_data.validator_data,
            "executor": enable_data.executor,
            "enableData": enable_data.enable_data,
        },
    }


def typed_data_hash(typed_data: Dict[str, Any]) -> bytes:
    """The EIP-712 digest a wallet signs for ``typed_data``."""
    signable = encode_typed_data(full_message=typed_data)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def enable_digest(
    account: str,
    chain_id: int,
    enable_data: EnableData,
    signing: SigningConfig = SigningConfig(),
) -> bytes:
    return typed_data_hash(enable_typed_data(account, chain_id, enable_data, signing))


def encode_enable_signature(
    enable_data: EnableData,
    enable_signature: HexLike,
    regular_signature: HexLike,
) -> bytes:
    enable_sig = as_bytes(enable_signature)
    return (
        ValidatorMode.ENABLE
        + uint_bytes(enable_data.valid_until, 6)
        + uint_bytes(enable_data.valid_after, 6)
        + address_bytes(enable_data.validator_address)
        + address_bytes(enable_data.executor)
        + uint_bytes(len(enable_data.enable_data), 32)
        + enable_data.enable_data
        + uint_bytes(len(enable_sig), 32)
        + enable_sig
        + as_bytes(regular_signature)
    )


def decode_enable_signature(signature: HexLike) -> DecodedEnableSignature:
    raw = as_bytes(signature)
    if raw[:4] != ValidatorMode.ENABLE:
        raise InvalidSignatureEnvelope("Signature is not in enable mode")

    offset = 4
    header_end = offset + 6 + 6 + 20 + 20 + 32
    if len(raw) < header_end:
        raise InvalidSignatureEnvelope("Enable signature header is truncated")

    valid_until = int.from_bytes(raw[offset:offset + 6], "big")
    valid_after = int.from_bytes(raw[offset + 6:offset + 12], "big")
    validator = checksum(raw[offset + 12:offset + 32])
    executor = checksum(raw[offset + 32:offset + 52])
    data_length = int.from_bytes(raw[offset + 52:offset + 84], "big")

    offset = header_end
    enable_data = raw[offset:offset + data_length]
    offset += data_length
    if len(enable_data) != data_length or len(raw) < offset + 32:
        raise InvalidSignatureEnvelope("Enable data is truncated")

    sig_length = int.from_bytes(raw[offset:offset + 32], "big")
    offset += 32
    enable_sig = raw[offset:offset + sig_length]
    if len(enable_sig) != sig_length:
        raise InvalidSignatureEnvelope("Enable signature is truncated")

    return DecodedEnableSignature(
        valid_until=valid_until,
        valid_after=valid_after,
        validator_address=validator,
        executor=executor,
        enable_data=enable_data,
        enable_signature=enable_sig,
        regular_signature=raw[offset + sig_length:],
    )


def build_enable_data(
    regular: ValidatorPlugin,
    valid_until: int = 0,
    valid_after: int = 0,
    executor: str = ZERO_ADDRESS,
    selector: bytes = EXECUTE_SELECTOR,
) -> EnableData:
    return EnableData(
        validator_address=regular.address,
        validator_id=regular.validator_id,
        enable_data=regular.get_enable_data(),
        valid_until=valid_until,
        valid_after=valid_after,
        executor=executor,
        selector=selector,
    )


@dataclass(frozen=True)
class KernelPluginManager:
    """Sudo and Regular roles for one account, with an optional enable approval."""
    sudo: ValidatorPlugin
    regular: Optional[ValidatorPlugin] = None
    enable_approval: Optional[EnableApproval] = None
    signing: SigningConfig = field(default_factory=SigningConfig)

    def with_enable_approval(self, approval: EnableApproval) -> "KernelPluginManager":
        return replace(self, enable_approval=approval)

    async def get_plugin_state(
        self,
        chain_client: ChainClientPort,
        account: str,
        deployed: bool,
    ) -> PluginState:
        """Read whether the account already routes execute() to Regular."""
        if self.regular is None or not deployed:
            return PluginState.SUDO_ONLY
        execution = await chain_client.get_execution(account, EXECUTE_SELECTOR)
        if execution.has_validator and same_address(execution.validator, self.regular.address):
            return PluginState.REGULAR_ACTIVE
        return PluginState.SUDO_ONLY

    def enable_data(self) -> EnableData:
        if self.enable_approval is not None:
            return self.enable_approval.enable_data
        if self.regular is None:
            raise ConfigurationError("No regular validator configured", field="regular")
        return build_enable_data(self.regular)

    async def _sign(self, plugin: ValidatorPlugin, message_hash: bytes) -> bytes:
        return await sign_within(
            plugin.sign_hash(message_hash), self.signing.timeout_seconds, plugin.signer
        )

    async def sign_enable(self, account: str, chain_id: int) -> EnableApproval:
        """Sudo signs the Regular validator's EnableData (EIP-712)."""
        enable_data = self.enable_data()
        typed_data = enable_typed_data(account, chain_id, enable_data, self.signing)
        signature = await sign_within(
            self.sudo.signer.sign_typed_data(typed_data),
            self.signing.timeout_seconds,
            self.sudo.signer,
        )
        get_kernel_logger().log_enable(
            account, enable_data.validator_address, to_hex(enable_data.validator_id)
        )
        return EnableApproval(
            account=checksum(account),
            chain_id=chain_id,
            enable_data=enable_data,
            enable_signature=signature,
        )

    def _approval_for(self, account: str, chain_id: int) -> Optional[EnableApproval]:
        approval = self.enable_approval
        if approval is None:
            return None
        if not same_address(approval.account, account) or approval.chain_id != chain_id:
            return None
        return approval

    async def sign_user_op_hash(
        self,
        user_op_hash: bytes,
        *,
        account: str,
        chain_id: int,
        chain_client: ChainClientPort,
        deployed: bool,
        calls: Sequence[Call] = (),
    ) -> bytes:
        """Produce the account signature for a user operation hash.

        Raises:
            PolicyDenied: the Regular validator's policies refuse ``calls``
            ValidatorNotEnabled: Regular is neither installed nor approved
        """
        if self.regular is None:
            return await self._sign(self.sudo, user_op_hash)

        if isinstance(self.regular, PermissionValidator):
            self.regular.check_calls(account, calls)

        state = await self.get_plugin_state(chain_client, account, deployed)
        if state is PluginState.REGULAR_ACTIVE:
            return ValidatorMode.PLUGIN + await self._sign(self.regular, user_op_hash)

        approval = self._approval_for(account, chain_id)
        if approval is None:
            raise ValidatorNotEnabled(account, self.regular.address)

        regular_signature = await self._sign(self.regular, user_op_hash)
        logger.debug(f"Attaching enable approval for {account} on chain {chain_id}")
        return encode_enable_signature(
            approval.enable_data, approval.enable_signature, regular_signature
        )

    def get_dummy_signature(self) -> bytes:
        if self.regular is None:
            return self.sudo.get_dummy_signature()
        if self.enable_approval is not None:
            return encode_enable_signature(
                self.enable_approval.enable_data,
                self.enable_approval.enable_signature,
                self.regular.get_dummy_signature(),
            )
        return ValidatorMode.PLUGIN + self.regular.get_dummy_signature()
