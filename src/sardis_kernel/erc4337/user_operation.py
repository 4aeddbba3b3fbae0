"""UserOperation primitives for ERC-4337 (EntryPoint v0.6 and v0.7)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from eth_abi import encode

from ..utils import as_bytes, keccak, to_hex
from .entrypoint import EntryPointVersion, entry_point_version


def zero_hex() -> str:
    return "0x"


def _to_hex_int(value: int) -> str:
    return hex(max(0, int(value)))


def _from_hex_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)


def _pack_uints(high: int, low: int) -> bytes:
    """Two uint128 values packed into one bytes32."""
    return int(high).to_bytes(16, "big") + int(low).to_bytes(16, "big")


@dataclass(frozen=True)
class UserOperation:
    """ERC-4337 user operation.

    ``init_code`` and ``paymaster_and_data`` hold the packed v0.7 layout as
    well; ``to_rpc`` splits them when talking to a v0.7 bundler.
    """
    sender: str
    nonce: int
    init_code: str
    call_data: str
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    paymaster_and_data: str = "0x"
    signature: str = "0x"

    def with_signature(self, signature: bytes | str) -> "UserOperation":
        return replace(self, signature=to_hex(signature))

    def with_paymaster_and_data(self, paymaster_and_data: str) -> "UserOperation":
        return replace(self, paymaster_and_data=paymaster_and_data)

    def with_gas(self, estimate: dict[str, Any]) -> "UserOperation":
        """Merge a bundler gas estimate (hex values) into the operation."""
        return replace(
            self,
            call_gas_limit=_from_hex_int(estimate.get("callGasLimit", self.call_gas_limit)),
            verification_gas_limit=_from_hex_int(
                estimate.get("verificationGasLimit", self.verification_gas_limit)
            ),
            pre_verification_gas=_from_hex_int(
                estimate.get("preVerificationGas", self.pre_verification_gas)
            ),
        )

    def pack(self, version: EntryPointVersion) -> bytes:
        """ABI-encode every field the signature covers."""
        if version is EntryPointVersion.V07:
            return encode(
                [
                    "address",
                    "uint256",
                    "bytes32",
                    "bytes32",
                    "bytes32",
                    "uint256",
                    "bytes32",
                    "bytes32",
                ],
                [
                    self.sender,
                    self.nonce,
                    keccak(self.init_code),
                    keccak(self.call_data),
                    _pack_uints(self.verification_gas_limit, self.call_gas_limit),
                    self.pre_verification_gas,
                    _pack_uints(self.max_priority_fee_per_gas, self.max_fee_per_gas),
                    keccak(self.paymaster_and_data),
                ],
            )

        return encode(
            [
                "address",
                "uint256",
                "bytes32",
                "bytes32",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "bytes32",
            ],
            [
                self.sender,
                self.nonce,
                keccak(self.init_code),
                keccak(self.call_data),
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                keccak(self.paymaster_and_data),
            ],
        )

    def to_rpc(self, entry_point: str | None = None) -> dict[str, Any]:
        version = entry_point_version(entry_point) if entry_point else EntryPointVersion.V06
        if version is EntryPointVersion.V07:
            return self._to_rpc_v07()
        return {
            "sender": self.sender,
            "nonce": _to_hex_int(self.nonce),
            "initCode": self.init_code,
            "callData": self.call_data,
            "callGasLimit": _to_hex_int(self.call_gas_limit),
            "verificationGasLimit": _to_hex_int(self.verification_gas_limit),
            "preVerificationGas": _to_hex_int(self.pre_verification_gas),
            "maxFeePerGas": _to_hex_int(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex_int(self.max_priority_fee_per_gas),
            "paymasterAndData": self.paymaster_and_data,
            "signature": self.signature,
        }

    def _to_rpc_v07(self) -> dict[str, Any]:
        init_code = as_bytes(self.init_code)
        payload: dict[str, Any] = {
            "sender": self.sender,
            "nonce": _to_hex_int(self.nonce),
            "callData": self.call_data,
            "callGasLimit": _to_hex_int(self.call_gas_limit),
            "verificationGasLimit": _to_hex_int(self.verification_gas_limit),
            "preVerificationGas": _to_hex_int(self.pre_verification_gas),
            "maxFeePerGas": _to_hex_int(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex_int(self.max_priority_fee_per_gas),
            "signature": self.signature,
        }
        if init_code:
            payload["factory"] = to_hex(init_code[:20])
            payload["factoryData"] = to_hex(init_code[20:])

        paymaster = as_bytes(self.paymaster_and_data)
        if paymaster:
            # paymaster(20) | verificationGasLimit(16) | postOpGasLimit(16) | data
            payload["paymaster"] = to_hex(paymaster[:20])
            payload["paymasterVerificationGasLimit"] = _to_hex_int(
                int.from_bytes(paymaster[20:36], "big")
            )
            payload["paymasterPostOpGasLimit"] = _to_hex_int(
                int.from_bytes(paymaster[36:52], "big")
            )
            payload["paymasterData"] = to_hex(paymaster[52:])
        return payload

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "UserOperation":
        init_code = data.get("initCode")
        if init_code is None:
            factory = data.get("factory")
            init_code = (
                to_hex(as_bytes(factory) + as_bytes(data.get("factoryData") or "0x"))
                if factory
                else "0x"
            )

        paymaster_and_data = data.get("paymasterAndData")
        if paymaster_and_data is None:
            paymaster = data.get("paymaster")
            paymaster_and_data = (
                to_hex(
                    as_bytes(paymaster)
                    + _from_hex_int(data.get("paymasterVerificationGasLimit")).to_bytes(16, "big")
                    + _from_hex_int(data.get("paymasterPostOpGasLimit")).to_bytes(16, "big")
                    + as_bytes(data.get("paymasterData") or "0x")
                )
                if paymaster
                else "0x"
            )

        return cls(
            sender=data["sender"],
            nonce=_from_hex_int(data.get("nonce")),
            init_code=init_code,
            call_data=data.get("callData", "0x"),
            call_gas_limit=_from_hex_int(data.get("callGasLimit")),
            verification_gas_limit=_from_hex_int(data.get("verificationGasLimit")),
            pre_verification_gas=_from_hex_int(data.get("preVerificationGas")),
            max_fee_per_gas=_from_hex_int(data.get("maxFeePerGas")),
            max_priority_fee_per_gas=_from_hex_int(data.get("maxPriorityFeePerGas")),
            paymaster_and_data=paymaster_and_data,
            signature=data.get("signature", "0x"),
        )


def get_user_operation_hash(user_op: UserOperation, entry_point: str, chain_id: int) -> bytes:
    """Canonical ERC-4337 hash: keccak(abi.encode(keccak(pack), entryPoint, chainId)).

    The signature field is never part of the hash.
    """
    version = entry_point_version(entry_point)
    packed_hash = keccak(user_op.pack(version))
    return keccak(encode(["bytes32", "address", "uint256"], [packed_hash, entry_point, chain_id]))
