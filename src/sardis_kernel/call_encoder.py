"""
Call encoding for Kernel accounts.

A single call is wrapped in ``executeAndRevert(to, value, data, operation)``.
Several calls are folded into one DelegateCall of ``multiSend(bytes)`` on the
MultiSend helper, which runs them in order and reverts the whole batch if any
inner call fails.

MultiSend packing, per call:
    operation (1) | to (20) | value (32) | data length (32) | data
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Sequence, Union

from eth_abi import decode, encode
from eth_utils import is_address

from .config import KernelAddresses
from .exceptions import EncodingError, InvalidCallKind
from .utils import address_bytes, as_bytes, checksum, same_address, selector, uint_bytes

EXECUTE_SELECTOR = selector("executeAndRevert(address,uint256,bytes,uint8)")
MULTI_SEND_SELECTOR = selector("multiSend(bytes)")

DEFAULT_MULTI_SEND = KernelAddresses().multi_send


class CallKind(IntEnum):
    CALL = 0
    DELEGATE_CALL = 1


@dataclass(frozen=True)
class Call:
    """One intended on-chain call."""
    target: str
    value: int = 0
    data: bytes = b""
    kind: CallKind = CallKind.CALL

    def __post_init__(self) -> None:
        if not is_address(self.target):
            raise EncodingError(f"Invalid call target: {self.target}")
        if self.value < 0:
            raise EncodingError(f"Negative call value: {self.value}")
        object.__setattr__(self, "data", as_bytes(self.data))

    @property
    def function_selector(self) -> bytes:
        return self.data[:4]


@dataclass(frozen=True)
class CallBatch:
    """Ordered calls; encoding order is execution order."""
    calls: tuple = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "calls", tuple(self.calls))

    def __len__(self) -> int:
        return len(self.calls)

    def __iter__(self):
        return iter(self.calls)


CallInput = Union[Call, CallBatch, Sequence[Call]]


def as_call_list(calls: CallInput) -> List[Call]:
    if isinstance(calls, Call):
        return [calls]
    return list(calls)


def _call_kind(call: Call) -> CallKind:
    try:
        return CallKind(call.kind)
    except ValueError:
        raise InvalidCallKind(f"Unrecognized call kind: {call.kind!r}") from None


def encode_execute(call: Call) -> bytes:
    """executeAndRevert(to, value, data, operation)"""
    kind = _call_kind(call)
    return EXECUTE_SELECTOR + encode(
        ["address", "uint256", "bytes", "uint8"],
        [checksum(call.target), call.value, call.data, int(kind)],
    )


def encode_multi_send(calls: Sequence[Call]) -> bytes:
    """Pack calls in order into the MultiSend transactions blob."""
    packed = b""
    for call in calls:
        kind = _call_kind(call)
        packed += (
            uint_bytes(int(kind), 1)
            + address_bytes(call.target)
            + uint_bytes(call.value, 32)
            + uint_bytes(len(call.data), 32)
            + call.data
        )
    return packed


def decode_multi_send(payload: bytes) -> List[Call]:
    """Inverse of ``encode_multi_send``; accepts the blob or full multiSend calldata."""
    raw = as_bytes(payload)
    if raw[:4] == MULTI_SEND_SELECTOR:
        (raw,) = decode(["bytes"], raw[4:])

    calls: List[Call] = []
    offset = 0
    while offset < len(raw):
        if offset + 85 > len(raw):
            raise EncodingError("Truncated MultiSend entry")
        operation = raw[offset]
        target = checksum(raw[offset + 1:offset + 21])
        value = int.from_bytes(raw[offset + 21:offset + 53], "big")
        length = int.from_bytes(raw[offset + 53:offset + 85], "big")
        data = raw[offset + 85:offset + 85 + length]
        if len(data) != length:
            raise EncodingError("Truncated MultiSend call data")
        try:
            kind = CallKind(operation)
        except ValueError:
            raise InvalidCallKind(f"Unrecognized call kind: {operation}") from None
        calls.append(Call(target=target, value=value, data=data, kind=kind))
        offset += 85 + length
    return calls


def encode_call_data(
    account_address: str,
    calls: CallInput,
    multi_send: str = DEFAULT_MULTI_SEND,
) -> bytes:
    """Turn one call or a batch into the account's callData.

    A bare ``Call`` is wrapped on its own. A list or ``CallBatch`` always goes
    through MultiSend, even when it holds a single call.

    Raises:
        InvalidCallKind: empty batch or unknown call kind
    """
    if isinstance(calls, Call):
        kind = _call_kind(calls)
        # Self-calls reach the account's own functions directly.
        if kind is CallKind.CALL and same_address(calls.target, account_address):
            return calls.data
        return encode_execute(calls)

    call_list = as_call_list(calls)
    if not call_list:
        raise InvalidCallKind("Cannot encode an empty call batch")

    multi_send_data = MULTI_SEND_SELECTOR + encode(["bytes"], [encode_multi_send(call_list)])
    return encode_execute(
        Call(
            target=multi_send,
            value=0,
            data=multi_send_data,
            kind=CallKind.DELEGATE_CALL,
        )
    )


def decode_call_data(
    account_address: str,
    call_data: bytes,
    multi_send: str = DEFAULT_MULTI_SEND,
) -> List[Call]:
    """Recover the intended calls from encoded callData.

    Anything that is not an ``executeAndRevert`` is a self-call. A batch is
    only expanded when it delegates to ``multi_send``; a delegate call to any
    other contract is returned as it is.
    """
    raw = as_bytes(call_data)
    if raw[:4] != EXECUTE_SELECTOR:
        return [Call(target=account_address, value=0, data=raw)]

    to, value, data, operation = decode(["address", "uint256", "bytes", "uint8"], raw[4:])
    if (
        operation == CallKind.DELEGATE_CALL
        and data[:4] == MULTI_SEND_SELECTOR
        and same_address(to, multi_send)
    ):
        return decode_multi_send(data)
    try:
        kind = CallKind(operation)
    except ValueError:
        raise InvalidCallKind(f"Unrecognized call kind: {operation}") from None
    return [Call(target=checksum(to), value=value, data=data, kind=kind)]
