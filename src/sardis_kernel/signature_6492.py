"""ERC-6492 envelopes for signatures of accounts that are not deployed yet.

envelope = abi.encode(address factory, bytes factoryCalldata, bytes signature)
           ++ 0x6492649264926492649264926492649264926492649264926492649264926492
"""
from __future__ import annotations

from typing import NamedTuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from .account import parse_factory_init_code
from .exceptions import InvalidSignatureEnvelope
from .utils import HexLike, as_bytes, checksum

ERC6492_MAGIC_SUFFIX = bytes.fromhex("64926492" * 8)


class UnwrappedSignature(NamedTuple):
    factory: str
    factory_calldata: bytes
    signature: bytes


def is_6492_signature(signature: HexLike) -> bool:
    return as_bytes(signature).endswith(ERC6492_MAGIC_SUFFIX)


def wrap_signature_6492(signature: HexLike, is_deployed: bool, init_code: HexLike) -> bytes:
    """Identity for deployed accounts, envelope otherwise."""
    inner = as_bytes(signature)
    if is_deployed:
        return inner

    factory, factory_calldata = parse_factory_init_code(init_code)
    return (
        encode(["address", "bytes", "bytes"], [factory, factory_calldata, inner])
        + ERC6492_MAGIC_SUFFIX
    )


def unwrap_signature_6492(envelope: HexLike) -> UnwrappedSignature:
    raw = as_bytes(envelope)
    if not raw.endswith(ERC6492_MAGIC_SUFFIX):
        raise InvalidSignatureEnvelope("Signature does not carry the ERC-6492 suffix")

    try:
        factory, factory_calldata, inner = decode(
            ["address", "bytes", "bytes"], raw[: -len(ERC6492_MAGIC_SUFFIX)]
        )
    except DecodingError as e:
        raise InvalidSignatureEnvelope(f"Malformed ERC-6492 envelope: {e}") from e

    return UnwrappedSignature(
        factory=checksum(factory),
        factory_calldata=bytes(factory_calldata),
        signature=bytes(inner),
    )
