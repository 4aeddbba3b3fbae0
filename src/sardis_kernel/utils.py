"""Byte and hex helpers shared by the encoders."""
from __future__ import annotations

from typing import Union

from eth_utils import to_bytes, to_checksum_address
from web3 import Web3

HexLike = Union[str, bytes]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def as_bytes(value: HexLike) -> bytes:
    """Accept ``0x``-prefixed hex or raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value in ("", "0x"):
        return b""
    return to_bytes(hexstr=value)


def to_hex(value: HexLike) -> str:
    """Render bytes as ``0x``-prefixed lowercase hex."""
    return "0x" + as_bytes(value).hex()


def keccak(value: HexLike) -> bytes:
    return bytes(Web3.keccak(as_bytes(value)))


def selector(signature: str) -> bytes:
    """4-byte function selector for a canonical signature string."""
    return bytes(Web3.keccak(text=signature)[:4])


def address_bytes(address: str) -> bytes:
    raw = as_bytes(address)
    if len(raw) != 20:
        raise ValueError(f"Not a 20-byte address: {address}")
    return raw


def checksum(address: HexLike) -> str:
    if isinstance(address, (bytes, bytearray)):
        address = to_hex(address)
    return to_checksum_address(address)


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def uint_bytes(value: int, size: int) -> bytes:
    """Big-endian fixed-width unsigned integer."""
    return int(value).to_bytes(size, "big")
