"""
Key material behind validator plugins.

Every signing call may suspend (remote signer, hardware key, interactive
confirmation). ``sign_within`` bounds it with the configured timeout and turns
timeouts into ``SigningRefused``; cancellation propagates untouched.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_utils import is_address

from .exceptions import ConfigurationError, SigningRefused
from .utils import HexLike, as_bytes, checksum, same_address

logger = logging.getLogger(__name__)


class SmartAccountSigner(ABC):
    """Abstract interface for the key behind a validator."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Address the signatures recover to."""
        pass

    @abstractmethod
    async def sign_message(self, message: bytes) -> bytes:
        """EIP-191 personal signature over ``message`` (65 bytes)."""
        pass

    @abstractmethod
    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> bytes:
        """EIP-712 signature over a full typed-data message."""
        pass


class LocalAccountSigner(SmartAccountSigner):
    """In-process ECDSA key via eth_account."""

    def __init__(self, private_key: HexLike):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_message(self, message: bytes) -> bytes:
        signed = self._account.sign_message(encode_defunct(primitive=as_bytes(message)))
        return bytes(signed.signature)

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> bytes:
        signed = self._account.sign_message(encode_typed_data(full_message=typed_data))
        return bytes(signed.signature)


class EmptyAccountSigner(SmartAccountSigner):
    """Knows only an address; every signing request is refused.

    Used to issue approvals for a session key the issuer never sees.
    """

    def __init__(self, address: str):
        if not is_address(address):
            raise ConfigurationError(f"Invalid signer address: {address}", field="address")
        self._address = checksum(address)

    @property
    def address(self) -> str:
        return self._address

    async def sign_message(self, message: bytes) -> bytes:
        raise SigningRefused("Empty account cannot sign", signer=self._address)

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> bytes:
        raise SigningRefused("Empty account cannot sign", signer=self._address)


def address_to_empty_account(address: str) -> EmptyAccountSigner:
    return EmptyAccountSigner(address)


async def sign_within(
    pending: Awaitable[bytes],
    timeout_seconds: float,
    signer: SmartAccountSigner,
) -> bytes:
    """Await a signing call, bounded by ``timeout_seconds``."""
    try:
        signature = await asyncio.wait_for(pending, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        logger.warning(f"Signer {signer.address} did not answer within {timeout_seconds}s")
        raise SigningRefused(
            f"Signer did not answer within {timeout_seconds}s",
            signer=signer.address,
        ) from e
    return as_bytes(signature)


def recover_message_signer(message: bytes, signature: HexLike) -> str:
    """Address behind an EIP-191 personal signature."""
    return Account.recover_message(
        encode_defunct(primitive=as_bytes(message)),
        signature=as_bytes(signature),
    )


def recover_typed_data_signer(typed_data: Dict[str, Any], signature: HexLike) -> str:
    return Account.recover_message(
        encode_typed_data(full_message=typed_data),
        signature=as_bytes(signature),
    )


def is_signed_by(message: bytes, signature: HexLike, address: str) -> bool:
    """Personal-sign check that treats malformed signatures as invalid."""
    raw = as_bytes(signature)
    if len(raw) != 65:
        return False
    try:
        return same_address(recover_message_signer(message, raw), address)
    except Exception as e:
        logger.warning(f"Signature verification failed: {e}")
        return False
