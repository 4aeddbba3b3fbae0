"""
Chain node boundary.

``ChainClientPort`` is everything the signing core reads from a chain:
bytecode presence, nonces, the counterfactual sender address and the
account's plugin configuration. ``JsonRpcChainClient`` implements it over
plain JSON-RPC with httpx. Nothing here retries; transient failures surface
as ``RPCError`` for the caller to retry.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import httpx
from eth_abi import decode, encode

from .exceptions import RPCError
from .utils import ZERO_ADDRESS, as_bytes, checksum, selector, to_hex

logger = logging.getLogger(__name__)

GET_NONCE_SELECTOR = selector("getNonce(address,uint192)")
GET_SENDER_ADDRESS_SELECTOR = selector("getSenderAddress(bytes)")
SENDER_ADDRESS_RESULT_SELECTOR = selector("SenderAddressResult(address)")
GET_EXECUTION_SELECTOR = selector("getExecution(bytes4)")


@dataclass(frozen=True)
class ExecutionDetail:
    """Plugin configuration a Kernel account stores per function selector."""
    valid_after: int
    valid_until: int
    executor: str
    validator: str

    @property
    def has_validator(self) -> bool:
        return self.validator.lower() != ZERO_ADDRESS


class ChainClientPort(ABC):
    """Abstract interface for chain reads used by the signing core."""

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Return the chain id of the connected node."""
        pass

    @abstractmethod
    async def get_code(self, address: str) -> bytes:
        """Return the runtime bytecode at an address (empty if none)."""
        pass

    @abstractmethod
    async def call(self, to: str, data: bytes) -> bytes:
        """Execute a read-only call and return the raw return data."""
        pass

    @abstractmethod
    async def get_sender_address(self, init_code: bytes, entry_point: str) -> str:
        """Ask the entry point which address ``init_code`` deploys to."""
        pass

    @abstractmethod
    async def get_fee_data(self) -> Tuple[int, int]:
        """Return (max_fee_per_gas, max_priority_fee_per_gas)."""
        pass

    async def get_nonce(self, sender: str, key: int, entry_point: str) -> int:
        data = GET_NONCE_SELECTOR + encode(["address", "uint192"], [sender, key])
        result = await self.call(entry_point, data)
        (nonce,) = decode(["uint256"], result)
        return nonce

    async def get_execution(self, account: str, function_selector: bytes) -> ExecutionDetail:
        data = GET_EXECUTION_SELECTOR + encode(["bytes4"], [function_selector])
        result = await self.call(account, data)
        valid_after, valid_until, executor, validator = decode(
            ["uint48", "uint48", "address", "address"], result
        )
        return ExecutionDetail(
            valid_after=valid_after,
            valid_until=valid_until,
            executor=checksum(executor),
            validator=checksum(validator),
        )


class JsonRpcChainClient(ChainClientPort):
    """JSON-RPC chain client over httpx."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._request_id = 0

    async def _send(self, method: str, params: list[Any]) -> dict[str, Any]:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = await self._client.post(self._url, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise RPCError(f"RPC transport error ({method}): {e}", method=method) from e

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        data = await self._send(method, params)
        if data.get("error"):
            raise RPCError(
                f"RPC error ({method}): {data['error']}",
                method=method,
                rpc_error=data["error"],
            )
        return data.get("result")

    async def get_chain_id(self) -> int:
        return int(await self._rpc("eth_chainId", []), 16)

    async def get_code(self, address: str) -> bytes:
        result = await self._rpc("eth_getCode", [address, "latest"])
        if not isinstance(result, str):
            raise RPCError("Node returned invalid bytecode payload", method="eth_getCode")
        return as_bytes(result)

    async def call(self, to: str, data: bytes) -> bytes:
        result = await self._rpc("eth_call", [{"to": to, "data": to_hex(data)}, "latest"])
        if not isinstance(result, str):
            raise RPCError("Node returned invalid call result", method="eth_call")
        return as_bytes(result)

    async def get_sender_address(self, init_code: bytes, entry_point: str) -> str:
        # getSenderAddress always reverts; the address travels in the revert data.
        call_data = GET_SENDER_ADDRESS_SELECTOR + encode(["bytes"], [init_code])
        data = await self._send(
            "eth_call", [{"to": entry_point, "data": to_hex(call_data)}, "latest"]
        )
        error = data.get("error") or {}
        revert = error.get("data") if isinstance(error, dict) else None
        if isinstance(revert, dict):
            revert = revert.get("data")
        if not isinstance(revert, str):
            raise RPCError(
                "Entry point did not return SenderAddressResult",
                method="eth_call",
                rpc_error=error or None,
            )
        raw = as_bytes(revert)
        if raw[:4] != SENDER_ADDRESS_RESULT_SELECTOR:
            raise RPCError(
                "Unexpected revert from getSenderAddress",
                method="eth_call",
                rpc_error=error,
            )
        (address,) = decode(["address"], raw[4:])
        return checksum(address)

    async def get_fee_data(self) -> Tuple[int, int]:
        gas_price = int(await self._rpc("eth_gasPrice", []), 16)
        priority_fee = int(await self._rpc("eth_maxPriorityFeePerGas", []), 16)
        return max(gas_price, priority_fee), priority_fee

    async def close(self) -> None:
        await self._client.aclose()
