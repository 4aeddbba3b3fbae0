"""ERC-4337 paymaster client (sponsor model)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

import httpx

from ..exceptions import PaymasterError
from .user_operation import UserOperation, _from_hex_int

logger = logging.getLogger(__name__)


class PaymasterProvider(str, Enum):
    """Supported sponsorship RPC dialects."""
    PIMLICO = "pimlico"
    ZERODEV = "zerodev"


_SPONSOR_METHODS = {
    PaymasterProvider.PIMLICO: "pm_sponsorUserOperation",
    PaymasterProvider.ZERODEV: "zd_sponsorUserOperation",
}


@dataclass
class PaymasterConfig:
    url: str
    timeout_seconds: float = 30.0
    provider: PaymasterProvider = PaymasterProvider.PIMLICO
    sponsorship_policy_id: Optional[str] = None


@dataclass
class SponsoredUserOperation:
    """Sponsorship data returned by the paymaster, kept verbatim."""
    paymaster_and_data: str
    call_gas_limit: Optional[int] = None
    verification_gas_limit: Optional[int] = None
    pre_verification_gas: Optional[int] = None

    def apply_to(self, user_op: UserOperation) -> UserOperation:
        """Merge sponsorship into an unsigned operation."""
        merged = user_op.with_paymaster_and_data(self.paymaster_and_data)
        updates: dict[str, int] = {}
        if self.call_gas_limit is not None:
            updates["call_gas_limit"] = self.call_gas_limit
        if self.verification_gas_limit is not None:
            updates["verification_gas_limit"] = self.verification_gas_limit
        if self.pre_verification_gas is not None:
            updates["pre_verification_gas"] = self.pre_verification_gas
        return replace(merged, **updates) if updates else merged


class PaymasterClient:
    """Pimlico / ZeroDev compatible paymaster client."""

    def __init__(self, config: PaymasterConfig, client: httpx.AsyncClient | None = None):
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            response = await self._client.post(self._config.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise PaymasterError(f"Paymaster transport error ({method}): {e}", method=method) from e
        if data.get("error"):
            raise PaymasterError(
                f"Paymaster RPC error ({method}): {data['error']}",
                method=method,
                rpc_error=data["error"],
            )
        return data.get("result")

    async def sponsor_user_operation(
        self,
        user_op: UserOperation,
        entrypoint: str,
    ) -> SponsoredUserOperation:
        method = _SPONSOR_METHODS[self._config.provider]
        params: list[Any] = [user_op.to_rpc(entrypoint), entrypoint]
        if self._config.sponsorship_policy_id:
            params.append({"sponsorshipPolicyId": self._config.sponsorship_policy_id})

        result = await self._rpc(method, params)
        if not isinstance(result, dict) or not isinstance(result.get("paymasterAndData"), str):
            raise PaymasterError("Paymaster returned invalid sponsorship payload", method=method)

        def _optional(key: str) -> Optional[int]:
            return _from_hex_int(result[key]) if result.get(key) is not None else None

        logger.info(
            "Paymaster sponsorship received: provider=%s, sender=%s",
            self._config.provider.value, user_op.sender,
        )
        return SponsoredUserOperation(
            paymaster_and_data=result["paymasterAndData"],
            call_gas_limit=_optional("callGasLimit"),
            verification_gas_limit=_optional("verificationGasLimit"),
            pre_verification_gas=_optional("preVerificationGas"),
        )

    async def close(self) -> None:
        await self._client.aclose()
