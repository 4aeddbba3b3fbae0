"""
Session-key policies.

A policy is a pure predicate over (account, intended calls). A ``PolicySet``
combines policies by AND in declaration order; a set without policies denies
everything.

Each policy has a descriptor: the policy contract address plus its encoded
parameters. Descriptors feed the permission id and are what an approval
persists, so a policy can be rebuilt from its descriptor alone.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import is_address

from ..call_encoder import Call, CallKind
from ..config import KernelAddresses
from ..exceptions import ApprovalFormatError, ConfigurationError, PolicyDenied
from ..utils import address_bytes, as_bytes, checksum, same_address

logger = logging.getLogger(__name__)

_ANY_SELECTOR = b"\x00\x00\x00\x00"


@dataclass(frozen=True)
class PolicyDescriptor:
    kind: str
    address: str
    data: bytes = b""

    def packed(self) -> bytes:
        return address_bytes(self.address) + self.data


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: str = ""


ALLOW = PolicyDecision(True)


class Policy(ABC):
    """Predicate over the calls a session key wants to make."""

    kind: str = "policy"

    def __init__(self, address: str):
        self._address = checksum(address)

    @property
    def address(self) -> str:
        return self._address

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def evaluate(self, account: str, calls: Sequence[Call]) -> PolicyDecision:
        pass

    @abstractmethod
    def encode_params(self) -> bytes:
        pass

    def descriptor(self) -> PolicyDescriptor:
        return PolicyDescriptor(kind=self.kind, address=self.address, data=self.encode_params())


class SudoPolicy(Policy):
    """Full authority once enabled."""

    kind = "sudo"

    def __init__(self, address: Optional[str] = None):
        super().__init__(address or KernelAddresses().sudo_policy)

    def evaluate(self, account: str, calls: Sequence[Call]) -> PolicyDecision:
        return ALLOW

    def encode_params(self) -> bytes:
        return b""

    @classmethod
    def from_params(cls, address: str, data: bytes) -> "SudoPolicy":
        return cls(address)


@dataclass(frozen=True)
class CallPermission:
    """One allowed (target, selector) pair; ``selector=None`` allows any function."""
    target: str
    selector: Optional[bytes] = None
    max_value: int = 0

    def __post_init__(self) -> None:
        if not is_address(self.target):
            raise ConfigurationError(f"Invalid permission target: {self.target}", field="target")
        if self.selector is not None:
            selector = as_bytes(self.selector)
            if len(selector) != 4:
                raise ConfigurationError("Selector must be 4 bytes", field="selector")
            object.__setattr__(self, "selector", selector)

    def matches(self, call: Call) -> bool:
        if not same_address(call.target, self.target):
            return False
        if self.selector is not None and call.function_selector != self.selector:
            return False
        return call.value <= self.max_value


class CallPolicy(Policy):
    """Allow list of targets and functions, with a per-call value cap."""

    kind = "call"

    def __init__(self, permissions: Sequence[CallPermission], address: Optional[str] = None):
        super().__init__(address or KernelAddresses().call_policy)
        self.permissions: Tuple[CallPermission, ...] = tuple(permissions)

    def evaluate(self, account: str, calls: Sequence[Call]) -> PolicyDecision:
        for call in calls:
            if call.kind != CallKind.CALL:
                return PolicyDecision(False, f"delegate call to {call.target} is not permitted")
            if not any(permission.matches(call) for permission in self.permissions):
                return PolicyDecision(
                    False,
                    f"call to {call.target} (selector 0x{call.function_selector.hex()}, "
                    f"value {call.value}) is not permitted",
                )
        return ALLOW

    def encode_params(self) -> bytes:
        return encode(
            ["(address,bytes4,uint256)[]"],
            [[
                (checksum(p.target), p.selector or _ANY_SELECTOR, p.max_value)
                for p in self.permissions
            ]],
        )

    @classmethod
    def from_params(cls, address: str, data: bytes) -> "CallPolicy":
        (entries,) = decode(["(address,bytes4,uint256)[]"], data)
        permissions = [
            CallPermission(
                target=checksum(target),
                selector=None if bytes(sel) == _ANY_SELECTOR else bytes(sel),
                max_value=max_value,
            )
            for target, sel, max_value in entries
        ]
        return cls(permissions, address)


class ValueLimitPolicy(Policy):
    """Cap on the native value a single operation may move in total."""

    kind = "value_limit"

    def __init__(self, limit: int, address: Optional[str] = None):
        address = address or KernelAddresses().value_limit_policy
        if not address:
            raise ConfigurationError(
                "Value limit policy address is not configured", field="value_limit_policy"
            )
        super().__init__(address)
        if limit < 0:
            raise ConfigurationError("Value limit cannot be negative", field="limit")
        self.limit = limit

    def evaluate(self, account: str, calls: Sequence[Call]) -> PolicyDecision:
        total = sum(call.value for call in calls)
        if total > self.limit:
            return PolicyDecision(False, f"total value {total} exceeds limit {self.limit}")
        return ALLOW

    def encode_params(self) -> bytes:
        return encode(["uint256"], [self.limit])

    @classmethod
    def from_params(cls, address: str, data: bytes) -> "ValueLimitPolicy":
        (limit,) = decode(["uint256"], data)
        return cls(limit, address)


_POLICY_TYPES: Dict[str, Callable[[str, bytes], Policy]] = {
    SudoPolicy.kind: SudoPolicy.from_params,
    CallPolicy.kind: CallPolicy.from_params,
    ValueLimitPolicy.kind: ValueLimitPolicy.from_params,
}


def policy_from_descriptor(descriptor: PolicyDescriptor) -> Policy:
    factory = _POLICY_TYPES.get(descriptor.kind)
    if factory is None:
        raise ApprovalFormatError(f"Unknown policy kind: {descriptor.kind}")
    try:
        return factory(descriptor.address, descriptor.data)
    except (DecodingError, ConfigurationError, ValueError, TypeError) as e:
        raise ApprovalFormatError(f"Malformed {descriptor.kind} policy parameters: {e}") from e


def to_sudo_policy() -> SudoPolicy:
    return SudoPolicy()


@dataclass(frozen=True)
class PolicySet:
    """Policies evaluated by AND, in declaration order."""
    policies: Tuple[Policy, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "policies", tuple(self.policies))

    def __len__(self) -> int:
        return len(self.policies)

    def descriptors(self) -> Tuple[PolicyDescriptor, ...]:
        return tuple(policy.descriptor() for policy in self.policies)

    def evaluate(self, account: str, calls: Sequence[Call]) -> PolicyDecision:
        if not self.policies:
            return PolicyDecision(False, "no policies configured")
        for policy in self.policies:
            decision = policy.evaluate(account, calls)
            if not decision.allowed:
                return decision
        return ALLOW

    def enforce(self, account: str, calls: Sequence[Call]) -> None:
        """Raise ``PolicyDenied`` naming the first policy that refuses."""
        if not self.policies:
            raise PolicyDenied("PolicySet", "no policies configured")
        for policy in self.policies:
            decision = policy.evaluate(account, calls)
            if not decision.allowed:
                logger.warning(f"Policy {policy.name} denied operation for {account}: {decision.reason}")
                raise PolicyDenied(policy.name, decision.reason)

    @classmethod
    def from_descriptors(cls, descriptors: Sequence[PolicyDescriptor]) -> "PolicySet":
        return cls(tuple(policy_from_descriptor(d) for d in descriptors))
