"""Exception hierarchy for sardis-kernel.

All errors inherit from SardisKernelError, mirroring the Sardis core
exception layout:
- error_code: Machine-readable error code (e.g., "INVALID_CALL_KIND")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format

Categories:
    ConfigurationError   bad factory / index / entry point / chain mismatch
    EncodingError        malformed input the caller must fix
    ValidatorStateError  signing path not available for this account
    SigningRefused       key material declined or timed out
    AdapterError         chain client, bundler or paymaster failure
"""
from __future__ import annotations

from typing import Any, Optional


class SardisKernelError(Exception):
    """Base exception for all sardis-kernel errors."""

    error_code: str = "KERNEL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(SardisKernelError):
    """Account construction parameters are inconsistent."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class SignTransactionNotSupported(ConfigurationError):
    """Smart accounts sign user operations, never raw transactions."""

    error_code = "SIGN_TRANSACTION_NOT_SUPPORTED"

    def __init__(self) -> None:
        super().__init__(
            "A smart account cannot sign a transaction; "
            "submit a user operation instead"
        )


# =============================================================================
# Encoding Errors
# =============================================================================

class EncodingError(SardisKernelError):
    """Caller supplied input that cannot be encoded."""

    error_code = "ENCODING_ERROR"


class InvalidCallKind(EncodingError):
    """Empty batch or unknown call kind."""

    error_code = "INVALID_CALL_KIND"


class DuplicateChainInBatch(EncodingError):
    """Two multi-chain leaves share a chain id."""

    error_code = "DUPLICATE_CHAIN_IN_BATCH"

    def __init__(self, chain_id: int) -> None:
        super().__init__(
            f"Chain {chain_id} appears more than once in the multi-chain batch",
            details={"chain_id": chain_id},
        )
        self.chain_id = chain_id


class InvalidSignatureEnvelope(EncodingError):
    """Signature bytes do not match the expected wire format."""

    error_code = "INVALID_SIGNATURE_ENVELOPE"


class ApprovalFormatError(EncodingError):
    """Serialized approval cannot be parsed."""

    error_code = "APPROVAL_FORMAT_ERROR"


# =============================================================================
# Validator State Errors
# =============================================================================

class ValidatorStateError(SardisKernelError):
    """The requested validator cannot sign for this account right now."""

    error_code = "VALIDATOR_STATE_ERROR"


class ValidatorNotEnabled(ValidatorStateError):
    """Regular validator used before any enable signature exists."""

    error_code = "VALIDATOR_NOT_ENABLED"

    def __init__(self, account: str, validator: str) -> None:
        super().__init__(
            f"Regular validator {validator} is not enabled for {account} "
            f"and no enable signature was produced",
            details={"account": account, "validator": validator},
        )


class ApprovalMismatch(ValidatorStateError):
    """Approval redeemed against the wrong account, signer or policy set."""

    error_code = "APPROVAL_MISMATCH"

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message, details={"field": field})


class PolicyDenied(ValidatorStateError):
    """Session policies reject the intended calls."""

    error_code = "POLICY_DENIED"

    def __init__(self, policy: str, reason: str) -> None:
        super().__init__(
            f"Policy {policy} denied the operation: {reason}",
            details={"policy": policy, "reason": reason},
        )


# =============================================================================
# Signing Errors
# =============================================================================

class SigningRefused(SardisKernelError):
    """Key material declined to sign or did not answer in time."""

    error_code = "SIGNING_REFUSED"

    def __init__(
        self,
        message: str,
        signer: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if signer:
            details["signer"] = signer
        super().__init__(message, details=details)


# =============================================================================
# Adapter Errors
# =============================================================================

class AdapterError(SardisKernelError):
    """Base class for chain client, bundler and paymaster failures."""

    error_code = "ADAPTER_ERROR"

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        rpc_error: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if method:
            details["method"] = method
        if rpc_error is not None:
            details["rpc_error"] = rpc_error
        super().__init__(message, details=details)


class RPCError(AdapterError):
    """Chain node JSON-RPC call failed."""

    error_code = "RPC_ERROR"


class BundlerError(AdapterError):
    """Bundler JSON-RPC call failed."""

    error_code = "BUNDLER_ERROR"


class PaymasterError(AdapterError):
    """Paymaster JSON-RPC call failed."""

    error_code = "PAYMASTER_ERROR"
