"""
Structured logging for smart-account signing flows.

Features:
- Operation context tracking (duration, success, error)
- Signature production logging without leaking signature bytes
- Address masking
- Audit trail support (JSON lines)
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

from .config import LoggingConfig, get_config

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)


class OperationType(str, Enum):
    """Types of smart-account operations."""
    DEPLOY_PROBE = "deploy_probe"
    ADDRESS_RESOLUTION = "address_resolution"
    SIGN_USER_OPERATION = "sign_user_operation"
    SIGN_MESSAGE = "sign_message"
    ENABLE_VALIDATOR = "enable_validator"
    MULTI_CHAIN_SIGN = "multi_chain_sign"
    SERIALIZE_APPROVAL = "serialize_approval"
    DESERIALIZE_APPROVAL = "deserialize_approval"
    SEND_USER_OPERATION = "send_user_operation"


@dataclass
class OperationContext:
    """Context for a single signing or adapter operation."""
    operation_id: str
    operation_type: OperationType
    account: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark operation as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (
            (self.completed_at - self.started_at).total_seconds() * 1000
        )
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "account": self.account,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


class KernelLogger:
    """
    Logger for smart-account operations.

    Provides structured logging with:
    - Operation context tracking
    - Signature lifecycle logging
    - Audit trail support
    """

    def __init__(
        self,
        name: str = "sardis_kernel",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or get_config().logging
        self._operation_counter = 0

    def _generate_operation_id(self) -> str:
        """Generate a unique operation ID."""
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    def _get_level(self, level_str: str) -> int:
        """Convert level string to logging level."""
        return getattr(logging, level_str.upper(), logging.INFO)

    def _display_address(self, address: str) -> str:
        if self._config.mask_addresses:
            return self._mask_address(address)
        return address

    @asynccontextmanager
    async def operation_context(
        self,
        operation_type: OperationType,
        account: str,
        **metadata,
    ):
        """
        Context manager for tracking an operation.

        Usage:
            async with logger.operation_context(OperationType.SIGN_MESSAGE, addr) as ctx:
                signature = await ...
                ctx.metadata["mode"] = "sudo"
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            account=self._display_address(account),
            metadata=metadata,
        )

        self._logger.debug(
            f"Starting {operation_type.value} for {ctx.account}",
            extra={"operation": ctx.to_dict()},
        )

        try:
            yield ctx
            ctx.complete(success=True)

        except BaseException as e:
            ctx.complete(success=False, error=str(e) or type(e).__name__)
            raise

        finally:
            level = (
                self._get_level(self._config.error_level)
                if not ctx.success
                else self._get_level(self._config.signing_level)
            )
            self._logger.log(
                level,
                f"Completed {operation_type.value} for {ctx.account} in "
                f"{ctx.duration_ms:.0f}ms (success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    def log_deploy_probe(self, account: str, deployed: bool) -> None:
        """Log the result of a bytecode presence check."""
        self._logger.log(
            self._get_level(self._config.probe_level),
            f"Deploy probe for {self._display_address(account)}: deployed={deployed}",
        )

    def log_signature(
        self,
        account: str,
        kind: str,
        signature: bytes,
        **details: Any,
    ) -> None:
        """Log that a signature was produced.

        Only the length is recorded unless ``log_signatures`` is enabled.
        """
        entry: Dict[str, Any] = {
            "account": self._display_address(account),
            "kind": kind,
            "length": len(signature),
            **details,
        }
        if self._config.log_signatures:
            entry["signature"] = "0x" + signature.hex()

        self._logger.log(
            self._get_level(self._config.signing_level),
            f"Produced {kind} signature for {entry['account']} ({len(signature)} bytes)",
            extra={"signature": entry},
        )

        if self._config.audit_log_enabled:
            self._write_audit_log(f"{kind}_signature_produced", entry)

    def log_enable(self, account: str, validator: str, validator_id: str) -> None:
        """Log that Sudo authorized a Regular validator."""
        data = {
            "account": self._display_address(account),
            "validator": validator,
            "validator_id": validator_id,
        }
        self._logger.info(
            f"Enable data signed for {data['account']}: validator={validator} id={validator_id}",
            extra={"enable": data},
        )
        if self._config.audit_log_enabled:
            self._write_audit_log("validator_enable_signed", data)

    @staticmethod
    def _mask_address(address: str) -> str:
        """Mask middle portion of address for privacy."""
        if len(address) < 10:
            return address
        return f"{address[:6]}...{address[-4:]}"

    def _write_audit_log(self, event_type: str, data: Dict[str, Any]) -> None:
        """Write to audit log."""
        audit_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "data": data,
        }

        if self._config.audit_log_path:
            try:
                with open(self._config.audit_log_path, "a") as f:
                    f.write(json.dumps(audit_entry, default=str) + "\n")
            except OSError as e:
                self._logger.error(f"Failed to write audit log: {e}")
        else:
            self._logger.info(
                f"AUDIT: {event_type}",
                extra={"audit": audit_entry},
            )


# Global logger instance
_kernel_logger: Optional[KernelLogger] = None


def get_kernel_logger(
    name: str = "sardis_kernel",
    config: Optional[LoggingConfig] = None,
) -> KernelLogger:
    """Get the global kernel logger instance."""
    global _kernel_logger
    if _kernel_logger is None:
        _kernel_logger = KernelLogger(name, config)
    return _kernel_logger


def log_operation(operation_type: OperationType):
    """
    Decorator for logging async methods of objects exposing ``address``.

    Usage:
        @log_operation(OperationType.SIGN_MESSAGE)
        async def sign_message(self, message):
            ...
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            kernel_logger = get_kernel_logger()
            account = getattr(self, "address", "unknown")
            async with kernel_logger.operation_context(operation_type, account):
                return await func(self, *args, **kwargs)
        return wrapper  # type: ignore
    return decorator


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string
        json_format: Use JSON formatting
    """
    if format_string is None:
        if json_format:
            format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )

    logging.getLogger("sardis_kernel").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
