"""
Logging utilities for transaction kit operations.

Features:
- Debug-gated kit logging
- Sensitive data redaction (keys, API keys, signer objects)
- Bundler/RPC URL masking
- Operation timing via an async context manager
"""
from __future__ import annotations

import dataclasses
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

LOG_PREFIX = "[TransactionKit]"
REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset({
    "private_key",
    "privateKey",
    "external_account",
    "externalAccount",
    "bundler_api_key",
    "bundlerApiKey",
    "bundler_api_key_format",
    "bundlerApiKeyFormat",
})


class OperationType(str, Enum):
    """Types of kit operations."""
    ESTIMATE = "estimate"
    SEND = "send"
    ESTIMATE_BATCHES = "estimate_batches"
    SEND_BATCHES = "send_batches"
    CLIENT_INIT = "client_init"
    RECEIPT_POLL = "receipt_poll"


@dataclass
class OperationContext:
    """Context for a kit operation."""
    operation_id: str
    operation_type: OperationType
    chain_id: Optional[int]
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
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "chain_id": self.chain_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": sanitize(self.metadata),
        }


def sanitize(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive fields redacted."""
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        data = {f.name: getattr(data, f.name) for f in dataclasses.fields(data)}
    if isinstance(data, dict):
        cleaned = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS and value is not None:
                cleaned[key] = REDACTED
            else:
                cleaned[key] = sanitize(value)
        return cleaned
    if isinstance(data, (list, tuple)):
        return [sanitize(item) for item in data]
    return data


def mask_url(url: Optional[str]) -> Optional[str]:
    """Mask sensitive parts of URL (like API keys)."""
    if not url:
        return url
    if "?" in url:
        base = url.split("?")[0]
        return f"{base}?<params_masked>"
    return url


def mask_address(address: Optional[str]) -> Optional[str]:
    """Mask middle portion of address for privacy."""
    if not address or len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return "0x" + obj.hex()
    return str(obj)


def format_log_data(data: Any) -> str:
    """Sanitize and JSON-format a log payload."""
    return json.dumps(sanitize(data), default=_json_default)


class KitLogger:
    """
    Logger used by the transaction kit and its provider.

    ``log`` output is only emitted while debug mode is enabled; warnings and
    errors are always emitted. Payloads are redacted before formatting.
    """

    def __init__(self, name: str = "userop_kit", debug_mode: bool = False):
        self._logger = logging.getLogger(name)
        self._debug_mode = debug_mode
        self._operation_counter = 0

    @property
    def debug_mode(self) -> bool:
        return self._debug_mode

    def set_debug_mode(self, enabled: bool) -> None:
        self._debug_mode = bool(enabled)

    def _message(self, message: str, data: Any = None) -> str:
        if data is None:
            return f"{LOG_PREFIX} {message}"
        return f"{LOG_PREFIX} {message} {format_log_data(data)}"

    def log(self, message: str, data: Any = None) -> None:
        if not self._debug_mode:
            return
        self._logger.info(self._message(message, data))

    def warning(self, message: str, data: Any = None) -> None:
        self._logger.warning(self._message(message, data))

    def error(self, message: str, data: Any = None) -> None:
        self._logger.error(self._message(message, data))

    def _generate_operation_id(self) -> str:
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    @asynccontextmanager
    async def operation_context(
        self,
        operation_type: OperationType,
        chain_id: Optional[int] = None,
        **metadata,
    ):
        """
        Context manager for tracking an operation.

        Usage:
            async with kit_logger.operation_context(OperationType.ESTIMATE, 1) as ctx:
                ctx.metadata["cost"] = cost
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            chain_id=chain_id,
            metadata=metadata,
        )
        self.log(f"Starting {operation_type.value}", {"chain_id": chain_id})

        try:
            yield ctx
            if ctx.completed_at is None:
                ctx.complete(success=True)
        except Exception as e:
            ctx.complete(success=False, error=str(e))
            raise
        finally:
            if ctx.success:
                self.log(
                    f"Completed {operation_type.value} in {ctx.duration_ms:.0f}ms",
                    ctx.to_dict(),
                )
            else:
                self.log(
                    f"{operation_type.value} failed after {ctx.duration_ms:.0f}ms: {ctx.error}",
                    ctx.to_dict(),
                )
