"""
Error types for userop-kit.

Configuration problems and wrong-state builder calls are raised. Estimation
and submission failures are returned inside result objects tagged with an
ErrorType.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorType(str, Enum):
    """Classification carried by failed estimate/send results."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ESTIMATION_ERROR = "ESTIMATION_ERROR"
    SEND_ERROR = "SEND_ERROR"


class TransactionKitError(Exception):
    """Base exception for userop-kit."""
    pass


class ConfigurationError(TransactionKitError):
    """Raised when the kit or provider configuration is unusable."""
    pass


class TransactionKitValidationError(TransactionKitError):
    """Raised when a builder method is called with invalid input or in the wrong state."""

    error_type = ErrorType.VALIDATION_ERROR

    def __init__(self, message: str, method: Optional[str] = None):
        self.method = method
        super().__init__(message)


class ClientInitializationError(TransactionKitError):
    """Raised when a client cannot resolve its account address."""

    def __init__(self, message: str, chain_id: int, attempts: int):
        self.chain_id = chain_id
        self.attempts = attempts
        super().__init__(message)


def parse_error_message(error: BaseException, default: str = "Unknown error") -> str:
    """Best-effort human readable message for an exception."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(error)
    if text:
        return text
    return default
