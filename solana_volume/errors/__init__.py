"""
Error definitions for the volume engine
"""

from .exceptions import (
    ErrorCode,
    VolumeError,
    RpcError,
    RateLimitError,
    StaleReferenceError,
    ConfirmationTimeoutError,
    LedgerRejectionError,
    InsufficientBalanceError,
    ValidationError,
    DomainError,
    PartitionError,
    SignerError,
    OracleUnavailableError,
    ConfigError,
)

__all__ = [
    "ErrorCode",
    "VolumeError",
    "RpcError",
    "RateLimitError",
    "StaleReferenceError",
    "ConfirmationTimeoutError",
    "LedgerRejectionError",
    "InsufficientBalanceError",
    "ValidationError",
    "DomainError",
    "PartitionError",
    "SignerError",
    "OracleUnavailableError",
    "ConfigError",
]
