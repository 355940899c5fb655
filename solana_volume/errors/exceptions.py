"""
Exception definitions for the volume engine

Every failure is raised as a typed variant of VolumeError. Whether an
operation may be retried is a property of the exception class, never of the
message text.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """
    Unified error codes

    1xxx - RPC errors
    2xxx - Transaction errors
    3xxx - Input / domain errors
    6xxx - Signer errors
    8xxx - Fee oracle errors
    9xxx - Configuration errors
    """
    # RPC errors (recoverable)
    RPC_CONNECTION_FAILED = "1001"
    RPC_TIMEOUT = "1002"
    RPC_RATE_LIMITED = "1003"
    RPC_INVALID_RESPONSE = "1004"
    RPC_STALE_REFERENCE = "1005"

    # Transaction errors
    TX_SEND_FAILED = "2001"
    TX_CONFIRMATION_TIMEOUT = "2002"
    TX_LEDGER_REJECTED = "2003"
    TX_INSUFFICIENT_BALANCE = "2004"
    TX_FEE_SPIKE = "2005"

    # Input / domain errors
    INVALID_INPUT = "3001"
    PARTITION_DOMAIN = "3002"
    PARTITION_EXHAUSTED = "3003"

    # Signer errors
    SIGNER_NOT_CONFIGURED = "6001"
    SIGNER_FAILED = "6002"

    # Oracle errors
    ORACLE_UNAVAILABLE = "8001"

    # Configuration errors
    CONFIG_INVALID = "9001"
    CONFIG_MISSING = "9002"


class VolumeError(Exception):
    """
    Base exception for all volume engine errors

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        recoverable: Whether the error might succeed on retry
        original_error: The underlying exception if any
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        recoverable: bool = False,
        original_error: Optional[Exception] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.original_error = original_error
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"

    @property
    def should_retry(self) -> bool:
        """Indicate if the operation should be retried"""
        return self.recoverable


class RpcError(VolumeError):
    """
    RPC transport errors - recoverable

    Raised when:
    - Connection to RPC endpoint fails
    - Request times out
    - Invalid response received
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RPC_CONNECTION_FAILED,
        original_error: Optional[Exception] = None,
        endpoint: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        merged = dict(details or {})
        if endpoint:
            merged["endpoint"] = endpoint
        super().__init__(
            message,
            code,
            recoverable=True,
            original_error=original_error,
            details=merged,
        )
        self.endpoint = endpoint

    @classmethod
    def connection_failed(cls, endpoint: str, error: Exception = None) -> "RpcError":
        return cls(
            f"Failed to connect to RPC endpoint: {endpoint}",
            ErrorCode.RPC_CONNECTION_FAILED,
            original_error=error,
            endpoint=endpoint,
        )

    @classmethod
    def timeout(cls, endpoint: str, timeout_seconds: float) -> "RpcError":
        return cls(
            f"RPC request timed out after {timeout_seconds}s",
            ErrorCode.RPC_TIMEOUT,
            endpoint=endpoint,
        )

    @classmethod
    def invalid_response(cls, endpoint: str, reason: str) -> "RpcError":
        return cls(
            f"Invalid RPC response: {reason}",
            ErrorCode.RPC_INVALID_RESPONSE,
            endpoint=endpoint,
        )


class RateLimitError(RpcError):
    """
    Provider rate limit hit - recoverable with a longer backoff

    Raised once the call-scoped 429 backoff inside the RPC client is exhausted.
    """

    def __init__(
        self,
        message: str = "RPC rate limit exceeded",
        endpoint: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(
            message,
            ErrorCode.RPC_RATE_LIMITED,
            endpoint=endpoint,
            details={"retry_after": retry_after} if retry_after is not None else None,
        )
        self.retry_after = retry_after

    @classmethod
    def exhausted(cls, endpoint: str, attempts: int) -> "RateLimitError":
        return cls(
            f"RPC rate limit exceeded after {attempts} attempts",
            endpoint=endpoint,
        )


class StaleReferenceError(RpcError):
    """
    Block reference expired or unknown to the node - recoverable

    A fresh blockhash must be fetched before the next attempt.
    """

    def __init__(
        self,
        message: str,
        blockhash: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        super().__init__(
            message,
            ErrorCode.RPC_STALE_REFERENCE,
            endpoint=endpoint,
            details={"blockhash": blockhash} if blockhash else None,
        )
        self.blockhash = blockhash

    @classmethod
    def not_found(cls, endpoint: Optional[str] = None) -> "StaleReferenceError":
        return cls("Blockhash not found by the node", endpoint=endpoint)

    @classmethod
    def expired(cls, blockhash: str, last_valid_height: int, current_height: int) -> "StaleReferenceError":
        return cls(
            f"Blockhash {blockhash} expired: block height {current_height} "
            f"passed last valid height {last_valid_height}",
            blockhash=blockhash,
        )


class ConfirmationTimeoutError(VolumeError):
    """
    Confirmation did not arrive in time - recoverable after a status re-check
    """

    def __init__(self, signature: str, timeout_seconds: float):
        super().__init__(
            f"Transaction {signature} not confirmed within {timeout_seconds}s",
            ErrorCode.TX_CONFIRMATION_TIMEOUT,
            recoverable=True,
            details={"signature": signature, "timeout_seconds": timeout_seconds},
        )
        self.signature = signature
        self.timeout_seconds = timeout_seconds


class LedgerRejectionError(VolumeError):
    """
    The network definitively rejected the transaction - fatal

    Raised when:
    - Preflight simulation fails with an instruction error
    - A confirmed status carries an error
    """

    def __init__(
        self,
        message: str,
        signature: Optional[str] = None,
        ledger_error: Any = None,
        logs: Optional[list] = None,
    ):
        super().__init__(
            message,
            ErrorCode.TX_LEDGER_REJECTED,
            recoverable=False,
            details={"signature": signature, "ledger_error": ledger_error, "logs": logs},
        )
        self.signature = signature
        self.ledger_error = ledger_error
        self.logs = logs or []

    @classmethod
    def rejected(cls, signature: str, ledger_error: Any) -> "LedgerRejectionError":
        return cls(
            f"Transaction {signature} rejected by ledger: {ledger_error}",
            signature=signature,
            ledger_error=ledger_error,
        )

    @classmethod
    def simulation_failed(cls, ledger_error: Any, logs: list = None) -> "LedgerRejectionError":
        return cls(
            f"Transaction simulation failed: {ledger_error}",
            ledger_error=ledger_error,
            logs=logs,
        )


class InsufficientBalanceError(VolumeError):
    """
    Source balance cannot cover the transfer and its fees - fatal
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        required: Optional[int] = None,
        available: Optional[int] = None,
    ):
        super().__init__(
            message,
            ErrorCode.TX_INSUFFICIENT_BALANCE,
            recoverable=False,
            details={
                "address": address,
                "required": required,
                "available": available,
            },
        )
        self.address = address
        self.required = required
        self.available = available

    @classmethod
    def for_transfer(cls, address: str, required: int, available: int) -> "InsufficientBalanceError":
        return cls(
            f"Insufficient balance in {address}: need {required} lamports, have {available}",
            address=address,
            required=required,
            available=available,
        )

    @classmethod
    def for_token(cls, address: str, mint: str, required: int, available: int) -> "InsufficientBalanceError":
        return cls(
            f"Insufficient {mint} balance in {address}: need {required}, have {available}",
            address=address,
            required=required,
            available=available,
        )

    @classmethod
    def from_ledger(cls, ledger_error: Any) -> "InsufficientBalanceError":
        return cls(f"Insufficient funds reported by ledger: {ledger_error}")


class ValidationError(VolumeError):
    """
    Bad input shape or range - never retried
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        code: ErrorCode = ErrorCode.INVALID_INPUT,
    ):
        super().__init__(
            message,
            code,
            recoverable=False,
            details={"field": field_name} if field_name else None,
        )
        self.field_name = field_name

    @classmethod
    def invalid(cls, field_name: str, reason: str) -> "ValidationError":
        return cls(f"Invalid {field_name}: {reason}", field_name=field_name)

    @classmethod
    def invalid_address(cls, address: str) -> "ValidationError":
        return cls(f"Invalid address: {address!r}", field_name="address")


class DomainError(ValidationError):
    """
    Partition request outside the supported domain
    """

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message, field_name=field_name, code=ErrorCode.PARTITION_DOMAIN)


class PartitionError(VolumeError):
    """
    Random partition could not be produced within the attempt budget
    """

    def __init__(self, message: str, attempts: Optional[int] = None):
        super().__init__(
            message,
            ErrorCode.PARTITION_EXHAUSTED,
            recoverable=False,
            details={"attempts": attempts},
        )
        self.attempts = attempts


class SignerError(VolumeError):
    """
    Signing-related errors

    Raised when:
    - No signer configured
    - Signing operation fails
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SIGNER_FAILED,
    ):
        super().__init__(message, code, recoverable=False)

    @classmethod
    def not_configured(cls) -> "SignerError":
        return cls(
            "No signer configured. Provide a keypair or SOLANA_KEYPAIR_PATH.",
            ErrorCode.SIGNER_NOT_CONFIGURED,
        )

    @classmethod
    def failed(cls, reason: str) -> "SignerError":
        return cls(f"Signing failed: {reason}", ErrorCode.SIGNER_FAILED)


class OracleUnavailableError(VolumeError):
    """
    Fee samples could not be read; callers fall back to the default fee
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            message,
            ErrorCode.ORACLE_UNAVAILABLE,
            recoverable=True,
            original_error=original_error,
        )


class ConfigError(VolumeError):
    """
    Configuration-related errors

    Raised when:
    - Required configuration is missing
    - Configuration values are invalid
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        super().__init__(message, code, recoverable=False)

    @classmethod
    def missing(cls, param: str) -> "ConfigError":
        return cls(f"Missing required configuration: {param}", ErrorCode.CONFIG_MISSING)

    @classmethod
    def invalid(cls, param: str, reason: str) -> "ConfigError":
        return cls(f"Invalid configuration '{param}': {reason}", ErrorCode.CONFIG_INVALID)
