"""
Retry policy helpers

Provides:
- correlation IDs scoped with contextvars for tracing one submission
- structured log lines ([cid] [operation] [attempt/max] message)
- backoff_delay(): delay before the next attempt, chosen by error type
"""

import logging
import uuid
import contextvars
from typing import Optional

from ..errors import RateLimitError, StaleReferenceError
from ..config import config as global_config

logger = logging.getLogger(__name__)

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for transaction tracing."""
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: Optional[str]) -> contextvars.Token:
    """Set the correlation ID in context. Returns token for reset."""
    return _correlation_id.set(correlation_id)


class CorrelationContext:
    """
    Context manager for correlation ID scoping.

    Usage:
        with CorrelationContext("fund") as cid:
            logger.info(f"[{cid}] Starting funding")
    """

    def __init__(self, prefix: Optional[str] = None):
        self.correlation_id = generate_correlation_id()
        if prefix:
            self.correlation_id = f"{prefix}_{self.correlation_id}"
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = set_correlation_id(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _correlation_id.reset(self._token)


def log_with_correlation(
    level: int,
    message: str,
    operation_name: str,
    attempt: Optional[int] = None,
    max_attempts: Optional[int] = None,
    **extra
):
    """
    Log message with correlation ID and structured context.

    Args:
        level: Logging level (logging.INFO, logging.WARNING, etc.)
        message: Log message
        operation_name: Name of the operation being executed
        attempt: Current attempt number (1-indexed)
        max_attempts: Total attempts allowed
        **extra: Additional context fields
    """
    cid = get_correlation_id()

    parts = []
    if cid:
        parts.append(f"[{cid}]")
    parts.append(f"[{operation_name}]")
    if attempt is not None and max_attempts is not None:
        parts.append(f"[{attempt}/{max_attempts}]")
    parts.append(message)

    extra_context = {
        "correlation_id": cid,
        "operation": operation_name,
        "attempt": attempt,
        "max_attempts": max_attempts,
        **extra
    }

    logger.log(level, " ".join(parts), extra=extra_context)


def backoff_delay(
    error: Optional[Exception],
    attempt: int,
    base_delay: Optional[float] = None,
) -> float:
    """
    Seconds to wait before retry number `attempt` (1-indexed)

    - StaleReferenceError: short fixed delay, a fresh blockhash is all it needs
    - RateLimitError: exponential backoff scaled by the rate limit multiplier
    - anything else: exponential backoff from base_delay

    The result is capped at config.tx.max_backoff.
    """
    tx = global_config.tx
    base = base_delay if base_delay is not None else tx.retry_delay
    exponent = max(attempt - 1, 0)

    if isinstance(error, StaleReferenceError):
        delay = tx.stale_reference_delay
    elif isinstance(error, RateLimitError):
        delay = base * tx.rate_limit_backoff * (2 ** exponent)
        if error.retry_after is not None:
            delay = max(delay, error.retry_after)
    else:
        delay = base * (2 ** exponent)

    return min(delay, tx.max_backoff)
