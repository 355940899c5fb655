"""
Infrastructure layer for the volume engine

Provides:
- RpcClient: JSON-RPC wrapper with rate limiting and typed errors
- RateLimiter: per-profile call gate
- SignatureSubscriber: websocket confirmation notifications
- Signer: Transaction signing abstraction (local keypair)
- TxBuilder: Transfer transaction assembly (SOL and SPL tokens)
- EventBus: Typed lifecycle events
"""

from .rate_limiter import (
    RateLimiter,
    RateLimitProfile,
    PUBLIC_PROFILE,
    PREMIUM_PROFILE,
)
from .rpc import (
    RpcClient,
    RpcClientConfig,
    classify_ledger_error,
    get_shared_limiter,
    ws_url_from_http,
)
from .subscription import SignatureSubscriber, SubscriptionHandle
from .solana_signer import (
    Signer,
    LocalSigner,
    create_signer,
)
from .tx_builder import TxBuilder
from .token import (
    TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    get_associated_token_address,
)
from .events import EventBus, EventKind, Event
from .retry import CorrelationContext, backoff_delay

__all__ = [
    "RateLimiter",
    "RateLimitProfile",
    "PUBLIC_PROFILE",
    "PREMIUM_PROFILE",
    "RpcClient",
    "RpcClientConfig",
    "classify_ledger_error",
    "get_shared_limiter",
    "ws_url_from_http",
    "SignatureSubscriber",
    "SubscriptionHandle",
    "Signer",
    "LocalSigner",
    "create_signer",
    "TxBuilder",
    "TOKEN_PROGRAM_ID",
    "TOKEN_2022_PROGRAM_ID",
    "get_associated_token_address",
    "EventBus",
    "EventKind",
    "Event",
    "CorrelationContext",
    "backoff_delay",
]
