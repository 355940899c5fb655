"""
Solana Volume - wallet funding, partition scheduling and transaction submission

Provides:
- Random distinct amount partitions over child wallets
- Priority fee oracle with spike detection
- Service fee injection
- Retrying, idempotent transaction submission
- Batched funding and staged workflow runs
"""

from .client import VolumeClient
from .types import (
    TransferIntent,
    MintInfo,
    BlockReference,
    SignatureStatus,
    OperationStatus,
    OperationResult,
    FundingResult,
    FeeCalculationResult,
    RunStatus,
    RunSummary,
    WorkflowStage,
)
from .errors import (
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
    ConfigError,
    ErrorCode,
)
from .modules import (
    AmountPartitioner,
    FeeOracle,
    FeeCollector,
    SubmissionEngine,
    SubmitOptions,
    BatchFunder,
    FundingOptions,
    WorkflowOrchestrator,
    RunParams,
    KeypairWalletStore,
    ExecuteSchedule,
    ReturnToSource,
)

__all__ = [
    # Client
    "VolumeClient",
    # Types
    "TransferIntent",
    "MintInfo",
    "BlockReference",
    "SignatureStatus",
    "OperationStatus",
    "OperationResult",
    "FundingResult",
    "FeeCalculationResult",
    "RunStatus",
    "RunSummary",
    "WorkflowStage",
    # Errors
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
    "ConfigError",
    "ErrorCode",
    # Modules
    "AmountPartitioner",
    "FeeOracle",
    "FeeCollector",
    "SubmissionEngine",
    "SubmitOptions",
    "BatchFunder",
    "FundingOptions",
    "WorkflowOrchestrator",
    "RunParams",
    "KeypairWalletStore",
    "ExecuteSchedule",
    "ReturnToSource",
]

__version__ = "1.0.0"
