"""
Type definitions for the volume engine
"""

from .transfer import (
    LAMPORTS_PER_SOL,
    TransferIntent,
    MintInfo,
    BlockReference,
    FeeSample,
    SignatureStatus,
)
from .result import (
    DRY_RUN_SIGNATURE,
    OperationStatus,
    OperationResult,
    FundingResult,
    FeeCalculationResult,
    average_latency_ms,
)
from .summary import WorkflowStage, RunStatus, RunSummary

__all__ = [
    "LAMPORTS_PER_SOL",
    "TransferIntent",
    "MintInfo",
    "BlockReference",
    "FeeSample",
    "SignatureStatus",
    "DRY_RUN_SIGNATURE",
    "OperationStatus",
    "OperationResult",
    "FundingResult",
    "FeeCalculationResult",
    "average_latency_ms",
    "WorkflowStage",
    "RunStatus",
    "RunSummary",
]
