"""
Functional modules for the volume engine

- partitioner: distinct random amount splits and round-robin schedules
- fee_oracle: priority fee levels from recent samples
- fee_collector: service fee transfer injection
- submission: build, sign, send and confirm with retries
- funder: batched funding of many wallets
- orchestrator: staged run sequencing with reconciliation strategies
"""

from .partitioner import AmountPartitioner, partition, precision_floor, verify
from .fee_oracle import FeeOracle, FeeQuote, estimate_network_fee, percentile_fee
from .fee_collector import FeeCollector, calculate_fee, with_fees
from .submission import SubmissionEngine, SubmitOptions
from .funder import BatchFunder, FundingOptions, chunk_intents
from .orchestrator import (
    WalletStore,
    KeypairWalletStore,
    RunParams,
    RunContext,
    ReconciliationStrategy,
    ExecuteSchedule,
    ReturnToSource,
    WorkflowOrchestrator,
    strategy_for_network,
)

__all__ = [
    "AmountPartitioner",
    "partition",
    "precision_floor",
    "verify",
    "FeeOracle",
    "FeeQuote",
    "estimate_network_fee",
    "percentile_fee",
    "FeeCollector",
    "calculate_fee",
    "with_fees",
    "SubmissionEngine",
    "SubmitOptions",
    "BatchFunder",
    "FundingOptions",
    "chunk_intents",
    "WalletStore",
    "KeypairWalletStore",
    "RunParams",
    "RunContext",
    "ReconciliationStrategy",
    "ExecuteSchedule",
    "ReturnToSource",
    "WorkflowOrchestrator",
    "strategy_for_network",
]
