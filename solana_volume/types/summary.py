"""
Run summary produced by the workflow orchestrator
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .result import OperationResult, average_latency_ms


class WorkflowStage(Enum):
    """Linear run stages"""
    INIT = "init"
    FUND = "fund"
    SCHEDULE = "schedule"
    EXECUTE = "execute"
    RECONCILE = "reconcile"
    DONE = "done"


class RunStatus(Enum):
    COMPLETED = "completed"  # Reached DONE with every operation confirmed
    PARTIAL = "partial"      # Reached DONE with some failed or skipped operations
    FAILED = "failed"        # Aborted before DONE


@dataclass(frozen=True)
class RunSummary:
    """
    Immutable record of one orchestrated run

    Attributes:
        run_id: Correlation id of the run
        network: Network name (devnet, mainnet-beta, ...)
        strategy: Reconciliation strategy name
        status: Overall outcome
        stage: Last stage entered (the failing one when aborted)
        results: Every OperationResult in execution order
        children: Public keys of the child wallets created for the run
        started_at / finished_at: UTC timestamps
        error: Abort reason when status is FAILED
    """
    run_id: str
    network: str
    strategy: str
    status: RunStatus
    stage: WorkflowStage
    results: Tuple[OperationResult, ...]
    started_at: datetime
    finished_at: datetime
    error: Optional[str] = None
    children: Tuple[str, ...] = ()

    @property
    def total_operations(self) -> int:
        return len(self.results)

    @property
    def confirmed(self) -> int:
        return sum(1 for r in self.results if r.is_confirmed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.is_failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.is_skipped)

    @property
    def total_amount(self) -> int:
        """Lamports moved by confirmed non-fee SOL operations"""
        return sum(r.amount for r in self.results if r.is_confirmed and not r.is_fee and r.mint is None)

    @property
    def token_amount(self) -> int:
        """Token base units moved by confirmed non-fee token operations"""
        return sum(r.amount for r in self.results if r.is_confirmed and not r.is_fee and r.mint is not None)

    @property
    def service_fees(self) -> int:
        """Lamports collected by confirmed SOL service fee transfers"""
        return sum(r.amount for r in self.results if r.is_confirmed and r.is_fee and r.mint is None)

    @property
    def token_service_fees(self) -> int:
        """Token base units collected by confirmed token service fee transfers"""
        return sum(r.amount for r in self.results if r.is_confirmed and r.is_fee and r.mint is not None)

    @property
    def network_fees(self) -> int:
        """Network fees paid by confirmed operations"""
        return sum(r.fee_lamports or 0 for r in self.results if r.is_confirmed)

    @property
    def total_fees(self) -> int:
        """Lamports spent on service and network fees"""
        return self.service_fees + self.network_fees

    @property
    def average_confirmation_ms(self) -> int:
        return average_latency_ms(list(self.results))

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Plain record; integer amounts are rendered as decimal strings"""
        return {
            "run_id": self.run_id,
            "network": self.network,
            "strategy": self.strategy,
            "status": self.status.value,
            "stage": self.stage.value,
            "error": self.error,
            "children": list(self.children),
            "total_operations": self.total_operations,
            "confirmed": self.confirmed,
            "failed": self.failed,
            "skipped": self.skipped,
            "total_amount": str(self.total_amount),
            "token_amount": str(self.token_amount),
            "service_fees": str(self.service_fees),
            "token_service_fees": str(self.token_service_fees),
            "network_fees": str(self.network_fees),
            "total_fees": str(self.total_fees),
            "average_confirmation_ms": self.average_confirmation_ms,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "results": [r.to_dict() for r in self.results],
        }
