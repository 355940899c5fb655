"""
Result type definitions for submissions, funding and fee calculation
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .transfer import TransferIntent

DRY_RUN_SIGNATURE = "DRY_RUN_MODE"


def _shared_mint(intents: List[TransferIntent]) -> Optional[str]:
    mints = {i.mint for i in intents}
    return mints.pop() if len(mints) == 1 else None


class OperationStatus(Enum):
    """Submission status"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    SKIPPED = "skipped"  # Not sent (fee spike, dry run, aborted batch)


@dataclass
class OperationResult:
    """
    Outcome of one submitted transfer unit

    Attributes:
        index: Position of the unit within its batch or schedule
        status: Terminal status once it leaves PENDING
        signature: Transaction signature (base58) of the attempt that counts
        error: Error message, detailed enough to diagnose without logs
        error_code: ErrorCode value for programmatic handling
        confirmation_latency_ms: Send-to-confirmation latency
        fee_lamports: Network fee paid (actual when known, else estimated)
        amount: Lamports (or token base units when mint is set) moved by the unit
        is_fee: True when the unit is a service fee transfer
        destinations: Receiving addresses in instruction order
        attempts: Number of send attempts made
        mint: Token mint when every transfer in the unit moves that token
    """
    index: int
    status: OperationStatus = OperationStatus.PENDING
    signature: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    confirmation_latency_ms: Optional[int] = None
    fee_lamports: Optional[int] = None
    amount: int = 0
    is_fee: bool = False
    destinations: List[str] = field(default_factory=list)
    attempts: int = 0
    mint: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == OperationStatus.CONFIRMED

    @property
    def is_failed(self) -> bool:
        return self.status == OperationStatus.FAILED

    @property
    def is_skipped(self) -> bool:
        return self.status == OperationStatus.SKIPPED

    @property
    def is_pending(self) -> bool:
        return self.status == OperationStatus.PENDING

    @classmethod
    def for_intents(cls, index: int, intents: List[TransferIntent]) -> "OperationResult":
        """Create a pending result describing a transfer unit"""
        return cls(
            index=index,
            amount=sum(i.amount for i in intents),
            is_fee=bool(intents) and all(i.is_fee for i in intents),
            destinations=[i.destination for i in intents],
            mint=_shared_mint(intents),
        )

    def confirm(self, signature: str, latency_ms: int, fee_lamports: Optional[int] = None) -> "OperationResult":
        self.status = OperationStatus.CONFIRMED
        self.signature = signature
        self.confirmation_latency_ms = latency_ms
        self.fee_lamports = fee_lamports
        self.error = None
        self.error_code = None
        return self

    def fail(self, error: str, error_code: Optional[str] = None, signature: Optional[str] = None) -> "OperationResult":
        self.status = OperationStatus.FAILED
        self.error = error
        self.error_code = error_code
        if signature:
            self.signature = signature
        return self

    def skip(self, reason: str, error_code: Optional[str] = None, signature: Optional[str] = None) -> "OperationResult":
        self.status = OperationStatus.SKIPPED
        self.error = reason
        self.error_code = error_code
        if signature:
            self.signature = signature
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "status": self.status.value,
            "signature": self.signature,
            "error": self.error,
            "error_code": self.error_code,
            "confirmation_latency_ms": self.confirmation_latency_ms,
            "fee_lamports": None if self.fee_lamports is None else str(self.fee_lamports),
            "amount": str(self.amount),
            "is_fee": self.is_fee,
            "destinations": list(self.destinations),
            "attempts": self.attempts,
            "mint": self.mint,
        }

    def __str__(self) -> str:
        if self.is_confirmed:
            sig_display = f"{self.signature[:16]}..." if self.signature else "no signature"
            return f"OperationResult(#{self.index} CONFIRMED, {sig_display})"
        return f"OperationResult(#{self.index} {self.status.value}, error={self.error})"


def average_latency_ms(results: List[OperationResult]) -> int:
    """Mean confirmation latency over confirmed results, 0 when none"""
    latencies = [
        r.confirmation_latency_ms for r in results
        if r.is_confirmed and r.confirmation_latency_ms is not None
    ]
    if not latencies:
        return 0
    return sum(latencies) // len(latencies)


@dataclass
class FundingResult:
    """
    Aggregate outcome of a BatchFunder run

    One OperationResult per chunk; a failed chunk does not stop later ones
    unless continue_on_error is disabled.
    """
    source: str
    results: List[OperationResult] = field(default_factory=list)
    funded_addresses: List[str] = field(default_factory=list)
    failed_addresses: List[str] = field(default_factory=list)
    skipped_addresses: List[str] = field(default_factory=list)
    total_funded_amount: int = 0
    total_fees: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def total_transactions(self) -> int:
        return len(self.results)

    @property
    def successful_transactions(self) -> int:
        return sum(1 for r in self.results if r.is_confirmed)

    @property
    def failed_transactions(self) -> int:
        return sum(1 for r in self.results if r.is_failed)

    @property
    def skipped_transactions(self) -> int:
        return sum(1 for r in self.results if r.is_skipped)

    @property
    def average_confirmation_ms(self) -> int:
        return average_latency_ms(self.results)

    @property
    def is_complete(self) -> bool:
        return bool(self.results) and all(r.is_confirmed for r in self.results)

    def record(self, result: OperationResult, chunk: List[TransferIntent]) -> None:
        """Fold one chunk outcome into the totals"""
        self.results.append(result)
        addresses = [i.destination for i in chunk]
        if result.is_confirmed:
            self.funded_addresses.extend(addresses)
            self.total_funded_amount += sum(i.amount for i in chunk)
            self.total_fees += result.fee_lamports or 0
        elif result.is_skipped:
            self.skipped_addresses.extend(addresses)
        else:
            self.failed_addresses.extend(addresses)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "total_transactions": self.total_transactions,
            "successful_transactions": self.successful_transactions,
            "failed_transactions": self.failed_transactions,
            "skipped_transactions": self.skipped_transactions,
            "total_funded_amount": str(self.total_funded_amount),
            "total_fees": str(self.total_fees),
            "average_confirmation_ms": self.average_confirmation_ms,
            "funded_addresses": list(self.funded_addresses),
            "failed_addresses": list(self.failed_addresses),
            "skipped_addresses": list(self.skipped_addresses),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class FeeCalculationResult:
    """Intents with service fee transfers interleaved"""
    all_intents: List[TransferIntent]
    total_amount: int
    total_fee: int

    @property
    def main_intents(self) -> List[TransferIntent]:
        return [i for i in self.all_intents if not i.is_fee]

    @property
    def fee_intents(self) -> List[TransferIntent]:
        return [i for i in self.all_intents if i.is_fee]
