"""
Workflow orchestration

Runs the linear stage machine INIT -> FUND -> SCHEDULE -> EXECUTE ->
RECONCILE -> DONE and records the outcome in a RunSummary.

Only setup problems (invalid parameters, no origin wallet) raise. A stage
that fails later aborts the run; the summary keeps every result produced
so far. Confirmed transfers are never rolled back.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional, Protocol, runtime_checkable

from ..errors import ConfigError, ErrorCode, RpcError, ValidationError, VolumeError
from ..types import (
    FeeCalculationResult,
    OperationResult,
    RunStatus,
    RunSummary,
    TransferIntent,
    WorkflowStage,
)
from ..config import config as global_config
from ..infra.events import EventBus, EventKind
from ..infra.retry import CorrelationContext
from ..infra.rpc import RpcClient
from ..infra.solana_signer import LocalSigner, Signer
from .fee_collector import FeeCollector
from .fee_oracle import estimate_network_fee
from .funder import BatchFunder, FundingOptions
from .partitioner import AmountPartitioner
from .submission import SubmissionEngine, SubmitOptions

logger = logging.getLogger(__name__)

PRODUCTION_NETWORKS = ("mainnet", "mainnet-beta")


@runtime_checkable
class WalletStore(Protocol):
    """Source of the origin wallet and the child wallets of a run"""

    def origin(self) -> Optional[Signer]:
        ...

    def create_children(self, count: int) -> List[Signer]:
        ...


class KeypairWalletStore:
    """
    In-memory wallet store generating fresh keypairs for children

    Keys are not persisted; callers that need to recover child funds
    must export them from `children`.
    """

    def __init__(self, origin: Optional[Signer] = None):
        self._origin = origin
        self._children: List[Signer] = []

    def origin(self) -> Optional[Signer]:
        return self._origin

    def create_children(self, count: int) -> List[Signer]:
        created = [LocalSigner.generate() for _ in range(count)]
        self._children.extend(created)
        return created

    @property
    def children(self) -> List[Signer]:
        return list(self._children)


@dataclass
class RunParams:
    """
    Parameters of one orchestrated run

    Attributes:
        child_count: Wallets to create and fund (>= 2)
        funding_amount: Lamports sent to each child
        total_volume: Amount moved by the generated schedule (lamports, or mint base units)
        precision: Decimals used for the partition floor; read from the mint when unset
        apply_service_fee: Interleave service fee transfers into the schedule
        mint: SPL token the schedule moves instead of SOL
        token_funding_amount: Token base units sent to each child when mint is set
    """
    child_count: int
    funding_amount: int
    total_volume: int
    precision: int = None
    apply_service_fee: bool = True
    funding: Optional[FundingOptions] = None
    submit: Optional[SubmitOptions] = None
    mint: Optional[str] = None
    token_funding_amount: Optional[int] = None

    def __post_init__(self):
        if self.mint is None:
            self.mint = global_config.workflow.mint or None
        if self.precision is None and self.mint is None:
            self.precision = global_config.workflow.precision
        if self.submit is None:
            self.submit = SubmitOptions()
        if self.funding is None:
            self.funding = FundingOptions(submit=self.submit)

    def validate(self) -> None:
        if self.child_count < 2:
            raise ValidationError.invalid("child_count", f"must be at least 2, got {self.child_count}")
        if self.funding_amount <= 0:
            raise ValidationError.invalid("funding_amount", "must be positive")
        if self.total_volume <= 0:
            raise ValidationError.invalid("total_volume", "must be positive")
        if self.mint is not None and (self.token_funding_amount is None or self.token_funding_amount <= 0):
            raise ValidationError.invalid("token_funding_amount", "must be positive when a mint is set")


@dataclass
class RunContext:
    """State shared by the stages of one run"""
    params: RunParams
    engine: SubmissionEngine
    rpc: RpcClient
    origin: Optional[Signer] = None
    children: List[Signer] = field(default_factory=list)
    schedule: List[TransferIntent] = field(default_factory=list)
    fee_result: Optional[FeeCalculationResult] = None
    precision: Optional[int] = None

    def signer_for(self, address: str) -> Signer:
        for signer in [self.origin, *self.children]:
            if signer is not None and signer.pubkey == address:
                return signer
        raise ValidationError.invalid("source", f"no signer for {address}")


class ReconciliationStrategy(ABC):
    """Decides what the EXECUTE and RECONCILE stages do with the schedule"""

    name = "base"

    @abstractmethod
    def execute(self, ctx: RunContext) -> List[OperationResult]:
        ...

    @abstractmethod
    def reconcile(self, ctx: RunContext) -> List[OperationResult]:
        ...


class ExecuteSchedule(ReconciliationStrategy):
    """Submit the generated schedule; nothing to reconcile afterwards"""

    name = "execute_schedule"

    def execute(self, ctx: RunContext) -> List[OperationResult]:
        results: List[OperationResult] = []
        main_confirmed = False

        for index, intent in enumerate(ctx.schedule):
            if intent.is_fee and not main_confirmed:
                op = OperationResult.for_intents(index, [intent])
                op.skip("Service fee not charged: its transfer did not confirm")
                results.append(op)
                continue

            op = ctx.engine.submit(intent, ctx.signer_for(intent.source), ctx.params.submit, index=index)
            results.append(op)
            if not intent.is_fee:
                main_confirmed = op.is_confirmed

        return results

    def reconcile(self, ctx: RunContext) -> List[OperationResult]:
        return []


class ReturnToSource(ReconciliationStrategy):
    """
    Leave the schedule unexecuted and sweep child balances back to the origin

    Token balances of a token run go back first. Each child then keeps the
    rent-exempt minimum; the SOL sweep amount also leaves room for the
    transaction fee. Child token accounts are left open.
    """

    name = "return_to_source"

    def __init__(self, rent_floor: Optional[int] = None):
        self._rent_floor = rent_floor

    def _resolve_rent_floor(self, rpc: RpcClient) -> int:
        if self._rent_floor is not None:
            return self._rent_floor
        try:
            return rpc.get_minimum_balance_for_rent_exemption(0)
        except RpcError as e:
            fallback = global_config.workflow.rent_floor_lamports
            logger.warning(f"Rent exemption lookup failed, using {fallback}: {e}")
            return fallback

    def execute(self, ctx: RunContext) -> List[OperationResult]:
        logger.info(f"{self.name}: schedule of {len(ctx.schedule)} transfers not executed")
        return []

    def _sweep_tokens(
        self, ctx: RunContext, child: Signer, index: int, options: SubmitOptions
    ) -> Optional[OperationResult]:
        mint = ctx.params.mint
        try:
            balance = ctx.rpc.get_token_balance(child.pubkey, mint)
        except RpcError as e:
            op = OperationResult(index=index, destinations=[ctx.origin.pubkey], mint=mint)
            op.fail(f"Token balance lookup for {child.pubkey} failed: {e}", e.code.value)
            return op

        if balance <= 0:
            logger.info(f"No {mint} to sweep from {child.pubkey}")
            return None

        intent = TransferIntent(source=child.pubkey, destination=ctx.origin.pubkey, amount=balance, mint=mint)
        return ctx.engine.submit(intent, child, options, index=index)

    def reconcile(self, ctx: RunContext) -> List[OperationResult]:
        rent_floor = self._resolve_rent_floor(ctx.rpc)
        options = ctx.params.submit
        priority_fee = options.priority_fee
        if priority_fee is None:
            priority_fee = ctx.engine.fee_oracle.optimal_fee()
        sweep_options = replace(options, priority_fee=priority_fee)
        tx_fee = estimate_network_fee(priority_fee, sweep_options.compute_units)

        results: List[OperationResult] = []
        for child in ctx.children:
            if ctx.params.mint is not None:
                op = self._sweep_tokens(ctx, child, len(results), sweep_options)
                if op is not None:
                    results.append(op)

            try:
                balance = ctx.rpc.get_balance(child.pubkey)
            except RpcError as e:
                op = OperationResult(index=len(results), destinations=[ctx.origin.pubkey])
                op.fail(f"Balance lookup for {child.pubkey} failed: {e}", e.code.value)
                results.append(op)
                continue

            amount = balance - rent_floor - tx_fee
            if amount <= 0:
                logger.info(
                    f"Nothing to sweep from {child.pubkey}: balance {balance}, "
                    f"reserve {rent_floor + tx_fee}"
                )
                continue

            intent = TransferIntent(source=child.pubkey, destination=ctx.origin.pubkey, amount=amount)
            results.append(ctx.engine.submit(intent, child, sweep_options, index=len(results)))

        return results


def strategy_for_network(network: str, swap_target: Optional[str] = None) -> ReconciliationStrategy:
    """ReturnToSource on non-production networks without a swap target, else ExecuteSchedule"""
    if network not in PRODUCTION_NETWORKS and not swap_target:
        return ReturnToSource()
    return ExecuteSchedule()


class WorkflowOrchestrator:
    """
    Sequences one volume run

    Usage:
        orchestrator = WorkflowOrchestrator(
            engine, funder, rpc,
            wallet_store=KeypairWalletStore(origin_signer),
            strategy=ExecuteSchedule(),
            fee_collector=FeeCollector(1, 1000, "FeeWallet..."),
        )
        summary = orchestrator.run(RunParams(child_count=5, funding_amount=50_000_000,
                                             total_volume=100_000_000))
        print(summary.to_dict())
    """

    def __init__(
        self,
        engine: SubmissionEngine,
        funder: BatchFunder,
        rpc: RpcClient,
        wallet_store: WalletStore,
        strategy: ReconciliationStrategy,
        fee_collector: Optional[FeeCollector] = None,
        partitioner: Optional[AmountPartitioner] = None,
        events: Optional[EventBus] = None,
        network: Optional[str] = None,
    ):
        self._engine = engine
        self._funder = funder
        self._rpc = rpc
        self._wallet_store = wallet_store
        self._strategy = strategy
        self._fee_collector = fee_collector
        self._partitioner = partitioner or AmountPartitioner()
        self._events = events or engine.events
        self._network = network or global_config.rpc.network

    @property
    def strategy(self) -> ReconciliationStrategy:
        return self._strategy

    def _enter(self, stage: WorkflowStage, run_id: str) -> WorkflowStage:
        logger.info(f"[{run_id}] Stage -> {stage.value}")
        self._events.emit(EventKind.STAGE_CHANGED, run_id=run_id, stage=stage.value)
        return stage

    @property
    def wallet_store(self) -> WalletStore:
        return self._wallet_store

    def _initialize(self, ctx: RunContext) -> None:
        origin = self._wallet_store.origin()
        if origin is None:
            raise ConfigError.missing("origin wallet")
        ctx.origin = origin

        ctx.precision = ctx.params.precision
        if ctx.precision is None:
            ctx.precision = self._rpc.get_token_decimals(ctx.params.mint)
            logger.info(f"Mint {ctx.params.mint} has {ctx.precision} decimals")

        children = self._wallet_store.create_children(ctx.params.child_count)
        if len(children) != ctx.params.child_count:
            raise ValidationError.invalid(
                "children", f"wallet store created {len(children)} of {ctx.params.child_count}"
            )
        ctx.children = children

    def _fund_with(
        self,
        ctx: RunContext,
        results: List[OperationResult],
        amount: int,
        mint: Optional[str] = None,
    ) -> None:
        destinations = [(child.pubkey, amount) for child in ctx.children]
        funding = self._funder.fund(ctx.origin, destinations, ctx.params.funding, mint=mint)
        results.extend(funding.results)
        if funding.failed_addresses or funding.skipped_addresses:
            raise VolumeError(
                f"Funding incomplete: {len(funding.funded_addresses)} of "
                f"{len(destinations)} wallets funded{f' with {mint}' if mint else ''}",
                ErrorCode.TX_SEND_FAILED,
                details={"failed": list(funding.failed_addresses), "mint": mint},
            )

    def _fund(self, ctx: RunContext, results: List[OperationResult]) -> None:
        self._fund_with(ctx, results, ctx.params.funding_amount)
        if ctx.params.mint is not None:
            self._fund_with(ctx, results, ctx.params.token_funding_amount, ctx.params.mint)

    def _schedule(self, ctx: RunContext, run_id: str) -> None:
        wallets = [child.pubkey for child in ctx.children]
        schedule = self._partitioner.schedule(wallets, ctx.params.total_volume, ctx.precision, ctx.params.mint)
        if self._fee_collector is not None and ctx.params.apply_service_fee:
            ctx.fee_result = self._fee_collector.with_fees(schedule)
            schedule = ctx.fee_result.all_intents
        ctx.schedule = schedule
        self._events.emit(
            EventKind.SCHEDULE_GENERATED,
            run_id=run_id,
            transfers=len(schedule),
            total_volume=ctx.params.total_volume,
            total_fee=ctx.fee_result.total_fee if ctx.fee_result else 0,
        )

    def run(self, params: RunParams) -> RunSummary:
        """
        Execute one run

        Raises:
            ValidationError: Invalid run parameters or an unknown mint
            ConfigError: No origin wallet available
            RpcError: Mint decimals could not be read
        """
        params.validate()
        started_at = datetime.now(timezone.utc)
        results: List[OperationResult] = []
        error: Optional[str] = None

        with CorrelationContext("run") as run_id:
            ctx = RunContext(params=params, engine=self._engine, rpc=self._rpc)
            self._events.emit(
                EventKind.RUN_STARTED,
                run_id=run_id,
                network=self._network,
                strategy=self._strategy.name,
                child_count=params.child_count,
            )

            stage = self._enter(WorkflowStage.INIT, run_id)
            self._initialize(ctx)

            try:
                stage = self._enter(WorkflowStage.FUND, run_id)
                self._fund(ctx, results)

                stage = self._enter(WorkflowStage.SCHEDULE, run_id)
                self._schedule(ctx, run_id)

                stage = self._enter(WorkflowStage.EXECUTE, run_id)
                results.extend(self._strategy.execute(ctx))

                stage = self._enter(WorkflowStage.RECONCILE, run_id)
                results.extend(self._strategy.reconcile(ctx))

                stage = self._enter(WorkflowStage.DONE, run_id)
            except VolumeError as e:
                error = f"{stage.value} stage failed: {e}"
                logger.error(f"[{run_id}] {error}")

            summary = self._summarize(ctx, run_id, stage, results, started_at, error)

        if error is None:
            self._events.emit(EventKind.RUN_COMPLETED, run_id=run_id, status=summary.status.value)
        else:
            self._events.emit(EventKind.RUN_FAILED, run_id=run_id, stage=stage.value, error=error)
        return summary

    def _summarize(
        self,
        ctx: RunContext,
        run_id: str,
        stage: WorkflowStage,
        results: List[OperationResult],
        started_at: datetime,
        error: Optional[str],
    ) -> RunSummary:
        if error is not None:
            status = RunStatus.FAILED
        elif all(r.is_confirmed for r in results):
            status = RunStatus.COMPLETED
        else:
            status = RunStatus.PARTIAL

        numbered = tuple(replace(r, index=i) for i, r in enumerate(results))
        summary = RunSummary(
            run_id=run_id,
            network=self._network,
            strategy=self._strategy.name,
            status=status,
            stage=stage,
            results=numbered,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            error=error,
            children=tuple(child.pubkey for child in ctx.children),
        )
        logger.info(
            f"[{run_id}] Run {status.value}: {summary.confirmed}/{summary.total_operations} confirmed, "
            f"amount={summary.total_amount}, fees={summary.total_fees}"
        )
        return summary
