"""
Batch funding

Sends lamports (or one SPL token) from one source wallet to many
destinations, several transfers per transaction. Chunks are submitted one after another; each
chunk reaches a terminal state before the next one starts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from ..errors import (
    ErrorCode,
    InsufficientBalanceError,
    RpcError,
    ValidationError,
)
from ..types import FundingResult, OperationResult, TransferIntent
from ..config import config as global_config
from ..infra.events import EventBus, EventKind
from ..infra.retry import CorrelationContext
from ..infra.rpc import RpcClient
from ..infra.solana_signer import Signer
from .fee_oracle import estimate_network_fee
from .submission import SubmissionEngine, SubmitOptions

logger = logging.getLogger(__name__)


@dataclass
class FundingOptions:
    """
    Batch funding options

    Unset values are filled from the global config (solana_volume.config.FundingConfig).
    """
    max_per_chunk: int = None
    recheck_balance: bool = None
    continue_on_error: bool = None
    submit: Optional[SubmitOptions] = None

    def __post_init__(self):
        funding = global_config.funding
        if self.max_per_chunk is None:
            self.max_per_chunk = funding.max_per_chunk
        if self.recheck_balance is None:
            self.recheck_balance = funding.recheck_balance
        if self.continue_on_error is None:
            self.continue_on_error = funding.continue_on_error
        if self.submit is None:
            self.submit = SubmitOptions()
        if self.max_per_chunk < 1:
            raise ValidationError.invalid("max_per_chunk", "must be at least 1")


def chunk_intents(intents: Sequence[TransferIntent], size: int) -> List[List[TransferIntent]]:
    return [list(intents[i:i + size]) for i in range(0, len(intents), size)]


class BatchFunder:
    """
    Funds many wallets from one source

    Usage:
        funder = BatchFunder(engine, rpc)
        result = funder.fund(source_signer, [("Dest1...", 10_000_000), ("Dest2...", 20_000_000)])
        print(result.successful_transactions, result.failed_addresses)
    """

    def __init__(
        self,
        engine: SubmissionEngine,
        rpc: RpcClient,
        events: Optional[EventBus] = None,
    ):
        self._engine = engine
        self._rpc = rpc
        self._events = events or engine.events

    def _priority_fee(self, options: SubmitOptions) -> int:
        if options.priority_fee is not None:
            return options.priority_fee
        return self._engine.fee_oracle.optimal_fee()

    def estimate_fees(self, transaction_count: int, options: SubmitOptions) -> int:
        """Fee reserve for transaction_count transactions at the current priority fee"""
        per_tx = estimate_network_fee(self._priority_fee(options), options.compute_units)
        return per_tx * transaction_count

    def _build_intents(
        self,
        source: str,
        destinations: Sequence[Tuple[str, int]],
        mint: Optional[str] = None,
    ) -> List[TransferIntent]:
        if not destinations:
            raise ValidationError.invalid("destinations", "at least one destination is required")
        seen = set()
        intents = []
        for address, amount in destinations:
            if address == source:
                raise ValidationError.invalid("destinations", f"source {source} cannot fund itself")
            if address in seen:
                raise ValidationError.invalid("destinations", f"duplicate destination {address}")
            seen.add(address)
            intents.append(TransferIntent(source=source, destination=address, amount=amount, mint=mint))
        return intents

    def _requirements(
        self,
        intents: Sequence[TransferIntent],
        transaction_count: int,
        options: SubmitOptions,
        mint: Optional[str],
    ) -> Tuple[int, int]:
        """(lamports, token base units) the source needs to send intents"""
        fee_reserve = self.estimate_fees(transaction_count, options)
        amount = sum(i.amount for i in intents)
        if mint is None:
            return amount + fee_reserve, 0
        # Each destination may need its associated token account created
        rent = global_config.workflow.token_account_rent_lamports * len(intents)
        return fee_reserve + rent, amount

    def _check_balances(self, source: str, lamports: int, tokens: int, mint: Optional[str]) -> int:
        """Raise InsufficientBalanceError when source cannot cover the requirements"""
        balance = self._rpc.get_balance(source)
        if balance < lamports:
            raise InsufficientBalanceError.for_transfer(source, lamports, balance)
        if mint is not None:
            token_balance = self._rpc.get_token_balance(source, mint)
            if token_balance < tokens:
                raise InsufficientBalanceError.for_token(source, mint, tokens, token_balance)
        return balance

    def fund(
        self,
        source: Signer,
        destinations: Sequence[Tuple[str, int]],
        options: Optional[FundingOptions] = None,
        mint: Optional[str] = None,
    ) -> FundingResult:
        """
        Fund destinations in chunks of at most max_per_chunk transfers

        Setup problems raise before anything is sent: bad destinations, a
        source balance below the amounts plus the fee reserve, or a failed
        initial balance read. Once sending starts, every chunk outcome
        (including a failed balance re-check) is recorded in the result and
        nothing is raised.

        With a mint, destinations receive that token and the source must also
        hold enough SOL for fees and new token accounts.

        Args:
            source: Signer of the funding wallet
            destinations: (address, amount) pairs; lamports, or token base units with a mint
            options: Funding options
            mint: SPL token mint to send instead of SOL

        Returns:
            FundingResult with one OperationResult per chunk

        Raises:
            ValidationError: Empty, duplicated or malformed destinations, or an unknown mint
            InsufficientBalanceError: Balance below amounts plus fee reserve
            RpcError: The initial balance could not be read
        """
        options = options or FundingOptions()
        submit_options = options.submit
        intents = self._build_intents(source.pubkey, destinations, mint)
        chunks = chunk_intents(intents, options.max_per_chunk)

        with CorrelationContext("fund") as cid:
            total_amount = sum(i.amount for i in intents)
            lamports, tokens = self._requirements(intents, len(chunks), submit_options, mint)
            balance = self._check_balances(source.pubkey, lamports, tokens, mint)

            logger.info(
                f"[{cid}] Funding {len(intents)} wallets in {len(chunks)} chunks: "
                f"amount={total_amount}{f' of {mint}' if mint else ''}, "
                f"lamports_required={lamports}, balance={balance}"
            )
            result = FundingResult(source=source.pubkey, started_at=datetime.now(timezone.utc))
            self._events.emit(
                EventKind.FUNDING_STARTED,
                source=source.pubkey,
                destinations=len(intents),
                chunks=len(chunks),
                total_amount=total_amount,
                mint=mint,
            )

            aborted = False
            for index, chunk in enumerate(chunks):
                if aborted:
                    op = OperationResult.for_intents(index, chunk)
                    op.skip("Skipped after an earlier chunk failed")
                    result.record(op, chunk)
                    continue

                self._events.emit(EventKind.CHUNK_STARTED, index=index, size=len(chunk))
                op = self._fund_chunk(
                    source, chunk, index, submit_options, options.recheck_balance and index > 0, mint
                )
                result.record(op, chunk)
                self._events.emit(
                    EventKind.CHUNK_COMPLETED,
                    index=index,
                    status=op.status.value,
                    signature=op.signature,
                    error=op.error,
                )

                if not op.is_confirmed and not options.continue_on_error:
                    logger.warning(f"[{cid}] Chunk {index} did not confirm; stopping batch")
                    aborted = True

            result.finished_at = datetime.now(timezone.utc)

        logger.info(
            f"Funding finished: {result.successful_transactions}/{result.total_transactions} chunks confirmed, "
            f"funded={result.total_funded_amount}, fees={result.total_fees}"
        )
        self._events.emit(
            EventKind.FUNDING_COMPLETED,
            source=source.pubkey,
            successful=result.successful_transactions,
            failed=result.failed_transactions,
            skipped=result.skipped_transactions,
            total_funded_amount=result.total_funded_amount,
        )
        return result

    def _fund_chunk(
        self,
        source: Signer,
        chunk: List[TransferIntent],
        index: int,
        options: SubmitOptions,
        recheck_balance: bool,
        mint: Optional[str] = None,
    ) -> OperationResult:
        if recheck_balance:
            lamports, tokens = self._requirements(chunk, 1, options, mint)
            try:
                self._check_balances(source.pubkey, lamports, tokens, mint)
            except InsufficientBalanceError as error:
                op = OperationResult.for_intents(index, chunk)
                op.fail(str(error), ErrorCode.TX_INSUFFICIENT_BALANCE.value)
                logger.error(f"Chunk {index} not sent: {error}")
                return op
            except RpcError as e:
                logger.warning(f"Balance re-check before chunk {index} failed, submitting anyway: {e}")

        return self._engine.submit(chunk, source, options, index=index)
