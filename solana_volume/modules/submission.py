"""
Transaction submission engine

Builds, signs, sends and confirms one transfer unit with bounded retries.

Each attempt:
1. fetches a fresh blockhash (a blockhash is never reused across attempts)
2. attaches the resolved priority fee as a compute unit price
3. signs and sends through the rate-limited RPC client
4. waits for confirmation (websocket push first, polling fallback)

Before every retry, and once before giving up, the signatures of every
attempt sent so far are looked up in one batch, so a transaction that
actually landed is reported instead of being sent again.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from ..errors import (
    ConfirmationTimeoutError,
    ErrorCode,
    RpcError,
    ValidationError,
    VolumeError,
)
from ..types import (
    DRY_RUN_SIGNATURE,
    BlockReference,
    MintInfo,
    OperationResult,
    SignatureStatus,
    TransferIntent,
)
from ..config import config as global_config
from ..infra.events import EventBus, EventKind
from ..infra.retry import CorrelationContext, backoff_delay, log_with_correlation
from ..infra.rpc import RpcClient, classify_ledger_error
from ..infra.solana_signer import Signer
from ..infra.subscription import SignatureSubscriber
from ..infra.tx_builder import TxBuilder
from .fee_oracle import FeeOracle, estimate_network_fee

logger = logging.getLogger(__name__)


@dataclass
class SubmitOptions:
    """
    Per-submission options

    Unset values are filled from the global config (solana_volume.config.TxConfig).

    Attributes:
        skip_preflight: Skip node-side simulation
        max_retries: Retries after the first attempt (default 3)
        retry_delay: Base backoff delay in seconds
        confirmation_timeout: Seconds to wait for confirmation per attempt
        priority_fee: Fixed priority fee (microlamports/CU); oracle optimal fee if None
        check_fee_spike: Skip instead of paying a fee above the spike threshold
        compute_units: Compute unit limit
        commitment: Confirmation level to wait for
        dry_run: Build and sign without sending
    """
    skip_preflight: bool = None
    max_retries: int = None
    retry_delay: float = None
    confirmation_timeout: float = None
    priority_fee: Optional[int] = None
    check_fee_spike: bool = True
    compute_units: int = None
    commitment: str = None
    dry_run: bool = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        tx = global_config.tx
        if self.skip_preflight is None:
            self.skip_preflight = tx.skip_preflight
        if self.max_retries is None:
            self.max_retries = tx.max_retries
        if self.retry_delay is None:
            self.retry_delay = tx.retry_delay
        if self.confirmation_timeout is None:
            self.confirmation_timeout = tx.confirmation_timeout
        if self.compute_units is None:
            self.compute_units = tx.compute_units
        if self.commitment is None:
            self.commitment = global_config.rpc.commitment
        if self.dry_run is None:
            self.dry_run = tx.dry_run

        if self.max_retries < 0:
            raise ValidationError.invalid("max_retries", "must not be negative")
        if self.confirmation_timeout <= 0:
            raise ValidationError.invalid("confirmation_timeout", "must be positive")
        if self.priority_fee is not None and self.priority_fee < 0:
            raise ValidationError.invalid("priority_fee", "must not be negative")


@dataclass
class _SentAttempt:
    signature: str
    block_reference: BlockReference
    sent_at: float


class SubmissionEngine:
    """
    Submits transfer units with retries and idempotency checks

    Usage:
        engine = SubmissionEngine(rpc, FeeOracle(rpc))
        result = engine.submit(
            TransferIntent(signer.pubkey, "Dest...", 1_000_000),
            signer,
        )
        if result.is_confirmed:
            print(result.signature)

    submit() never raises for transaction failures; the outcome is carried
    by OperationResult.status and OperationResult.error.
    """

    def __init__(
        self,
        rpc: RpcClient,
        fee_oracle: FeeOracle,
        events: Optional[EventBus] = None,
        subscriber: Optional[SignatureSubscriber] = None,
        tx_builder: Optional[TxBuilder] = None,
        fetch_actual_fee: Optional[bool] = None,
    ):
        self._rpc = rpc
        self._fee_oracle = fee_oracle
        self._events = events or EventBus()
        self._subscriber = subscriber
        self._builder = tx_builder or TxBuilder()
        self._fetch_actual_fee = (
            fetch_actual_fee if fetch_actual_fee is not None else global_config.tx.fetch_actual_fee
        )

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def fee_oracle(self) -> FeeOracle:
        return self._fee_oracle

    def submit(
        self,
        intents: Union[TransferIntent, Iterable[TransferIntent]],
        signer: Signer,
        options: Optional[SubmitOptions] = None,
        index: int = 0,
    ) -> OperationResult:
        """
        Submit one transaction carrying every intent, in order

        Args:
            intents: One intent or several sharing the signer as source
            signer: Fee payer and source of every transfer
            options: Submission options
            index: Position reported in the OperationResult

        Returns:
            OperationResult with status CONFIRMED, FAILED or SKIPPED
        """
        options = options or SubmitOptions()
        if isinstance(intents, TransferIntent):
            intents = [intents]
        else:
            intents = list(intents)
        result = OperationResult.for_intents(index, intents)

        with CorrelationContext("submit"):
            try:
                self._validate(intents, signer)
                mints = self._resolve_mints(intents)
            except (ValidationError, RpcError) as e:
                return self._finish_failed(result, e, signature=None)

            priority_fee = self._resolve_priority_fee(result, options)
            if priority_fee is None:
                return result

            return self._run_attempts(result, intents, signer, options, priority_fee, mints)

    def _validate(self, intents: List[TransferIntent], signer: Signer) -> None:
        if not intents:
            raise ValidationError.invalid("intents", "at least one transfer is required")
        payer = getattr(signer, "pubkey", None)
        if not payer:
            raise ValidationError.invalid("signer", "signer has no public key")
        for intent in intents:
            if intent.source != payer:
                raise ValidationError.invalid(
                    "source", f"intent source {intent.source} is not the signer {payer}"
                )

    def _resolve_mints(self, intents: List[TransferIntent]) -> Dict[str, MintInfo]:
        return {
            intent.mint: self._rpc.get_mint_info(intent.mint)
            for intent in intents
            if intent.is_token
        }

    def _resolve_priority_fee(self, result: OperationResult, options: SubmitOptions) -> Optional[int]:
        """Fee to pay, or None after marking the result SKIPPED on a spike"""
        if options.priority_fee is not None and not options.check_fee_spike:
            return options.priority_fee

        quote = self._fee_oracle.quote()
        fee = options.priority_fee if options.priority_fee is not None else quote.optimal

        if options.check_fee_spike and quote.is_spike(fee):
            reason = (
                f"Priority fee {fee} exceeds spike threshold {quote.spike_threshold} "
                f"(current {quote.current}); not submitting"
            )
            log_with_correlation(logging.WARNING, reason, "submit", index=result.index)
            self._events.emit(
                EventKind.FEE_SPIKE_DETECTED,
                index=result.index,
                fee=fee,
                threshold=quote.spike_threshold,
                current=quote.current,
            )
            result.skip(reason, ErrorCode.TX_FEE_SPIKE.value)
            return None
        return fee

    def _run_attempts(
        self,
        result: OperationResult,
        intents: List[TransferIntent],
        signer: Signer,
        options: SubmitOptions,
        priority_fee: int,
        mints: Dict[str, MintInfo],
    ) -> OperationResult:
        max_attempts = options.max_retries + 1
        payer = signer.pubkey
        sent: List[_SentAttempt] = []
        last_error: Optional[VolumeError] = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                if sent and self._resolve_sent(result, sent, options, priority_fee):
                    return result
                delay = backoff_delay(last_error, attempt - 1, options.retry_delay)
                log_with_correlation(
                    logging.WARNING,
                    f"Retrying in {delay:.2f}s after: {last_error}",
                    "submit",
                    attempt,
                    max_attempts,
                    index=result.index,
                )
                self._events.emit(
                    EventKind.TX_RETRY,
                    index=result.index,
                    attempt=attempt,
                    delay=delay,
                    error=str(last_error),
                )
                time.sleep(delay)

            result.attempts = attempt
            try:
                block_reference = self._rpc.get_latest_block_reference(options.commitment)
                unsigned = self._builder.build_transfer(
                    payer,
                    intents,
                    block_reference,
                    priority_fee=priority_fee,
                    compute_units=options.compute_units,
                    mints=mints,
                )
                signed, signature = signer.sign_transaction(unsigned)

                if options.dry_run:
                    log_with_correlation(
                        logging.INFO,
                        f"Dry run: built and signed {signature}, not sending",
                        "submit",
                        attempt,
                        max_attempts,
                    )
                    return result.skip(
                        "Dry run: transaction built and signed but not sent",
                        signature=DRY_RUN_SIGNATURE,
                    )

                # Recorded before sending: a send that times out may still land
                attempt_record = _SentAttempt(signature, block_reference, time.monotonic())
                sent.append(attempt_record)
                sent_signature = self._rpc.send_raw_transaction(
                    signed,
                    skip_preflight=options.skip_preflight,
                    preflight_commitment=options.commitment,
                )
                if sent_signature != signature:
                    logger.warning(f"Node returned signature {sent_signature}, expected {signature}")

                log_with_correlation(
                    logging.INFO,
                    f"Sent {signature} ({len(intents)} transfers, priority fee {priority_fee})",
                    "submit",
                    attempt,
                    max_attempts,
                )
                self._events.emit(EventKind.TX_SENT, index=result.index, signature=signature, attempt=attempt)

                status = self._await_confirmation(signature, block_reference, options)
                if status.is_failed:
                    raise classify_ledger_error(status.err, signature=signature)

                return self._finish_confirmed(result, attempt_record, priority_fee, options)

            except VolumeError as e:
                last_error = e
                log_with_correlation(
                    logging.WARNING if e.recoverable else logging.ERROR,
                    f"Attempt failed: {e}",
                    "submit",
                    attempt,
                    max_attempts,
                    error_type="recoverable" if e.recoverable else "fatal",
                )
                if not e.recoverable:
                    break

            except Exception as e:
                logger.exception("Unexpected error during submission")
                last_error = VolumeError(
                    f"Unexpected error: {e}",
                    ErrorCode.TX_SEND_FAILED,
                    recoverable=False,
                    original_error=e,
                )
                break

        # A later attempt can fail because an earlier one already moved the funds
        if sent and self._resolve_sent(result, sent, options, priority_fee):
            return result

        if last_error.recoverable and sent:
            message = f"Gave up after {result.attempts} attempts: {last_error}"
        else:
            message = str(last_error)

        return self._finish_failed(
            result,
            last_error,
            signature=sent[-1].signature if sent else None,
            message=message,
        )

    def _await_confirmation(
        self,
        signature: str,
        block_reference: BlockReference,
        options: SubmitOptions,
    ) -> SignatureStatus:
        """
        Wait for the signature to reach options.commitment

        Raises:
            ConfirmationTimeoutError: No definitive answer within the timeout
            StaleReferenceError: Blockhash expired before the transaction landed
        """
        timeout = options.confirmation_timeout
        deadline = time.monotonic() + timeout

        if self._subscriber is not None:
            try:
                status = self._subscriber.wait_for_signature(signature, options.commitment, timeout)
                if status is not None:
                    return status
                logger.info(f"No notification for {signature}, polling status")
            except RpcError as e:
                logger.warning(f"Subscription failed for {signature}, polling status: {e}")

        remaining = max(deadline - time.monotonic(), 0.0)
        status = self._rpc.confirm_transaction(
            signature,
            block_reference,
            commitment=options.commitment,
            timeout_seconds=remaining,
        )
        if status is None:
            raise ConfirmationTimeoutError(signature, timeout)
        return status

    def _resolve_sent(
        self,
        result: OperationResult,
        sent: List[_SentAttempt],
        options: SubmitOptions,
        priority_fee: int,
    ) -> bool:
        """
        Settle the result from the on-chain status of every attempt sent so far

        Any earlier attempt may still land while its blockhash is valid, so
        all signatures are checked in one batch. A landed attempt without an
        error wins over one that landed with an error.

        Returns True when the result reached a terminal state (landed and
        confirmed, or landed with an error) and must not be resent.
        """
        signatures = [attempt.signature for attempt in sent]
        try:
            statuses = self._rpc.get_signature_statuses(signatures, search_history=True)
        except RpcError as e:
            logger.debug(f"Status check for {len(signatures)} attempts failed: {e}")
            return False

        landed = [(a, s) for a, s in zip(sent, statuses) if s is not None]
        if not landed:
            return False

        succeeded = [(a, s) for a, s in landed if not s.is_failed]
        if not succeeded:
            attempt, status = landed[0]
            error = classify_ledger_error(status.err, signature=attempt.signature)
            self._finish_failed(result, error, signature=attempt.signature)
            return True

        attempt, status = succeeded[0]
        if not status.reached(options.commitment):
            # Landed but not yet at the requested level; wait for it instead of resending
            try:
                status = self._rpc.confirm_transaction(
                    attempt.signature,
                    attempt.block_reference,
                    commitment=options.commitment,
                    timeout_seconds=options.confirmation_timeout,
                )
            except RpcError as e:
                logger.debug(f"Waiting on {attempt.signature} failed: {e}")
                return False
            if status is None:
                return False
            if status.is_failed:
                error = classify_ledger_error(status.err, signature=attempt.signature)
                self._finish_failed(result, error, signature=attempt.signature)
                return True

        log_with_correlation(
            logging.INFO,
            f"Attempt {attempt.signature} already landed; not resending",
            "submit",
            index=result.index,
        )
        self._finish_confirmed(result, attempt, priority_fee, options)
        return True

    def _network_fee(self, signature: str, priority_fee: int, options: SubmitOptions) -> int:
        estimate = estimate_network_fee(priority_fee, options.compute_units)
        if not self._fetch_actual_fee:
            return estimate
        try:
            actual = self._rpc.get_transaction_fee(signature)
        except VolumeError as e:
            logger.debug(f"Fee lookup for {signature} failed, using estimate {estimate}: {e}")
            return estimate
        return actual if actual is not None else estimate

    def _finish_confirmed(
        self,
        result: OperationResult,
        attempt: _SentAttempt,
        priority_fee: int,
        options: SubmitOptions,
    ) -> OperationResult:
        latency_ms = int((time.monotonic() - attempt.sent_at) * 1000)
        fee = self._network_fee(attempt.signature, priority_fee, options)
        result.confirm(attempt.signature, latency_ms, fee)
        log_with_correlation(
            logging.INFO,
            f"Confirmed {attempt.signature} in {latency_ms}ms (fee {fee} lamports)",
            "submit",
            index=result.index,
        )
        self._events.emit(
            EventKind.TX_CONFIRMED,
            index=result.index,
            signature=attempt.signature,
            latency_ms=latency_ms,
            attempts=result.attempts,
        )
        return result

    def _finish_failed(
        self,
        result: OperationResult,
        error: VolumeError,
        signature: Optional[str],
        message: Optional[str] = None,
    ) -> OperationResult:
        result.fail(message or str(error), error.code.value, signature=signature)
        self._events.emit(
            EventKind.TX_FAILED,
            index=result.index,
            error=result.error,
            error_code=result.error_code,
            signature=signature,
        )
        return result
