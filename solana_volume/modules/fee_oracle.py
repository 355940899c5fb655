"""
Priority fee oracle

Turns recent prioritization fee samples into:
- current fee: stable percentile of the samples
- optimal fee: current * optimal_factor / 100 (default 1.2x)
- spike threshold: current * spike_factor / 100 (default 1.5x)

Sampling failures never reach the caller; the oracle falls back to the
configured default fee instead.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..errors import ConfigError, OracleUnavailableError, VolumeError
from ..types import FeeSample
from ..config import config as global_config
from ..infra.rpc import RpcClient

logger = logging.getLogger(__name__)

MICRO_LAMPORTS_PER_LAMPORT = 1_000_000


def estimate_network_fee(
    priority_fee: int,
    compute_units: int,
    signatures: int = 1,
    base_fee: Optional[int] = None,
) -> int:
    """Lamports charged for one transaction: base fee per signature plus priority fee"""
    if base_fee is None:
        base_fee = global_config.tx.base_fee_lamports
    return base_fee * signatures + priority_fee * compute_units // MICRO_LAMPORTS_PER_LAMPORT


def percentile_fee(fees: Sequence[int], percentile: int) -> int:
    """Value at index ceil(percentile / 100 * len) - 1 of the sorted fees"""
    ordered = sorted(fees)
    idx = -(-percentile * len(ordered) // 100) - 1
    idx = min(max(idx, 0), len(ordered) - 1)
    return ordered[idx]


@dataclass(frozen=True)
class FeeQuote:
    """Fee levels derived from one sample fetch (microlamports per CU)"""
    current: int
    optimal: int
    spike_threshold: int
    sample_count: int

    def is_spike(self, fee: int) -> bool:
        return fee > self.spike_threshold


class FeeOracle:
    """
    Priority fee recommendations from recent samples

    Usage:
        oracle = FeeOracle(rpc)
        fee = oracle.optimal_fee()
        if fee > oracle.spike_threshold():
            ...
    """

    def __init__(
        self,
        rpc: RpcClient,
        percentile: Optional[int] = None,
        spike_factor: Optional[int] = None,
        optimal_factor: Optional[int] = None,
        default_fee: Optional[int] = None,
        accounts_hint: Optional[Sequence[str]] = None,
    ):
        fee_config = global_config.fee
        self._rpc = rpc
        self._percentile = percentile if percentile is not None else fee_config.percentile
        self._spike_factor = spike_factor if spike_factor is not None else fee_config.spike_factor
        self._optimal_factor = optimal_factor if optimal_factor is not None else fee_config.optimal_factor
        self._default_fee = default_fee if default_fee is not None else fee_config.default_priority_fee
        self._accounts_hint = list(accounts_hint) if accounts_hint else None

        if not 0 <= self._percentile <= 100:
            raise ConfigError.invalid("percentile", f"must be within 0..100, got {self._percentile}")
        if self._spike_factor <= 0 or self._optimal_factor <= 0:
            raise ConfigError.invalid("fee factors", "must be positive")
        if self._default_fee < 0:
            raise ConfigError.invalid("default_fee", "must not be negative")
        if self._optimal_factor >= self._spike_factor:
            logger.warning(
                f"optimal_factor {self._optimal_factor} >= spike_factor {self._spike_factor}: "
                f"optimal fees will be reported as spikes"
            )

    @property
    def default_fee(self) -> int:
        return self._default_fee

    def _fetch_samples(self) -> List[FeeSample]:
        try:
            return self._rpc.get_recent_priority_fee_samples(self._accounts_hint)
        except VolumeError as e:
            raise OracleUnavailableError(f"Priority fee samples unavailable: {e}", original_error=e) from e

    def recent_fee_samples(self) -> List[FeeSample]:
        """Recent samples, empty when the RPC call fails"""
        try:
            return self._fetch_samples()
        except OracleUnavailableError as e:
            logger.warning(f"{e}; using default fee {self._default_fee}")
            return []

    def _current_from(self, samples: Sequence[FeeSample]) -> int:
        if not samples:
            return self._default_fee
        return percentile_fee([s.fee for s in samples], self._percentile)

    def _optimal_from(self, current: int) -> int:
        return current * self._optimal_factor // 100

    def _threshold_from(self, current: int) -> int:
        threshold = current * self._spike_factor // 100
        # Integer rounding collapses both levels for near-zero fees
        if self._spike_factor > self._optimal_factor:
            threshold = max(threshold, self._optimal_from(current) + 1)
        return threshold

    def current_fee(self) -> int:
        return self._current_from(self.recent_fee_samples())

    def spike_threshold(self) -> int:
        return self._threshold_from(self.current_fee())

    def optimal_fee(self) -> int:
        return self._optimal_from(self.current_fee())

    def quote(self) -> FeeQuote:
        """All fee levels from a single sample fetch"""
        samples = self.recent_fee_samples()
        current = self._current_from(samples)
        quote = FeeQuote(
            current=current,
            optimal=self._optimal_from(current),
            spike_threshold=self._threshold_from(current),
            sample_count=len(samples),
        )
        logger.debug(
            f"Fee quote: current={quote.current}, optimal={quote.optimal}, "
            f"threshold={quote.spike_threshold}, samples={quote.sample_count}"
        )
        return quote

    def is_spike(self, fee: int) -> bool:
        return fee > self.spike_threshold()
