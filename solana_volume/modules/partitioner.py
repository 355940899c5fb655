"""
Amount partitioning for volume schedules

Splits a total volume into n pairwise-distinct integer amounts, each at
least a precision-derived floor, summing exactly to the total. Integer
arithmetic only.
"""

import logging
import random
from bisect import bisect_left, insort
from typing import List, Optional, Sequence

from ..errors import DomainError, PartitionError, ValidationError
from ..types import TransferIntent

logger = logging.getLogger(__name__)

# Cut-point draws allowed per requested amount
ATTEMPTS_PER_AMOUNT = 10


def precision_floor(precision: int) -> int:
    """Smallest amount a wallet may receive: 10^max(0, precision - 2)"""
    if isinstance(precision, bool) or not isinstance(precision, int):
        raise DomainError(f"precision must be an integer, got {precision!r}", field_name="precision")
    if precision < 0:
        raise DomainError(f"precision must not be negative, got {precision}", field_name="precision")
    return 10 ** max(0, precision - 2)


def verify(amounts: Sequence[int], total: int, floor: int) -> bool:
    """True when amounts are pairwise distinct, all >= floor and sum to total"""
    if len(set(amounts)) != len(amounts):
        return False
    if any(a < floor for a in amounts):
        return False
    return sum(amounts) == total


def _amounts_from_cuts(cuts: Sequence[int], total: int) -> List[int]:
    bounds = [0, *cuts, total]
    return [bounds[i + 1] - bounds[i] for i in range(len(bounds) - 1)]


def _first_duplicate(amounts: Sequence[int]) -> Optional[int]:
    seen = set()
    for i, amount in enumerate(amounts):
        if amount in seen:
            return i
        seen.add(amount)
    return None


class AmountPartitioner:
    """
    Random partition generator

    Usage:
        partitioner = AmountPartitioner()
        amounts = partitioner.partition(3, 1_000_000_000, 9)
        intents = partitioner.build_schedule(wallets, amounts)

    Pass a seeded random.Random for reproducible schedules.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.SystemRandom()

    def _validate(self, n: int, total: int, precision: int) -> int:
        if isinstance(n, bool) or not isinstance(n, int) or n < 2:
            raise DomainError(f"wallet count must be an integer >= 2, got {n!r}", field_name="n")
        if isinstance(total, bool) or not isinstance(total, int) or total <= 0:
            raise DomainError(f"total volume must be a positive integer, got {total!r}", field_name="total")
        floor = precision_floor(precision)
        if total < n * floor:
            raise DomainError(
                f"total {total} cannot give {n} wallets at least {floor} each "
                f"(needs >= {n * floor})",
                field_name="total",
            )
        return floor

    def partition(self, n: int, total: int, precision: int) -> List[int]:
        """
        Split total into n distinct amounts

        Cut points are drawn uniformly from [floor, total - floor] and kept
        at least floor apart, so every difference is >= floor. A full set
        whose differences repeat gives up one offending cut and keeps
        drawing. All draws share a budget of 10 * n.

        Args:
            n: Number of wallets (>= 2)
            total: Total volume in base units
            precision: Token decimals; the floor is 10^max(0, precision - 2)

        Returns:
            n amounts in random order

        Raises:
            DomainError: n < 2, total <= 0 or total < n * floor
            PartitionError: No valid partition found within the budget
        """
        floor = self._validate(n, total, precision)

        # n distinct values >= floor need at least floor, floor+1, ..., floor+n-1
        min_total = n * floor + n * (n - 1) // 2
        if total < min_total:
            raise PartitionError(
                f"total {total} is too small for {n} distinct amounts >= {floor} "
                f"(needs >= {min_total})",
                attempts=0,
            )

        budget = ATTEMPTS_PER_AMOUNT * n
        low, high = floor, total - floor
        cuts: List[int] = []

        for _ in range(budget):
            candidate = self._rng.randint(low, high)

            idx = bisect_left(cuts, candidate)
            if idx > 0 and candidate - cuts[idx - 1] < floor:
                continue
            if idx < len(cuts) and cuts[idx] - candidate < floor:
                continue
            insort(cuts, candidate)

            if len(cuts) < n - 1:
                continue

            amounts = _amounts_from_cuts(cuts, total)
            dup = _first_duplicate(amounts)
            if dup is None:
                self._rng.shuffle(amounts)
                return amounts

            # amount[dup] is bounded on the right by cuts[dup] unless it is the last one
            cuts.pop(dup if dup < len(cuts) else dup - 1)

        raise PartitionError(
            f"could not partition {total} into {n} distinct amounts >= {floor} "
            f"within {budget} attempts",
            attempts=budget,
        )

    def build_schedule(
        self,
        wallets: Sequence[str],
        amounts: Sequence[int],
        mint: Optional[str] = None,
    ) -> List[TransferIntent]:
        """
        Round-robin transfers: wallet[i] sends amounts[i] to wallet[(i + 1) % n]

        Amounts are lamports, or base units of mint when one is given.
        """
        if len(wallets) != len(amounts):
            raise ValidationError.invalid(
                "amounts", f"{len(amounts)} amounts for {len(wallets)} wallets"
            )
        if len(set(wallets)) != len(wallets):
            raise ValidationError.invalid("wallets", "addresses must be unique")

        n = len(wallets)
        return [
            TransferIntent(source=wallets[i], destination=wallets[(i + 1) % n], amount=amounts[i], mint=mint)
            for i in range(n)
        ]

    def schedule(
        self,
        wallets: Sequence[str],
        total: int,
        precision: int,
        mint: Optional[str] = None,
    ) -> List[TransferIntent]:
        """Partition total across wallets and map the amounts round-robin"""
        amounts = self.partition(len(wallets), total, precision)
        logger.info(f"Generated schedule: {len(amounts)} transfers totalling {total}")
        return self.build_schedule(wallets, amounts, mint)


_default_partitioner = AmountPartitioner()


def partition(n: int, total: int, precision: int) -> List[int]:
    """Module-level shortcut for AmountPartitioner().partition()"""
    return _default_partitioner.partition(n, total, precision)
