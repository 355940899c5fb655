"""
Service fee injection

For every non-fee transfer a separate fee transfer to the service wallet is
inserted directly after it. Fees use integer division and are never below
one lamport.
"""

import logging
from typing import Optional, Sequence

from ..errors import ConfigError
from ..types import FeeCalculationResult, TransferIntent
from ..config import config as global_config

logger = logging.getLogger(__name__)


def _validate_fee_config(numerator: int, denominator: int, destination: Optional[str]) -> None:
    if denominator <= 0:
        raise ConfigError.invalid("fee_denominator", f"must be positive, got {denominator}")
    if numerator >= denominator:
        raise ConfigError.invalid(
            "fee_numerator", f"{numerator} must be smaller than denominator {denominator}"
        )
    if not destination:
        raise ConfigError.missing("fee_destination")


def calculate_fee(amount: int, numerator: int, denominator: int) -> int:
    """max(1, amount * numerator // denominator)"""
    return max(1, amount * numerator // denominator)


def with_fees(
    intents: Sequence[TransferIntent],
    fee_numerator: int,
    fee_denominator: int,
    fee_destination: Optional[str],
) -> FeeCalculationResult:
    """
    Interleave a fee transfer after each main transfer

    Each fee is paid in the asset of its transfer (lamports or the same token).

    Intents already flagged as fees are passed through untouched.

    Args:
        intents: Transfers to charge
        fee_numerator: Fee rate numerator
        fee_denominator: Fee rate denominator
        fee_destination: Service wallet receiving the fees

    Returns:
        FeeCalculationResult(all_intents, total_amount, total_fee)

    Raises:
        ConfigError: Invalid rate or missing destination
    """
    _validate_fee_config(fee_numerator, fee_denominator, fee_destination)

    all_intents = []
    total_amount = 0
    total_fee = 0

    for intent in intents:
        all_intents.append(intent)
        if intent.is_fee:
            continue

        fee = calculate_fee(intent.amount, fee_numerator, fee_denominator)
        all_intents.append(
            TransferIntent(
                source=intent.source,
                destination=fee_destination,
                amount=fee,
                is_fee=True,
                mint=intent.mint,
            )
        )
        total_amount += intent.amount
        total_fee += fee

    logger.debug(
        f"Applied service fees: {len(intents)} intents, total_amount={total_amount}, total_fee={total_fee}"
    )
    return FeeCalculationResult(all_intents=all_intents, total_amount=total_amount, total_fee=total_fee)


class FeeCollector:
    """
    Service fee settings bound to one destination

    Usage:
        collector = FeeCollector(1, 1000, "FeeWallet...")
        result = collector.with_fees(intents)
    """

    def __init__(
        self,
        fee_numerator: Optional[int] = None,
        fee_denominator: Optional[int] = None,
        fee_destination: Optional[str] = None,
    ):
        fee_config = global_config.fee
        self.fee_numerator = fee_numerator if fee_numerator is not None else fee_config.service_fee_numerator
        self.fee_denominator = fee_denominator if fee_denominator is not None else fee_config.service_fee_denominator
        self.fee_destination = fee_destination if fee_destination is not None else fee_config.service_fee_wallet
        _validate_fee_config(self.fee_numerator, self.fee_denominator, self.fee_destination)

    @property
    def fee_rate_percent(self) -> float:
        return self.fee_numerator * 100 / self.fee_denominator

    def calculate_fee(self, amount: int) -> int:
        return calculate_fee(amount, self.fee_numerator, self.fee_denominator)

    def with_fees(self, intents: Sequence[TransferIntent]) -> FeeCalculationResult:
        return with_fees(intents, self.fee_numerator, self.fee_denominator, self.fee_destination)
