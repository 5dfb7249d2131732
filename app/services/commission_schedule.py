"""
Commission Schedule Generator.

Splits a lump-sum grant into randomized daily installments:
- every day receives at least one unit
- the installments sum exactly to the grant (integer minor units, no floats)
- the random source is injectable so a fixed seed gives a fixed schedule
"""

import random
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from app.services.commission_errors import InsufficientAmountForDays, InvalidScheduleInput

DEFAULT_MAX_DAYS = 365
# Largest amount a BIGINT column holds
MAX_TOTAL_AMOUNT = 2**63 - 1
DEFAULT_WEIGHT_MIN = 500   # permille, i.e. 0.5
DEFAULT_WEIGHT_MAX = 1500  # permille, i.e. 1.5


@dataclass(frozen=True)
class PlannedPayout:
    day_number: int
    amount: int
    scheduled_date: date


def _require_int(value, field: str) -> int:
    # bool is an int subclass; True days is not a schedule
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidScheduleInput(f"{field} must be an integer number of units, got {value!r}")
    return value


def split_amount(
    total_amount: int,
    days: int,
    rng: random.Random,
    weight_min: int = DEFAULT_WEIGHT_MIN,
    weight_max: int = DEFAULT_WEIGHT_MAX,
) -> List[int]:
    """Split `total_amount` into `days` positive integer shares. Caller validates inputs."""
    shares = [1] * days
    extra = total_amount - days
    if extra == 0:
        return shares

    weights = [rng.randint(weight_min, weight_max) for _ in range(days)]
    weight_sum = sum(weights)

    for i, weight in enumerate(weights):
        shares[i] += extra * weight // weight_sum

    # Floor leftovers go out one unit at a time starting from day 1
    remainder = total_amount - sum(shares)
    for i in range(remainder):
        shares[i % days] += 1

    return shares


def validate_schedule_input(
    total_amount: int,
    days: int,
    *,
    max_days: int = DEFAULT_MAX_DAYS,
    max_total_amount: int = MAX_TOTAL_AMOUNT,
) -> None:
    """Raise the error generate_schedule would raise for these inputs, without drawing a schedule."""
    total_amount = _require_int(total_amount, "total_amount")
    days = _require_int(days, "days")

    if total_amount <= 0:
        raise InvalidScheduleInput("total_amount must be greater than 0")
    if total_amount > max_total_amount:
        raise InvalidScheduleInput(f"total_amount must not exceed {max_total_amount}")
    if days < 1 or days > max_days:
        raise InvalidScheduleInput(f"days must be between 1 and {max_days}")
    if total_amount < days:
        raise InsufficientAmountForDays(
            f"total_amount {total_amount} cannot cover {days} days with at least 1 unit per day"
        )


def generate_schedule(
    total_amount: int,
    days: int,
    start_date: date,
    rng: Optional[random.Random] = None,
    *,
    max_days: int = DEFAULT_MAX_DAYS,
    max_total_amount: int = MAX_TOTAL_AMOUNT,
    weight_min: int = DEFAULT_WEIGHT_MIN,
    weight_max: int = DEFAULT_WEIGHT_MAX,
) -> List[PlannedPayout]:
    """
    Build the daily payout plan for a grant.

    Args:
        total_amount: Grant in minor units; 1..max_total_amount
        days: Number of daily installments, 1..max_days
        start_date: Scheduled date of day 1
        rng: Random source; a fresh unseeded one is used when omitted

    Raises:
        InvalidScheduleInput: non-integer or out-of-range inputs
        InsufficientAmountForDays: total_amount < days (zero-amount days are not allowed)
    """
    validate_schedule_input(total_amount, days, max_days=max_days, max_total_amount=max_total_amount)

    shares = split_amount(total_amount, days, rng or random.Random(), weight_min, weight_max)

    return [
        PlannedPayout(
            day_number=day,
            amount=amount,
            scheduled_date=start_date + timedelta(days=day - 1),
        )
        for day, amount in enumerate(shares, start=1)
    ]
