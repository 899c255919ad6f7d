"""Advance pricing — cumulative running price per advance round.

R(n) is the highest table price seen across rounds 1..n, so a later
round with a lower table entry never lowers what a grower is owed.
Each round pays the increment over what earlier rounds already paid:

    round 1:  R(1)
    round 2:  R(2) − paid(1)
    round 3:  R(3) − max(R(2), paid(1))

floored at 0.  Money is rounded half away from zero to cents.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Iterable, Sequence

from app.middleware.exceptions import ValidationError
from app.models.receipt import ADVANCE_ROUNDS

if TYPE_CHECKING:
    from datetime import date

    from app.services.providers import PriceProvider

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def round_money(value: Decimal | int | str) -> Decimal:
    """Round to cents, half away from zero (2.005 → 2.01, −2.005 → −2.01)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return round_money(Decimal(quantity) * Decimal(unit_price))


def validate_round(round_number: int) -> None:
    if round_number not in ADVANCE_ROUNDS:
        raise ValidationError(
            f"Advance number must be one of {ADVANCE_ROUNDS}, got {round_number}",
            error_code="INVALID_ADVANCE_NUMBER",
        )


def cumulative_max(prices: Iterable[Decimal]) -> list[Decimal]:
    """Running maximum of per-round table prices: [R(1), R(2), ...]."""
    running: list[Decimal] = []
    highest = ZERO
    for price in prices:
        highest = max(highest, Decimal(price))
        running.append(highest)
    return running


def advance_round_price(
    round_number: int,
    running: Sequence[Decimal],
    paid_round1: Decimal | None = None,
) -> Decimal:
    """Unit price payable for *round_number*, given the running prices.

    `running` must hold at least R(1)..R(round_number).  `paid_round1` is
    the unit price on the receipt's active round-1 allocation.
    """
    validate_round(round_number)
    if len(running) < round_number:
        raise ValidationError(
            f"Need {round_number} running prices, got {len(running)}"
        )

    paid = paid_round1 if paid_round1 is not None else ZERO
    if round_number == 1:
        price = running[0]
    elif round_number == 2:
        price = running[1] - paid
    else:
        price = running[2] - max(running[1], paid)

    return max(price, ZERO)


async def table_prices(
    prices: PriceProvider,
    schedule_id: int,
    upto_round: int,
    currency: str,
    price_level: int,
    grade: int | None,
) -> list[Decimal]:
    """Raw table price for each round 1..upto_round."""
    validate_round(upto_round)
    return [
        await prices.advance_price(schedule_id, n, currency, price_level, grade)
        for n in range(1, upto_round + 1)
    ]


async def running_advance_price(
    prices: PriceProvider,
    product: str,
    process: str,
    on_date: date,
    upto_round: int,
    currency: str,
    price_level: int,
    grade: int | None,
) -> Decimal:
    """R(upto_round) for a receipt; 0 when no schedule covers the date."""
    validate_round(upto_round)
    schedule_id = await prices.find_price_schedule_id(product, process, on_date)
    if schedule_id is None:
        logger.warning(
            f"No price schedule for {product}/{process} on {on_date}",
            extra={"product": product, "process_code": process},
        )
        return ZERO

    per_round = await table_prices(
        prices, schedule_id, upto_round, currency, price_level, grade
    )
    return cumulative_max(per_round)[-1]
