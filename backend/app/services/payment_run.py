"""Payment run engine — advance rounds for every eligible receipt.

One calculation core, two entry points:

  perform_test_run    simulate; nothing is written
  process_actual_run  create a Draft batch, then per grower persist
                      allocations, receipt advance tracking and
                      AccountEntry rows and commit

Failure isolation in an actual run:

  receipt without a price schedule   CalculationError on that receipt,
                                     its siblings are still paid
  grower not found                   CalculationError, grower skipped
  DB write fails for a grower        PersistenceError, that grower's
                                     writes roll back, the run goes on
  anything else                      critical RunError, run aborted; growers
                                     already committed stay committed

Growers on hold are skipped without error.  A cancel event is checked
between growers.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    CalculationError, PaymentEngineError, PersistenceError,
)
from app.models.ledger import AccountEntry
from app.models.payment_batch import PaymentBatch
from app.models.receipt import Receipt
from app.services.batch_lifecycle import (
    create_batch, get_advance_payment_type, refresh_batch_totals,
)
from app.services.pricing import (
    ZERO, advance_round_price, cumulative_max, money, table_prices, validate_round,
)
from app.services.providers import (
    GrowerInfo, GrowerProvider, LedgerProvider, PriceProvider, ReceiptProvider,
    SqlGrowerProvider, SqlLedgerProvider, SqlPriceProvider, SqlReceiptProvider,
)
from app.utils.activity import Actor, log_activity

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


# ── Parameters & results ───────────────────────────────────────


@dataclass
class RunParameters:
    round_number: int
    payment_date: date
    cutoff_date: date
    crop_year: int
    exclude_grower_ids: list[str] = field(default_factory=list)
    exclude_pay_groups: list[str] = field(default_factory=list)
    product_codes: list[str] = field(default_factory=list)
    process_codes: list[str] = field(default_factory=list)
    notes: str | None = None

    def validate(self) -> None:
        validate_round(self.round_number)


class ErrorCategory(str, enum.Enum):
    CALCULATION = "calculation"
    PERSISTENCE = "persistence"
    CRITICAL = "critical"
    CANCELLED = "cancelled"


@dataclass
class RunError:
    category: ErrorCategory
    message: str
    grower_id: str | None = None
    receipt_id: str | None = None

    @property
    def retryable(self) -> bool:
        return self.category != ErrorCategory.CRITICAL


@dataclass(frozen=True)
class ReceiptLine:
    """Detached copy of the receipt fields a calculation reads."""
    id: str
    receipt_number: str
    grower_id: str
    product_code: str
    process_code: str
    receipt_date: date
    receipt_time: time | None
    net_weight: Decimal
    grade: int | None
    crop_year: int

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> "ReceiptLine":
        return cls(
            id=receipt.id,
            receipt_number=receipt.receipt_number,
            grower_id=receipt.grower_id,
            product_code=receipt.product_code,
            process_code=receipt.process_code,
            receipt_date=receipt.receipt_date,
            receipt_time=receipt.receipt_time,
            net_weight=Decimal(receipt.net_weight),
            grade=receipt.grade,
            crop_year=receipt.crop_year,
        )


@dataclass
class ReceiptRunResult:
    receipt_id: str
    receipt_number: str
    net_weight: Decimal
    price_schedule_id: int | None = None
    running_price: Decimal = ZERO
    advance_price: Decimal = ZERO
    premium_rate: Decimal = ZERO
    deduction_rate: Decimal = ZERO
    advance_amount: Decimal = ZERO
    premium_amount: Decimal = ZERO
    deduction_amount: Decimal = ZERO
    error: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return self.advance_amount + self.premium_amount + self.deduction_amount


class GrowerOutcome(str, enum.Enum):
    SIMULATED = "simulated"
    PAID = "paid"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class GrowerRunResult:
    grower_id: str
    grower_number: str | None = None
    grower_name: str | None = None
    currency: str | None = None
    outcome: GrowerOutcome = GrowerOutcome.SIMULATED
    receipts: list[ReceiptRunResult] = field(default_factory=list)
    error: str | None = None

    @property
    def paid_receipts(self) -> list[ReceiptRunResult]:
        return [r for r in self.receipts if r.error is None]

    @property
    def total_amount(self) -> Decimal:
        return sum((r.total_amount for r in self.paid_receipts), ZERO)


@dataclass
class PaymentRunResult:
    round_number: int
    test_run: bool
    errors: list[RunError] = field(default_factory=list)
    growers: list[GrowerRunResult] = field(default_factory=list)
    created_batch: PaymentBatch | None = None
    failed_growers: list[str] = field(default_factory=list)
    skipped_growers: list[str] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def receipt_count(self) -> int:
        return sum(
            len(g.paid_receipts) for g in self.growers
            if g.outcome in (GrowerOutcome.SIMULATED, GrowerOutcome.PAID)
        )

    @property
    def total_amount(self) -> Decimal:
        return sum(
            (g.total_amount for g in self.growers
             if g.outcome in (GrowerOutcome.SIMULATED, GrowerOutcome.PAID)),
            ZERO,
        )


@dataclass
class Providers:
    receipts: ReceiptProvider
    prices: PriceProvider
    growers: GrowerProvider
    ledger: LedgerProvider

    @classmethod
    def for_session(cls, db: AsyncSession) -> "Providers":
        return cls(
            receipts=SqlReceiptProvider(db),
            prices=SqlPriceProvider(db),
            growers=SqlGrowerProvider(db),
            ledger=SqlLedgerProvider(db),
        )


# ── Calculation core ───────────────────────────────────────────


async def calculate_receipt(
    providers: Providers,
    receipt: ReceiptLine,
    grower: GrowerInfo,
    round_number: int,
) -> ReceiptRunResult:
    """Price one receipt for *round_number*; errors land on the result."""
    result = ReceiptRunResult(
        receipt_id=receipt.id,
        receipt_number=receipt.receipt_number,
        net_weight=receipt.net_weight,
    )
    prices = providers.prices
    try:
        schedule_id = await prices.find_price_schedule_id(
            receipt.product_code, receipt.process_code, receipt.receipt_date
        )
        if schedule_id is None:
            raise CalculationError(
                f"No price schedule for {receipt.product_code}/{receipt.process_code} "
                f"on {receipt.receipt_date}"
            )
        result.price_schedule_id = schedule_id

        running = cumulative_max(await table_prices(
            prices, schedule_id, round_number,
            grower.currency, grower.price_level, receipt.grade,
        ))
        paid_round1 = None
        if round_number > 1:
            paid_round1 = await providers.receipts.paid_price(receipt.id, 1)
        result.running_price = running[-1]
        result.advance_price = advance_round_price(round_number, running, paid_round1)

        # Premium and marketing deduction ride on the first advance only
        if round_number == 1:
            result.premium_rate = await prices.time_premium(
                schedule_id, receipt.receipt_time, grower.currency
            )
            result.deduction_rate = await prices.marketing_deduction(receipt.product_code)

        result.advance_amount = money(receipt.net_weight, result.advance_price)
        result.premium_amount = money(receipt.net_weight, result.premium_rate)
        result.deduction_amount = -money(receipt.net_weight, result.deduction_rate)
    except PaymentEngineError as exc:
        result.error = exc.message
        logger.warning(
            f"Receipt {receipt.receipt_number} not priced: {exc.message}",
            extra={"receipt_id": receipt.id, "grower_id": receipt.grower_id},
        )
    return result


def _account_entries(
    receipt: ReceiptLine,
    line: ReceiptRunResult,
    grower: GrowerInfo,
    round_number: int,
    batch_id: int,
    entry_date: date,
) -> list[AccountEntry]:
    def entry(entry_type: str, unit_price: Decimal, dollars: Decimal) -> AccountEntry:
        return AccountEntry(
            grower_id=grower.id,
            receipt_id=receipt.id,
            payment_batch_id=batch_id,
            entry_type=entry_type,
            advance_number=round_number,
            entry_date=entry_date,
            crop_year=receipt.crop_year,
            product_code=receipt.product_code,
            process_code=receipt.process_code,
            grade=receipt.grade or 1,
            quantity=receipt.net_weight,
            unit_price=unit_price,
            dollars=dollars,
            currency=grower.currency,
        )

    entries = []
    if line.advance_amount > 0:
        entries.append(entry(f"ADV{round_number}", line.advance_price, line.advance_amount))
    if line.premium_amount > 0:
        entries.append(entry("PREM", line.premium_rate, line.premium_amount))
    if line.deduction_amount != 0:
        entries.append(entry("DED", line.deduction_rate, line.deduction_amount))
    return entries


async def _persist_grower(
    providers: Providers,
    grower: GrowerInfo,
    receipts: dict[str, ReceiptLine],
    grower_result: GrowerRunResult,
    round_number: int,
    batch_id: int,
    payment_type_id: int,
    payment_date: date,
) -> None:
    entries: list[AccountEntry] = []
    for line in grower_result.paid_receipts:
        receipt = receipts[line.receipt_id]
        await providers.receipts.create_allocation(
            receipt.id,
            payment_batch_id=batch_id,
            payment_type_id=payment_type_id,
            price_schedule_id=line.price_schedule_id,
            price_per_unit=line.advance_price,
            quantity=receipt.net_weight,
            amount_paid=line.total_amount,
        )
        recorded = await providers.receipts.record_advance(
            receipt.id, round_number, line.advance_price, batch_id
        )
        if not recorded:
            raise PersistenceError(
                f"Receipt {receipt.receipt_number} already records advance {round_number}"
            )
        entries.extend(_account_entries(
            receipt, line, grower, round_number, batch_id, payment_date
        ))
    await providers.ledger.add_entries(entries)


def _report(progress: ProgressCallback | None, message: str) -> None:
    logger.debug(message)
    if progress is not None:
        progress(message)


async def _run(
    db: AsyncSession,
    params: RunParameters,
    *,
    actor: Actor | None,
    providers: Providers | None,
    progress: ProgressCallback | None,
    cancel: asyncio.Event | None,
) -> PaymentRunResult:
    params.validate()
    test_run = actor is None
    providers = providers or Providers.for_session(db)
    round_number = params.round_number
    result = PaymentRunResult(round_number=round_number, test_run=test_run)

    payment_type = await get_advance_payment_type(db, round_number)
    payment_type_id = payment_type.id
    type_code = payment_type.type_code

    _report(progress, f"Loading eligible receipts for {type_code}")
    receipts = [
        ReceiptLine.from_receipt(r)
        for r in await providers.receipts.eligible_receipts(
            round_number,
            params.crop_year,
            params.cutoff_date,
            exclude_grower_ids=params.exclude_grower_ids,
            exclude_pay_groups=params.exclude_pay_groups,
            product_codes=params.product_codes,
            process_codes=params.process_codes,
        )
    ]
    if not receipts:
        _report(progress, "No eligible receipts")
        logger.info(f"{type_code} run: no eligible receipts for crop year {params.crop_year}")
        return result

    by_grower: dict[str, list[ReceiptLine]] = {}
    for receipt in receipts:
        by_grower.setdefault(receipt.grower_id, []).append(receipt)
    receipt_index = {r.id: r for r in receipts}

    batch_id: int | None = None
    batch_number: str | None = None
    if not test_run:
        batch = await create_batch(
            db, actor,
            payment_type_id=payment_type_id,
            crop_year=params.crop_year,
            batch_date=params.payment_date,
            cutoff_date=params.cutoff_date,
            notes=params.notes,
        )
        await db.commit()
        batch_id, batch_number = batch.id, batch.batch_number
        _report(progress, f"Created batch {batch_number}")

    current_grower: str | None = None
    total = len(by_grower)
    try:
        for position, (grower_id, grower_receipts) in enumerate(by_grower.items(), start=1):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                result.errors.append(RunError(
                    ErrorCategory.CANCELLED,
                    f"Run cancelled after {position - 1} of {total} growers",
                ))
                _report(progress, "Run cancelled")
                break

            current_grower = grower_id
            _report(progress, f"Processing grower {position}/{total}")

            grower = await providers.growers.get_grower(grower_id)
            if grower is None:
                message = f"Grower {grower_id} not found"
                result.errors.append(RunError(ErrorCategory.CALCULATION, message, grower_id=grower_id))
                result.failed_growers.append(grower_id)
                result.growers.append(GrowerRunResult(
                    grower_id=grower_id, outcome=GrowerOutcome.FAILED, error=message,
                ))
                logger.warning(message)
                continue

            grower_result = GrowerRunResult(
                grower_id=grower.id,
                grower_number=grower.grower_number,
                grower_name=grower.name,
                currency=grower.currency,
            )
            result.growers.append(grower_result)
            if grower.on_hold:
                grower_result.outcome = GrowerOutcome.SKIPPED
                result.skipped_growers.append(grower.id)
                _report(progress, f"Grower {grower.grower_number} is on hold, skipped")
                continue

            for receipt in grower_receipts:
                line = await calculate_receipt(providers, receipt, grower, round_number)
                grower_result.receipts.append(line)
                if line.error:
                    result.errors.append(RunError(
                        ErrorCategory.CALCULATION, line.error,
                        grower_id=grower.id, receipt_id=receipt.id,
                    ))

            if test_run:
                continue

            try:
                await _persist_grower(
                    providers, grower, receipt_index, grower_result,
                    round_number, batch_id, payment_type_id, params.payment_date,
                )
                await db.commit()
                grower_result.outcome = GrowerOutcome.PAID
            except (SQLAlchemyError, PersistenceError) as exc:
                await db.rollback()
                message = exc.message if isinstance(exc, PersistenceError) else str(exc)
                grower_result.outcome = GrowerOutcome.FAILED
                grower_result.error = message
                result.failed_growers.append(grower.id)
                result.errors.append(RunError(
                    ErrorCategory.PERSISTENCE,
                    f"Grower {grower.grower_number}: {message}",
                    grower_id=grower.id,
                ))
                logger.error(
                    f"Persisting grower {grower.grower_number} failed, rolled back",
                    extra={"grower_id": grower.id, "batch_id": batch_id},
                    exc_info=True,
                )
    except Exception as exc:
        if not test_run:
            await db.rollback()
        result.aborted = True
        result.errors.append(RunError(
            ErrorCategory.CRITICAL, f"Run aborted: {exc}", grower_id=current_grower,
        ))
        logger.error(
            f"{type_code} run aborted at grower {current_grower}",
            extra={"batch_id": batch_id},
            exc_info=True,
        )

    if not test_run:
        await _finish_batch(db, actor, result, batch_id, batch_number)

    _report(
        progress,
        f"{type_code} {'test ' if test_run else ''}run finished: "
        f"{result.receipt_count} receipts, {result.total_amount}",
    )
    return result


async def _finish_batch(
    db: AsyncSession,
    actor: Actor,
    result: PaymentRunResult,
    batch_id: int,
    batch_number: str,
) -> None:
    """Record totals and the run outcome on the Draft batch."""
    action = "run_aborted" if result.aborted else "run_completed"
    paid = sum(1 for g in result.growers if g.outcome == GrowerOutcome.PAID)
    try:
        batch = await db.get(PaymentBatch, batch_id, populate_existing=True)
        await refresh_batch_totals(db, batch)
        await log_activity(
            db, actor,
            action=action,
            entity_type="payment_batch",
            entity_id=str(batch_id),
            entity_code=batch_number,
            summary=f"{batch_number}: {paid} growers paid, "
                    f"{len(result.failed_growers)} failed",
            details={
                "aborted": result.aborted,
                "cancelled": result.cancelled,
                "failed_growers": result.failed_growers,
                "skipped_growers": result.skipped_growers,
                "errors": len(result.errors),
            },
        )
        await db.commit()
        result.created_batch = batch
    except SQLAlchemyError:
        await db.rollback()
        logger.error(f"Could not record outcome of run for {batch_number}", exc_info=True)
        raise


# ── Entry points ───────────────────────────────────────────────


async def perform_test_run(
    db: AsyncSession,
    params: RunParameters,
    *,
    providers: Providers | None = None,
    progress: ProgressCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> PaymentRunResult:
    """Simulate an advance run.  Reads only."""
    return await _run(
        db, params, actor=None, providers=providers, progress=progress, cancel=cancel,
    )


async def process_actual_run(
    db: AsyncSession,
    actor: Actor,
    params: RunParameters,
    *,
    providers: Providers | None = None,
    progress: ProgressCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> PaymentRunResult:
    """Run an advance for real: one Draft batch, committed grower by grower."""
    return await _run(
        db, params, actor=actor, providers=providers, progress=progress, cancel=cancel,
    )
