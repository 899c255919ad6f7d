"""Collaborator interfaces consumed by the payment run engine.

The engine never queries tables directly; it talks to four providers:

  ReceiptProvider  eligible receipts, advance tracking, allocations
  PriceProvider    schedule resolution, round prices, premium, deduction
  GrowerProvider   currency / price level / hold status per grower
  LedgerProvider   bulk AccountEntry inserts

The Sql* classes are the default implementations over an AsyncSession.
Tests may substitute any object satisfying the Protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Protocol, Sequence

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.allocation import AllocationStatus, ReceiptPaymentAllocation
from app.models.grower import Grower
from app.models.ledger import AccountEntry
from app.models.payment_batch import PaymentType
from app.models.price import PriceSchedule, PriceScheduleDetail, Product
from app.models.receipt import Receipt
from app.services.pricing import ZERO, validate_round


# ── Value types ────────────────────────────────────────────────


@dataclass(frozen=True)
class GrowerInfo:
    """The grower fields a payment calculation depends on."""
    id: str
    grower_number: str
    name: str
    currency: str
    price_level: int
    on_hold: bool
    pay_group: str | None = None


# ── Interfaces ─────────────────────────────────────────────────


class ReceiptProvider(Protocol):
    async def eligible_receipts(
        self,
        round_number: int,
        crop_year: int,
        cutoff_date: date,
        *,
        exclude_grower_ids: Sequence[str] = (),
        exclude_pay_groups: Sequence[str] = (),
        product_codes: Sequence[str] = (),
        process_codes: Sequence[str] = (),
    ) -> list[Receipt]: ...

    async def record_advance(
        self, receipt_id: str, round_number: int, price: Decimal, batch_id: int
    ) -> bool: ...

    async def create_allocation(
        self,
        receipt_id: str,
        *,
        payment_batch_id: int,
        payment_type_id: int,
        price_schedule_id: int | None,
        price_per_unit: Decimal,
        quantity: Decimal,
        amount_paid: Decimal,
    ) -> ReceiptPaymentAllocation: ...

    async def paid_price(self, receipt_id: str, round_number: int) -> Decimal | None: ...


class PriceProvider(Protocol):
    async def find_price_schedule_id(
        self, product: str, process: str, on_date: date
    ) -> int | None: ...

    async def advance_price(
        self,
        schedule_id: int,
        round_number: int,
        currency: str,
        price_level: int,
        grade: int | None,
    ) -> Decimal: ...

    async def time_premium(
        self, schedule_id: int, receipt_time: time | None, currency: str
    ) -> Decimal: ...

    async def marketing_deduction(self, product: str) -> Decimal: ...


class GrowerProvider(Protocol):
    async def get_grower(self, grower_id: str) -> GrowerInfo | None: ...


class LedgerProvider(Protocol):
    async def add_entries(self, entries: Sequence[AccountEntry]) -> None: ...


# ── Helpers ────────────────────────────────────────────────────


def _active_allocation_exists(round_number: int):
    """Correlated EXISTS: the outer Receipt holds an active round-N allocation."""
    return (
        select(ReceiptPaymentAllocation.id)
        .join(PaymentType, PaymentType.id == ReceiptPaymentAllocation.payment_type_id)
        .where(
            ReceiptPaymentAllocation.receipt_id == Receipt.id,
            ReceiptPaymentAllocation.status != AllocationStatus.VOIDED,
            PaymentType.sequence_number == round_number,
            PaymentType.is_final.is_(False),
        )
        .exists()
    )


# ── SQL implementations ────────────────────────────────────────


class SqlReceiptProvider:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def eligible_receipts(
        self,
        round_number: int,
        crop_year: int,
        cutoff_date: date,
        *,
        exclude_grower_ids: Sequence[str] = (),
        exclude_pay_groups: Sequence[str] = (),
        product_codes: Sequence[str] = (),
        process_codes: Sequence[str] = (),
    ) -> list[Receipt]:
        """Receipts payable for *round_number*.

        Not voided or deleted, positive weight, on or before the cutoff,
        in the crop year, not yet actively paid for this round, and
        already actively paid for every earlier round.
        """
        validate_round(round_number)
        stmt = select(Receipt).where(
            Receipt.is_voided.is_(False),
            Receipt.is_deleted.is_(False),
            Receipt.net_weight > 0,
            Receipt.receipt_date <= cutoff_date,
            Receipt.crop_year == crop_year,
            ~_active_allocation_exists(round_number),
        )
        for earlier in range(1, round_number):
            stmt = stmt.where(_active_allocation_exists(earlier))

        if exclude_grower_ids:
            stmt = stmt.where(Receipt.grower_id.not_in(list(exclude_grower_ids)))
        if exclude_pay_groups:
            stmt = stmt.where(
                Receipt.grower_id.not_in(
                    select(Grower.id).where(Grower.pay_group.in_(list(exclude_pay_groups)))
                )
            )
        if product_codes:
            stmt = stmt.where(Receipt.product_code.in_(list(product_codes)))
        if process_codes:
            stmt = stmt.where(Receipt.process_code.in_(list(process_codes)))

        stmt = stmt.order_by(Receipt.grower_id, Receipt.receipt_date, Receipt.receipt_number)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def record_advance(
        self, receipt_id: str, round_number: int, price: Decimal, batch_id: int
    ) -> bool:
        """Set advance_N_price / advance_N_batch_id unless already set.

        The UPDATE is guarded on the batch column being NULL, so a second
        call for the same round leaves the first payment untouched and
        returns False.
        """
        validate_round(round_number)
        price_col = getattr(Receipt, f"advance_{round_number}_price")
        batch_col = getattr(Receipt, f"advance_{round_number}_batch_id")
        result = await self.db.execute(
            update(Receipt)
            .where(Receipt.id == receipt_id, batch_col.is_(None))
            .values({price_col: price, batch_col: batch_id})
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def create_allocation(
        self,
        receipt_id: str,
        *,
        payment_batch_id: int,
        payment_type_id: int,
        price_schedule_id: int | None,
        price_per_unit: Decimal,
        quantity: Decimal,
        amount_paid: Decimal,
    ) -> ReceiptPaymentAllocation:
        allocation = ReceiptPaymentAllocation(
            receipt_id=receipt_id,
            payment_batch_id=payment_batch_id,
            payment_type_id=payment_type_id,
            price_schedule_id=price_schedule_id,
            price_per_unit=price_per_unit,
            quantity_paid=quantity,
            amount_paid=amount_paid,
            status=AllocationStatus.PENDING,
        )
        self.db.add(allocation)
        await self.db.flush()
        return allocation

    async def paid_price(self, receipt_id: str, round_number: int) -> Decimal | None:
        """Unit price on the receipt's active allocation for *round_number*."""
        result = await self.db.execute(
            select(ReceiptPaymentAllocation.price_per_unit)
            .join(PaymentType, PaymentType.id == ReceiptPaymentAllocation.payment_type_id)
            .where(
                ReceiptPaymentAllocation.receipt_id == receipt_id,
                ReceiptPaymentAllocation.status != AllocationStatus.VOIDED,
                PaymentType.sequence_number == round_number,
                PaymentType.is_final.is_(False),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()


class SqlPriceProvider:
    """Price lookups, memoized for the lifetime of one run."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._schedules: dict[tuple, int | None] = {}
        self._prices: dict[tuple, Decimal] = {}
        self._deductions: dict[str, Decimal] = {}

    async def find_price_schedule_id(
        self, product: str, process: str, on_date: date
    ) -> int | None:
        key = (product, process, on_date)
        if key not in self._schedules:
            result = await self.db.execute(
                select(PriceSchedule.id)
                .where(
                    PriceSchedule.product_code == product,
                    PriceSchedule.process_code == process,
                    PriceSchedule.effective_from <= on_date,
                    or_(
                        PriceSchedule.effective_to.is_(None),
                        PriceSchedule.effective_to >= on_date,
                    ),
                )
                .order_by(PriceSchedule.effective_from.desc(), PriceSchedule.id.desc())
                .limit(1)
            )
            self._schedules[key] = result.scalar_one_or_none()
        return self._schedules[key]

    async def advance_price(
        self,
        schedule_id: int,
        round_number: int,
        currency: str,
        price_level: int,
        grade: int | None,
    ) -> Decimal:
        """Table price for one round; a grade-less row is the fallback, 0 if none."""
        key = (schedule_id, round_number, currency, price_level, grade)
        if key in self._prices:
            return self._prices[key]

        grade_match = PriceScheduleDetail.grade.is_(None)
        if grade is not None:
            grade_match = or_(grade_match, PriceScheduleDetail.grade == grade)

        result = await self.db.execute(
            select(PriceScheduleDetail).where(
                and_(
                    PriceScheduleDetail.price_schedule_id == schedule_id,
                    PriceScheduleDetail.advance_number == round_number,
                    PriceScheduleDetail.currency == currency,
                    PriceScheduleDetail.price_level == price_level,
                    grade_match,
                )
            )
        )
        rows = result.scalars().all()
        exact = [r for r in rows if r.grade is not None]
        row = exact[0] if exact else (rows[0] if rows else None)
        price = Decimal(row.price_per_unit) if row is not None else ZERO

        self._prices[key] = price
        return price

    async def time_premium(
        self, schedule_id: int, receipt_time: time | None, currency: str
    ) -> Decimal:
        """Per-unit premium for receipts weighed in at or before the cutoff."""
        schedule = await self.db.get(PriceSchedule, schedule_id)
        if (
            schedule is None
            or not schedule.time_premium_enabled
            or schedule.premium_cutoff_time is None
            or receipt_time is None
            or receipt_time > schedule.premium_cutoff_time
        ):
            return ZERO
        amount = (
            schedule.usd_premium_amount if currency == "USD"
            else schedule.cad_premium_amount
        )
        return Decimal(amount or 0)

    async def marketing_deduction(self, product: str) -> Decimal:
        if product not in self._deductions:
            result = await self.db.execute(
                select(Product.marketing_deduction_rate).where(Product.code == product)
            )
            rate = result.scalar_one_or_none()
            self._deductions[product] = Decimal(rate) if rate is not None else ZERO
        return self._deductions[product]


class SqlGrowerProvider:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_grower(self, grower_id: str) -> GrowerInfo | None:
        grower = await self.db.get(Grower, grower_id)
        if grower is None:
            return None
        return GrowerInfo(
            id=grower.id,
            grower_number=grower.grower_number,
            name=grower.name,
            currency=grower.currency or settings.default_currency,
            price_level=grower.price_level or settings.default_price_level,
            on_hold=bool(grower.on_hold),
            pay_group=grower.pay_group,
        )


class SqlLedgerProvider:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_entries(self, entries: Sequence[AccountEntry]) -> None:
        if not entries:
            return
        self.db.add_all(list(entries))
        await self.db.flush()
