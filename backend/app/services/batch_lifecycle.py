"""Payment batch lifecycle.

    Draft ──approve──▶ Approved ──post──▶ Posted ──finalize──▶ Finalized
      │                   │                  │                    │
      └───────────────────┴──────void────────┴────────────────────┘──▶ Voided

Every transition is checked against BATCH_TRANSITIONS before anything
is written.  Posting and voiding are multi-table cascades; each runs in
one transaction and commits or rolls back as a whole.  Create, approve
and finalize only flush and leave the commit to the caller.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    IntegrityViolation, InvalidTransition, ResourceNotFoundError, ValidationError,
)
from app.models.allocation import AllocationStatus, ReceiptPaymentAllocation
from app.models.cheque import Cheque, ChequeStatus
from app.models.grower import Grower
from app.models.ledger import AccountEntry, GrowerAccount
from app.models.payment_batch import BatchStatus, PaymentBatch, PaymentType
from app.models.price import PriceScheduleLock
from app.models.receipt import ADVANCE_ROUNDS, Receipt
from app.services.advance_deductions import (
    apply_advance_deductions, reverse_batch_deductions,
)
from app.services.pricing import ZERO, round_money
from app.services.sequence_validator import VoidValidationResult, validate_can_void
from app.utils.activity import Actor, log_activity
from app.utils.numbering import (
    batch_prefix, cheque_prefix, insert_with_number,
)

logger = logging.getLogger(__name__)


# ── Result types ───────────────────────────────────────────────


@dataclass
class TransitionResult:
    success: bool
    batch_id: int
    batch_number: str
    status: BatchStatus
    previous_status: BatchStatus | None = None
    message: str = ""


@dataclass
class ChequeSummary:
    cheque_number: str
    grower_id: str
    gross_amount: Decimal
    advance_deductions: Decimal
    net_amount: Decimal


@dataclass
class PostResult(TransitionResult):
    ledger_entries: int = 0
    price_locks: int = 0
    cheques: list[ChequeSummary] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total_deductions(self) -> Decimal:
        return sum((c.advance_deductions for c in self.cheques), ZERO)

    @property
    def total_net(self) -> Decimal:
        return sum((c.net_amount for c in self.cheques), ZERO)


@dataclass
class VoidResult:
    batch_id: int
    batch_number: str
    allocations_voided: int = 0
    cheques_voided: int = 0
    deductions_reversed: int = 0
    ledger_entries_removed: int = 0
    locks_released: int = 0
    receipts_cleared: int = 0
    validation: VoidValidationResult | None = None


# ── Lookups ────────────────────────────────────────────────────


async def get_payment_type(
    db: AsyncSession, *, payment_type_id: int | None = None, type_code: str | None = None
) -> PaymentType:
    """Active payment type by id or code; ValidationError if unknown."""
    if payment_type_id is not None:
        payment_type = await db.get(PaymentType, payment_type_id)
    elif type_code is not None:
        result = await db.execute(select(PaymentType).where(PaymentType.type_code == type_code))
        payment_type = result.scalar_one_or_none()
    else:
        raise ValidationError("A payment type id or code is required")

    if payment_type is None or not payment_type.is_active:
        raise ValidationError(
            f"Unknown payment type: {payment_type_id if payment_type_id is not None else type_code}",
            error_code="UNKNOWN_PAYMENT_TYPE",
        )
    return payment_type


async def get_advance_payment_type(db: AsyncSession, round_number: int) -> PaymentType:
    result = await db.execute(
        select(PaymentType).where(
            PaymentType.sequence_number == round_number,
            PaymentType.is_final.is_(False),
            PaymentType.is_active.is_(True),
        )
    )
    payment_type = result.scalar_one_or_none()
    if payment_type is None:
        raise ValidationError(
            f"No payment type configured for advance {round_number}",
            error_code="UNKNOWN_PAYMENT_TYPE",
        )
    return payment_type


async def get_batch(db: AsyncSession, batch_id: int) -> PaymentBatch:
    batch = await db.get(PaymentBatch, batch_id)
    if batch is None:
        raise ResourceNotFoundError("Payment batch", str(batch_id))
    return batch


async def list_batches(
    db: AsyncSession,
    *,
    crop_year: int | None = None,
    status: BatchStatus | None = None,
    type_code: str | None = None,
    include_voided: bool = True,
) -> list[PaymentBatch]:
    stmt = select(PaymentBatch)
    if crop_year is not None:
        stmt = stmt.where(PaymentBatch.crop_year == crop_year)
    if status is not None:
        stmt = stmt.where(PaymentBatch.status == status)
    if type_code is not None:
        stmt = stmt.join(PaymentType).where(PaymentType.type_code == type_code)
    if not include_voided:
        stmt = stmt.where(PaymentBatch.status != BatchStatus.VOIDED)
    result = await db.execute(stmt.order_by(PaymentBatch.id.desc()))
    return list(result.scalars().all())


async def batch_grower_summary(db: AsyncSession, batch_id: int) -> list[dict]:
    """Per-grower receipt count and amount over the batch's active allocations."""
    result = await db.execute(
        select(
            Grower.id,
            Grower.grower_number,
            Grower.name,
            func.count(ReceiptPaymentAllocation.id),
            func.coalesce(func.sum(ReceiptPaymentAllocation.amount_paid), 0),
        )
        .join(Receipt, Receipt.id == ReceiptPaymentAllocation.receipt_id)
        .join(Grower, Grower.id == Receipt.grower_id)
        .where(
            ReceiptPaymentAllocation.payment_batch_id == batch_id,
            ReceiptPaymentAllocation.status != AllocationStatus.VOIDED,
        )
        .group_by(Grower.id, Grower.grower_number, Grower.name)
        .order_by(Grower.grower_number)
    )
    return [
        {
            "grower_id": grower_id,
            "grower_number": number,
            "grower_name": name,
            "receipt_count": count,
            "amount": round_money(amount),
        }
        for grower_id, number, name, count, amount in result.all()
    ]


async def _active_allocations(db: AsyncSession, batch_id: int) -> list[ReceiptPaymentAllocation]:
    result = await db.execute(
        select(ReceiptPaymentAllocation).where(
            ReceiptPaymentAllocation.payment_batch_id == batch_id,
            ReceiptPaymentAllocation.status != AllocationStatus.VOIDED,
        )
    )
    return list(result.scalars().all())


async def refresh_batch_totals(db: AsyncSession, batch: PaymentBatch) -> None:
    """Recompute grower / receipt counts and total from active allocations."""
    result = await db.execute(
        select(
            func.count(distinct(Receipt.grower_id)),
            func.count(ReceiptPaymentAllocation.id),
            func.coalesce(func.sum(ReceiptPaymentAllocation.amount_paid), 0),
        )
        .join(Receipt, Receipt.id == ReceiptPaymentAllocation.receipt_id)
        .where(
            ReceiptPaymentAllocation.payment_batch_id == batch.id,
            ReceiptPaymentAllocation.status != AllocationStatus.VOIDED,
        )
    )
    growers, receipts, total = result.one()
    batch.total_growers = growers
    batch.total_receipts = receipts
    batch.total_amount = round_money(total)
    await db.flush()


def _check_transition(batch: PaymentBatch, target: BatchStatus) -> None:
    if not batch.status.can_transition_to(target):
        raise InvalidTransition(
            f"Batch {batch.batch_number}", batch.status.value, target.value
        )


# ── Create / approve / finalize ────────────────────────────────


async def create_batch(
    db: AsyncSession,
    actor: Actor,
    *,
    crop_year: int,
    batch_date: date,
    payment_type_id: int | None = None,
    type_code: str | None = None,
    cutoff_date: date | None = None,
    notes: str | None = None,
) -> PaymentBatch:
    """Create a Draft batch numbered `{TypeCode}-{CropYear}-{seq:3}`."""
    payment_type = await get_payment_type(
        db, payment_type_id=payment_type_id, type_code=type_code
    )

    batch = await insert_with_number(
        db,
        "payment_batch",
        batch_prefix(payment_type.type_code, crop_year),
        lambda number: PaymentBatch(
            batch_number=number,
            payment_type_id=payment_type.id,
            crop_year=crop_year,
            batch_date=batch_date,
            cutoff_date=cutoff_date,
            status=BatchStatus.DRAFT,
            notes=notes,
            created_by=actor.user_id,
        ),
    )

    await log_activity(
        db, actor,
        action="created",
        entity_type="payment_batch",
        entity_id=str(batch.id),
        entity_code=batch.batch_number,
        summary=f"Created {payment_type.type_name} batch {batch.batch_number}",
        details={"crop_year": crop_year, "cutoff_date": str(cutoff_date) if cutoff_date else None},
    )
    logger.info(f"Created payment batch {batch.batch_number}")
    return batch


async def approve_batch(db: AsyncSession, actor: Actor, batch_id: int) -> TransitionResult:
    """Draft → Approved.  Any other starting state reports failure without raising."""
    batch = await get_batch(db, batch_id)
    previous = batch.status
    if previous != BatchStatus.DRAFT:
        logger.info(f"Approve of {batch.batch_number} ignored: status is {previous.value}")
        return TransitionResult(
            success=False,
            batch_id=batch.id,
            batch_number=batch.batch_number,
            status=previous,
            previous_status=previous,
            message=f"Batch {batch.batch_number} is {previous.value}, only Draft batches can be approved",
        )

    batch.status = BatchStatus.APPROVED
    batch.approved_by = actor.user_id
    batch.approved_at = datetime.utcnow()
    await log_activity(
        db, actor,
        action="approved",
        entity_type="payment_batch",
        entity_id=str(batch.id),
        entity_code=batch.batch_number,
        summary=f"Approved batch {batch.batch_number}",
    )
    await db.flush()
    logger.info(f"Approved payment batch {batch.batch_number}")
    return TransitionResult(
        success=True,
        batch_id=batch.id,
        batch_number=batch.batch_number,
        status=batch.status,
        previous_status=previous,
        message=f"Batch {batch.batch_number} approved",
    )


async def process_payments(db: AsyncSession, actor: Actor, batch_id: int) -> TransitionResult:
    """Posted → Finalized."""
    batch = await get_batch(db, batch_id)
    if batch.status != BatchStatus.POSTED:
        raise InvalidTransition(
            f"Batch {batch.batch_number}", batch.status.value, BatchStatus.FINALIZED.value
        )

    previous = batch.status
    batch.status = BatchStatus.FINALIZED
    batch.processed_by = actor.user_id
    batch.processed_at = datetime.utcnow()
    await log_activity(
        db, actor,
        action="finalized",
        entity_type="payment_batch",
        entity_id=str(batch.id),
        entity_code=batch.batch_number,
        summary=f"Finalized batch {batch.batch_number}",
    )
    await db.flush()
    logger.info(f"Finalized payment batch {batch.batch_number}")
    return TransitionResult(
        success=True,
        batch_id=batch.id,
        batch_number=batch.batch_number,
        status=batch.status,
        previous_status=previous,
        message=f"Batch {batch.batch_number} finalized",
    )


# ── Post ───────────────────────────────────────────────────────


async def post_batch(
    db: AsyncSession,
    actor: Actor,
    batch_id: int,
    *,
    cheque_date: date | None = None,
) -> PostResult:
    """Approved → Posted, with ledger, locks, advance recovery and cheques.

    One transaction: the batch and its allocations are marked Posted,
    each active allocation gets a GrowerAccount credit, every price
    schedule used gets a lock, and each grower's gross is run through
    the advance waterfall before their cheque is written.  A batch that
    is not Approved yields a failed PostResult and no writes.
    """
    batch = await get_batch(db, batch_id)
    previous = batch.status
    if previous != BatchStatus.APPROVED:
        return PostResult(
            success=False,
            batch_id=batch.id,
            batch_number=batch.batch_number,
            status=previous,
            previous_status=previous,
            message=f"Batch {batch.batch_number} is {previous.value}, only Approved batches can be posted",
        )

    payment_type = batch.payment_type
    when = cheque_date or date.today()
    result = PostResult(
        success=True,
        batch_id=batch.id,
        batch_number=batch.batch_number,
        status=BatchStatus.POSTED,
        previous_status=previous,
    )

    try:
        allocations = await _active_allocations(db, batch.id)
        grower_ids = {a.receipt.grower_id for a in allocations}
        growers = {}
        if grower_ids:
            rows = await db.execute(select(Grower).where(Grower.id.in_(grower_ids)))
            growers = {g.id: g for g in rows.scalars().all()}

        # Ledger credits, one per allocation
        entries = []
        gross_by_grower: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for allocation in allocations:
            receipt = allocation.receipt
            grower = growers[receipt.grower_id]
            allocation.status = AllocationStatus.POSTED
            amount = allocation.amount_paid
            gross_by_grower[grower.id] += amount
            entries.append(GrowerAccount(
                grower_id=grower.id,
                payment_batch_id=batch.id,
                allocation_id=allocation.id,
                receipt_id=receipt.id,
                transaction_type=payment_type.type_code,
                transaction_date=when,
                description=f"{payment_type.type_code} {batch.batch_number} receipt {receipt.receipt_number}",
                credit_amount=amount if amount >= 0 else ZERO,
                debit_amount=-amount if amount < 0 else ZERO,
                currency=grower.currency,
                crop_year=batch.crop_year,
                created_by=actor.user_id,
            ))

        # One lock per schedule the batch priced from
        schedule_ids = sorted({a.price_schedule_id for a in allocations if a.price_schedule_id})
        locks = [
            PriceScheduleLock(
                price_schedule_id=schedule_id,
                payment_type_id=batch.payment_type_id,
                payment_batch_id=batch.id,
                locked_by=actor.user_id,
            )
            for schedule_id in schedule_ids
        ]
        db.add_all(entries)
        db.add_all(locks)
        await db.flush()
        result.ledger_entries = len(entries)
        result.price_locks = len(locks)

        # Advance recovery and cheques, per grower
        for grower_id in sorted(gross_by_grower):
            grower = growers[grower_id]
            gross = round_money(gross_by_grower[grower_id])
            deduction = await apply_advance_deductions(
                db, actor, grower_id, batch.id, gross, deduction_date=when
            )
            result.warnings.extend(
                f"{grower.grower_number}: {w}" for w in deduction.warnings
            )
            net = gross - deduction.total_deducted
            cheque = await insert_with_number(
                db,
                "cheque",
                cheque_prefix(batch.crop_year),
                lambda number: Cheque(
                    cheque_number=number,
                    payment_batch_id=batch.id,
                    grower_id=grower_id,
                    currency=grower.currency,
                    gross_amount=gross,
                    advance_deductions=deduction.total_deducted,
                    net_amount=net,
                    cheque_date=when,
                    status=ChequeStatus.GENERATED,
                    created_by=actor.user_id,
                ),
            )
            result.cheques.append(ChequeSummary(
                cheque_number=cheque.cheque_number,
                grower_id=grower_id,
                gross_amount=gross,
                advance_deductions=deduction.total_deducted,
                net_amount=net,
            ))

        batch.status = BatchStatus.POSTED
        batch.posted_by = actor.user_id
        batch.posted_at = datetime.utcnow()
        await refresh_batch_totals(db, batch)

        await log_activity(
            db, actor,
            action="posted",
            entity_type="payment_batch",
            entity_id=str(batch.id),
            entity_code=batch.batch_number,
            summary=f"Posted batch {batch.batch_number} ({len(result.cheques)} cheques)",
            details={
                "ledger_entries": result.ledger_entries,
                "price_locks": result.price_locks,
                "advance_deductions": str(result.total_deductions),
                "net_total": str(result.total_net),
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Posting {batch_id} failed, rolled back", exc_info=True)
        raise

    result.message = f"Batch {batch.batch_number} posted"
    logger.info(
        f"Posted payment batch {batch.batch_number}: {result.ledger_entries} ledger entries, "
        f"{len(result.cheques)} cheques, {result.total_deductions} recovered from advances"
    )
    return result


# ── Void ───────────────────────────────────────────────────────


async def void_batch(
    db: AsyncSession,
    actor: Actor,
    batch_id: int,
    reason: str,
) -> VoidResult:
    """Void a batch and everything it produced, or refuse with a remediation plan.

    Raises IntegrityViolation (no writes) when a later-sequence batch
    still depends on this one.
    """
    batch = await get_batch(db, batch_id)
    _check_transition(batch, BatchStatus.VOIDED)

    validation = await validate_can_void(db, batch.id)
    if not validation.allowed:
        raise IntegrityViolation(
            f"Batch {batch.batch_number} cannot be voided: later payments depend on it",
            validation,
        )

    result = VoidResult(batch_id=batch.id, batch_number=batch.batch_number, validation=validation)
    now = datetime.utcnow()
    round_number = batch.payment_type.advance_number

    try:
        allocations = await db.execute(
            update(ReceiptPaymentAllocation)
            .where(
                ReceiptPaymentAllocation.payment_batch_id == batch.id,
                ReceiptPaymentAllocation.status != AllocationStatus.VOIDED,
            )
            .values(status=AllocationStatus.VOIDED, voided_at=now, voided_by=actor.user_id)
        )
        result.allocations_voided = allocations.rowcount

        cheques = await db.execute(
            update(Cheque)
            .where(Cheque.payment_batch_id == batch.id, Cheque.status != ChequeStatus.VOIDED)
            .values(status=ChequeStatus.VOIDED, voided_at=now, voided_by=actor.user_id)
        )
        result.cheques_voided = cheques.rowcount

        result.deductions_reversed = await reverse_batch_deductions(
            db, actor, batch.id, f"Batch {batch.batch_number} voided: {reason}"
        )

        removed = 0
        for model in (GrowerAccount, AccountEntry):
            rows = await db.execute(
                update(model)
                .where(model.payment_batch_id == batch.id, model.is_deleted.is_(False))
                .values(is_deleted=True, deleted_at=now, deleted_by=actor.user_id)
            )
            removed += rows.rowcount
        result.ledger_entries_removed = removed

        locks = await db.execute(
            update(PriceScheduleLock)
            .where(
                PriceScheduleLock.payment_batch_id == batch.id,
                PriceScheduleLock.is_deleted.is_(False),
            )
            .values(is_deleted=True, deleted_at=now, deleted_by=actor.user_id)
        )
        result.locks_released = locks.rowcount

        if round_number in ADVANCE_ROUNDS:
            price_col = getattr(Receipt, f"advance_{round_number}_price")
            batch_col = getattr(Receipt, f"advance_{round_number}_batch_id")
            receipts = await db.execute(
                update(Receipt)
                .where(batch_col == batch.id)
                .values({price_col: None, batch_col: None})
            )
            result.receipts_cleared = receipts.rowcount

        note = f"[{now:%Y-%m-%d %H:%M}] Voided by {actor.user_name}: {reason}"
        batch.notes = f"{batch.notes}\n{note}" if batch.notes else note
        batch.status = BatchStatus.VOIDED
        batch.deleted_at = now
        batch.deleted_by = actor.user_id

        await log_activity(
            db, actor,
            action="voided",
            entity_type="payment_batch",
            entity_id=str(batch.id),
            entity_code=batch.batch_number,
            summary=f"Voided batch {batch.batch_number}",
            details={
                "reason": reason,
                "allocations": result.allocations_voided,
                "cheques": result.cheques_voided,
                "deductions_reversed": result.deductions_reversed,
                "ledger_entries": result.ledger_entries_removed,
                "locks": result.locks_released,
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Voiding {batch_id} failed, rolled back", exc_info=True)
        raise

    logger.info(
        f"Voided payment batch {result.batch_number}: {result.allocations_voided} allocations, "
        f"{result.cheques_voided} cheques, {result.deductions_reversed} deductions reversed"
    )
    return result
