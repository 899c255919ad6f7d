"""Advance deduction waterfall.

A grower's outstanding advance cheques are drawn down oldest first by
each batch payment:

    advances [A1=100 (oldest), A2=50], payment 120
      → A1 deducted 100 (FullyDeducted)
      → A2 deducted  20 (PartiallyDeducted, 30 left)
      → total 120, remaining payment 0, two AdvanceDeduction rows

`apply_advance_deductions` only flushes; it commits with whatever
transaction the caller (normally batch posting) has open.
`apply_advance_deductions_atomic` is the standalone form.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    InvalidTransition, ResourceNotFoundError, ValidationError,
)
from app.models.advance import (
    DEDUCTIBLE_STATUSES, AdvanceCheque, AdvanceDeduction, AdvanceStatus,
    DeductionStatus,
)
from app.models.grower import Grower
from app.services.pricing import ZERO, round_money
from app.utils.activity import Actor, log_activity
from app.utils.numbering import advance_cheque_prefix, insert_with_number

logger = logging.getLogger(__name__)


# ── Result types ───────────────────────────────────────────────


@dataclass
class DeductionLine:
    """One cheque drawn down (or proposed to be) by the waterfall."""
    advance_cheque_id: str
    cheque_number: str
    amount: Decimal
    balance_after: Decimal
    deduction_id: str | None = None


@dataclass
class DeductionResult:
    grower_id: str
    payment_amount: Decimal
    total_deducted: Decimal = ZERO
    remaining_payment: Decimal = ZERO
    lines: list[DeductionLine] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def deduction_count(self) -> int:
        return len(self.lines)

    @property
    def fully_applied(self) -> bool:
        return self.remaining_payment == ZERO


# ── Queries ────────────────────────────────────────────────────


async def get_outstanding_advances(
    db: AsyncSession, grower_id: str, *, for_update: bool = False
) -> list[AdvanceCheque]:
    """Deductible advances with a balance, oldest first."""
    stmt = (
        select(AdvanceCheque)
        .where(
            AdvanceCheque.grower_id == grower_id,
            AdvanceCheque.current_amount > 0,
            AdvanceCheque.status.in_(DEDUCTIBLE_STATUSES),
        )
        .order_by(AdvanceCheque.advance_date, AdvanceCheque.id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_deduction_history(
    db: AsyncSession, advance_cheque_id: str
) -> list[AdvanceDeduction]:
    result = await db.execute(
        select(AdvanceDeduction)
        .where(AdvanceDeduction.advance_cheque_id == advance_cheque_id)
        .order_by(AdvanceDeduction.created_at, AdvanceDeduction.id)
    )
    return list(result.scalars().all())


def _plan(advances: list[AdvanceCheque], payment: Decimal) -> tuple[list[DeductionLine], Decimal]:
    remaining = payment
    lines: list[DeductionLine] = []
    for advance in advances:
        if remaining <= 0:
            break
        amount = min(remaining, advance.current_amount)
        if amount <= 0:
            continue
        lines.append(DeductionLine(
            advance_cheque_id=advance.id,
            cheque_number=advance.cheque_number,
            amount=amount,
            balance_after=advance.current_amount - amount,
        ))
        remaining -= amount
    return lines, remaining


async def suggest_advance_deductions(
    db: AsyncSession, grower_id: str, payment_amount: Decimal
) -> DeductionResult:
    """Preview the waterfall without writing anything."""
    payment = round_money(payment_amount)
    advances = await get_outstanding_advances(db, grower_id)
    lines, remaining = _plan(advances, payment)
    return DeductionResult(
        grower_id=grower_id,
        payment_amount=payment,
        total_deducted=payment - remaining,
        remaining_payment=remaining,
        lines=lines,
    )


# ── Mutations ──────────────────────────────────────────────────


async def create_advance_cheque(
    db: AsyncSession,
    actor: Actor,
    *,
    grower_id: str,
    amount: Decimal,
    advance_date: date,
    notes: str | None = None,
) -> AdvanceCheque:
    """Issue a cash advance: status Active, full balance outstanding."""
    amount = round_money(amount)
    if amount <= 0:
        raise ValidationError("Advance amount must be positive")
    if await db.get(Grower, grower_id) is None:
        raise ResourceNotFoundError("Grower", grower_id)

    cheque = await insert_with_number(
        db,
        "advance_cheque",
        advance_cheque_prefix(advance_date.year),
        lambda number: AdvanceCheque(
            cheque_number=number,
            grower_id=grower_id,
            advance_date=advance_date,
            original_amount=amount,
            current_amount=amount,
            deducted_total=ZERO,
            status=AdvanceStatus.ACTIVE,
            notes=notes,
            created_by=actor.user_id,
        ),
    )

    await log_activity(
        db, actor,
        action="issued",
        entity_type="advance_cheque",
        entity_id=cheque.id,
        entity_code=cheque.cheque_number,
        summary=f"Issued advance {cheque.cheque_number} for {amount}",
        details={"grower_id": grower_id, "amount": str(amount)},
    )
    logger.info(f"Issued advance {cheque.cheque_number} to grower {grower_id} for {amount}")
    return cheque


async def apply_advance_deductions(
    db: AsyncSession,
    actor: Actor,
    grower_id: str,
    payment_batch_id: int | None,
    payment_amount: Decimal,
    *,
    deduction_date: date | None = None,
) -> DeductionResult:
    """Draw *payment_amount* down against the grower's advances, oldest first.

    Flushes but never commits.  A payment larger than the outstanding
    advances leaves `remaining_payment` > 0 with a warning; the excess is
    not withheld.
    """
    payment = round_money(payment_amount)
    result = DeductionResult(
        grower_id=grower_id, payment_amount=payment, remaining_payment=payment
    )
    if payment <= 0:
        return result

    advances = await get_outstanding_advances(db, grower_id, for_update=True)
    by_id = {a.id: a for a in advances}
    lines, remaining = _plan(advances, payment)
    when = deduction_date or date.today()

    for line in lines:
        advance = by_id[line.advance_cheque_id]
        deduction = AdvanceDeduction(
            advance_cheque_id=advance.id,
            payment_batch_id=payment_batch_id,
            deduction_amount=line.amount,
            deduction_date=when,
            previous_status=advance.status,
            status=DeductionStatus.ACTIVE,
            created_by=actor.user_id,
        )
        db.add(deduction)

        advance.current_amount = advance.current_amount - line.amount
        advance.deducted_total = (advance.deducted_total or ZERO) + line.amount
        advance.status = (
            AdvanceStatus.FULLY_DEDUCTED if advance.current_amount == 0
            else AdvanceStatus.PARTIALLY_DEDUCTED
        )
        await db.flush()
        line.deduction_id = deduction.id

    result.lines = lines
    result.total_deducted = payment - remaining
    result.remaining_payment = remaining
    if lines and remaining > 0:
        result.warnings.append(
            f"Remaining payment of {remaining} exceeds outstanding advances "
            f"and was not deducted"
        )

    if lines:
        logger.info(
            f"Deducted {result.total_deducted} from {len(lines)} advance(s) "
            f"for grower {grower_id}",
            extra={"grower_id": grower_id, "payment_batch_id": payment_batch_id},
        )
    return result


async def apply_advance_deductions_atomic(
    db: AsyncSession,
    actor: Actor,
    grower_id: str,
    payment_batch_id: int | None,
    payment_amount: Decimal,
) -> DeductionResult:
    """Standalone waterfall: commits on success, rolls back on any error."""
    try:
        result = await apply_advance_deductions(
            db, actor, grower_id, payment_batch_id, payment_amount
        )
        await log_activity(
            db, actor,
            action="deducted",
            entity_type="advance_cheque",
            entity_id=grower_id,
            summary=f"Applied {result.total_deducted} against advances "
                    f"({result.deduction_count} deduction(s))",
            details={
                "payment_amount": str(result.payment_amount),
                "remaining_payment": str(result.remaining_payment),
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(
            f"Advance deduction failed for grower {grower_id}, rolled back",
            exc_info=True,
        )
        raise
    return result


async def _status_before_deductions(db: AsyncSession, advance_id: str) -> AdvanceStatus:
    """Status of the cheque before any deduction drew it down."""
    result = await db.execute(
        select(AdvanceDeduction.previous_status)
        .where(
            AdvanceDeduction.advance_cheque_id == advance_id,
            AdvanceDeduction.previous_status.not_in(
                (AdvanceStatus.PARTIALLY_DEDUCTED, AdvanceStatus.FULLY_DEDUCTED)
            ),
        )
        .order_by(AdvanceDeduction.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none() or AdvanceStatus.ACTIVE


async def reverse_advance_deduction(
    db: AsyncSession,
    actor: Actor,
    deduction_id: str,
    reason: str,
) -> AdvanceDeduction:
    """Undo one deduction; the exact inverse of the waterfall step.

    The cheque gets its amount back.  Once no active deductions remain it
    is whole again and returns to the status it had before it was first
    drawn down, whatever order the deductions were reversed in.  While
    others are still active it reads PartiallyDeducted.  Flushes but
    never commits.
    """
    deduction = await db.get(AdvanceDeduction, deduction_id)
    if deduction is None:
        raise ResourceNotFoundError("Advance deduction", deduction_id)
    if deduction.status != DeductionStatus.ACTIVE:
        raise InvalidTransition(
            f"Deduction {deduction_id}", deduction.status.value, DeductionStatus.REVERSED.value
        )

    advance = await db.get(AdvanceCheque, deduction.advance_cheque_id, with_for_update=True)
    advance.current_amount = advance.current_amount + deduction.deduction_amount
    advance.deducted_total = advance.deducted_total - deduction.deduction_amount

    others = await db.execute(
        select(AdvanceDeduction.id).where(
            AdvanceDeduction.advance_cheque_id == advance.id,
            AdvanceDeduction.status == DeductionStatus.ACTIVE,
            AdvanceDeduction.id != deduction.id,
        )
    )
    if others.first() is None:
        advance.status = await _status_before_deductions(db, advance.id)
    else:
        advance.status = AdvanceStatus.PARTIALLY_DEDUCTED

    deduction.status = DeductionStatus.REVERSED
    deduction.reversed_by = actor.user_id
    deduction.reversed_at = datetime.utcnow()
    deduction.reversal_reason = reason

    await log_activity(
        db, actor,
        action="reversed",
        entity_type="advance_deduction",
        entity_id=deduction.id,
        entity_code=advance.cheque_number,
        summary=f"Reversed deduction of {deduction.deduction_amount} on {advance.cheque_number}",
        details={"reason": reason, "payment_batch_id": deduction.payment_batch_id},
    )
    await db.flush()
    logger.info(
        f"Reversed deduction {deduction.id} ({deduction.deduction_amount}) "
        f"on advance {advance.cheque_number}"
    )
    return deduction


async def reverse_batch_deductions(
    db: AsyncSession, actor: Actor, payment_batch_id: int, reason: str
) -> int:
    """Reverse every active deduction a batch made, newest first."""
    result = await db.execute(
        select(AdvanceDeduction)
        .where(
            AdvanceDeduction.payment_batch_id == payment_batch_id,
            AdvanceDeduction.status == DeductionStatus.ACTIVE,
        )
        .order_by(AdvanceDeduction.created_at.desc(), AdvanceDeduction.id.desc())
    )
    deductions = list(result.scalars().all())
    for deduction in deductions:
        await reverse_advance_deduction(db, actor, deduction.id, reason)
    return len(deductions)
