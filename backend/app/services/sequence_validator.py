"""Sequence integrity — may this batch be voided?

A later advance is calculated on the assumption that earlier advances
were paid.  Voiding an ADV1 batch while some of its receipts hold an
active ADV2 allocation elsewhere would leave that ADV2 payment on a
baseline that no longer exists, so the void is refused and the caller
gets a remediation plan instead:

    void ADV2-2025-003 (highest id first)
    void ADV2-2025-001
    void ADV1-2025-002 (the batch originally requested)

The check is read-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.middleware.exceptions import ResourceNotFoundError
from app.models.allocation import AllocationStatus, ReceiptPaymentAllocation
from app.models.payment_batch import BatchStatus, PaymentBatch, PaymentType
from app.models.receipt import Receipt

logger = logging.getLogger(__name__)


# ── Data structures ────────────────────────────────────────────


@dataclass
class VoidConflict:
    """Receipts of the batch that a later-sequence batch has also paid."""
    batch_id: int
    batch_number: str
    type_code: str
    sequence_number: int
    receipt_ids: list[str] = field(default_factory=list)
    receipt_numbers: list[str] = field(default_factory=list)

    @property
    def receipt_count(self) -> int:
        return len(self.receipt_ids)


@dataclass
class RemediationStep:
    batch_id: int
    batch_number: str
    action: str = "void"


@dataclass
class VoidValidationResult:
    batch_id: int
    batch_number: str
    allowed: bool = True
    reasons: list[str] = field(default_factory=list)
    conflicts: list[VoidConflict] = field(default_factory=list)
    remediation: list[RemediationStep] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "allowed": self.allowed,
            "reasons": list(self.reasons),
            "conflicts": [
                {
                    "batch_id": c.batch_id,
                    "batch_number": c.batch_number,
                    "type_code": c.type_code,
                    "sequence_number": c.sequence_number,
                    "receipt_count": c.receipt_count,
                    "receipt_ids": list(c.receipt_ids),
                    "receipt_numbers": list(c.receipt_numbers),
                }
                for c in self.conflicts
            ],
            "remediation": [
                {"batch_id": s.batch_id, "batch_number": s.batch_number, "action": s.action}
                for s in self.remediation
            ],
        }


# ── Validation ─────────────────────────────────────────────────


async def validate_can_void(db: AsyncSession, batch_id: int) -> VoidValidationResult:
    """Refuse the void when a receipt of this batch is paid by a later round elsewhere."""
    batch = await db.get(PaymentBatch, batch_id)
    if batch is None:
        raise ResourceNotFoundError("Payment batch", str(batch_id))

    result = VoidValidationResult(batch_id=batch.id, batch_number=batch.batch_number)
    if batch.status == BatchStatus.VOIDED:
        result.allowed = False
        result.reasons.append(f"Batch {batch.batch_number} is already voided")
        return result

    sequence = batch.payment_type.sequence_number

    ours = aliased(ReceiptPaymentAllocation)
    later = aliased(ReceiptPaymentAllocation)
    later_batch = aliased(PaymentBatch)
    later_type = aliased(PaymentType)

    rows = await db.execute(
        select(
            later_batch.id,
            later_batch.batch_number,
            later_type.type_code,
            later_type.sequence_number,
            Receipt.id,
            Receipt.receipt_number,
        )
        .select_from(ours)
        .join(later, later.receipt_id == ours.receipt_id)
        .join(later_batch, later_batch.id == later.payment_batch_id)
        .join(later_type, later_type.id == later.payment_type_id)
        .join(Receipt, Receipt.id == ours.receipt_id)
        .where(
            ours.payment_batch_id == batch.id,
            ours.status != AllocationStatus.VOIDED,
            later.payment_batch_id != batch.id,
            later.status != AllocationStatus.VOIDED,
            later_type.sequence_number > sequence,
        )
        .distinct()
        .order_by(later_batch.id.desc(), Receipt.receipt_number)
    )

    by_batch: dict[int, VoidConflict] = {}
    for later_id, later_number, type_code, later_seq, receipt_id, receipt_number in rows.all():
        conflict = by_batch.get(later_id)
        if conflict is None:
            conflict = by_batch[later_id] = VoidConflict(
                batch_id=later_id,
                batch_number=later_number,
                type_code=type_code,
                sequence_number=later_seq,
            )
        if receipt_id not in conflict.receipt_ids:
            conflict.receipt_ids.append(receipt_id)
            conflict.receipt_numbers.append(receipt_number)

    if not by_batch:
        return result

    result.allowed = False
    result.conflicts = sorted(by_batch.values(), key=lambda c: c.batch_id, reverse=True)
    for conflict in result.conflicts:
        result.reasons.append(
            f"{conflict.receipt_count} receipt(s) also paid by {conflict.type_code} "
            f"batch {conflict.batch_number}"
        )
    result.remediation = [
        RemediationStep(batch_id=c.batch_id, batch_number=c.batch_number)
        for c in result.conflicts
    ]
    result.remediation.append(
        RemediationStep(batch_id=batch.id, batch_number=batch.batch_number)
    )

    logger.warning(
        f"Void of {batch.batch_number} refused: {len(result.conflicts)} later batch(es) depend on it",
        extra={"batch_id": batch.id, "conflicting_batches": [c.batch_id for c in result.conflicts]},
    )
    return result
