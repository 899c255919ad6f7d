"""ReceiptPaymentAllocation — one receipt paid by one batch.

An allocation carries its own status, independent of the batch: it is
Pending while the batch is a draft, Posted once the batch posts, and
Voided when the batch (or the allocation alone) is voided.  Any status
other than Voided counts as an *active* allocation.

`price_per_unit` is the advance price alone (later rounds read it back
as the already-paid baseline); `amount_paid` is what the receipt earns
in this round: advance plus time premium less marketing deduction.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.payment_batch import status_column


class AllocationStatus(str, enum.Enum):
    PENDING = "Pending"
    POSTED = "Posted"
    VOIDED = "Voided"


class ReceiptPaymentAllocation(Base):
    __tablename__ = "receipt_payment_allocations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Links ────────────────────────────────────────────────
    receipt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("receipts.id"), nullable=False, index=True
    )
    payment_batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_batches.id"), nullable=False, index=True
    )
    payment_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_types.id"), nullable=False
    )
    price_schedule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("price_schedules.id")
    )

    # ── Amounts ──────────────────────────────────────────────
    price_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    quantity_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # ── Status ───────────────────────────────────────────────
    status: Mapped[AllocationStatus] = mapped_column(
        status_column(AllocationStatus), default=AllocationStatus.PENDING, index=True
    )
    allocated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime)
    voided_by: Mapped[str | None] = mapped_column(String(100))

    # ── Relationships ────────────────────────────────────────
    receipt = relationship("Receipt", lazy="selectin")
