"""AdvanceCheque and AdvanceDeduction — cash advances and their recovery.

An AdvanceCheque is money handed to a grower outside the batch flow.
Every later batch payment to that grower is run through the deduction
waterfall, which records one AdvanceDeduction per cheque it draws down.

Invariant:  current_amount = original_amount − Σ(active deductions) ≥ 0
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.payment_batch import status_column


class AdvanceStatus(str, enum.Enum):
    GENERATED = "Generated"
    PRINTED = "Printed"
    DELIVERED = "Delivered"
    ACTIVE = "Active"
    PARTIALLY_DEDUCTED = "PartiallyDeducted"
    FULLY_DEDUCTED = "FullyDeducted"
    VOIDED = "Voided"


# Statuses whose remaining balance the waterfall may draw down
DEDUCTIBLE_STATUSES = (
    AdvanceStatus.PRINTED,
    AdvanceStatus.DELIVERED,
    AdvanceStatus.ACTIVE,
    AdvanceStatus.PARTIALLY_DEDUCTED,
)


class DeductionStatus(str, enum.Enum):
    ACTIVE = "Active"
    REVERSED = "Reversed"


class AdvanceCheque(Base):
    __tablename__ = "advance_cheques"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    cheque_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False, index=True
    )
    grower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("growers.id"), nullable=False, index=True
    )
    advance_date: Mapped[date] = mapped_column(Date, nullable=False)

    # ── Balances ─────────────────────────────────────────────
    original_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    deducted_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    status: Mapped[AdvanceStatus] = mapped_column(
        status_column(AdvanceStatus), default=AdvanceStatus.ACTIVE, index=True
    )

    # ── Metadata ─────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class AdvanceDeduction(Base):
    __tablename__ = "advance_deductions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    advance_cheque_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("advance_cheques.id"), nullable=False, index=True
    )
    payment_batch_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("payment_batches.id"), index=True
    )
    deduction_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    deduction_date: Mapped[date] = mapped_column(Date, default=date.today)

    # Cheque status before this deduction, restored on reversal
    previous_status: Mapped[AdvanceStatus] = mapped_column(
        status_column(AdvanceStatus), nullable=False
    )
    status: Mapped[DeductionStatus] = mapped_column(
        status_column(DeductionStatus), default=DeductionStatus.ACTIVE, index=True
    )

    # ── Audit ────────────────────────────────────────────────
    created_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    reversed_by: Mapped[str | None] = mapped_column(String(100))
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime)
    reversal_reason: Mapped[str | None] = mapped_column(Text)

    # ── Relationships ────────────────────────────────────────
    advance_cheque = relationship("AdvanceCheque", lazy="selectin")
