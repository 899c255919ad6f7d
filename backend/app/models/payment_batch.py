"""PaymentType and PaymentBatch — dated groups of grower payments.

A PaymentBatch collects every allocation of one payment type (ADV1,
ADV2, ADV3, FINAL) for one crop year.  Its human-readable number is
`{TypeCode}-{CropYear}-{Sequence:000}`, e.g. ADV1-2025-001.

Lifecycle:  Draft → Approved → Posted → Finalized
            any non-Voided state → Voided
"""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, Enum as SAEnum, ForeignKey,
    Integer, Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class BatchStatus(str, enum.Enum):
    DRAFT = "Draft"
    APPROVED = "Approved"
    POSTED = "Posted"
    FINALIZED = "Finalized"
    VOIDED = "Voided"

    def can_transition_to(self, target: "BatchStatus") -> bool:
        return target in BATCH_TRANSITIONS[self]


BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.DRAFT: frozenset({BatchStatus.APPROVED, BatchStatus.VOIDED}),
    BatchStatus.APPROVED: frozenset({BatchStatus.POSTED, BatchStatus.VOIDED}),
    BatchStatus.POSTED: frozenset({BatchStatus.FINALIZED, BatchStatus.VOIDED}),
    BatchStatus.FINALIZED: frozenset({BatchStatus.VOIDED}),
    BatchStatus.VOIDED: frozenset(),
}


def status_column(enum_cls: type[enum.Enum]) -> SAEnum:
    """Store enum *values* ("Draft"), not member names, as VARCHAR."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class PaymentType(Base):
    __tablename__ = "payment_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    type_name: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    is_final: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def advance_number(self) -> int:
        """1..3 for advance types, 0 for the final payment."""
        return 0 if self.is_final else self.sequence_number


class PaymentBatch(Base):
    __tablename__ = "payment_batches"

    # Integer id: void remediation orders later batches by id
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    payment_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_types.id"), nullable=False
    )
    crop_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    batch_date: Mapped[date] = mapped_column(Date, nullable=False)
    cutoff_date: Mapped[date | None] = mapped_column(Date)

    # ── Status ───────────────────────────────────────────────
    status: Mapped[BatchStatus] = mapped_column(
        status_column(BatchStatus), default=BatchStatus.DRAFT, index=True
    )

    # ── Totals ───────────────────────────────────────────────
    total_growers: Mapped[int] = mapped_column(Integer, default=0)
    total_receipts: Mapped[int] = mapped_column(Integer, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # ── Audit ────────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    approved_by: Mapped[str | None] = mapped_column(String(100))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime)
    posted_by: Mapped[str | None] = mapped_column(String(100))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime)
    processed_by: Mapped[str | None] = mapped_column(String(100))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(100))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ── Relationships ────────────────────────────────────────
    payment_type = relationship("PaymentType", lazy="selectin")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def type_code(self) -> str | None:
        return self.payment_type.type_code if self.payment_type else None
