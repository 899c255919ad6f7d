"""Receipt — an immutable weigh-in record.

Receipts are created by intake; the payment engine only writes the
per-round advance-tracking columns (`advance_N_price`,
`advance_N_batch_id`), and only when the round is still unset.
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer,
    Numeric, String, Time,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

ADVANCE_ROUNDS = (1, 2, 3)


class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    receipt_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False, index=True
    )
    grower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("growers.id"), nullable=False, index=True
    )

    # ── Weigh-in ─────────────────────────────────────────────
    product_code: Mapped[str] = mapped_column(String(20), nullable=False)
    process_code: Mapped[str] = mapped_column(String(20), nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    receipt_time: Mapped[time | None] = mapped_column(Time)
    net_weight: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    grade: Mapped[int] = mapped_column(Integer, default=1)
    crop_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # ── Advance tracking ─────────────────────────────────────
    advance_1_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    advance_1_batch_id: Mapped[int | None] = mapped_column(Integer)
    advance_2_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    advance_2_batch_id: Mapped[int | None] = mapped_column(Integer)
    advance_3_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    advance_3_batch_id: Mapped[int | None] = mapped_column(Integer)

    # ── Metadata ─────────────────────────────────────────────
    is_voided: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
