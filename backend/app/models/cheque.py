"""Cheque — one grower's net payment out of a posted batch.

Gross is the grower's allocations in the batch; advance_deductions is
what the waterfall recovered; net is what the grower receives.
Printing and delivery happen outside the engine.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.payment_batch import status_column


class ChequeStatus(str, enum.Enum):
    GENERATED = "Generated"
    PRINTED = "Printed"
    DELIVERED = "Delivered"
    VOIDED = "Voided"


class Cheque(Base):
    __tablename__ = "cheques"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    cheque_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False, index=True
    )
    payment_batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_batches.id"), nullable=False, index=True
    )
    grower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("growers.id"), nullable=False, index=True
    )

    # ── Amounts ──────────────────────────────────────────────
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    advance_deductions: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    cheque_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ChequeStatus] = mapped_column(
        status_column(ChequeStatus), default=ChequeStatus.GENERATED, index=True
    )

    created_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    voided_by: Mapped[str | None] = mapped_column(String(100))
    voided_at: Mapped[datetime | None] = mapped_column(DateTime)
