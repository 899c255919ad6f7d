"""Grower ledgers.

AccountEntry   per-receipt transaction detail written by an actual
               payment run: one row per advance / premium / deduction
               with quantity, unit price and dollars.
GrowerAccount  double-entry style posting ledger written when a batch
               posts: one credit per active allocation.

Both are soft-deleted (never removed) when their batch is voided.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer,
    Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class AccountEntry(Base):
    __tablename__ = "account_entries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    grower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("growers.id"), nullable=False, index=True
    )
    receipt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("receipts.id"), nullable=False
    )
    payment_batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_batches.id"), nullable=False, index=True
    )

    # ADV1 | ADV2 | ADV3 | PREM | DED
    entry_type: Mapped[str] = mapped_column(String(10), nullable=False)
    advance_number: Mapped[int] = mapped_column(Integer, default=0)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    crop_year: Mapped[int] = mapped_column(Integer, nullable=False)

    product_code: Mapped[str] = mapped_column(String(20), nullable=False)
    process_code: Mapped[str] = mapped_column(String(20), nullable=False)
    grade: Mapped[int] = mapped_column(Integer, default=1)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    dollars: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # ── Soft delete ──────────────────────────────────────────
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class GrowerAccount(Base):
    __tablename__ = "grower_accounts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    grower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("growers.id"), nullable=False, index=True
    )
    payment_batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_batches.id"), nullable=False, index=True
    )
    allocation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("receipt_payment_allocations.id")
    )
    receipt_id: Mapped[str | None] = mapped_column(String(36))

    # Payment type code of the batch, e.g. ADV1
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    debit_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    crop_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Soft delete ──────────────────────────────────────────
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(100))
    created_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
