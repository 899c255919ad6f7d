"""Price tables — products, price schedules, per-round prices and locks.

A PriceSchedule covers one (product, process) pair over an effective
date range.  Its PriceScheduleDetail rows hold one unit price per
(advance number, currency, price level, grade); a detail with grade NULL
is the fallback for any grade without its own row.

A PriceScheduleLock is written when a posted batch used a schedule, so
the schedule's prices can no longer be edited underneath paid receipts.
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer,
    Numeric, String, Time,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    # Per-unit rate withheld on the first advance
    marketing_deduction_rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 4), default=Decimal("0")
    )


class PriceSchedule(Base):
    __tablename__ = "price_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    process_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date)

    # ── Time premium (first advance only) ────────────────────
    time_premium_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    cad_premium_amount: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    usd_premium_amount: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    premium_cutoff_time: Mapped[time | None] = mapped_column(Time)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    details = relationship(
        "PriceScheduleDetail", back_populates="schedule", lazy="selectin",
        cascade="all, delete-orphan",
    )


class PriceScheduleDetail(Base):
    __tablename__ = "price_schedule_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    price_schedule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("price_schedules.id"), nullable=False, index=True
    )
    advance_number: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="CAD")
    price_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    grade: Mapped[int | None] = mapped_column(Integer)
    price_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)

    schedule = relationship("PriceSchedule", back_populates="details")


class PriceScheduleLock(Base):
    __tablename__ = "price_schedule_locks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    price_schedule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("price_schedules.id"), nullable=False, index=True
    )
    payment_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_types.id"), nullable=False
    )
    payment_batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_batches.id"), nullable=False, index=True
    )
    locked_by: Mapped[str | None] = mapped_column(String(100))
    locked_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # ── Soft delete ──────────────────────────────────────────
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(100))
