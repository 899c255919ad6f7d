"""Grower — the payee of every advance and batch payment.

Only the fields the payment engine reads live here: currency and price
level select the price-table column, `on_hold` suppresses payment runs.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Grower(Base):
    __tablename__ = "growers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    grower_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # ── Pricing ──────────────────────────────────────────────
    # CAD | USD
    currency: Mapped[str] = mapped_column(String(3), default="CAD")
    # 1..3, selects the price class within a currency
    price_level: Mapped[int] = mapped_column(Integer, default=1)
    pay_group: Mapped[str | None] = mapped_column(String(20), index=True)

    on_hold: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
