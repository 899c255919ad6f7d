"""Pydantic schemas for advance payment runs (test and actual)."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, field_validator


class PaymentRunRequest(BaseModel):
    round_number: int
    payment_date: date
    cutoff_date: date
    crop_year: int
    exclude_grower_ids: list[str] = []
    exclude_pay_groups: list[str] = []
    product_codes: list[str] = []
    process_codes: list[str] = []
    notes: str | None = None

    @field_validator("round_number")
    @classmethod
    def valid_round(cls, v: int) -> int:
        if v not in (1, 2, 3):
            raise ValueError("round_number must be 1, 2 or 3")
        return v


class RunErrorOut(BaseModel):
    category: str
    message: str
    retryable: bool
    grower_id: str | None = None
    receipt_id: str | None = None

    model_config = {"from_attributes": True}


class ReceiptRunOut(BaseModel):
    receipt_id: str
    receipt_number: str
    net_weight: Decimal
    price_schedule_id: int | None = None
    running_price: Decimal
    advance_price: Decimal
    premium_rate: Decimal
    deduction_rate: Decimal
    advance_amount: Decimal
    premium_amount: Decimal
    deduction_amount: Decimal
    total_amount: Decimal
    error: str | None = None

    model_config = {"from_attributes": True}


class GrowerRunOut(BaseModel):
    grower_id: str
    grower_number: str | None = None
    grower_name: str | None = None
    currency: str | None = None
    outcome: str
    total_amount: Decimal
    error: str | None = None
    receipts: list[ReceiptRunOut] = []

    model_config = {"from_attributes": True}


class CreatedBatchOut(BaseModel):
    id: int
    batch_number: str
    status: str
    total_growers: int
    total_receipts: int
    total_amount: Decimal

    model_config = {"from_attributes": True}


class PaymentRunOut(BaseModel):
    round_number: int
    test_run: bool
    success: bool
    aborted: bool
    cancelled: bool
    receipt_count: int
    total_amount: Decimal
    created_batch: CreatedBatchOut | None = None
    failed_growers: list[str] = []
    skipped_growers: list[str] = []
    errors: list[RunErrorOut] = []
    growers: list[GrowerRunOut] = []

    model_config = {"from_attributes": True}
