"""Pydantic schemas for payment batches and their lifecycle actions."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, field_validator


class PaymentBatchOut(BaseModel):
    id: int
    batch_number: str
    payment_type_id: int
    type_code: str | None = None
    crop_year: int
    batch_date: date
    cutoff_date: date | None = None
    status: str
    total_growers: int
    total_receipts: int
    total_amount: Decimal
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime
    approved_by: str | None = None
    approved_at: datetime | None = None
    posted_by: str | None = None
    posted_at: datetime | None = None
    processed_by: str | None = None
    processed_at: datetime | None = None
    deleted_by: str | None = None
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class BatchGrowerOut(BaseModel):
    grower_id: str
    grower_number: str
    grower_name: str
    receipt_count: int
    amount: Decimal


class PaymentBatchDetail(PaymentBatchOut):
    growers: list[BatchGrowerOut] = []


class TransitionOut(BaseModel):
    success: bool
    batch_id: int
    batch_number: str
    status: str
    previous_status: str | None = None
    message: str = ""

    model_config = {"from_attributes": True}


class PostBatchRequest(BaseModel):
    cheque_date: date | None = None


class ChequeSummaryOut(BaseModel):
    cheque_number: str
    grower_id: str
    gross_amount: Decimal
    advance_deductions: Decimal
    net_amount: Decimal

    model_config = {"from_attributes": True}


class PostBatchOut(TransitionOut):
    ledger_entries: int = 0
    price_locks: int = 0
    total_deductions: Decimal = Decimal("0")
    total_net: Decimal = Decimal("0")
    cheques: list[ChequeSummaryOut] = []
    warnings: list[str] = []


class VoidBatchRequest(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def reason_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("A void reason is required")
        return v.strip()


class VoidConflictOut(BaseModel):
    batch_id: int
    batch_number: str
    type_code: str
    sequence_number: int
    receipt_count: int
    receipt_ids: list[str]
    receipt_numbers: list[str]

    model_config = {"from_attributes": True}


class RemediationStepOut(BaseModel):
    batch_id: int
    batch_number: str
    action: str

    model_config = {"from_attributes": True}


class VoidCheckOut(BaseModel):
    batch_id: int
    batch_number: str
    allowed: bool
    reasons: list[str] = []
    conflicts: list[VoidConflictOut] = []
    remediation: list[RemediationStepOut] = []

    model_config = {"from_attributes": True}


class VoidBatchOut(BaseModel):
    batch_id: int
    batch_number: str
    allocations_voided: int
    cheques_voided: int
    deductions_reversed: int
    ledger_entries_removed: int
    locks_released: int
    receipts_cleared: int

    model_config = {"from_attributes": True}
