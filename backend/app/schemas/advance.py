"""Pydantic schemas for advance cheques and the deduction waterfall."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, field_validator


class AdvanceChequeCreate(BaseModel):
    grower_id: str
    amount: Decimal
    advance_date: date
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v


class AdvanceChequeOut(BaseModel):
    id: str
    cheque_number: str
    grower_id: str
    advance_date: date
    original_amount: Decimal
    current_amount: Decimal
    deducted_total: Decimal
    status: str
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AdvanceDeductionOut(BaseModel):
    id: str
    advance_cheque_id: str
    payment_batch_id: int | None = None
    deduction_amount: Decimal
    deduction_date: date
    previous_status: str
    status: str
    created_by: str | None = None
    created_at: datetime
    reversed_by: str | None = None
    reversed_at: datetime | None = None
    reversal_reason: str | None = None

    model_config = {"from_attributes": True}


class ApplyDeductionsRequest(BaseModel):
    grower_id: str
    payment_amount: Decimal
    payment_batch_id: int | None = None

    @field_validator("payment_amount")
    @classmethod
    def amount_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Payment amount must be positive")
        return v


class DeductionLineOut(BaseModel):
    advance_cheque_id: str
    cheque_number: str
    amount: Decimal
    balance_after: Decimal
    deduction_id: str | None = None

    model_config = {"from_attributes": True}


class DeductionResultOut(BaseModel):
    grower_id: str
    payment_amount: Decimal
    total_deducted: Decimal
    remaining_payment: Decimal
    deduction_count: int
    fully_applied: bool
    lines: list[DeductionLineOut] = []
    warnings: list[str] = []

    model_config = {"from_attributes": True}


class ReverseDeductionRequest(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def reason_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("A reversal reason is required")
        return v.strip()
