"""Advance cheques and the deduction waterfall.

Endpoints:
    POST /api/advances                              Issue an advance cheque
    GET  /api/advances/grower/{grower_id}           Outstanding advances, oldest first
    GET  /api/advances/{id}/deductions              Deduction history of one advance
    POST /api/advances/preview                      Waterfall preview (no writes)
    POST /api/advances/apply                        Apply a payment against advances
    POST /api/advances/deductions/{id}/reverse      Reverse one deduction
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_permission
from app.database import get_db
from app.middleware.exceptions import ResourceNotFoundError
from app.models.advance import AdvanceCheque
from app.schemas.advance import (
    AdvanceChequeCreate,
    AdvanceChequeOut,
    AdvanceDeductionOut,
    ApplyDeductionsRequest,
    DeductionResultOut,
    ReverseDeductionRequest,
)
from app.services.advance_deductions import (
    apply_advance_deductions_atomic,
    create_advance_cheque,
    get_deduction_history,
    get_outstanding_advances,
    reverse_advance_deduction,
    suggest_advance_deductions,
)
from app.utils.activity import Actor

router = APIRouter()


# ── POST /api/advances ───────────────────────────────────────

@router.post("", response_model=AdvanceChequeOut, status_code=status.HTTP_201_CREATED)
async def issue_advance(
    body: AdvanceChequeCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("advances.write")),
):
    cheque = await create_advance_cheque(
        db, actor,
        grower_id=body.grower_id,
        amount=body.amount,
        advance_date=body.advance_date,
        notes=body.notes,
    )
    return AdvanceChequeOut.model_validate(cheque)


# ── Queries ──────────────────────────────────────────────────

@router.get("/grower/{grower_id}", response_model=list[AdvanceChequeOut])
async def outstanding_advances(
    grower_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("advances.read")),
):
    advances = await get_outstanding_advances(db, grower_id)
    return [AdvanceChequeOut.model_validate(a) for a in advances]


@router.get("/{advance_id}/deductions", response_model=list[AdvanceDeductionOut])
async def deduction_history(
    advance_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("advances.read")),
):
    if await db.get(AdvanceCheque, advance_id) is None:
        raise ResourceNotFoundError("Advance cheque", advance_id)
    deductions = await get_deduction_history(db, advance_id)
    return [AdvanceDeductionOut.model_validate(d) for d in deductions]


# ── Waterfall ────────────────────────────────────────────────

@router.post("/preview", response_model=DeductionResultOut)
async def preview_deductions(
    body: ApplyDeductionsRequest,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("advances.read")),
):
    result = await suggest_advance_deductions(db, body.grower_id, body.payment_amount)
    return DeductionResultOut.model_validate(result)


@router.post("/apply", response_model=DeductionResultOut)
async def apply_deductions(
    body: ApplyDeductionsRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("advances.write")),
):
    """Draw a payment down against the grower's advances in its own transaction."""
    result = await apply_advance_deductions_atomic(
        db, actor, body.grower_id, body.payment_batch_id, body.payment_amount
    )
    return DeductionResultOut.model_validate(result)


@router.post("/deductions/{deduction_id}/reverse", response_model=AdvanceDeductionOut)
async def reverse_deduction(
    deduction_id: str,
    body: ReverseDeductionRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("advances.write")),
):
    deduction = await reverse_advance_deduction(db, actor, deduction_id, body.reason)
    return AdvanceDeductionOut.model_validate(deduction)
