"""Payment batch lifecycle.

Endpoints:
    GET  /api/payment-batches                  List batches
    GET  /api/payment-batches/{id}             Batch detail with per-grower totals
    POST /api/payment-batches/{id}/approve     Draft → Approved
    POST /api/payment-batches/{id}/post        Approved → Posted (ledger, cheques)
    POST /api/payment-batches/{id}/finalize    Posted → Finalized
    GET  /api/payment-batches/{id}/void-check  Would a void be allowed?
    POST /api/payment-batches/{id}/void        Void with full cascade
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_permission
from app.database import get_db
from app.middleware.exceptions import InvalidTransition
from app.models.payment_batch import BatchStatus
from app.schemas.payment_batch import (
    BatchGrowerOut,
    PaymentBatchDetail,
    PaymentBatchOut,
    PostBatchOut,
    PostBatchRequest,
    TransitionOut,
    VoidBatchOut,
    VoidBatchRequest,
    VoidCheckOut,
)
from app.services.batch_lifecycle import (
    approve_batch,
    batch_grower_summary,
    get_batch,
    list_batches,
    post_batch,
    process_payments,
    void_batch,
)
from app.services.sequence_validator import validate_can_void
from app.utils.activity import Actor

router = APIRouter()


# ── GET /api/payment-batches ─────────────────────────────────

@router.get("", response_model=list[PaymentBatchOut])
async def list_payment_batches(
    crop_year: int | None = Query(None),
    status: BatchStatus | None = Query(None),
    type_code: str | None = Query(None),
    include_voided: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("financials.read")),
):
    batches = await list_batches(
        db,
        crop_year=crop_year,
        status=status,
        type_code=type_code,
        include_voided=include_voided,
    )
    return [PaymentBatchOut.model_validate(b) for b in batches]


# ── GET /api/payment-batches/{id} ────────────────────────────

@router.get("/{batch_id}", response_model=PaymentBatchDetail)
async def get_payment_batch(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("financials.read")),
):
    batch = await get_batch(db, batch_id)
    detail = PaymentBatchDetail.model_validate(batch)
    detail.growers = [
        BatchGrowerOut(**row) for row in await batch_grower_summary(db, batch.id)
    ]
    return detail


# ── Lifecycle transitions ────────────────────────────────────

@router.post("/{batch_id}/approve", response_model=TransitionOut)
async def approve_payment_batch(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("financials.write")),
):
    """Approve a Draft batch.  A non-Draft batch returns success=false."""
    result = await approve_batch(db, actor, batch_id)
    return TransitionOut.model_validate(result)


@router.post("/{batch_id}/post", response_model=PostBatchOut)
async def post_payment_batch(
    batch_id: int,
    body: PostBatchRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("financials.write")),
):
    result = await post_batch(
        db, actor, batch_id, cheque_date=body.cheque_date if body else None
    )
    if not result.success:
        raise InvalidTransition(
            f"Batch {result.batch_number}", result.status.value, BatchStatus.POSTED.value
        )
    return PostBatchOut.model_validate(result)


@router.post("/{batch_id}/finalize", response_model=TransitionOut)
async def finalize_payment_batch(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("financials.write")),
):
    result = await process_payments(db, actor, batch_id)
    return TransitionOut.model_validate(result)


# ── Void ─────────────────────────────────────────────────────

@router.get("/{batch_id}/void-check", response_model=VoidCheckOut)
async def check_void(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("financials.read")),
):
    """Report whether the batch can be voided and, if not, what to void first."""
    result = await validate_can_void(db, batch_id)
    return VoidCheckOut.model_validate(result)


@router.post("/{batch_id}/void", response_model=VoidBatchOut)
async def void_payment_batch(
    batch_id: int,
    body: VoidBatchRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("financials.write")),
):
    """Void a batch.  Refused with 409 and a remediation plan when later batches depend on it."""
    result = await void_batch(db, actor, batch_id, body.reason)
    return VoidBatchOut.model_validate(result)
