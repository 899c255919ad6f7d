"""Advance payment runs.

Endpoints:
    POST /api/payment-runs/test     Simulate an advance round (no writes)
    POST /api/payment-runs/actual   Run an advance round into a Draft batch
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_permission
from app.database import get_db
from app.schemas.payment_run import PaymentRunOut, PaymentRunRequest
from app.services.payment_run import (
    PaymentRunResult, RunParameters, perform_test_run, process_actual_run,
)
from app.utils.activity import Actor

router = APIRouter()


def _params(body: PaymentRunRequest) -> RunParameters:
    return RunParameters(**body.model_dump())


def _out(result: PaymentRunResult) -> PaymentRunOut:
    return PaymentRunOut.model_validate({
        "round_number": result.round_number,
        "test_run": result.test_run,
        "success": result.success,
        "aborted": result.aborted,
        "cancelled": result.cancelled,
        "receipt_count": result.receipt_count,
        "total_amount": result.total_amount,
        "created_batch": result.created_batch,
        "failed_growers": result.failed_growers,
        "skipped_growers": result.skipped_growers,
        "errors": result.errors,
        "growers": result.growers,
    }, from_attributes=True)


# ── POST /api/payment-runs/test ──────────────────────────────

@router.post("/test", response_model=PaymentRunOut)
async def simulate_run(
    body: PaymentRunRequest,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("financials.read")),
):
    """Calculate what an advance round would pay, without persisting it."""
    result = await perform_test_run(db, _params(body))
    return _out(result)


# ── POST /api/payment-runs/actual ────────────────────────────

@router.post("/actual", response_model=PaymentRunOut)
async def actual_run(
    body: PaymentRunRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("financials.write")),
):
    """Pay an advance round.  Growers are committed one at a time."""
    result = await process_actual_run(db, actor, _params(body))
    return _out(result)
