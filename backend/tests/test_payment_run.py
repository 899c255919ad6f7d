"""Advance payment runs: test runs, actual runs and failure isolation."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models import (
    AccountEntry, ActivityLog, BatchStatus, PaymentBatch, Receipt, ReceiptPaymentAllocation,
)
from app.services.payment_run import (
    ErrorCategory, GrowerOutcome, Providers, RunParameters, perform_test_run,
    process_actual_run,
)
from app.services.providers import SqlReceiptProvider

D = Decimal

CROP_YEAR = 2025
CUTOFF = date(2025, 7, 31)
PAYMENT_DATE = date(2025, 8, 5)


def params(round_number: int = 1, **overrides) -> RunParameters:
    return RunParameters(
        round_number=round_number,
        payment_date=PAYMENT_DATE,
        cutoff_date=CUTOFF,
        crop_year=CROP_YEAR,
        **overrides,
    )


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


def by_number(result):
    return {
        line.receipt_number: line
        for grower in result.growers for line in grower.receipts
    }


@pytest.mark.integration
@pytest.mark.asyncio
class TestTestRun:

    async def test_calculates_first_advance(self, db_session, seed):
        result = await perform_test_run(db_session, params(1))

        assert result.test_run
        assert result.success
        assert result.created_batch is None

        lines = by_number(result)
        early = lines["R-1001"]
        assert early.advance_amount == D("100.00")
        assert early.premium_amount == D("5.00")
        assert early.deduction_amount == D("-2.00")
        assert early.total_amount == D("103.00")

        late = lines["R-1002"]
        assert late.premium_amount == D("0")
        assert late.total_amount == D("196.00")

        assert result.receipt_count == 3
        assert result.total_amount == D("348.00")
        assert result.skipped_growers == [seed.growers["G003"].id]

    async def test_writes_nothing(self, db_session, seed):
        await perform_test_run(db_session, params(1))

        assert await count(db_session, PaymentBatch) == 0
        assert await count(db_session, ReceiptPaymentAllocation) == 0
        assert await count(db_session, AccountEntry) == 0
        assert await count(db_session, ActivityLog) == 0

    async def test_filters(self, db_session, seed):
        result = await perform_test_run(db_session, params(1, exclude_pay_groups=["B"]))
        assert set(by_number(result)) == {"R-1001", "R-1002"}

        result = await perform_test_run(
            db_session, params(1, exclude_grower_ids=[seed.growers["G001"].id])
        )
        assert set(by_number(result)) == {"R-2001"}

        result = await perform_test_run(db_session, params(1, product_codes=["XX"]))
        assert result.growers == []

    async def test_second_round_needs_first(self, db_session, seed):
        result = await perform_test_run(db_session, params(2))
        assert result.growers == []
        assert result.success

    async def test_progress_reported(self, db_session, seed):
        messages = []
        await perform_test_run(db_session, params(1), progress=messages.append)
        assert any("Processing grower" in m for m in messages)


@pytest.mark.integration
@pytest.mark.asyncio
class TestActualRun:

    async def test_creates_draft_batch_and_allocations(self, db_session, seed, run_round):
        result = await run_round(1)

        assert result.success
        batch = result.created_batch
        assert batch.batch_number == "ADV1-2025-001"
        assert batch.status == BatchStatus.DRAFT
        assert batch.total_growers == 2
        assert batch.total_receipts == 3
        assert batch.total_amount == D("348.00")

        receipt = await db_session.get(Receipt, seed.receipts["R-1001"].id, populate_existing=True)
        assert receipt.advance_1_price == D("1.00")
        assert receipt.advance_1_batch_id == batch.id

        allocations = (await db_session.execute(
            select(ReceiptPaymentAllocation).where(
                ReceiptPaymentAllocation.receipt_id == receipt.id
            )
        )).scalars().all()
        assert len(allocations) == 1
        assert allocations[0].price_per_unit == D("1.00")
        assert allocations[0].amount_paid == D("103.00")

        entries = (await db_session.execute(
            select(AccountEntry.entry_type, AccountEntry.dollars)
            .where(AccountEntry.receipt_id == receipt.id)
            .order_by(AccountEntry.entry_type)
        )).all()
        assert entries == [("ADV1", D("100.00")), ("DED", D("-2.00")), ("PREM", D("5.00"))]

    async def test_held_receipts_stay_unpaid(self, db_session, seed, run_round):
        await run_round(1)
        held = await db_session.get(Receipt, seed.receipts["R-3001"].id, populate_existing=True)
        assert held.advance_1_batch_id is None

    async def test_receipt_paid_once_per_round(self, db_session, seed, run_round):
        await run_round(1)
        again = await run_round(1)

        # Only the held grower's receipt is still eligible; nothing new is paid
        assert again.receipt_count == 0
        assert await count(db_session, ReceiptPaymentAllocation) == 3

    async def test_three_rounds_sum_to_running_price(self, db_session, seed, run_round):
        totals = D("0")
        for round_number in (1, 2, 3):
            result = await run_round(round_number)
            assert result.success
            totals += sum(
                (line.advance_amount for line in by_number(result).values()), D("0")
            )

        # R(3) = max(1.00, 1.20, 1.10) = 1.20 over 350 lb paid
        assert totals == D("1.20") * D("350")

        second = await db_session.execute(
            select(PaymentBatch.batch_number).order_by(PaymentBatch.id)
        )
        assert second.scalars().all() == ["ADV1-2025-001", "ADV2-2025-001", "ADV3-2025-001"]

    async def test_round_two_no_premium_or_deduction(self, db_session, seed, run_round):
        await run_round(1)
        result = await run_round(2)

        line = by_number(result)["R-1001"]
        assert line.advance_price == D("0.20")
        assert line.premium_amount == D("0")
        assert line.deduction_amount == D("0")

    async def test_no_receipts_creates_no_batch(self, db_session, seed, run_round):
        result = await run_round(1, product_codes=["XX"])
        assert result.created_batch is None
        assert await count(db_session, PaymentBatch) == 0

    async def test_missing_schedule_isolated_to_receipt(self, db_session, seed, run_round, make_receipt):
        await make_receipt("R-1003", seed.growers["G001"], "40", process="JU")
        await db_session.commit()

        result = await run_round(1)

        assert not result.success
        assert [e.category for e in result.errors] == [ErrorCategory.CALCULATION]
        assert result.errors[0].receipt_id is not None
        assert result.errors[0].retryable
        # Siblings of the failed receipt are still paid
        assert result.created_batch.total_receipts == 3
        unpaid = await db_session.execute(
            select(Receipt.advance_1_batch_id).where(Receipt.receipt_number == "R-1003")
        )
        assert unpaid.scalar_one() is None

    async def test_missing_grower_is_a_calculation_error(self, db_session, seed):
        providers = Providers.for_session(db_session)
        real = providers.growers

        class Growers:
            async def get_grower(self, grower_id):
                if grower_id == seed.growers["G002"].id:
                    return None
                return await real.get_grower(grower_id)

        providers.growers = Growers()
        result = await perform_test_run(db_session, params(1), providers=providers)

        assert result.failed_growers == [seed.growers["G002"].id]
        assert result.errors[0].category == ErrorCategory.CALCULATION
        assert result.total_amount == D("299.00")

    async def test_persistence_failure_rolls_back_one_grower(self, db_session, seed, actor):
        providers = Providers.for_session(db_session)
        g001 = seed.growers["G001"].id
        g002 = seed.growers["G002"].id
        failing_id = seed.receipts["R-2001"].id

        class FailingReceipts(SqlReceiptProvider):
            async def record_advance(self, receipt_id, round_number, price, batch_id):
                if receipt_id == failing_id:
                    return False
                return await super().record_advance(receipt_id, round_number, price, batch_id)

        providers.receipts = FailingReceipts(db_session)
        result = await process_actual_run(db_session, actor, params(1), providers=providers)

        assert not result.aborted
        assert result.failed_growers == [g002]
        assert [e.category for e in result.errors] == [ErrorCategory.PERSISTENCE]
        outcomes = {g.grower_id: g.outcome for g in result.growers}
        assert outcomes[g001] == GrowerOutcome.PAID
        assert outcomes[g002] == GrowerOutcome.FAILED

        # G002's allocation was rolled back, G001's two are kept
        assert await count(db_session, ReceiptPaymentAllocation) == 2
        assert result.created_batch.total_amount == D("299.00")

    async def test_cancel_stops_between_growers(self, db_session, seed, actor):
        cancel = asyncio.Event()
        cancel.set()

        result = await process_actual_run(db_session, actor, params(1), cancel=cancel)

        assert result.cancelled
        assert result.errors[0].category == ErrorCategory.CANCELLED
        assert result.created_batch is not None
        assert result.created_batch.total_receipts == 0

    async def test_unexpected_error_aborts_run(self, db_session, seed, actor):
        providers = Providers.for_session(db_session)

        class Exploding:
            async def add_entries(self, entries):
                raise RuntimeError("ledger offline")

        providers.ledger = Exploding()
        result = await process_actual_run(db_session, actor, params(1), providers=providers)

        assert result.aborted
        assert result.errors[-1].category == ErrorCategory.CRITICAL
        assert not result.errors[-1].retryable
        logged = await db_session.execute(
            select(ActivityLog.action).where(ActivityLog.action == "run_aborted")
        )
        assert logged.scalar_one() == "run_aborted"

    async def test_invalid_round_rejected(self, db_session, seed):
        from app.middleware.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await perform_test_run(db_session, params(4))
