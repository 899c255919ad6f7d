"""Payment batch lifecycle: numbering, approve, post, finalize and void."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.middleware.exceptions import (
    IntegrityViolation, InvalidTransition, ResourceNotFoundError, ValidationError,
)
from app.models import (
    AdvanceCheque, AdvanceStatus, AllocationStatus, BatchStatus, Cheque, ChequeStatus,
    GrowerAccount, PaymentBatch, PriceScheduleLock, Receipt, ReceiptPaymentAllocation,
)
from app.services.advance_deductions import create_advance_cheque
from app.services.batch_lifecycle import (
    approve_batch, batch_grower_summary, create_batch, list_batches, post_batch,
    process_payments, void_batch,
)
from app.services.sequence_validator import validate_can_void

D = Decimal
CHEQUE_DATE = date(2025, 8, 6)


async def reload(db, model, ident):
    return await db.get(model, ident, populate_existing=True)


async def posted_round(db, actor, run_round, round_number):
    result = await run_round(round_number)
    batch_id = result.created_batch.id
    await approve_batch(db, actor, batch_id)
    await db.commit()
    await post_batch(db, actor, batch_id, cheque_date=CHEQUE_DATE)
    return batch_id


@pytest.mark.integration
@pytest.mark.asyncio
class TestCreateBatch:

    async def test_sequential_numbers_per_type_and_year(self, db_session, payment_types, actor):
        numbers = []
        for type_code, year in (("ADV1", 2025), ("ADV1", 2025), ("ADV2", 2025), ("ADV1", 2026)):
            batch = await create_batch(
                db_session, actor, type_code=type_code, crop_year=year,
                batch_date=date(year, 8, 1),
            )
            numbers.append(batch.batch_number)
        await db_session.commit()

        assert numbers == ["ADV1-2025-001", "ADV1-2025-002", "ADV2-2025-001", "ADV1-2026-001"]

    async def test_new_batch_is_draft(self, db_session, payment_types, actor):
        batch = await create_batch(
            db_session, actor, payment_type_id=1, crop_year=2025, batch_date=date(2025, 8, 1)
        )
        assert batch.status == BatchStatus.DRAFT
        assert batch.created_by == actor.user_id

    async def test_unknown_payment_type(self, db_session, payment_types, actor):
        with pytest.raises(ValidationError) as exc:
            await create_batch(
                db_session, actor, type_code="ADV9", crop_year=2025, batch_date=date(2025, 8, 1)
            )
        assert exc.value.error_code == "UNKNOWN_PAYMENT_TYPE"

    async def test_list_filters(self, db_session, payment_types, actor):
        await create_batch(db_session, actor, type_code="ADV1", crop_year=2025, batch_date=date(2025, 8, 1))
        await create_batch(db_session, actor, type_code="ADV2", crop_year=2025, batch_date=date(2025, 9, 1))
        await create_batch(db_session, actor, type_code="ADV1", crop_year=2024, batch_date=date(2024, 8, 1))
        await db_session.commit()

        assert len(await list_batches(db_session)) == 3
        assert len(await list_batches(db_session, crop_year=2025)) == 2
        adv2 = await list_batches(db_session, type_code="ADV2")
        assert [b.batch_number for b in adv2] == ["ADV2-2025-001"]


@pytest.mark.integration
@pytest.mark.asyncio
class TestTransitions:

    async def test_approve_draft(self, db_session, seed, actor, run_round):
        result = await run_round(1)
        approved = await approve_batch(db_session, actor, result.created_batch.id)

        assert approved.success
        assert approved.previous_status == BatchStatus.DRAFT
        assert approved.status == BatchStatus.APPROVED

    async def test_approve_twice_reports_failure(self, db_session, seed, actor, run_round):
        result = await run_round(1)
        await approve_batch(db_session, actor, result.created_batch.id)

        again = await approve_batch(db_session, actor, result.created_batch.id)
        assert not again.success
        assert again.status == BatchStatus.APPROVED

    async def test_post_requires_approval(self, db_session, seed, actor, run_round):
        result = await run_round(1)
        posted = await post_batch(db_session, actor, result.created_batch.id)

        assert not posted.success
        assert posted.status == BatchStatus.DRAFT
        assert (await db_session.execute(select(Cheque))).scalars().all() == []

    async def test_finalize_requires_posted(self, db_session, seed, actor, run_round):
        result = await run_round(1)
        with pytest.raises(InvalidTransition):
            await process_payments(db_session, actor, result.created_batch.id)

    async def test_finalize(self, db_session, seed, actor, run_round):
        batch_id = await posted_round(db_session, actor, run_round, 1)

        done = await process_payments(db_session, actor, batch_id)
        assert done.status == BatchStatus.FINALIZED

    async def test_unknown_batch(self, db_session, seed, actor):
        with pytest.raises(ResourceNotFoundError):
            await approve_batch(db_session, actor, 999)


@pytest.mark.integration
@pytest.mark.asyncio
class TestPost:

    async def test_post_writes_ledger_locks_and_cheques(self, db_session, seed, actor, run_round):
        batch_id = await posted_round(db_session, actor, run_round, 1)

        batch = await reload(db_session, PaymentBatch, batch_id)
        assert batch.status == BatchStatus.POSTED
        assert batch.posted_by == actor.user_id

        allocations = (await db_session.execute(
            select(ReceiptPaymentAllocation.status)
            .where(ReceiptPaymentAllocation.payment_batch_id == batch_id)
        )).scalars().all()
        assert allocations == [AllocationStatus.POSTED] * 3

        credits = (await db_session.execute(
            select(GrowerAccount).where(GrowerAccount.payment_batch_id == batch_id)
        )).scalars().all()
        assert len(credits) == 3
        assert sum(c.credit_amount for c in credits) == D("348.00")

        locks = (await db_session.execute(
            select(PriceScheduleLock).where(PriceScheduleLock.payment_batch_id == batch_id)
        )).scalars().all()
        assert [l.price_schedule_id for l in locks] == [seed.schedule_id]

        cheques = (await db_session.execute(
            select(Cheque).order_by(Cheque.cheque_number)
        )).scalars().all()
        assert [c.cheque_number for c in cheques] == ["2025-00001", "2025-00002"]
        by_grower = {c.grower_id: c for c in cheques}
        assert by_grower[seed.growers["G001"].id].net_amount == D("299.00")
        assert by_grower[seed.growers["G002"].id].net_amount == D("49.00")

    async def test_post_recovers_advances(self, db_session, seed, actor, run_round):
        grower = seed.growers["G001"]
        advance = await create_advance_cheque(
            db_session, actor, grower_id=grower.id, amount=D("250"),
            advance_date=date(2025, 6, 1),
        )
        await db_session.commit()

        result = await run_round(1)
        batch_id = result.created_batch.id
        await approve_batch(db_session, actor, batch_id)
        await db_session.commit()
        posted = await post_batch(db_session, actor, batch_id, cheque_date=CHEQUE_DATE)

        summary = {c.grower_id: c for c in posted.cheques}[grower.id]
        assert summary.gross_amount == D("299.00")
        assert summary.advance_deductions == D("250.00")
        assert summary.net_amount == D("49.00")
        assert posted.total_deductions == D("250.00")
        assert posted.warnings

        advance = await reload(db_session, AdvanceCheque, advance.id)
        assert advance.status == AdvanceStatus.FULLY_DEDUCTED

    async def test_grower_summary(self, db_session, seed, actor, run_round):
        result = await run_round(1)
        rows = await batch_grower_summary(db_session, result.created_batch.id)

        assert [(r["grower_number"], r["receipt_count"], r["amount"]) for r in rows] == [
            ("G001", 2, D("299.00")),
            ("G002", 1, D("49.00")),
        ]


@pytest.mark.integration
@pytest.mark.asyncio
class TestVoid:

    async def test_void_refused_while_later_round_depends(self, db_session, seed, actor, run_round):
        first = (await run_round(1)).created_batch.id
        second = (await run_round(2)).created_batch.id

        check = await validate_can_void(db_session, first)
        assert not check.allowed
        assert len(check.conflicts) == 1
        conflict = check.conflicts[0]
        assert conflict.batch_id == second
        assert conflict.type_code == "ADV2"
        assert conflict.receipt_count == 3
        assert [s.batch_id for s in check.remediation] == [second, first]

        with pytest.raises(IntegrityViolation) as exc:
            await void_batch(db_session, actor, first, "wrong prices")
        assert exc.value.details["remediation"][0]["batch_id"] == second

        batch = await reload(db_session, PaymentBatch, first)
        assert batch.status == BatchStatus.DRAFT

    async def test_conflicts_grouped_by_batch(self, db_session, seed, actor, run_round):
        first = (await run_round(1)).created_batch.id
        g002 = seed.growers["G002"].id
        only_g001 = (await run_round(2, exclude_grower_ids=[g002])).created_batch.id
        rest = (await run_round(2)).created_batch.id

        check = await validate_can_void(db_session, first)

        assert [c.batch_id for c in check.conflicts] == [rest, only_g001]
        assert [c.receipt_numbers for c in check.conflicts] == [["R-2001"], ["R-1001", "R-1002"]]
        assert [s.batch_id for s in check.remediation] == [rest, only_g001, first]

    async def test_later_round_can_be_voided(self, db_session, seed, actor, run_round):
        await run_round(1)
        second = (await run_round(2)).created_batch.id

        check = await validate_can_void(db_session, second)
        assert check.allowed
        assert check.remediation == []

    async def test_void_posted_batch_cascades(self, db_session, seed, actor, run_round):
        grower = seed.growers["G001"]
        advance = await create_advance_cheque(
            db_session, actor, grower_id=grower.id, amount=D("100"),
            advance_date=date(2025, 6, 1),
        )
        await db_session.commit()
        batch_id = await posted_round(db_session, actor, run_round, 1)

        result = await void_batch(db_session, actor, batch_id, "Priced from the wrong schedule")

        assert result.allocations_voided == 3
        assert result.cheques_voided == 2
        assert result.deductions_reversed == 1
        assert result.locks_released == 1
        assert result.receipts_cleared == 3

        batch = await reload(db_session, PaymentBatch, batch_id)
        assert batch.status == BatchStatus.VOIDED
        assert batch.deleted_by == actor.user_id
        assert "Priced from the wrong schedule" in batch.notes

        cheques = (await db_session.execute(select(Cheque.status))).scalars().all()
        assert set(cheques) == {ChequeStatus.VOIDED}

        ledger = (await db_session.execute(
            select(GrowerAccount.is_deleted).where(GrowerAccount.payment_batch_id == batch_id)
        )).scalars().all()
        assert ledger and all(ledger)

        advance = await reload(db_session, AdvanceCheque, advance.id)
        assert advance.current_amount == D("100")
        assert advance.status == AdvanceStatus.ACTIVE

        receipt = await reload(db_session, Receipt, seed.receipts["R-1001"].id)
        assert receipt.advance_1_price is None
        assert receipt.advance_1_batch_id is None

    async def test_voided_receipts_are_payable_again(self, db_session, seed, actor, run_round):
        first = (await run_round(1)).created_batch.id
        await void_batch(db_session, actor, first, "redo")

        again = await run_round(1)
        assert again.receipt_count == 3
        assert again.created_batch.batch_number == "ADV1-2025-002"

    async def test_void_twice(self, db_session, seed, actor, run_round):
        first = (await run_round(1)).created_batch.id
        await void_batch(db_session, actor, first, "redo")

        with pytest.raises(InvalidTransition):
            await void_batch(db_session, actor, first, "again")

        check = await validate_can_void(db_session, first)
        assert not check.allowed


async def _failing_log(*args, **kwargs):
    raise RuntimeError("audit store unavailable")


@pytest.mark.integration
@pytest.mark.asyncio
class TestRollbackOnFailure:

    async def test_failed_post_leaves_batch_approved(self, db_session, seed, actor, run_round, monkeypatch):
        from app.services import batch_lifecycle

        grower = seed.growers["G001"]
        advance = await create_advance_cheque(
            db_session, actor, grower_id=grower.id, amount=D("100"),
            advance_date=date(2025, 6, 1),
        )
        await db_session.commit()
        advance_id = advance.id
        batch_id = (await run_round(1)).created_batch.id
        await approve_batch(db_session, actor, batch_id)
        await db_session.commit()

        monkeypatch.setattr(batch_lifecycle, "log_activity", _failing_log)
        with pytest.raises(RuntimeError):
            await post_batch(db_session, actor, batch_id, cheque_date=CHEQUE_DATE)

        batch = await reload(db_session, PaymentBatch, batch_id)
        assert batch.status == BatchStatus.APPROVED
        assert batch.posted_by is None

        allocations = (await db_session.execute(
            select(ReceiptPaymentAllocation.status)
            .where(ReceiptPaymentAllocation.payment_batch_id == batch_id)
        )).scalars().all()
        assert allocations == [AllocationStatus.PENDING] * 3

        assert (await db_session.execute(select(Cheque))).scalars().all() == []
        assert (await db_session.execute(select(GrowerAccount))).scalars().all() == []
        assert (await db_session.execute(select(PriceScheduleLock))).scalars().all() == []

        advance = await reload(db_session, AdvanceCheque, advance_id)
        assert advance.current_amount == D("100")
        assert advance.status == AdvanceStatus.ACTIVE

    async def test_failed_void_leaves_batch_posted(self, db_session, seed, actor, run_round, monkeypatch):
        from app.services import batch_lifecycle

        grower = seed.growers["G001"]
        advance = await create_advance_cheque(
            db_session, actor, grower_id=grower.id, amount=D("100"),
            advance_date=date(2025, 6, 1),
        )
        await db_session.commit()
        advance_id = advance.id
        receipt_id = seed.receipts["R-1001"].id
        batch_id = await posted_round(db_session, actor, run_round, 1)

        monkeypatch.setattr(batch_lifecycle, "log_activity", _failing_log)
        with pytest.raises(RuntimeError):
            await void_batch(db_session, actor, batch_id, "redo")

        batch = await reload(db_session, PaymentBatch, batch_id)
        assert batch.status == BatchStatus.POSTED
        assert batch.deleted_at is None

        allocations = (await db_session.execute(
            select(ReceiptPaymentAllocation.status)
            .where(ReceiptPaymentAllocation.payment_batch_id == batch_id)
        )).scalars().all()
        assert allocations == [AllocationStatus.POSTED] * 3

        cheques = (await db_session.execute(select(Cheque.status))).scalars().all()
        assert set(cheques) == {ChequeStatus.GENERATED}

        advance = await reload(db_session, AdvanceCheque, advance_id)
        assert advance.current_amount == D("0")
        assert advance.status == AdvanceStatus.FULLY_DEDUCTED

        receipt = await reload(db_session, Receipt, receipt_id)
        assert receipt.advance_1_batch_id == batch_id
