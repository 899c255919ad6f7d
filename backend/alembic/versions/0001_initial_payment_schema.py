"""Initial payment schema — reference data, batches, advances, ledgers.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Seeds the four payment types: ADV1..ADV3 (sequence 1..3) and FINAL.
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def _status(name: str, default: str) -> sa.Column:
    return sa.Column(name, sa.String(30), nullable=False, server_default=default, index=True)


def upgrade() -> None:
    # ── Reference data ───────────────────────────────────────

    op.create_table(
        "growers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("grower_number", sa.String(20), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("currency", sa.String(3), server_default="CAD"),
        sa.Column("price_level", sa.Integer(), server_default="1"),
        sa.Column("pay_group", sa.String(20), index=True),
        sa.Column("on_hold", sa.Boolean(), server_default="false"),
        sa.Column("notes", sa.Text()),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(20), nullable=False, unique=True),
        sa.Column("description", sa.String(255)),
        sa.Column("marketing_deduction_rate", sa.Numeric(12, 4), server_default="0"),
    )

    op.create_table(
        "price_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("product_code", sa.String(20), nullable=False, index=True),
        sa.Column("process_code", sa.String(20), nullable=False, index=True),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date()),
        sa.Column("time_premium_enabled", sa.Boolean(), server_default="false"),
        sa.Column("cad_premium_amount", sa.Numeric(12, 4), server_default="0"),
        sa.Column("usd_premium_amount", sa.Numeric(12, 4), server_default="0"),
        sa.Column("premium_cutoff_time", sa.Time()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "price_schedule_details",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("price_schedule_id", sa.Integer(), sa.ForeignKey("price_schedules.id"), nullable=False, index=True),
        sa.Column("advance_number", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="CAD"),
        sa.Column("price_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("grade", sa.Integer()),
        sa.Column("price_per_unit", sa.Numeric(12, 4), nullable=False),
    )

    op.create_table(
        "receipts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("receipt_number", sa.String(30), nullable=False, unique=True, index=True),
        sa.Column("grower_id", sa.String(36), sa.ForeignKey("growers.id"), nullable=False, index=True),
        sa.Column("product_code", sa.String(20), nullable=False),
        sa.Column("process_code", sa.String(20), nullable=False),
        sa.Column("receipt_date", sa.Date(), nullable=False, index=True),
        sa.Column("receipt_time", sa.Time()),
        sa.Column("net_weight", sa.Numeric(12, 2), nullable=False),
        sa.Column("grade", sa.Integer(), server_default="1"),
        sa.Column("crop_year", sa.Integer(), nullable=False, index=True),
        sa.Column("advance_1_price", sa.Numeric(12, 4)),
        sa.Column("advance_1_batch_id", sa.Integer()),
        sa.Column("advance_2_price", sa.Numeric(12, 4)),
        sa.Column("advance_2_batch_id", sa.Integer()),
        sa.Column("advance_3_price", sa.Numeric(12, 4)),
        sa.Column("advance_3_batch_id", sa.Integer()),
        sa.Column("is_voided", sa.Boolean(), server_default="false"),
        sa.Column("is_deleted", sa.Boolean(), server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Batches and allocations ──────────────────────────────

    payment_types = op.create_table(
        "payment_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type_code", sa.String(20), nullable=False, unique=True),
        sa.Column("type_name", sa.String(100), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("is_final", sa.Boolean(), server_default="false"),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
    )

    op.create_table(
        "payment_batches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("batch_number", sa.String(50), nullable=False, unique=True, index=True),
        sa.Column("payment_type_id", sa.Integer(), sa.ForeignKey("payment_types.id"), nullable=False),
        sa.Column("crop_year", sa.Integer(), nullable=False, index=True),
        sa.Column("batch_date", sa.Date(), nullable=False),
        sa.Column("cutoff_date", sa.Date()),
        _status("status", "Draft"),
        sa.Column("total_growers", sa.Integer(), server_default="0"),
        sa.Column("total_receipts", sa.Integer(), server_default="0"),
        sa.Column("total_amount", sa.Numeric(14, 2), server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("approved_by", sa.String(100)),
        sa.Column("approved_at", sa.DateTime()),
        sa.Column("posted_by", sa.String(100)),
        sa.Column("posted_at", sa.DateTime()),
        sa.Column("processed_by", sa.String(100)),
        sa.Column("processed_at", sa.DateTime()),
        sa.Column("deleted_by", sa.String(100)),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "receipt_payment_allocations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("receipt_id", sa.String(36), sa.ForeignKey("receipts.id"), nullable=False, index=True),
        sa.Column("payment_batch_id", sa.Integer(), sa.ForeignKey("payment_batches.id"), nullable=False, index=True),
        sa.Column("payment_type_id", sa.Integer(), sa.ForeignKey("payment_types.id"), nullable=False),
        sa.Column("price_schedule_id", sa.Integer(), sa.ForeignKey("price_schedules.id")),
        sa.Column("price_per_unit", sa.Numeric(12, 4), nullable=False),
        sa.Column("quantity_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(14, 2), nullable=False),
        _status("status", "Pending"),
        sa.Column("allocated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("voided_at", sa.DateTime()),
        sa.Column("voided_by", sa.String(100)),
    )

    op.create_table(
        "price_schedule_locks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("price_schedule_id", sa.Integer(), sa.ForeignKey("price_schedules.id"), nullable=False, index=True),
        sa.Column("payment_type_id", sa.Integer(), sa.ForeignKey("payment_types.id"), nullable=False),
        sa.Column("payment_batch_id", sa.Integer(), sa.ForeignKey("payment_batches.id"), nullable=False, index=True),
        sa.Column("locked_by", sa.String(100)),
        sa.Column("locked_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("is_deleted", sa.Boolean(), server_default="false"),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("deleted_by", sa.String(100)),
    )

    # ── Advances and cheques ─────────────────────────────────

    op.create_table(
        "advance_cheques",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cheque_number", sa.String(30), nullable=False, unique=True, index=True),
        sa.Column("grower_id", sa.String(36), sa.ForeignKey("growers.id"), nullable=False, index=True),
        sa.Column("advance_date", sa.Date(), nullable=False),
        sa.Column("original_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("current_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("deducted_total", sa.Numeric(14, 2), server_default="0"),
        _status("status", "Active"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("current_amount >= 0", name="ck_advance_cheques_current_amount"),
    )

    op.create_table(
        "advance_deductions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("advance_cheque_id", sa.String(36), sa.ForeignKey("advance_cheques.id"), nullable=False, index=True),
        sa.Column("payment_batch_id", sa.Integer(), sa.ForeignKey("payment_batches.id"), index=True),
        sa.Column("deduction_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("deduction_date", sa.Date(), server_default=sa.func.current_date()),
        sa.Column("previous_status", sa.String(30), nullable=False),
        _status("status", "Active"),
        sa.Column("created_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("reversed_by", sa.String(100)),
        sa.Column("reversed_at", sa.DateTime()),
        sa.Column("reversal_reason", sa.Text()),
    )

    op.create_table(
        "cheques",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cheque_number", sa.String(30), nullable=False, unique=True, index=True),
        sa.Column("payment_batch_id", sa.Integer(), sa.ForeignKey("payment_batches.id"), nullable=False, index=True),
        sa.Column("grower_id", sa.String(36), sa.ForeignKey("growers.id"), nullable=False, index=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("gross_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("advance_deductions", sa.Numeric(14, 2), server_default="0"),
        sa.Column("net_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("cheque_date", sa.Date(), nullable=False),
        _status("status", "Generated"),
        sa.Column("created_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("voided_by", sa.String(100)),
        sa.Column("voided_at", sa.DateTime()),
    )

    # ── Ledgers ──────────────────────────────────────────────

    op.create_table(
        "account_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("grower_id", sa.String(36), sa.ForeignKey("growers.id"), nullable=False, index=True),
        sa.Column("receipt_id", sa.String(36), sa.ForeignKey("receipts.id"), nullable=False),
        sa.Column("payment_batch_id", sa.Integer(), sa.ForeignKey("payment_batches.id"), nullable=False, index=True),
        sa.Column("entry_type", sa.String(10), nullable=False),
        sa.Column("advance_number", sa.Integer(), server_default="0"),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("crop_year", sa.Integer(), nullable=False),
        sa.Column("product_code", sa.String(20), nullable=False),
        sa.Column("process_code", sa.String(20), nullable=False),
        sa.Column("grade", sa.Integer(), server_default="1"),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 4), nullable=False),
        sa.Column("dollars", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default="false"),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("deleted_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "grower_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("grower_id", sa.String(36), sa.ForeignKey("growers.id"), nullable=False, index=True),
        sa.Column("payment_batch_id", sa.Integer(), sa.ForeignKey("payment_batches.id"), nullable=False, index=True),
        sa.Column("allocation_id", sa.String(36), sa.ForeignKey("receipt_payment_allocations.id")),
        sa.Column("receipt_id", sa.String(36)),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("debit_amount", sa.Numeric(14, 2), server_default="0"),
        sa.Column("credit_amount", sa.Numeric(14, 2), server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("crop_year", sa.Integer(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default="false"),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("deleted_by", sa.String(100)),
        sa.Column("created_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Audit ────────────────────────────────────────────────

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False, index=True),
        sa.Column("user_name", sa.String(200), nullable=False),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column("entity_type", sa.String(50), nullable=False, index=True),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now(), index=True),
    )

    op.bulk_insert(payment_types, [
        {"id": 1, "type_code": "ADV1", "type_name": "First Advance", "sequence_number": 1, "is_final": False, "is_active": True},
        {"id": 2, "type_code": "ADV2", "type_name": "Second Advance", "sequence_number": 2, "is_final": False, "is_active": True},
        {"id": 3, "type_code": "ADV3", "type_name": "Third Advance", "sequence_number": 3, "is_final": False, "is_active": True},
        {"id": 4, "type_code": "FINAL", "type_name": "Final Payment", "sequence_number": 4, "is_final": True, "is_active": True},
    ])


def downgrade() -> None:
    for table in (
        "activity_logs",
        "grower_accounts",
        "account_entries",
        "cheques",
        "advance_deductions",
        "advance_cheques",
        "price_schedule_locks",
        "receipt_payment_allocations",
        "payment_batches",
        "payment_types",
        "receipts",
        "price_schedule_details",
        "price_schedules",
        "products",
        "growers",
    ):
        op.drop_table(table)
