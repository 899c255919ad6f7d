"""Aggregate model imports for Alembic auto-detection and metadata.create_all."""

# Reference data
from app.models.grower import Grower  # noqa: F401
from app.models.price import (  # noqa: F401
    PriceSchedule, PriceScheduleDetail, PriceScheduleLock, Product,
)
from app.models.receipt import Receipt  # noqa: F401

# Batches and allocations
from app.models.payment_batch import BatchStatus, PaymentBatch, PaymentType  # noqa: F401
from app.models.allocation import AllocationStatus, ReceiptPaymentAllocation  # noqa: F401

# Advances, cheques and ledgers
from app.models.advance import (  # noqa: F401
    AdvanceCheque, AdvanceDeduction, AdvanceStatus, DeductionStatus,
)
from app.models.cheque import Cheque, ChequeStatus  # noqa: F401
from app.models.ledger import AccountEntry, GrowerAccount  # noqa: F401

# Audit
from app.models.activity_log import ActivityLog  # noqa: F401
