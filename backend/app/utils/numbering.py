"""Guarded sequential number generation.

Formats:
  payment batch:  {TypeCode}-{CropYear}-{seq:3}   e.g. ADV1-2025-001
  batch cheque:   {CropYear}-{seq:5}              e.g. 2025-00042
  advance cheque: ADV-{CropYear}-{seq:5}          e.g. ADV-2025-00003

The next number is max(existing)+1 for the prefix.  On PostgreSQL the
read happens under a transaction-scoped advisory lock keyed by the
prefix, so two concurrent creators serialize.  Every number column is
UNIQUE as well; `insert_with_number` runs the insert in a savepoint and
regenerates the number on IntegrityError, which covers dialects without
advisory locks.
"""

import logging
import re
import zlib
from typing import Callable, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.middleware.exceptions import PersistenceError
from app.models.advance import AdvanceCheque
from app.models.cheque import Cheque
from app.models.payment_batch import PaymentBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

# entity → (model column holding the number, sequence digit width)
NUMBER_COLUMNS = {
    "payment_batch": (PaymentBatch.batch_number, 3),
    "cheque": (Cheque.cheque_number, 5),
    "advance_cheque": (AdvanceCheque.cheque_number, 5),
}


def batch_prefix(type_code: str, crop_year: int) -> str:
    return f"{type_code}-{crop_year}-"


def cheque_prefix(crop_year: int) -> str:
    return f"{crop_year}-"


def advance_cheque_prefix(crop_year: int) -> str:
    return f"ADV-{crop_year}-"


def _lock_key(prefix: str) -> int:
    # pg_advisory_xact_lock takes a signed bigint
    return zlib.crc32(prefix.encode("utf-8")) & 0x7FFFFFFF


async def _acquire_prefix_lock(db: AsyncSession, prefix: str) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(
        text("SELECT pg_advisory_xact_lock(:key)"), {"key": _lock_key(prefix)}
    )


async def next_number(db: AsyncSession, entity: str, prefix: str) -> str:
    """Return the next free number for *prefix*.

    Scans existing values matching `{prefix}<digits>` and increments the
    highest sequence found, starting at 1.
    """
    column, width = NUMBER_COLUMNS[entity]
    await _acquire_prefix_lock(db, prefix)

    result = await db.execute(select(column).where(column.like(f"{prefix}%")))
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    highest = 0
    for (value,) in result.all():
        match = pattern.match(value)
        if match:
            highest = max(highest, int(match.group(1)))

    return f"{prefix}{highest + 1:0{width}d}"


async def insert_with_number(
    db: AsyncSession,
    entity: str,
    prefix: str,
    build: Callable[[str], T],
) -> T:
    """Generate a number, build the row with it and flush it in a savepoint.

    `build(number)` returns the unsaved model instance.  A unique
    violation on flush discards the savepoint and retries with a fresh
    number, up to `settings.number_retry_attempts` times.
    """
    attempts = settings.number_retry_attempts
    for attempt in range(1, attempts + 1):
        number = await next_number(db, entity, prefix)
        obj = build(number)
        try:
            async with db.begin_nested():
                db.add(obj)
                await db.flush()
        except IntegrityError:
            logger.warning(
                f"Number collision on {number}, retrying ({attempt}/{attempts})",
                extra={"entity": entity, "prefix": prefix},
            )
            continue
        return obj

    raise PersistenceError(
        f"Could not allocate a unique {entity} number for {prefix} "
        f"after {attempts} attempts"
    )
