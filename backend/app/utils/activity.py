"""Lightweight helper for recording activity log entries.

Usage:
    await log_activity(
        db, actor, action="posted", entity_type="payment_batch",
        entity_id=str(batch.id), entity_code=batch.batch_number,
        summary="Posted ADV1-2025-001 (14 growers)",
    )

The row is added to the current session and committed with the
enclosing transaction; no extra flush is performed.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityLog


@dataclass(frozen=True)
class Actor:
    """The authenticated user on whose behalf a mutation runs."""
    user_id: str
    user_name: str


async def log_activity(
    db: AsyncSession,
    actor: Actor,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        user_id=actor.user_id,
        user_name=actor.user_name,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
