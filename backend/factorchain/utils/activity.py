"""Lightweight helper for recording activity log entries.

Usage:
    log_activity(
        db, ctx, action="listed",
        entity_id=invoice.id, entity_code=invoice.invoice_number,
        summary="Listed INV-001 at 8",
        details={"tx_hash": receipt.tx_hash},
    )

The row is added to the current session and committed with the
enclosing transition — no extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from factorchain.auth.context import SessionContext
from factorchain.models.activity_log import ActivityLog


def log_activity(
    db: AsyncSession,
    ctx: SessionContext,
    *,
    action: str,
    entity_type: str = "invoice",
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        user_id=ctx.user_id,
        user_email=ctx.email,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
