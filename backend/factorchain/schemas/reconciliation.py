"""Pydantic schemas for reconciliation output."""

from datetime import datetime

from pydantic import BaseModel


class AlertOut(BaseModel):
    """Single reconciliation alert."""
    id: str
    alert_type: str
    severity: str
    title: str
    description: str
    invoice_id: str | None
    token_id: str | None
    tx_hash: str | None
    expected_value: str | None
    actual_value: str | None
    status: str
    resolved_at: datetime | None
    resolution_note: str | None
    run_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RunSummary(BaseModel):
    """Summary returned after a reconciliation run."""
    run_id: str
    ran_at: str
    chain_count: int
    total_alerts: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
