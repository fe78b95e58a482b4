"""ReconciliationAlert — flags a divergence between the store and the chain.

Alerts come from two places: the lifecycle orchestrator when a chain call
succeeded but the store write did not (`partial_success`), and the
reconciliation run that walks the contract's invoices.  They stay open
until an operator aligns the record by hand.

Lifecycle:  open → resolved | dismissed
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from factorchain.database import Base, utcnow


class ReconciliationAlert(Base):
    __tablename__ = "reconciliation_alerts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Classification ───────────────────────────────────────
    # partial_success | missing_token_link | status_mismatch |
    # price_mismatch | orphan_chain_invoice | missing_chain_invoice
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # critical | high | medium | low
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Entity references ────────────────────────────────────
    invoice_id: Mapped[str | None] = mapped_column(String(36), index=True)
    token_id: Mapped[str | None] = mapped_column(String(78))
    tx_hash: Mapped[str | None] = mapped_column(String(66))

    # Stored value vs what the chain reports, as text
    expected_value: Mapped[str | None] = mapped_column(String(255))
    actual_value: Mapped[str | None] = mapped_column(String(255))

    # ── Status ───────────────────────────────────────────────
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)
    resolution_note: Mapped[str | None] = mapped_column(Text)

    run_id: Mapped[str | None] = mapped_column(String(36), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
