"""Invoice — a receivable uploaded by an MSME and traded on-chain.

Lifecycle:  Pending → Acknowledged → Tokenized → Sold → Paid
                    ↘ Withdrawn

`token_id` and `listed_price` are set exactly when the invoice reaches
Tokenized and stay set for Sold and Paid.  Field names and status values
match the records already held by the hosted database.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from factorchain.database import Base, utcnow


class InvoiceStatus(str, enum.Enum):
    PENDING = "Pending"
    ACKNOWLEDGED = "Acknowledged"
    WITHDRAWN = "Withdrawn"
    TOKENIZED = "Tokenized"
    SOLD = "Sold"
    PAID = "Paid"


# Amount columns hold at most 20 integer digits
AMOUNT_PRECISION = 38
AMOUNT_SCALE = 18
MAX_AMOUNT = Decimal(10) ** (AMOUNT_PRECISION - AMOUNT_SCALE)


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Business data (immutable after upload) ───────────────
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(AMOUNT_PRECISION, AMOUNT_SCALE), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    buyer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    pdf_url: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Workflow ─────────────────────────────────────────────
    buyer_acknowledged: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(
        String(20), default=InvoiceStatus.PENDING.value, index=True
    )

    # ── Blockchain linkage ───────────────────────────────────
    listed_price: Mapped[Decimal | None] = mapped_column(Numeric(AMOUNT_PRECISION, AMOUNT_SCALE))
    token_id: Mapped[str | None] = mapped_column(String(78), index=True)
    blockchain_tx_hash: Mapped[str | None] = mapped_column(String(66))

    # ── Ownership ────────────────────────────────────────────
    created_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # Email of the current economic holder
    owner: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
