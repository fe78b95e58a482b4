"""Pydantic schemas for invoice views and transition requests."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from factorchain.models.invoice import MAX_AMOUNT


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    amount: Decimal
    due_date: date
    buyer_email: str
    pdf_url: str
    buyer_acknowledged: bool
    status: str
    listed_price: Decimal | None
    token_id: str | None
    blockchain_tx_hash: str | None
    created_by: str
    owner: str
    created_at: datetime
    updated_at: datetime

    # Actions the caller could start right now; computed per request
    allowed_actions: list[str] = []

    model_config = {"from_attributes": True}


class ListRequest(BaseModel):
    listed_price: Decimal = Field(..., gt=0, lt=MAX_AMOUNT)


class BuyerInbox(BaseModel):
    """Buyer dashboard: invoices awaiting a decision and everything else."""
    pending: list[InvoiceOut]
    processed: list[InvoiceOut]


class TransitionOut(BaseModel):
    """Result of a successful transition."""
    action: str
    outcome: str
    invoice: InvoiceOut
    tx_hash: str | None = None
    token_id: str | None = None


class ChainInvoiceOut(BaseModel):
    token_id: str
    db_id: str
    price: Decimal
    owner: str
    pdf_url: str
    is_for_sale: bool


class ChainComparison(BaseModel):
    """Record and chain side by side, with any detected mismatches."""
    invoice: InvoiceOut
    chain: ChainInvoiceOut | None
    mismatches: list[str]
