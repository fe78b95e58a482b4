"""Invoice routes — role dashboards and lifecycle transitions.

Route overview:
  POST /                  msme      upload an invoice (multipart)
  GET  /mine              msme      invoices I created
  GET  /incoming          buyer     invoices addressed to me {pending, processed}
  GET  /marketplace       investor  invoices listed for sale
  GET  /portfolio         investor  invoices I bought
  GET  /{id}              any       detail, if visible to the caller
  POST /{id}/approve      buyer     Pending → Acknowledged
  POST /{id}/decline      buyer     Pending → Withdrawn
  POST /{id}/list         msme      Acknowledged → Tokenized
  POST /{id}/purchase     investor  Tokenized → Sold
  POST /{id}/repay        buyer     Sold → Paid
  GET  /{id}/chain        any       stored record vs on-chain state

Transition routes only sequence calls into LifecycleService; every rule
lives there and in auth.permissions.
"""

from datetime import date

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from factorchain.auth.context import SessionContext
from factorchain.auth.deps import get_session_context, require_role
from factorchain.auth.permissions import allowed_transitions, can_view
from factorchain.chain.client import ChainClient, get_chain_client
from factorchain.config import settings
from factorchain.database import get_db, get_session_factory
from factorchain.middleware.exceptions import AuthorizationError
from factorchain.models.invoice import Invoice, InvoiceStatus
from factorchain.models.profile import ProfileRole
from factorchain.schemas.invoice import (
    BuyerInbox,
    ChainComparison,
    ChainInvoiceOut,
    InvoiceOut,
    ListRequest,
    TransitionOut,
)
from factorchain.services.lifecycle import LifecycleService, TransitionResult
from factorchain.services.reconciliation import compare_invoice
from factorchain.services.storage import DocumentStorage, get_document_storage
from factorchain.services.store import InvoiceStore

router = APIRouter()


# ── Dependencies / helpers ───────────────────────────────────

def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
    storage: DocumentStorage = Depends(get_document_storage),
    sessions: async_sessionmaker = Depends(get_session_factory),
) -> LifecycleService:
    return LifecycleService(db, chain, storage=storage, alert_sessions=sessions)


def _out(ctx: SessionContext, invoice: Invoice) -> InvoiceOut:
    out = InvoiceOut.model_validate(invoice)
    out.allowed_actions = sorted(allowed_transitions(ctx, invoice))
    return out


def _transition_out(ctx: SessionContext, result: TransitionResult) -> TransitionOut:
    result.raise_for_outcome()
    return TransitionOut(
        action=result.action,
        outcome=result.outcome.value,
        invoice=_out(ctx, result.invoice),
        tx_hash=result.receipt.tx_hash if result.receipt else None,
        token_id=result.receipt.token_id if result.receipt else None,
    )


async def _visible_invoice(db: AsyncSession, ctx: SessionContext, invoice_id: str) -> Invoice:
    invoice = await InvoiceStore(db).get_or_404(invoice_id)
    if not can_view(ctx, invoice):
        raise AuthorizationError("You do not have access to this invoice")
    return invoice


# ── Upload ───────────────────────────────────────────────────

@router.post("/", response_model=TransitionOut, status_code=status.HTTP_201_CREATED)
async def upload_invoice(
    invoice_number: str | None = Form(None),
    amount: str | None = Form(None),
    due_date: date | None = Form(None),
    buyer_email: str | None = Form(None),
    file: UploadFile | None = File(None),
    ctx: SessionContext = Depends(require_role(ProfileRole.MSME)),
    lifecycle: LifecycleService = Depends(get_lifecycle),
):
    content = None
    if file is not None:
        # One byte past the limit is enough to reject the upload
        content = await file.read(settings.max_upload_bytes + 1)
    result = await lifecycle.upload(
        ctx,
        invoice_number=invoice_number,
        amount=amount,
        due_date=due_date,
        buyer_email=buyer_email,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        content=content,
    )
    return _transition_out(ctx, result)


# ── Role dashboards ──────────────────────────────────────────

@router.get("/mine", response_model=list[InvoiceOut])
async def my_invoices(
    ctx: SessionContext = Depends(require_role(ProfileRole.MSME)),
    db: AsyncSession = Depends(get_db),
):
    invoices = await InvoiceStore(db).list_by_creator(ctx.user_id)
    return [_out(ctx, i) for i in invoices]


@router.get("/incoming", response_model=BuyerInbox)
async def incoming_invoices(
    ctx: SessionContext = Depends(require_role(ProfileRole.BUYER)),
    db: AsyncSession = Depends(get_db),
):
    store = InvoiceStore(db)
    pending = await store.list_by_buyer_email(ctx.email, status_filter=InvoiceStatus.PENDING)
    processed = await store.list_by_buyer_email(ctx.email, exclude_status=InvoiceStatus.PENDING)
    return BuyerInbox(
        pending=[_out(ctx, i) for i in pending],
        processed=[_out(ctx, i) for i in processed],
    )


@router.get("/marketplace", response_model=list[InvoiceOut])
async def marketplace(
    ctx: SessionContext = Depends(require_role(ProfileRole.INVESTOR)),
    db: AsyncSession = Depends(get_db),
):
    invoices = await InvoiceStore(db).list_by_status(InvoiceStatus.TOKENIZED)
    return [_out(ctx, i) for i in invoices]


@router.get("/portfolio", response_model=list[InvoiceOut])
async def portfolio(
    ctx: SessionContext = Depends(require_role(ProfileRole.INVESTOR)),
    db: AsyncSession = Depends(get_db),
):
    invoices = await InvoiceStore(db).list_by_owner(
        ctx.email, [InvoiceStatus.SOLD, InvoiceStatus.PAID]
    )
    return [_out(ctx, i) for i in invoices]


# ── Detail ───────────────────────────────────────────────────

@router.get("/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(
    invoice_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db),
):
    return _out(ctx, await _visible_invoice(db, ctx, invoice_id))


@router.get("/{invoice_id}/chain", response_model=ChainComparison)
async def compare_with_chain(
    invoice_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    invoice = await _visible_invoice(db, ctx, invoice_id)
    if not invoice.token_id:
        return ChainComparison(invoice=_out(ctx, invoice), chain=None, mismatches=[])

    on_chain = await chain.get_invoice(invoice.token_id)
    if on_chain.db_id != invoice.id:
        mismatches = [f"Token {on_chain.token_id} belongs to record {on_chain.db_id}"]
    else:
        mismatches = [m.title for m in compare_invoice(invoice, on_chain)]

    return ChainComparison(
        invoice=_out(ctx, invoice),
        chain=ChainInvoiceOut(
            token_id=on_chain.token_id,
            db_id=on_chain.db_id,
            price=on_chain.price,
            owner=on_chain.owner,
            pdf_url=on_chain.pdf_url,
            is_for_sale=on_chain.is_for_sale,
        ),
        mismatches=mismatches,
    )


# ── Transitions ──────────────────────────────────────────────

@router.post("/{invoice_id}/approve", response_model=TransitionOut)
async def approve_invoice(
    invoice_id: str,
    ctx: SessionContext = Depends(get_session_context),
    lifecycle: LifecycleService = Depends(get_lifecycle),
):
    return _transition_out(ctx, await lifecycle.approve(ctx, invoice_id))


@router.post("/{invoice_id}/decline", response_model=TransitionOut)
async def decline_invoice(
    invoice_id: str,
    ctx: SessionContext = Depends(get_session_context),
    lifecycle: LifecycleService = Depends(get_lifecycle),
):
    return _transition_out(ctx, await lifecycle.decline(ctx, invoice_id))


@router.post("/{invoice_id}/list", response_model=TransitionOut)
async def list_invoice(
    invoice_id: str,
    body: ListRequest,
    ctx: SessionContext = Depends(get_session_context),
    lifecycle: LifecycleService = Depends(get_lifecycle),
):
    return _transition_out(
        ctx, await lifecycle.list_for_sale(ctx, invoice_id, body.listed_price)
    )


@router.post("/{invoice_id}/purchase", response_model=TransitionOut)
async def purchase_invoice(
    invoice_id: str,
    ctx: SessionContext = Depends(get_session_context),
    lifecycle: LifecycleService = Depends(get_lifecycle),
):
    return _transition_out(ctx, await lifecycle.purchase(ctx, invoice_id))


@router.post("/{invoice_id}/repay", response_model=TransitionOut)
async def repay_invoice(
    invoice_id: str,
    ctx: SessionContext = Depends(get_session_context),
    lifecycle: LifecycleService = Depends(get_lifecycle),
):
    return _transition_out(ctx, await lifecycle.repay(ctx, invoice_id))
