"""Invoice lifecycle orchestrator.

Sequences the six transitions of an invoice:

    upload    MSME      → Pending
    approve   buyer     Pending       → Acknowledged
    decline   buyer     Pending       → Withdrawn
    list      MSME      Acknowledged  → Tokenized   (createInvoice on chain)
    purchase  investor  Tokenized     → Sold        (buyInvoice on chain)
    repay     buyer     Sold          → Paid        (repayInvoice on chain)

Rules:
  - Preconditions are checked before any side effect and raise
    (ValidationError / InvalidTransitionError / AuthorizationError).
  - The record is read under a row lock that is held through the chain call
    until the write commits, and the write only lands while the record is
    still in the source status, so two API workers cannot both submit the
    same transition.
  - Chain transitions call the chain FIRST and write the record only after
    a confirmed receipt, so the record never claims a chain state that does
    not exist.  If the write then fails the result is PARTIAL_SUCCESS: the
    divergence is logged, a reconciliation alert is filed, and nothing is
    retried.
  - Past the preconditions every transition returns a TransitionResult
    instead of raising, so callers must look at the outcome.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from factorchain.auth.context import SessionContext
from factorchain.auth.permissions import (
    APPROVE,
    DECLINE,
    LIST,
    PURCHASE,
    REPAY,
    TRANSITIONS,
    UPLOAD,
    transition_problem,
)
from factorchain.chain.client import ChainClient, ChainReceipt
from factorchain.chain.units import to_minor_units
from factorchain.config import settings
from factorchain.database import async_session
from factorchain.middleware.exceptions import (
    AuthorizationError,
    ChainError,
    FactorChainException,
    PartialSuccess,
    PersistenceError,
    ValidationError,
)
from factorchain.models.invoice import MAX_AMOUNT, Invoice, InvoiceStatus
from factorchain.models.profile import ProfileRole
from factorchain.models.reconciliation_alert import ReconciliationAlert
from factorchain.services.storage import DocumentStorage
from factorchain.services.store import InvoiceStore
from factorchain.utils.activity import log_activity
from factorchain.utils.locks import InFlightRegistry, in_flight

logger = logging.getLogger("factorchain.lifecycle")

# Past-tense activity names
ACTIVITY = {
    UPLOAD: "uploaded",
    APPROVE: "approved",
    DECLINE: "declined",
    LIST: "listed",
    PURCHASE: "purchased",
    REPAY: "repaid",
}


class Outcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    CHAIN_FAILED = "chain_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    PARTIAL_SUCCESS = "partial_success"


@dataclass
class TransitionResult:
    action: str
    outcome: Outcome
    invoice_id: str
    invoice: Invoice | None = None
    receipt: ChainReceipt | None = None
    error: FactorChainException | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCEEDED

    def raise_for_outcome(self) -> "TransitionResult":
        if self.error is not None:
            raise self.error
        return self


def parse_amount(value, field: str) -> Decimal:
    """Parse a positive decimal amount that fits the amount columns exactly."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    if amount >= MAX_AMOUNT:
        raise ValidationError(f"{field} must be less than {MAX_AMOUNT}")
    to_minor_units(amount)
    return amount


class LifecycleService:
    def __init__(
        self,
        db: AsyncSession,
        chain: ChainClient,
        storage: DocumentStorage | None = None,
        store: InvoiceStore | None = None,
        registry: InFlightRegistry = in_flight,
        alert_sessions: async_sessionmaker = async_session,
    ):
        self.db = db
        self.chain = chain
        self.storage = storage
        self.store = store or InvoiceStore(db)
        self.registry = registry
        self.alert_sessions = alert_sessions

    # ── Upload ───────────────────────────────────────────────

    async def upload(
        self,
        ctx: SessionContext,
        *,
        invoice_number: str | None,
        amount,
        due_date: date | None,
        buyer_email: str | None,
        filename: str | None,
        content_type: str | None,
        content: bytes | None,
    ) -> TransitionResult:
        if ctx.role != ProfileRole.MSME:
            raise AuthorizationError("Only MSMEs can upload invoices")

        if not content:
            raise ValidationError("Please attach invoice PDF.")
        allowed_types = {t.strip() for t in settings.allowed_upload_types.split(",") if t.strip()}
        if content_type not in allowed_types:
            raise ValidationError(f"Unsupported document type: {content_type}")
        if len(content) > settings.max_upload_bytes:
            raise ValidationError("Invoice document is too large")

        number = (invoice_number or "").strip()
        if not number:
            raise ValidationError("Invoice number is required")
        face_value = parse_amount(amount, "Amount")
        if not isinstance(due_date, date):
            raise ValidationError("Due date is required")
        email = (buyer_email or "").strip().lower()
        if not email:
            raise ValidationError("Buyer email is required")
        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid buyer email: {exc}")
        if self.storage is None:
            raise PersistenceError("Document storage is not configured")

        invoice_id = str(uuid.uuid4())
        try:
            document = await self.storage.save(ctx.user_id, filename or "invoice.pdf", content)
        except OSError as exc:
            logger.error("Document upload for %s failed: %s", number, exc)
            return TransitionResult(
                UPLOAD, Outcome.PERSISTENCE_FAILED, invoice_id,
                error=PersistenceError("Could not store the invoice document"),
            )

        log_activity(
            self.db, ctx, action=ACTIVITY[UPLOAD],
            entity_id=invoice_id, entity_code=number,
            summary=f"Uploaded invoice {number} for {face_value}",
            details={"status": InvoiceStatus.PENDING.value, "buyer_email": email},
        )
        try:
            invoice = await self.store.create(
                id=invoice_id,
                invoice_number=number,
                amount=face_value,
                due_date=due_date,
                buyer_email=email,
                buyer_acknowledged=False,
                status=InvoiceStatus.PENDING.value,
                pdf_url=document.url,
                created_by=ctx.user_id,
                owner=ctx.email,
            )
        except PersistenceError as exc:
            await self.storage.delete(document)
            return TransitionResult(UPLOAD, Outcome.PERSISTENCE_FAILED, invoice_id, error=exc)

        logger.info("Invoice %s (%s) uploaded by %s", invoice_id, number, ctx.user_id)
        return TransitionResult(UPLOAD, Outcome.SUCCEEDED, invoice_id, invoice=invoice)

    # ── Buyer acknowledgement (store only) ───────────────────

    async def approve(self, ctx: SessionContext, invoice_id: str) -> TransitionResult:
        return await self._store_transition(
            ctx, invoice_id, APPROVE, buyer_acknowledged=True
        )

    async def decline(self, ctx: SessionContext, invoice_id: str) -> TransitionResult:
        return await self._store_transition(
            ctx, invoice_id, DECLINE, buyer_acknowledged=False
        )

    async def _store_transition(
        self, ctx: SessionContext, invoice_id: str, action: str, **fields
    ) -> TransitionResult:
        source, target = TRANSITIONS[action]
        async with self.registry.hold(invoice_id, action):
            invoice = await self._load(ctx, invoice_id, action)
            number = invoice.invoice_number

            log_activity(
                self.db, ctx, action=ACTIVITY[action],
                entity_id=invoice_id, entity_code=number,
                summary=f"Invoice {number}: {source.value} → {target.value}",
                details={"from": source.value, "to": target.value},
            )
            try:
                invoice = await self.store.update(
                    invoice, expected_status=source, status=target, **fields
                )
            except PersistenceError as exc:
                return TransitionResult(action, Outcome.PERSISTENCE_FAILED, invoice_id, error=exc)

            logger.info("Invoice %s %s by %s", invoice_id, ACTIVITY[action], ctx.email)
            return TransitionResult(action, Outcome.SUCCEEDED, invoice_id, invoice=invoice)

    # ── Chain transitions ────────────────────────────────────

    async def list_for_sale(
        self, ctx: SessionContext, invoice_id: str, listed_price
    ) -> TransitionResult:
        price = parse_amount(listed_price, "Listed price")
        async with self.registry.hold(invoice_id, LIST):
            invoice = await self._load(ctx, invoice_id, LIST, listed_price=price)
            to_minor_units(invoice.amount)
            number, amount, pdf_url = invoice.invoice_number, invoice.amount, invoice.pdf_url

            try:
                receipt = await self.chain.create_invoice(
                    invoice_id, price, amount, pdf_url, account=ctx.wallet_address
                )
            except ChainError as exc:
                return self._chain_failed(LIST, invoice_id, exc)

            if receipt.token_id is None:
                return await self._partial(
                    ctx, LIST, invoice_id, number, receipt,
                    cause="receipt carried no InvoiceCreated event",
                )

            return await self._persist_after_chain(
                ctx, LIST, invoice, number, receipt,
                summary=f"Listed invoice {number} at {price} as token {receipt.token_id}",
                status=InvoiceStatus.TOKENIZED,
                listed_price=price,
                token_id=receipt.token_id,
                blockchain_tx_hash=receipt.tx_hash,
            )

    async def purchase(self, ctx: SessionContext, invoice_id: str) -> TransitionResult:
        async with self.registry.hold(invoice_id, PURCHASE):
            invoice = await self._load(ctx, invoice_id, PURCHASE)
            to_minor_units(invoice.listed_price)
            number, token_id, price = invoice.invoice_number, invoice.token_id, invoice.listed_price

            try:
                receipt = await self.chain.buy_invoice(
                    token_id, price, account=ctx.wallet_address
                )
            except ChainError as exc:
                return self._chain_failed(PURCHASE, invoice_id, exc)

            return await self._persist_after_chain(
                ctx, PURCHASE, invoice, number, receipt,
                summary=f"Purchased invoice {number} (token {token_id}) for {price}",
                status=InvoiceStatus.SOLD,
                owner=ctx.email,
            )

    async def repay(self, ctx: SessionContext, invoice_id: str) -> TransitionResult:
        async with self.registry.hold(invoice_id, REPAY):
            invoice = await self._load(ctx, invoice_id, REPAY)
            to_minor_units(invoice.amount)
            number, token_id, amount = invoice.invoice_number, invoice.token_id, invoice.amount

            try:
                receipt = await self.chain.repay_invoice(
                    token_id, amount, account=ctx.wallet_address
                )
            except ChainError as exc:
                return self._chain_failed(REPAY, invoice_id, exc)

            return await self._persist_after_chain(
                ctx, REPAY, invoice, number, receipt,
                summary=f"Repaid invoice {number} (token {token_id}) with {amount}",
                status=InvoiceStatus.PAID,
            )

    # ── Internals ────────────────────────────────────────────

    async def _load(
        self,
        ctx: SessionContext,
        invoice_id: str,
        action: str,
        listed_price: Decimal | None = None,
    ) -> Invoice:
        invoice = await self.store.get_for_update(invoice_id)
        problem = transition_problem(ctx, invoice, action, listed_price=listed_price)
        if problem is not None:
            logger.warning(
                "Rejected %s on invoice %s by %s: %s",
                action, invoice_id, ctx.email, problem.message,
            )
            raise problem
        return invoice

    def _chain_failed(self, action: str, invoice_id: str, exc: ChainError) -> TransitionResult:
        logger.warning(
            "%s for invoice %s failed on chain (%s): %s",
            action, invoice_id, exc.error_code, exc.message,
        )
        return TransitionResult(action, Outcome.CHAIN_FAILED, invoice_id, error=exc)

    async def _persist_after_chain(
        self,
        ctx: SessionContext,
        action: str,
        invoice: Invoice,
        number: str,
        receipt: ChainReceipt,
        summary: str,
        **fields,
    ) -> TransitionResult:
        invoice_id = invoice.id
        source, target = TRANSITIONS[action]
        try:
            log_activity(
                self.db, ctx, action=ACTIVITY[action],
                entity_id=invoice_id, entity_code=number,
                summary=summary,
                details={
                    "from": source.value,
                    "to": target.value,
                    "tx_hash": receipt.tx_hash,
                    "token_id": receipt.token_id,
                },
            )
            invoice = await self.store.update(invoice, expected_status=source, **fields)
        except (PersistenceError, SQLAlchemyError) as exc:
            return await self._partial(ctx, action, invoice_id, number, receipt, cause=str(exc))

        logger.info(
            "Invoice %s %s by %s (tx %s)",
            invoice_id, ACTIVITY[action], ctx.email, receipt.tx_hash,
        )
        return TransitionResult(
            action, Outcome.SUCCEEDED, invoice_id, invoice=invoice, receipt=receipt
        )

    async def _partial(
        self,
        ctx: SessionContext,
        action: str,
        invoice_id: str,
        number: str,
        receipt: ChainReceipt,
        cause: str,
    ) -> TransitionResult:
        source, target = TRANSITIONS[action]
        logger.error(
            "PARTIAL SUCCESS: %s of invoice %s (%s) by %s succeeded on chain "
            "(tx=%s, token=%s) but the record was not updated: %s",
            action, invoice_id, number, ctx.email,
            receipt.tx_hash, receipt.token_id, cause,
        )
        await self._record_alert(
            ReconciliationAlert(
                alert_type="partial_success",
                severity="critical",
                title=f"{action} of invoice {number} not persisted",
                description=(
                    f"{action} succeeded on chain in tx {receipt.tx_hash} but the "
                    f"invoice record could not be moved from {source.value} to "
                    f"{target.value} ({cause}). Align the record with getInvoice "
                    f"before any further action."
                ),
                invoice_id=invoice_id,
                token_id=receipt.token_id,
                tx_hash=receipt.tx_hash,
                expected_value=target.value,
                actual_value=source.value,
            )
        )
        return TransitionResult(
            action,
            Outcome.PARTIAL_SUCCESS,
            invoice_id,
            receipt=receipt,
            error=PartialSuccess(action, invoice_id, receipt.tx_hash, receipt.token_id),
        )

    async def _record_alert(self, alert: ReconciliationAlert) -> None:
        """File the alert in its own session; the request session may be broken."""
        try:
            async with self.alert_sessions() as session:
                session.add(alert)
                await session.commit()
        except SQLAlchemyError:
            logger.exception(
                "Could not file reconciliation alert for invoice %s", alert.invoice_id
            )
