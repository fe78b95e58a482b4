"""Invoice record store — keyed access to the `invoices` table.

Reads return ORM rows.  Transitions load their record with
`get_for_update`, which takes a row lock (SELECT ... FOR UPDATE) held until
the transition commits, so a second API worker waits and then sees the
new status.  `update(..., expected_status=...)` is a compare-and-set: the
UPDATE only matches while the row is still in the expected status, and a
miss raises ConcurrentUpdate.  Without `expected_status` writes are
last-write-wins.

Every commit runs under `settings.store_timeout_seconds`; a database
failure becomes PersistenceError and an exceeded bound StoreTimeout, with
the session rolled back in both cases.
"""

import asyncio
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from factorchain.config import settings
from factorchain.database import utcnow
from factorchain.middleware.exceptions import (
    ConcurrentUpdate,
    PersistenceError,
    ResourceNotFoundError,
    StoreTimeout,
    ValidationError,
)
from factorchain.models.invoice import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)

# Business data is immutable after upload; only workflow and chain
# linkage fields may change.
UPDATABLE_FIELDS = frozenset({
    "buyer_acknowledged",
    "status",
    "listed_price",
    "token_id",
    "blockchain_tx_hash",
    "owner",
})


class InvoiceStore:
    def __init__(self, db: AsyncSession, timeout: float | None = None):
        self.db = db
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds

    # ── Writes ───────────────────────────────────────────────

    async def create(self, **fields) -> Invoice:
        now = utcnow()
        invoice = Invoice(created_at=now, updated_at=now, **fields)
        self.db.add(invoice)
        await self.commit()
        return invoice

    async def update(
        self,
        invoice: Invoice | str,
        expected_status: InvoiceStatus | None = None,
        **fields,
    ) -> Invoice:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        if isinstance(invoice, str):
            invoice = await self.get_or_404(invoice)

        values = {
            name: value.value if isinstance(value, InvoiceStatus) else value
            for name, value in fields.items()
        }
        values["updated_at"] = utcnow()

        if expected_status is None:
            for name, value in values.items():
                setattr(invoice, name, value)
        else:
            await self._compare_and_set(invoice, expected_status, values)

        await self.commit()
        return invoice

    async def _compare_and_set(
        self, invoice: Invoice, expected_status: InvoiceStatus, values: dict
    ) -> None:
        invoice_id = invoice.id
        try:
            result = await self.db.execute(
                update(Invoice)
                .where(Invoice.id == invoice_id, Invoice.status == expected_status.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            await self._rollback()
            logger.error("Invoice store update failed: %s", exc)
            raise PersistenceError() from exc

        if result.rowcount != 1:
            await self._rollback()
            logger.warning(
                "Invoice %s left %s before the update landed", invoice_id, expected_status.value
            )
            raise ConcurrentUpdate(invoice_id, expected_status.value)

        for name, value in values.items():
            set_committed_value(invoice, name, value)

    async def commit(self) -> None:
        try:
            await asyncio.wait_for(self.db.commit(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            await self._rollback()
            raise StoreTimeout(self.timeout) from exc
        except SQLAlchemyError as exc:
            await self._rollback()
            logger.error("Invoice store commit failed: %s", exc)
            raise PersistenceError() from exc

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback after failed commit also failed")

    # ── Reads ────────────────────────────────────────────────

    async def get(self, invoice_id: str) -> Invoice | None:
        return await self.db.get(Invoice, invoice_id)

    async def get_or_404(self, invoice_id: str) -> Invoice:
        invoice = await self.get(invoice_id)
        if invoice is None:
            raise ResourceNotFoundError("Invoice", invoice_id)
        return invoice

    async def get_for_update(self, invoice_id: str) -> Invoice:
        """Re-read the record under a row lock held until the next commit."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalars().first()
        if invoice is None:
            raise ResourceNotFoundError("Invoice", invoice_id)
        return invoice

    async def list_by_creator(self, user_id: str) -> list[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.created_by == user_id)
            .order_by(Invoice.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_by_buyer_email(
        self,
        email: str,
        status_filter: InvoiceStatus | None = None,
        exclude_status: InvoiceStatus | None = None,
    ) -> list[Invoice]:
        stmt = select(Invoice).where(func.lower(Invoice.buyer_email) == email.strip().lower())
        if status_filter is not None:
            stmt = stmt.where(Invoice.status == status_filter.value)
            stmt = stmt.order_by(Invoice.created_at.desc())
        else:
            stmt = stmt.order_by(Invoice.updated_at.desc())
        if exclude_status is not None:
            stmt = stmt.where(Invoice.status != exclude_status.value)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_status(self, status: InvoiceStatus) -> list[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.status == status.value)
            .order_by(Invoice.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_by_owner(
        self, email: str, statuses: list[InvoiceStatus] | None = None
    ) -> list[Invoice]:
        stmt = select(Invoice).where(func.lower(Invoice.owner) == email.strip().lower())
        if statuses:
            stmt = stmt.where(Invoice.status.in_([s.value for s in statuses]))
        result = await self.db.execute(stmt.order_by(Invoice.updated_at.desc()))
        return list(result.scalars().all())

    async def find_by_token_id(self, token_id: str) -> Invoice | None:
        result = await self.db.execute(
            select(Invoice).where(Invoice.token_id == str(token_id))
        )
        return result.scalars().first()

    async def list_linked_to_chain(self) -> list[Invoice]:
        result = await self.db.execute(
            select(Invoice).where(Invoice.token_id.is_not(None))
        )
        return list(result.scalars().all())
