"""Reconciliation service — detects divergence between invoice records and the chain.

The contract is the source of truth for what happened on-chain; the store is
the source of truth for business data.  A run walks every invoice the
contract knows (token ids `first_token_id … first_token_id + count - 1`),
matches each to its record through the `dbId` written at listing time, and
files a ReconciliationAlert per mismatch.  A mismatch that is still open from an
earlier run keeps its alert; open alerts that no longer reproduce are
resolved.  Records are never modified: aligning them is a manual step.

Checks:
    orphan_chain_invoice   chain invoice whose dbId has no record
    missing_token_link     record exists but does not carry the token id
    status_mismatch        for-sale flag disagrees with the record status
    price_mismatch         on-chain price differs from listed_price
    missing_chain_invoice  record carries a token id the chain does not know
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from factorchain.chain.client import ChainClient, OnChainInvoice
from factorchain.chain.units import to_minor_units
from factorchain.config import settings
from factorchain.database import utcnow
from factorchain.models.invoice import Invoice, InvoiceStatus
from factorchain.models.reconciliation_alert import ReconciliationAlert
from factorchain.services.store import InvoiceStore

logger = logging.getLogger(__name__)

CHAIN_CHECK_TYPES = (
    "orphan_chain_invoice",
    "missing_token_link",
    "status_mismatch",
    "price_mismatch",
    "missing_chain_invoice",
)


@dataclass(frozen=True)
class Mismatch:
    alert_type: str
    severity: str
    title: str
    description: str
    expected_value: str | None = None
    actual_value: str | None = None


def _status_for_flag(is_for_sale: bool, status: str) -> bool:
    """Whether the record status is consistent with the on-chain for-sale flag."""
    if is_for_sale:
        return status == InvoiceStatus.TOKENIZED.value
    return status in (InvoiceStatus.SOLD.value, InvoiceStatus.PAID.value)


def compare_invoice(invoice: Invoice, on_chain: OnChainInvoice) -> list[Mismatch]:
    """Compare one record with the chain entry that points at it."""
    mismatches: list[Mismatch] = []
    number = invoice.invoice_number

    if invoice.token_id != on_chain.token_id:
        mismatches.append(Mismatch(
            alert_type="missing_token_link",
            severity="critical",
            title=f"Invoice {number}: chain listing not recorded",
            description=(
                f"Token {on_chain.token_id} references this invoice but the record "
                f"carries token {invoice.token_id or 'none'} in status {invoice.status}."
            ),
            expected_value=on_chain.token_id,
            actual_value=invoice.token_id,
        ))
        # Status and price are meaningless until the link is restored
        return mismatches

    if not _status_for_flag(on_chain.is_for_sale, invoice.status):
        chain_state = "for sale" if on_chain.is_for_sale else "sold"
        mismatches.append(Mismatch(
            alert_type="status_mismatch",
            severity="high",
            title=f"Invoice {number}: status {invoice.status} but {chain_state} on chain",
            description=(
                f"Token {on_chain.token_id} is {chain_state} (owner {on_chain.owner}) "
                f"while the record is {invoice.status}."
            ),
            expected_value=chain_state,
            actual_value=invoice.status,
        ))

    stored_price = None
    if invoice.listed_price is not None:
        stored_price = to_minor_units(invoice.listed_price)
    if stored_price != on_chain.price_minor:
        mismatches.append(Mismatch(
            alert_type="price_mismatch",
            severity="medium",
            title=f"Invoice {number}: listed price differs from chain",
            description=(
                f"Token {on_chain.token_id} is priced at {on_chain.price} on chain; "
                f"the record lists {invoice.listed_price}."
            ),
            expected_value=str(on_chain.price),
            actual_value=None if invoice.listed_price is None else str(invoice.listed_price),
        ))

    return mismatches


def _alert(mismatch: Mismatch, run_id: str, invoice_id=None, token_id=None) -> ReconciliationAlert:
    return ReconciliationAlert(
        alert_type=mismatch.alert_type,
        severity=mismatch.severity,
        title=mismatch.title,
        description=mismatch.description,
        invoice_id=invoice_id,
        token_id=token_id,
        expected_value=mismatch.expected_value,
        actual_value=mismatch.actual_value,
        run_id=run_id,
    )


def _alert_key(alert: ReconciliationAlert) -> tuple:
    return (alert.alert_type, alert.invoice_id, alert.token_id)


def _carry_forward(existing: ReconciliationAlert, latest: ReconciliationAlert) -> None:
    existing.title = latest.title
    existing.description = latest.description
    existing.expected_value = latest.expected_value
    existing.actual_value = latest.actual_value
    existing.run_id = latest.run_id


async def run_chain_reconciliation(db: AsyncSession, chain: ChainClient) -> dict:
    """Walk the contract's invoices, persist alerts, return a run summary.

    Returns:
        {
            "run_id": "...",
            "ran_at": "...",
            "chain_count": int,
            "total_alerts": int,
            "by_type": {"status_mismatch": int, ...},
            "by_severity": {"critical": int, ...},
        }
    """
    run_id = str(uuid.uuid4())
    store = InvoiceStore(db)

    count = await chain.get_invoice_count()
    first = settings.first_token_id
    logger.info("Reconciliation %s: %d invoice(s) on chain", run_id, count)

    alerts: list[ReconciliationAlert] = []
    known_tokens: set[str] = set()

    for token in range(first, first + count):
        on_chain = await chain.get_invoice(token)
        known_tokens.add(on_chain.token_id)

        invoice = await store.get(on_chain.db_id) if on_chain.db_id else None
        if invoice is None:
            alerts.append(_alert(
                Mismatch(
                    alert_type="orphan_chain_invoice",
                    severity="high",
                    title=f"Token {on_chain.token_id} has no invoice record",
                    description=(
                        f"Chain invoice {on_chain.token_id} references record "
                        f"{on_chain.db_id or '(empty)'} which does not exist."
                    ),
                    expected_value=on_chain.db_id,
                ),
                run_id,
                token_id=on_chain.token_id,
            ))
            continue

        for mismatch in compare_invoice(invoice, on_chain):
            alerts.append(_alert(mismatch, run_id, invoice.id, on_chain.token_id))

    for invoice in await store.list_linked_to_chain():
        if invoice.token_id not in known_tokens:
            alerts.append(_alert(
                Mismatch(
                    alert_type="missing_chain_invoice",
                    severity="critical",
                    title=f"Invoice {invoice.invoice_number}: token {invoice.token_id} not on chain",
                    description=(
                        f"The record is {invoice.status} with token {invoice.token_id}, "
                        f"but the contract only holds tokens {first}..{first + count - 1}."
                    ),
                    expected_value=invoice.token_id,
                ),
                run_id,
                invoice.id,
                invoice.token_id,
            ))

    # An open alert whose mismatch reproduces stays open under this run;
    # the others were fixed by hand since they were filed
    current = {_alert_key(a): a for a in alerts}
    carried: set[tuple] = set()
    old_open = await db.execute(
        select(ReconciliationAlert).where(
            ReconciliationAlert.status == "open",
            ReconciliationAlert.alert_type.in_(CHAIN_CHECK_TYPES),
        )
    )
    for old_alert in old_open.scalars().all():
        key = _alert_key(old_alert)
        if key in current:
            _carry_forward(old_alert, current[key])
            carried.add(key)
        else:
            old_alert.status = "resolved"
            old_alert.resolution_note = "Auto-resolved: mismatch no longer detected"
            old_alert.resolved_at = utcnow()

    for key, alert in current.items():
        if key not in carried:
            db.add(alert)
    await store.commit()

    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    for a in alerts:
        by_type[a.alert_type] = by_type.get(a.alert_type, 0) + 1
        by_severity[a.severity] = by_severity.get(a.severity, 0) + 1

    if alerts:
        logger.warning("Reconciliation %s found %d mismatch(es): %s", run_id, len(alerts), by_type)
    else:
        logger.info("Reconciliation %s: store and chain agree", run_id)

    return {
        "run_id": run_id,
        "ran_at": utcnow().isoformat(),
        "chain_count": count,
        "total_alerts": len(alerts),
        "by_type": by_type,
        "by_severity": by_severity,
    }


async def list_alerts(
    db: AsyncSession,
    alert_status: str | None = "open",
    alert_type: str | None = None,
    limit: int = 100,
) -> list[ReconciliationAlert]:
    stmt = select(ReconciliationAlert)
    if alert_status:
        stmt = stmt.where(ReconciliationAlert.status == alert_status)
    if alert_type:
        stmt = stmt.where(ReconciliationAlert.alert_type == alert_type)
    result = await db.execute(
        stmt.order_by(ReconciliationAlert.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())
