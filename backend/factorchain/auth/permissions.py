"""Role and record based authorization for invoice transitions.

Design:
  - Each role owns a fixed set of ACTIONS (defined here, not in DB).
  - Each action is one edge of the invoice state machine (`TRANSITIONS`).
  - `transition_problem(ctx, invoice, action)` returns the error that would
    block the action, or None.  It is the single place where role,
    identity, status and field preconditions are decided.
  - `allowed_transitions(ctx, invoice)` is the set of actions with no
    problem; views use it to enable or hide controls.

Identity rules:
  msme      acts on invoices it created (`created_by`)
  buyer     acts on invoices addressed to its email (`buyer_email`)
  investor  may buy any listed invoice
"""

from __future__ import annotations

from decimal import Decimal

from factorchain.auth.context import SessionContext
from factorchain.middleware.exceptions import (
    AuthorizationError,
    FactorChainException,
    InvalidTransitionError,
    ValidationError,
)
from factorchain.models.invoice import InvoiceStatus
from factorchain.models.profile import ProfileRole


# ── Actions ─────────────────────────────────────────────────

UPLOAD = "upload"
APPROVE = "approve"
DECLINE = "decline"
LIST = "list"
PURCHASE = "purchase"
REPAY = "repay"


# ── State machine: action → (from status, to status) ────────

TRANSITIONS: dict[str, tuple[InvoiceStatus, InvoiceStatus]] = {
    APPROVE: (InvoiceStatus.PENDING, InvoiceStatus.ACKNOWLEDGED),
    DECLINE: (InvoiceStatus.PENDING, InvoiceStatus.WITHDRAWN),
    LIST: (InvoiceStatus.ACKNOWLEDGED, InvoiceStatus.TOKENIZED),
    PURCHASE: (InvoiceStatus.TOKENIZED, InvoiceStatus.SOLD),
    REPAY: (InvoiceStatus.SOLD, InvoiceStatus.PAID),
}


# ── Role → actions ──────────────────────────────────────────

ROLE_ACTIONS: dict[ProfileRole, set[str]] = {
    ProfileRole.MSME: {UPLOAD, LIST},
    ProfileRole.BUYER: {APPROVE, DECLINE, REPAY},
    ProfileRole.INVESTOR: {PURCHASE},
}

DASHBOARDS: dict[ProfileRole, str] = {
    ProfileRole.MSME: "/dashboard/msme",
    ProfileRole.BUYER: "/dashboard/buyer",
    ProfileRole.INVESTOR: "/dashboard/investor",
}


def _same_email(a: str | None, b: str | None) -> bool:
    return bool(a and b) and a.strip().lower() == b.strip().lower()


def is_counterparty(ctx: SessionContext, invoice) -> bool:
    """True when the caller is the record's party for its role."""
    if ctx.role == ProfileRole.MSME:
        return invoice.created_by == ctx.user_id
    if ctx.role == ProfileRole.BUYER:
        return _same_email(invoice.buyer_email, ctx.email)
    return True


def transition_problem(
    ctx: SessionContext,
    invoice,
    action: str,
    listed_price: Decimal | None = None,
) -> FactorChainException | None:
    """Return why `ctx` may not perform `action` on `invoice`, or None.

    For LIST the price comes from the request (`listed_price`); for every
    other action the record's own fields are checked.
    """
    if action not in TRANSITIONS:
        return ValidationError(f"Unknown action: {action}")

    if action not in ROLE_ACTIONS.get(ctx.role, set()):
        return AuthorizationError(f"Role {ctx.role.value} cannot {action} invoices")

    if not is_counterparty(ctx, invoice):
        return AuthorizationError("Access denied")

    source, _ = TRANSITIONS[action]
    if invoice.status != source.value:
        return InvalidTransitionError(action, invoice.status)

    if action == LIST:
        if not invoice.buyer_acknowledged:
            return ValidationError(
                "Buyer must acknowledge the invoice before it can be listed for sale"
            )
        if listed_price is None or listed_price <= 0:
            return ValidationError("Please enter a valid listed price")

    if action in (PURCHASE, REPAY) and not invoice.token_id:
        return ValidationError("This invoice is not linked to the blockchain (missing token id)")

    if action == PURCHASE and (invoice.listed_price is None or invoice.listed_price <= 0):
        return ValidationError("Invalid price for purchase")

    return None


def allowed_transitions(ctx: SessionContext, invoice) -> set[str]:
    """Actions the caller could start on this record right now.

    LIST is offered when everything but the (request-supplied) price holds.
    """
    allowed = set()
    for action in ROLE_ACTIONS.get(ctx.role, set()):
        if action not in TRANSITIONS:
            continue
        price = Decimal("1") if action == LIST else None
        if transition_problem(ctx, invoice, action, listed_price=price) is None:
            allowed.add(action)
    return allowed


def can_view(ctx: SessionContext, invoice) -> bool:
    """Whether the caller may read the record at all."""
    if ctx.role == ProfileRole.INVESTOR:
        return invoice.status == InvoiceStatus.TOKENIZED.value or _same_email(
            invoice.owner, ctx.email
        )
    return is_counterparty(ctx, invoice)


def dashboard_for(role: ProfileRole) -> str:
    return DASHBOARDS[role]
