"""In-flight guard — at most one transition per invoice at a time.

A second request for an invoice whose previous transition has not returned
yet is refused immediately instead of queuing behind it: the caller
re-triggers by hand once the first one has finished.  The flag is released
on every exit path, including chain and store failures.

The registry is process-local.  Across API workers the row lock taken by
`InvoiceStore.get_for_update` serializes transitions instead.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from factorchain.middleware.exceptions import OperationInProgress


@dataclass
class InFlightRegistry:
    """Set of invoice ids with a transition currently running."""
    active: dict[str, str] = field(default_factory=dict)

    def is_busy(self, invoice_id: str) -> bool:
        return invoice_id in self.active

    @asynccontextmanager
    async def hold(self, invoice_id: str, action: str):
        if invoice_id in self.active:
            raise OperationInProgress(invoice_id)
        self.active[invoice_id] = action
        try:
            yield
        finally:
            self.active.pop(invoice_id, None)


in_flight = InFlightRegistry()
