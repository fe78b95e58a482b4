"""Management CLI for store / chain reconciliation.

Usage:
    python -m factorchain.cli reconcile      # Compare every chain invoice with its record
    python -m factorchain.cli list-alerts    # Show open reconciliation alerts
    python -m factorchain.cli chain-count    # Number of invoices the contract holds
"""

import asyncio
import sys

from factorchain.chain.client import get_chain_client
from factorchain.database import async_session, engine
from factorchain.middleware.exceptions import FactorChainException
from factorchain.schemas.reconciliation import AlertOut, RunSummary
from factorchain.services.reconciliation import list_alerts, run_chain_reconciliation


async def reconcile() -> int:
    async with async_session() as db:
        summary = RunSummary(**await run_chain_reconciliation(db, get_chain_client()))

    print(f"Run {summary.run_id}: {summary.chain_count} chain invoice(s) checked")
    for alert_type, count in sorted(summary.by_type.items()):
        print(f"  {alert_type}: {count}")
    print(f"\n{summary.total_alerts} alert(s)")
    return 1 if summary.total_alerts else 0


async def show_alerts() -> int:
    async with async_session() as db:
        alerts = [AlertOut.model_validate(a) for a in await list_alerts(db)]

    for a in alerts:
        ref = a.invoice_id or f"token {a.token_id}"
        print(f"  [{a.severity}] {a.alert_type} {ref}: {a.title}")
        if a.tx_hash:
            print(f"      tx {a.tx_hash}")
    print(f"\n{len(alerts)} open alert(s)")
    return 0


async def chain_count() -> int:
    count = await get_chain_client().get_invoice_count()
    print(count)
    return 0


COMMANDS = {
    "reconcile": reconcile,
    "list-alerts": show_alerts,
    "chain-count": chain_count,
}


async def _run(command) -> int:
    try:
        return await command()
    except FactorChainException as exc:
        print(f"  FAILED: {exc.error_code}: {exc.message}")
        return 2
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    command = COMMANDS.get(argv[0] if argv else "")
    if command is None:
        print(f"Usage: python -m factorchain.cli [{'|'.join(COMMANDS)}]")
        return 64
    return asyncio.run(_run(command))


if __name__ == "__main__":
    sys.exit(main())
