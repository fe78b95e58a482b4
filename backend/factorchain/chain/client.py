"""Chain client — typed calls against the invoice marketplace contract.

Every state-changing call goes through the same sequence:

  1. a wallet provider must be configured            → WalletUnavailable
  2. account access is requested                     → UserRejected / WalletUnavailable
  3. the expected network is selected and verified   → WrongNetwork / UserRejected
  4. the transaction is sent and its receipt awaited → UserRejected / Reverted

and the whole sequence runs under one timeout budget (→ ChainTimeout).
Nothing here retries: a failed submission is reported, never replayed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from factorchain.chain.abi import INVOICE_MARKET_ABI
from factorchain.chain.units import from_minor_units, to_minor_units
from factorchain.chain.wallet import (
    DISCONNECTED_CODES,
    METHOD_NOT_FOUND_CODE,
    UNAUTHORIZED_CODE,
    USER_REJECTED_CODE,
    WalletProvider,
    provider_for,
    rpc_error_code,
)
from factorchain.config import settings
from factorchain.middleware.exceptions import (
    ChainError,
    ChainTimeout,
    Reverted,
    UserRejected,
    ValidationError,
    WalletUnavailable,
    WrongNetwork,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainReceipt:
    tx_hash: str
    token_id: str | None = None
    block_number: int | None = None


@dataclass(frozen=True)
class OnChainInvoice:
    token_id: str
    db_id: str
    price: Decimal
    price_minor: int
    owner: str
    pdf_url: str
    is_for_sale: bool


def _hex(value) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else f"0x{value}"
    return "0x" + bytes(value).hex()


def _token_arg(token_id) -> int:
    try:
        token = int(str(token_id))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid token id: {token_id!r}")
    if token < 0:
        raise ValidationError(f"Invalid token id: {token_id!r}")
    return token


class ChainClient:
    def __init__(
        self,
        provider: WalletProvider | None,
        contract_address: str,
        expected_chain_id: int,
        timeout: float = 120.0,
        gas_limit: int = 500_000,
        poll_latency: float = 2.0,
    ):
        self.provider = provider
        self.contract_address = contract_address
        self.expected_chain_id = expected_chain_id
        self.timeout = timeout
        self.gas_limit = gas_limit
        self.poll_latency = poll_latency

    # ── State-changing calls ─────────────────────────────────

    async def create_invoice(
        self,
        local_id: str,
        listed_price,
        original_amount,
        pdf_url: str | None,
        account: str | None = None,
    ) -> ChainReceipt:
        price_minor = to_minor_units(listed_price)
        amount_minor = to_minor_units(original_amount)
        contract, raw = await self._submit(
            "createInvoice",
            (local_id, price_minor, amount_minor, pdf_url or ""),
            value=0,
            account=account,
        )
        token_id = None
        events = contract.events.InvoiceCreated().process_receipt(raw, errors=DISCARD)
        for event in events:
            token_id = str(event["args"]["id"])
            break
        if token_id is None:
            logger.warning(
                "createInvoice receipt %s carried no InvoiceCreated event",
                _hex(raw["transactionHash"]),
            )
        return self._receipt(raw, token_id)

    async def buy_invoice(self, token_id, listed_price, account: str | None = None) -> ChainReceipt:
        value = to_minor_units(listed_price)
        _, raw = await self._submit(
            "buyInvoice", (_token_arg(token_id),), value=value, account=account
        )
        return self._receipt(raw, str(token_id))

    async def repay_invoice(self, token_id, original_amount, account: str | None = None) -> ChainReceipt:
        value = to_minor_units(original_amount)
        _, raw = await self._submit(
            "repayInvoice", (_token_arg(token_id),), value=value, account=account
        )
        return self._receipt(raw, str(token_id))

    # ── Read-only lookups ────────────────────────────────────

    async def get_invoice(self, token_id) -> OnChainInvoice:
        token = _token_arg(token_id)
        contract = self._contract(self._require_provider())
        db_id, price, owner, pdf_url, is_for_sale = await self._call(
            "getInvoice", contract.functions.getInvoice(token).call()
        )
        return OnChainInvoice(
            token_id=str(token),
            db_id=db_id,
            price=from_minor_units(int(price)),
            price_minor=int(price),
            owner=owner,
            pdf_url=pdf_url,
            is_for_sale=bool(is_for_sale),
        )

    async def get_invoice_count(self) -> int:
        contract = self._contract(self._require_provider())
        count = await self._call(
            "getInvoiceCount", contract.functions.getInvoiceCount().call()
        )
        return int(count)

    # ── Wallet / network ─────────────────────────────────────

    async def ensure_network(self, provider: WalletProvider) -> None:
        """Select the expected network in the wallet, then verify it."""
        try:
            await provider.switch_chain(self.expected_chain_id)
        except Exception as exc:
            code = rpc_error_code(exc)
            if code == USER_REJECTED_CODE:
                raise UserRejected("Network switch rejected in wallet") from exc
            if code != METHOD_NOT_FOUND_CODE:
                current = await provider.chain_id()
                raise WrongNetwork(self.expected_chain_id, current) from exc

        current = await provider.chain_id()
        if current != self.expected_chain_id:
            raise WrongNetwork(self.expected_chain_id, current)

    async def _select_account(self, provider: WalletProvider, preferred: str | None) -> str:
        accounts = await provider.request_accounts()
        if not accounts:
            raise WalletUnavailable("No wallet account is connected")
        if not preferred:
            return accounts[0]
        for candidate in accounts:
            if candidate.lower() == preferred.lower():
                return candidate
        raise WalletUnavailable(f"Wallet {preferred} is not connected")

    # ── Internals ────────────────────────────────────────────

    def _require_provider(self) -> WalletProvider:
        if self.provider is None:
            raise WalletUnavailable()
        if not self.contract_address:
            raise WalletUnavailable("Smart contract is not configured")
        return self.provider

    def _contract(self, provider: WalletProvider):
        return provider.contract(self.contract_address, INVOICE_MARKET_ABI)

    async def _submit(self, operation: str, args: tuple, value: int, account: str | None):
        provider = self._require_provider()
        contract = self._contract(provider)
        try:
            raw = await asyncio.wait_for(
                self._send(provider, contract, operation, args, value, account),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ChainTimeout(operation, self.timeout) from exc
        except ChainError:
            raise
        except Exception as exc:
            raise self._map_error(exc, operation) from exc
        return contract, raw

    async def _send(self, provider, contract, operation, args, value, account):
        sender = await self._select_account(provider, account)
        await self.ensure_network(provider)

        tx = {"from": sender, "gas": self.gas_limit}
        if value:
            tx["value"] = value
        logger.info("Submitting %s%r from %s (value=%d)", operation, args, sender, value)

        tx_hash = await getattr(contract.functions, operation)(*args).transact(tx)
        raw = await provider.wait_for_receipt(tx_hash, self.timeout, self.poll_latency)
        if raw["status"] == 0:
            raise Reverted(f"{operation} reverted on chain", tx_hash=_hex(tx_hash))
        logger.info("%s confirmed in tx %s", operation, _hex(tx_hash))
        return raw

    async def _call(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ChainTimeout(operation, self.timeout) from exc
        except ChainError:
            raise
        except Exception as exc:
            raise self._map_error(exc, operation) from exc

    def _map_error(self, exc: Exception, operation: str) -> ChainError:
        if isinstance(exc, ContractLogicError):
            return Reverted(f"{operation} rejected by the contract: {exc}")
        if isinstance(exc, TimeExhausted):
            return ChainTimeout(operation, self.timeout)

        code = rpc_error_code(exc)
        if code == USER_REJECTED_CODE:
            return UserRejected()
        if code == UNAUTHORIZED_CODE or code in DISCONNECTED_CODES:
            return WalletUnavailable(f"Wallet refused {operation}: {exc}")
        if "revert" in str(exc).lower():
            return Reverted(f"{operation} rejected by the contract: {exc}")

        logger.error("Unexpected provider error during %s: %r", operation, exc)
        return ChainError(
            message=f"Wallet provider error during {operation}",
            status_code=502,
            error_code="CHAIN_ERROR",
        )

    @staticmethod
    def _receipt(raw, token_id: str | None) -> ChainReceipt:
        return ChainReceipt(
            tx_hash=_hex(raw["transactionHash"]),
            token_id=token_id,
            block_number=raw.get("blockNumber"),
        )


def get_chain_client() -> ChainClient:
    """FastAPI dependency — a chain client bound to the configured provider."""
    return ChainClient(
        provider=provider_for(settings.rpc_url),
        contract_address=settings.contract_address,
        expected_chain_id=settings.expected_chain_id,
        timeout=settings.chain_timeout_seconds,
        gas_limit=settings.tx_gas_limit,
        poll_latency=settings.receipt_poll_latency_seconds,
    )
