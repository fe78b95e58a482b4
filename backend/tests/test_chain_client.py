"""Chain client tests against a scripted wallet provider."""

import asyncio
from decimal import Decimal

import pytest

from factorchain.chain.client import ChainClient
from factorchain.chain.units import SCALE
from factorchain.middleware.exceptions import (
    ChainTimeout,
    Reverted,
    UserRejected,
    WalletUnavailable,
    WrongNetwork,
)

SEPOLIA = 11155111
CONTRACT = "0x" + "ab" * 20
ACCOUNT = "0x" + "a1" * 20


class RpcError(Exception):
    """Provider error carrying a JSON-RPC error object, as web3 raises them."""

    def __init__(self, code: int, message: str = "rpc error"):
        super().__init__({"code": code, "message": message})


class _Call:
    def __init__(self, contract, name, args):
        self.contract, self.name, self.args = contract, name, args

    async def transact(self, tx):
        self.contract.sent.append((self.name, self.args, tx))
        if self.contract.transact_error:
            raise self.contract.transact_error
        if self.contract.transact_delay:
            await asyncio.sleep(self.contract.transact_delay)
        return bytes.fromhex("12" * 32)

    async def call(self):
        return self.contract.views[self.name](*self.args)


class _Functions:
    def __init__(self, contract):
        self._contract = contract

    def __getattr__(self, name):
        return lambda *args: _Call(self._contract, name, args)


class _CreatedEvent:
    def __init__(self, contract):
        self._contract = contract

    def process_receipt(self, receipt, errors=None):
        return [{"args": {"id": token}} for token in receipt.get("created", [])]


class _Events:
    def __init__(self, contract):
        self.InvoiceCreated = lambda: _CreatedEvent(contract)


class FakeContract:
    def __init__(self):
        self.sent = []
        self.transact_error = None
        self.transact_delay = 0
        self.views = {}
        self.functions = _Functions(self)
        self.events = _Events(self)


class FakeProvider:
    def __init__(self, chain_id=SEPOLIA, accounts=(ACCOUNT,)):
        self.current_chain = chain_id
        self.accounts = list(accounts)
        self.accounts_error = None
        self.switch_error = None
        self.switched_to = []
        self.receipt = {"status": 1, "transactionHash": bytes.fromhex("12" * 32), "blockNumber": 7, "created": [1]}
        self.contract_obj = FakeContract()

    async def request_accounts(self):
        if self.accounts_error:
            raise self.accounts_error
        return self.accounts

    async def chain_id(self):
        return self.current_chain

    async def switch_chain(self, chain_id):
        self.switched_to.append(chain_id)
        if self.switch_error:
            raise self.switch_error
        self.current_chain = chain_id

    def contract(self, address, abi):
        return self.contract_obj

    async def wait_for_receipt(self, tx_hash, timeout, poll_latency):
        return self.receipt


def make_client(provider, timeout=5.0, address=CONTRACT) -> ChainClient:
    return ChainClient(provider, address, SEPOLIA, timeout=timeout, poll_latency=0.01)


@pytest.mark.unit
@pytest.mark.asyncio
class TestSubmission:

    async def test_create_invoice_reads_token_from_event(self):
        provider = FakeProvider()
        receipt = await make_client(provider).create_invoice("inv-1", "8", "10", "https://f/x.pdf")

        assert receipt.token_id == "1"
        assert receipt.tx_hash == "0x" + "12" * 32
        assert receipt.block_number == 7
        name, args, tx = provider.contract_obj.sent[0]
        assert name == "createInvoice"
        assert args == ("inv-1", 8 * SCALE, 10 * SCALE, "https://f/x.pdf")
        assert tx["from"] == ACCOUNT and "value" not in tx

    async def test_missing_event_gives_no_token(self):
        provider = FakeProvider()
        provider.receipt["created"] = []
        receipt = await make_client(provider).create_invoice("inv-1", "8", "10", "")
        assert receipt.token_id is None

    async def test_buy_sends_listed_price_as_value(self):
        provider = FakeProvider()
        await make_client(provider).buy_invoice("3", Decimal("1.5"))
        name, args, tx = provider.contract_obj.sent[0]
        assert (name, args, tx["value"]) == ("buyInvoice", (3,), 1_500_000_000_000_000_000)

    async def test_repay_sends_original_amount_as_value(self):
        provider = FakeProvider()
        await make_client(provider).repay_invoice(3, "10")
        name, args, tx = provider.contract_obj.sent[0]
        assert (name, args, tx["value"]) == ("repayInvoice", (3,), 10 * SCALE)

    async def test_preferred_account_is_used(self):
        other = "0x" + "d4" * 20
        provider = FakeProvider(accounts=(ACCOUNT, other))
        await make_client(provider).buy_invoice(1, "1", account=other.upper().replace("0X", "0x"))
        assert provider.contract_obj.sent[0][2]["from"] == other


@pytest.mark.unit
@pytest.mark.asyncio
class TestFailures:

    async def test_no_provider(self):
        with pytest.raises(WalletUnavailable):
            await make_client(None).buy_invoice(1, "1")

    async def test_no_contract_address(self):
        with pytest.raises(WalletUnavailable):
            await make_client(FakeProvider(), address="").buy_invoice(1, "1")

    async def test_no_accounts(self):
        with pytest.raises(WalletUnavailable):
            await make_client(FakeProvider(accounts=())).buy_invoice(1, "1")

    async def test_preferred_account_not_connected(self):
        provider = FakeProvider()
        with pytest.raises(WalletUnavailable):
            await make_client(provider).buy_invoice(1, "1", account="0x" + "ee" * 20)
        assert provider.contract_obj.sent == []

    async def test_account_request_rejected(self):
        provider = FakeProvider()
        provider.accounts_error = RpcError(4001, "User rejected the request.")
        with pytest.raises(UserRejected):
            await make_client(provider).buy_invoice(1, "1")

    async def test_wallet_switches_to_expected_network(self):
        provider = FakeProvider(chain_id=1)
        await make_client(provider).buy_invoice(1, "1")
        assert provider.switched_to == [SEPOLIA]

    async def test_unknown_network_in_wallet(self):
        provider = FakeProvider(chain_id=1)
        provider.switch_error = RpcError(4902, "Unrecognized chain ID")
        with pytest.raises(WrongNetwork) as excinfo:
            await make_client(provider).buy_invoice(1, "1")
        assert excinfo.value.details == {"expected_chain_id": SEPOLIA, "actual_chain_id": 1}
        assert provider.contract_obj.sent == []

    async def test_node_without_switch_method_must_already_match(self):
        provider = FakeProvider(chain_id=5)
        provider.switch_error = RpcError(-32601, "method not found")
        with pytest.raises(WrongNetwork):
            await make_client(provider).buy_invoice(1, "1")

        provider.current_chain = SEPOLIA
        await make_client(provider).buy_invoice(1, "1")

    async def test_switch_rejected(self):
        provider = FakeProvider(chain_id=1)
        provider.switch_error = RpcError(4001)
        with pytest.raises(UserRejected):
            await make_client(provider).buy_invoice(1, "1")

    async def test_transaction_rejected_in_wallet(self):
        provider = FakeProvider()
        provider.contract_obj.transact_error = RpcError(4001, "User denied transaction signature")
        with pytest.raises(UserRejected):
            await make_client(provider).buy_invoice(1, "1")

    async def test_reverted_receipt(self):
        provider = FakeProvider()
        provider.receipt["status"] = 0
        with pytest.raises(Reverted) as excinfo:
            await make_client(provider).repay_invoice(1, "10")
        assert excinfo.value.details == {"tx_hash": "0x" + "12" * 32}

    async def test_revert_reported_by_node(self):
        provider = FakeProvider()
        provider.contract_obj.transact_error = ValueError("execution reverted: Not for sale")
        with pytest.raises(Reverted):
            await make_client(provider).buy_invoice(1, "1")

    async def test_timeout(self):
        provider = FakeProvider()
        provider.contract_obj.transact_delay = 1
        with pytest.raises(ChainTimeout) as excinfo:
            await make_client(provider, timeout=0.05).buy_invoice(1, "1")
        assert excinfo.value.error_code == "TIMEOUT"


@pytest.mark.unit
@pytest.mark.asyncio
class TestReads:

    async def test_get_invoice(self):
        provider = FakeProvider()
        provider.contract_obj.views["getInvoice"] = lambda token: (
            "inv-1", 1_500_000_000_000_000_000, ACCOUNT, "https://f/x.pdf", True
        )
        invoice = await make_client(provider).get_invoice("2")

        assert invoice.token_id == "2"
        assert invoice.db_id == "inv-1"
        assert invoice.price == Decimal("1.5")
        assert invoice.is_for_sale is True

    async def test_get_invoice_count(self):
        provider = FakeProvider()
        provider.contract_obj.views["getInvoiceCount"] = lambda: 4
        assert await make_client(provider).get_invoice_count() == 4
