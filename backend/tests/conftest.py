"""Pytest configuration and fixtures for FactorChain tests.

Provides a throwaway SQLite database, an in-memory stand-in for the
invoice marketplace contract, profiles for each role and an HTTP client
wired to all of them.
"""

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from factorchain.auth.context import SessionContext
from factorchain.auth.jwt import create_access_token
from factorchain.chain.client import ChainReceipt, OnChainInvoice, get_chain_client
from factorchain.chain.units import from_minor_units, to_minor_units
from factorchain.database import Base, get_db, get_session_factory
from factorchain.main import app
from factorchain.models.profile import Profile, ProfileRole
from factorchain.services.storage import DocumentStorage, get_document_storage
from factorchain.utils.locks import InFlightRegistry

MSME_EMAIL = "owner@acme-textiles.com"
BUYER_EMAIL = "ap@bigretail.com"
INVESTOR_EMAIL = "desk@northfund.com"

MSME_WALLET = "0x" + "a1" * 20
BUYER_WALLET = "0x" + "b2" * 20
INVESTOR_WALLET = "0x" + "c3" * 20


# ── Fake contract ────────────────────────────────────────────────

class FakeChainClient:
    """In-memory invoice marketplace contract.

    Mirrors the contract's observable behaviour (token counter starting
    at 1, for-sale flag, owner) and can be told to fail the next
    state-changing call with any ChainError via `fail_next`.
    """

    def __init__(self):
        self.invoices: dict[int, dict] = {}
        self.next_token = 1
        self.calls: list[tuple] = []
        self.fail_next: Exception | None = None
        self.emit_event = True
        self._tx = 0

    def _tx_hash(self) -> str:
        self._tx += 1
        return "0x" + f"{self._tx:064x}"

    def _maybe_fail(self):
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    async def create_invoice(self, local_id, listed_price, original_amount, pdf_url, account=None):
        self.calls.append(("createInvoice", local_id, listed_price, original_amount, account))
        price = to_minor_units(listed_price)
        amount = to_minor_units(original_amount)
        self._maybe_fail()
        token = self.next_token
        self.next_token += 1
        self.invoices[token] = {
            "db_id": local_id,
            "price": price,
            "amount": amount,
            "owner": account or MSME_WALLET,
            "pdf_url": pdf_url or "",
            "is_for_sale": True,
        }
        return ChainReceipt(
            tx_hash=self._tx_hash(),
            token_id=str(token) if self.emit_event else None,
            block_number=token,
        )

    async def buy_invoice(self, token_id, listed_price, account=None):
        self.calls.append(("buyInvoice", str(token_id), listed_price, account))
        value = to_minor_units(listed_price)
        self._maybe_fail()
        entry = self.invoices[int(token_id)]
        assert entry["is_for_sale"] and value == entry["price"]
        entry["is_for_sale"] = False
        entry["owner"] = account or INVESTOR_WALLET
        return ChainReceipt(tx_hash=self._tx_hash(), token_id=str(token_id))

    async def repay_invoice(self, token_id, original_amount, account=None):
        self.calls.append(("repayInvoice", str(token_id), original_amount, account))
        value = to_minor_units(original_amount)
        self._maybe_fail()
        assert value == self.invoices[int(token_id)]["amount"]
        return ChainReceipt(tx_hash=self._tx_hash(), token_id=str(token_id))

    async def get_invoice(self, token_id):
        entry = self.invoices[int(token_id)]
        return OnChainInvoice(
            token_id=str(int(token_id)),
            db_id=entry["db_id"],
            price=from_minor_units(entry["price"]),
            price_minor=entry["price"],
            owner=entry["owner"],
            pdf_url=entry["pdf_url"],
            is_for_sale=entry["is_for_sale"],
        )

    async def get_invoice_count(self):
        return len(self.invoices)

    @property
    def state_changing_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("createInvoice", "buyInvoice", "repayInvoice")]


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a throwaway SQLite database with every table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def storage(tmp_path) -> DocumentStorage:
    return DocumentStorage(tmp_path / "uploads", "https://files.test/uploads")


@pytest.fixture
def registry() -> InFlightRegistry:
    return InFlightRegistry()


@pytest_asyncio.fixture
async def client(session_factory, chain, storage) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database, chain and storage overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_chain_client] = lambda: chain
    app.dependency_overrides[get_document_storage] = lambda: storage
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Profiles ─────────────────────────────────────────────────────

async def _profile(db: AsyncSession, user_id, email, role, wallet) -> Profile:
    profile = Profile(id=user_id, email=email, role=role.value, full_name=email.split("@")[0], wallet_address=wallet)
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def msme(db_session) -> Profile:
    return await _profile(db_session, "user-msme", MSME_EMAIL, ProfileRole.MSME, MSME_WALLET)


@pytest_asyncio.fixture
async def buyer(db_session) -> Profile:
    return await _profile(db_session, "user-buyer", BUYER_EMAIL, ProfileRole.BUYER, BUYER_WALLET)


@pytest_asyncio.fixture
async def investor(db_session) -> Profile:
    return await _profile(db_session, "user-investor", INVESTOR_EMAIL, ProfileRole.INVESTOR, INVESTOR_WALLET)


def context_for(profile: Profile) -> SessionContext:
    return SessionContext(
        user_id=profile.id,
        email=profile.email,
        role=ProfileRole(profile.role),
        wallet_address=profile.wallet_address,
    )


def headers_for(profile: Profile) -> dict:
    token = create_access_token(user_id=profile.id, email=profile.email)
    return {"Authorization": f"Bearer {token}"}


PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"
FACE_VALUE = Decimal("10")


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP-level tests")
    config.addinivalue_line("markers", "integration: Integration tests")
