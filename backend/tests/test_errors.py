"""Error envelope rendering for database failures outside the lifecycle."""

import json

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.requests import Request

from factorchain.middleware.exceptions import (
    PartialSuccess,
    factorchain_exception_handler,
    integrity_exception_handler,
    operational_exception_handler,
)


def _request(path="/api/profile/", method="POST") -> Request:
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "headers": [],
        "query_string": b"",
        "scheme": "http",
        "server": ("test", 80),
    })


def _body(response) -> dict:
    return json.loads(response.body)


def _integrity(message: str) -> IntegrityError:
    return IntegrityError("INSERT", {}, Exception(message))


@pytest.mark.unit
@pytest.mark.asyncio
class TestIntegrityErrors:

    @pytest.mark.parametrize("message", [
        "UNIQUE constraint failed: profiles.email",
        'duplicate key value violates unique constraint "ix_profiles_email"',
        'duplicate key value violates unique constraint "profiles_pkey"',
    ])
    async def test_racing_sign_up_is_profile_exists(self, message):
        response = await integrity_exception_handler(_request(), _integrity(message))
        assert response.status_code == 409
        assert _body(response)["error"]["code"] == "PROFILE_EXISTS"

    async def test_other_duplicates(self):
        response = await integrity_exception_handler(
            _request("/api/invoices/"), _integrity("UNIQUE constraint failed: activity_logs.id")
        )
        assert response.status_code == 409
        assert _body(response)["error"]["code"] == "DUPLICATE_RECORD"

    async def test_missing_required_column(self):
        response = await integrity_exception_handler(
            _request(), _integrity("NOT NULL constraint failed: profiles.role")
        )
        assert response.status_code == 422
        assert _body(response)["error"]["code"] == "NULL_VALUE_NOT_ALLOWED"


@pytest.mark.unit
@pytest.mark.asyncio
class TestOtherErrors:

    async def test_database_unavailable(self):
        response = await operational_exception_handler(
            _request("/api/invoices/mine", "GET"),
            OperationalError("SELECT", {}, Exception("connection refused")),
        )
        assert response.status_code == 503
        assert _body(response)["error"]["code"] == "DATABASE_UNAVAILABLE"

    async def test_partial_success_carries_chain_details(self):
        exc = PartialSuccess("purchase", "inv-1", "0xabc", "3")
        response = await factorchain_exception_handler(_request("/api/invoices/inv-1/purchase"), exc)
        assert response.status_code == 502
        assert _body(response)["error"]["details"] == {
            "action": "purchase", "invoice_id": "inv-1", "tx_hash": "0xabc", "token_id": "3",
        }
