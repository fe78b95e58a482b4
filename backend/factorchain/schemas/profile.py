import re
from datetime import datetime

from pydantic import BaseModel, field_validator

from factorchain.models.profile import ProfileRole

WALLET_REGEX = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _check_wallet(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    value = value.strip()
    if not WALLET_REGEX.match(value):
        raise ValueError("Wallet address must be 0x followed by 40 hex characters")
    return value


# ── Create (after sign-up with the external auth service) ───

class ProfileCreate(BaseModel):
    """The email is taken from the token, never from the body."""
    role: ProfileRole
    full_name: str | None = None
    wallet_address: str | None = None

    @field_validator("wallet_address")
    @classmethod
    def validate_wallet(cls, v):
        return _check_wallet(v)


class ProfileUpdate(BaseModel):
    full_name: str | None = None
    wallet_address: str | None = None

    @field_validator("wallet_address")
    @classmethod
    def validate_wallet(cls, v):
        return _check_wallet(v)


class ProfileOut(BaseModel):
    id: str
    email: str
    role: str
    full_name: str | None
    wallet_address: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DashboardOut(BaseModel):
    role: str
    path: str
