from dataclasses import dataclass

from factorchain.models.profile import ProfileRole


@dataclass(frozen=True)
class SessionContext:
    """Caller identity passed explicitly into every lifecycle operation."""

    user_id: str
    email: str
    role: ProfileRole
    wallet_address: str | None = None
