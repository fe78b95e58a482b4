import enum
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from factorchain.database import Base, utcnow


class ProfileRole(str, enum.Enum):
    MSME = "msme"
    BUYER = "buyer"
    INVESTOR = "investor"


class Profile(Base):
    __tablename__ = "profiles"

    # Same id as the user in the external auth service (JWT `sub`)
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    # Stored as the lowercase value ("msme" | "buyer" | "investor")
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255))
    wallet_address: Mapped[str | None] = mapped_column(String(42))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
