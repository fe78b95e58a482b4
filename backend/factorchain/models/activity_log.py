"""ActivityLog — immutable audit trail of invoice transitions.

Records who moved which invoice, from which status to which, and the
chain transaction involved.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from factorchain.database import Base, utcnow


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Who ────────────────────────────────────────────────────
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)

    # ── What ───────────────────────────────────────────────────
    # uploaded | approved | declined | listed | purchased | repaid
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # ── Target ─────────────────────────────────────────────────
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str | None] = mapped_column(String(36), index=True)
    entity_code: Mapped[str | None] = mapped_column(String(100))

    # ── Context ────────────────────────────────────────────────
    summary: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
