"""Per-visitor analytics session ORM model."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from widgetchat.db.postgres import Base


class VisitorSession(Base):
    __tablename__ = "visitor_sessions"
    # One row per (tenant, visitor). The upsert conflicts on this constraint.
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "visitor_id", name="uq_visitor_sessions_tenant_visitor"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    visitor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    visitor_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    visitor_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
