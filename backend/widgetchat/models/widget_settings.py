"""Tenant widget settings ORM model. Written by the settings UI, read here."""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from widgetchat.db.postgres import Base


class WidgetSettings(Base):
    __tablename__ = "widget_settings"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Widget field names: businessName, representativeName, businessInfo, color
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
