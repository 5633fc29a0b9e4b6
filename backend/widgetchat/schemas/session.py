"""Visitor session schemas: partial writes and dashboard reads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class VisitorInfo(BaseModel):
    """Contact details a visitor volunteered through the widget form."""

    name: str | None = None
    email: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.name is None and self.email is None


class SessionPatch(BaseModel):
    """One atomic change to a visitor session.

    message_increment is added to the stored counter by the store itself;
    callers never send an absolute count.
    """

    message: str | None = None
    message_increment: int = 0
    ip_address: str | None = None
    visitor_name: str | None = None
    visitor_email: str | None = None


class VisitorSessionSummary(BaseModel):
    """Row shape for the analytics dashboard."""

    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    visitor_id: str
    ip_address: str | None = None
    visitor_name: str | None = None
    visitor_email: str | None = None
    first_message: str | None = None
    last_message: str | None = None
    message_count: int
    started_at: datetime
    ended_at: datetime | None = None
    updated_at: datetime
