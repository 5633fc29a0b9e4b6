"""Tenant profile schema.

Stored widget settings use the widget's own field names (businessName,
representativeName, businessInfo, color); they are accepted as aliases.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TenantProfile(BaseModel):
    """Persona a tenant configures for its widget. Read-only to this package."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tenant_id: str
    display_name: str = Field(default="", alias="businessName")
    agent_name: str = Field(default="", alias="representativeName")
    knowledge_text: str = Field(default="", alias="businessInfo")
    accent_color: str = Field(default="#4F46E5", alias="color")

    @field_validator(
        "display_name", "agent_name", "knowledge_text", mode="before"
    )
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("accent_color", mode="before")
    @classmethod
    def _default_color(cls, value: Any) -> Any:
        return value or "#4F46E5"

    @classmethod
    def from_widget_settings(cls, tenant_id: str, settings: dict[str, Any]) -> "TenantProfile":
        """Build a profile from the raw settings JSON of one tenant."""
        return cls.model_validate({**settings, "tenant_id": tenant_id})
