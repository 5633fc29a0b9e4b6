"""Custom exception classes for structured error handling.

Only UpstreamProviderError (and a missing tenant profile) may change what a
visitor sees, and even then only into the fixed apology reply. Every other
error kind is absorbed where it is raised.
"""

from typing import Any


class WidgetChatError(Exception):
    """Base exception for all widgetchat errors."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class UpstreamProviderError(WidgetChatError):
    """The model call failed: network, quota, auth, timeout or unknown."""

    def __init__(
        self, message: str = "Model provider call failed", reason: str = "unknown"
    ) -> None:
        self.reason = reason
        super().__init__(code="UPSTREAM_PROVIDER_ERROR", message=message)


class PersistenceError(WidgetChatError):
    def __init__(self, message: str = "Analytics store write failed") -> None:
        super().__init__(code="PERSISTENCE_ERROR", message=message)


class PolicyViolation(WidgetChatError):
    """Model output broke the response policy. Never leaves the post-processor."""

    def __init__(self, message: str = "Response violates policy", rule: str = "") -> None:
        self.rule = rule
        super().__init__(code="POLICY_VIOLATION", message=message)


class PolicyNotFoundError(WidgetChatError):
    def __init__(self, message: str = "Unknown response policy version") -> None:
        super().__init__(code="POLICY_NOT_FOUND", message=message)


class TenantNotFoundError(WidgetChatError):
    def __init__(self, message: str = "Tenant settings not found") -> None:
        super().__init__(code="TENANT_NOT_FOUND", message=message)


class CacheConnectionError(WidgetChatError):
    def __init__(self, message: str = "Redis connection failed") -> None:
        super().__init__(code="CACHE_CONNECTION_ERROR", message=message)
