"""Error taxonomy for the order synchronization core.

Every error raised by the core derives from ``OrderSyncError`` so callers at the
scheduler and trigger boundary can catch one type and report it per shop.
"""

from typing import Any


class OrderSyncError(Exception):
    """Base class for all order sync errors."""

    retryable: bool = False

    def to_summary(self) -> dict[str, Any]:
        """Compact, log- and report-friendly representation."""
        return {"type": type(self).__name__, "message": str(self)}


class ConfigurationError(OrderSyncError):
    """Missing or invalid secrets/settings. Fatal at startup."""


class SignatureError(OrderSyncError):
    """Signing input is incomplete for the requested call class."""


class ConnectionNotFoundError(OrderSyncError):
    """No active connection exists for the (tenant, shop) pair."""

    def __init__(self, tenant_id: str, shop_id: int):
        super().__init__(f"No active connection for tenant={tenant_id} shop={shop_id}")
        self.tenant_id = tenant_id
        self.shop_id = shop_id


class TransportError(OrderSyncError):
    """Network failure or timeout talking to the marketplace."""

    retryable = True


class MarketplaceApiError(OrderSyncError):
    """Business-level rejection reported by the marketplace."""

    def __init__(
        self,
        code: str,
        message: str = "",
        request_id: str | None = None,
        http_status: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.request_id = request_id
        self.http_status = http_status
        self.retryable = retryable

    def to_summary(self) -> dict[str, Any]:
        summary = super().to_summary()
        summary["code"] = self.code
        if self.request_id:
            summary["request_id"] = self.request_id
        return summary


class TokenRefreshError(OrderSyncError):
    """The marketplace rejected a token exchange or refresh.

    Recoverable by re-authorizing the shop; never retried indefinitely.
    """

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code

    def to_summary(self) -> dict[str, Any]:
        summary = super().to_summary()
        if self.code:
            summary["code"] = self.code
        return summary


class PersistenceError(OrderSyncError):
    """A store read or write failed."""

    retryable = True


class IngestionError(OrderSyncError):
    """The ingestion run for a shop could not proceed."""


class OrderMappingError(OrderSyncError):
    """A raw payload could not be mapped to the normalized schema."""
