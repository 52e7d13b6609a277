from typing import Optional


class InventoryError(Exception):
    """Base for inventory sync and alerting failures."""


class BusinessNotFound(InventoryError):
    def __init__(self, business_id: str):
        super().__init__(f"business {business_id} not found")
        self.business_id = business_id


class NotConnected(InventoryError):
    """The business has no connected POS account (Clover or Square)."""

    def __init__(self, business_id: str):
        super().__init__(f"business {business_id} is not connected to a POS provider")
        self.business_id = business_id


class ProviderTransportError(InventoryError):
    def __init__(self, provider: str, status_code: int, body: str = ""):
        super().__init__(f"{provider} API {status_code}: {body[:200]}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


class RateLimited(InventoryError):
    def __init__(self, provider: str, retry_after: Optional[float] = None):
        super().__init__(f"{provider} rate limited (retry after {retry_after}s)")
        self.provider = provider
        self.retry_after = retry_after


class ChannelDispatchFailure(InventoryError):
    def __init__(self, channel: str, reason: str):
        super().__init__(f"{channel} dispatch failed: {reason}")
        self.channel = channel
        self.reason = reason
