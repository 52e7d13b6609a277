"""Shared shapes and HTTP plumbing for POS inventory adapters.

Each provider adapter turns its own paginated catalog/stock API into pages of
``RemoteStockItem``. The orchestrator and the webhook path only ever see this
normalized form.
"""
from dataclasses import dataclass, field
from typing import Callable, List, Optional
import logging
import os
import time

import httpx

from ..inventory.errors import ProviderTransportError, RateLimited

logger = logging.getLogger(__name__)

POS_HTTP_TIMEOUT = float(os.getenv("POS_HTTP_TIMEOUT", "20"))
RATE_LIMIT_DEFAULT_SECONDS = float(os.getenv("POS_RATE_LIMIT_DEFAULT_SECONDS", "3"))
RATE_LIMIT_MAX_RETRIES = int(os.getenv("POS_RATE_LIMIT_MAX_RETRIES", "10"))

PROVIDERS = ("clover", "square")


@dataclass
class PosCredentials:
    provider: str  # clover|square
    access_token: str
    merchant_id: str
    location_id: Optional[str] = None
    environment: str = "production"


@dataclass
class RemoteStockItem:
    remote_id: str
    name: str
    quantity: int
    sku: Optional[str] = None
    category: Optional[str] = None
    unit_price: Optional[int] = None


@dataclass
class Page:
    items: List[RemoteStockItem] = field(default_factory=list)
    next_cursor: Optional[str] = None
    # provider objects seen before hidden/archived filtering
    raw_count: int = 0


def clamp_quantity(value) -> int:
    try:
        qty = int(float(value or 0))
    except (TypeError, ValueError):
        return 0
    return max(0, qty)


def _retry_after_seconds(response: httpx.Response) -> float:
    raw = response.headers.get("retry-after")
    if not raw:
        return RATE_LIMIT_DEFAULT_SECONDS
    try:
        return max(0.0, float(raw))
    except ValueError:
        return RATE_LIMIT_DEFAULT_SECONDS


class PosAdapter:
    """Base adapter: owns the HTTP client and the 429 retry loop.

    ``client`` may be injected (tests pass one built on ``httpx.MockTransport``);
    otherwise a short-lived client is opened per request. ``sleep`` is the
    backoff hook and is called with no lock held.
    """

    provider = ""

    def __init__(self, client: Optional[httpx.Client] = None, sleep: Optional[Callable[[float], None]] = None):
        self._client = client
        self._sleep = sleep or time.sleep

    def fetch_page(self, credentials: PosCredentials, cursor: Optional[str]) -> Page:
        raise NotImplementedError

    def fetch_one(self, credentials: PosCredentials, remote_id: str) -> Optional[RemoteStockItem]:
        raise NotImplementedError

    def _headers(self, credentials: PosCredentials) -> dict:
        return {
            "Authorization": f"Bearer {credentials.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return self._client.request(method, url, **kwargs)
        with httpx.Client(timeout=POS_HTTP_TIMEOUT) as client:
            return client.request(method, url, **kwargs)

    def request(self, method: str, url: str, **kwargs) -> dict:
        """Issue a request, sleeping and retrying the same call on 429."""
        attempts = 0
        while True:
            r = self._send(method, url, **kwargs)
            if r.status_code == 429:
                attempts += 1
                wait = _retry_after_seconds(r)
                if attempts > RATE_LIMIT_MAX_RETRIES:
                    raise RateLimited(self.provider, wait)
                logger.info(
                    "pos_rate_limited",
                    extra={"provider": self.provider, "url": url, "wait_s": wait, "attempt": attempts},
                )
                self._sleep(wait)
                continue
            if r.status_code >= 300:
                raise ProviderTransportError(self.provider, r.status_code, r.text)
            if not r.content:
                return {}
            try:
                return r.json()
            except ValueError:
                # 200 with an HTML error page from a proxy or gateway
                raise ProviderTransportError(self.provider, r.status_code, r.text)


def get_adapter(
    provider: str,
    client: Optional[httpx.Client] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> PosAdapter:
    if provider == "clover":
        from .pos_clover import CloverAdapter  # lazy import

        return CloverAdapter(client=client, sleep=sleep)
    if provider == "square":
        from .pos_square import SquareAdapter  # lazy import

        return SquareAdapter(client=client, sleep=sleep)
    raise ValueError(f"unsupported POS provider: {provider}")
