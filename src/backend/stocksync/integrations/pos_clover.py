from typing import Any, Dict, Optional

from .pos_base import Page, PosAdapter, PosCredentials, RemoteStockItem, clamp_quantity

CLOVER_API = {
    "production": "https://api.clover.com",
    "sandbox": "https://apisandbox.dev.clover.com",
}
PAGE_LIMIT = 100


def _base_url(credentials: PosCredentials) -> str:
    return CLOVER_API.get(credentials.environment, CLOVER_API["production"])


def _normalize(item: Dict[str, Any]) -> Optional[RemoteStockItem]:
    if item.get("hidden"):
        return None
    categories = ((item.get("categories") or {}).get("elements") or [])
    category = (categories[0].get("name") or None) if categories else None
    stock = item.get("itemStock") or {}
    price = item.get("price")
    return RemoteStockItem(
        remote_id=str(item.get("id") or ""),
        name=str(item.get("name") or ""),
        sku=(str(item["sku"]) if item.get("sku") else None),
        category=category,
        quantity=clamp_quantity(stock.get("quantity")),
        unit_price=(int(price) if price is not None else None),
    )


class CloverAdapter(PosAdapter):
    """Clover v3 inventory: offset pagination, stock via ``expand=itemStock``."""

    provider = "clover"

    def fetch_page(self, credentials: PosCredentials, cursor: Optional[str]) -> Page:
        offset = int(cursor or 0)
        url = f"{_base_url(credentials)}/v3/merchants/{credentials.merchant_id}/items"
        params = {"expand": "itemStock,categories", "limit": PAGE_LIMIT, "offset": offset}
        data = self.request("GET", url, headers=self._headers(credentials), params=params)
        elements = data.get("elements") or []
        items = [it for it in (_normalize(e) for e in elements) if it is not None]
        next_cursor = str(offset + PAGE_LIMIT) if len(elements) >= PAGE_LIMIT else None
        return Page(items=items, next_cursor=next_cursor, raw_count=len(elements))

    def fetch_one(self, credentials: PosCredentials, remote_id: str) -> Optional[RemoteStockItem]:
        url = f"{_base_url(credentials)}/v3/merchants/{credentials.merchant_id}/items/{remote_id}"
        data = self.request("GET", url, headers=self._headers(credentials), params={"expand": "itemStock,categories"})
        if not data:
            return None
        return _normalize(data)
