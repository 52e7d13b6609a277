from typing import Any, Dict, List, Optional
import os

from .pos_base import Page, PosAdapter, PosCredentials, RemoteStockItem, clamp_quantity

SQUARE_API = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}
SQUARE_API_VERSION = os.getenv("SQUARE_API_VERSION", "2025-01-23")
COUNTS_BATCH = 100


def _base_url(credentials: PosCredentials) -> str:
    return SQUARE_API.get(credentials.environment, SQUARE_API["production"])


def _first_variation(item_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    variations = item_data.get("variations") or []
    return variations[0] if variations else None


def _category_id(item_data: Dict[str, Any]) -> Optional[str]:
    if item_data.get("category_id"):
        return str(item_data["category_id"])
    cats = item_data.get("categories") or []
    if cats and cats[0].get("id"):
        return str(cats[0]["id"])
    return None


class SquareAdapter(PosAdapter):
    """Square catalog + inventory counts.

    Catalog pages come from ``/v2/catalog/list`` (cursor pagination); stock is
    read per page through ``/v2/inventory/counts/batch-retrieve`` for the first
    variation of each item at the connected location. Items tracked across
    several variations only report the first one.
    """

    provider = "square"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._category_names: Dict[str, str] = {}

    def _headers(self, credentials: PosCredentials) -> dict:
        headers = super()._headers(credentials)
        headers["Square-Version"] = SQUARE_API_VERSION
        return headers

    def _remember_categories(self, objects: List[Dict[str, Any]]) -> None:
        for obj in objects:
            if obj.get("type") == "CATEGORY" and not obj.get("is_deleted"):
                name = (obj.get("category_data") or {}).get("name")
                if name:
                    self._category_names[str(obj.get("id"))] = str(name)

    def _in_stock_counts(self, credentials: PosCredentials, variation_ids: List[str]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        url = f"{_base_url(credentials)}/v2/inventory/counts/batch-retrieve"
        for i in range(0, len(variation_ids), COUNTS_BATCH):
            body: Dict[str, Any] = {"catalog_object_ids": variation_ids[i:i + COUNTS_BATCH]}
            if credentials.location_id:
                body["location_ids"] = [credentials.location_id]
            while True:
                data = self.request("POST", url, headers=self._headers(credentials), json=body)
                for c in data.get("counts") or []:
                    if c.get("state") != "IN_STOCK":
                        continue
                    oid = str(c.get("catalog_object_id") or "")
                    counts[oid] = counts.get(oid, 0) + clamp_quantity(c.get("quantity"))
                if not data.get("cursor"):
                    break
                body["cursor"] = data["cursor"]
        return counts

    def _normalize_items(self, credentials: PosCredentials, objects: List[Dict[str, Any]]) -> List[RemoteStockItem]:
        candidates = []
        for obj in objects:
            if obj.get("type") != "ITEM" or obj.get("is_deleted"):
                continue
            item_data = obj.get("item_data") or {}
            if item_data.get("is_archived"):
                continue
            variation = _first_variation(item_data)
            if not variation or not variation.get("id"):
                continue
            candidates.append((obj, item_data, variation))
        if not candidates:
            return []
        counts = self._in_stock_counts(credentials, [str(v["id"]) for _, _, v in candidates])
        out: List[RemoteStockItem] = []
        for obj, item_data, variation in candidates:
            vdata = variation.get("item_variation_data") or {}
            price = (vdata.get("price_money") or {}).get("amount")
            cat_id = _category_id(item_data)
            out.append(
                RemoteStockItem(
                    remote_id=str(obj.get("id")),
                    name=str(item_data.get("name") or ""),
                    sku=(str(vdata["sku"]) if vdata.get("sku") else None),
                    category=(self._category_names.get(cat_id, cat_id) if cat_id else None),
                    quantity=counts.get(str(variation["id"]), 0),
                    unit_price=(int(price) if price is not None else None),
                )
            )
        return out

    def fetch_page(self, credentials: PosCredentials, cursor: Optional[str]) -> Page:
        params = {"types": "ITEM,CATEGORY"}
        if cursor:
            params["cursor"] = cursor
        data = self.request(
            "GET", f"{_base_url(credentials)}/v2/catalog/list", headers=self._headers(credentials), params=params
        )
        objects = data.get("objects") or []
        self._remember_categories(objects)
        items = self._normalize_items(credentials, objects)
        return Page(items=items, next_cursor=(data.get("cursor") or None), raw_count=len(objects))

    def _get_object(self, credentials: PosCredentials, object_id: str) -> Dict[str, Any]:
        return self.request(
            "GET",
            f"{_base_url(credentials)}/v2/catalog/object/{object_id}",
            headers=self._headers(credentials),
            params={"include_related_objects": "true"},
        )

    def fetch_one(self, credentials: PosCredentials, remote_id: str) -> Optional[RemoteStockItem]:
        data = self._get_object(credentials, remote_id)
        obj = data.get("object") or {}
        related = data.get("related_objects") or []
        if obj.get("type") == "ITEM_VARIATION":
            # inventory webhooks reference the variation; stock is keyed by its parent item
            parent_id = str((obj.get("item_variation_data") or {}).get("item_id") or "")
            parent = next((o for o in related if o.get("type") == "ITEM" and o.get("id") == parent_id), None)
            if parent is None and parent_id:
                data = self._get_object(credentials, parent_id)
                parent = data.get("object")
                related = data.get("related_objects") or []
            obj = parent or {}
        self._remember_categories(related)
        items = self._normalize_items(credentials, [obj])
        return items[0] if items else None
